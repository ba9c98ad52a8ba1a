from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol

import pandas as pd
from influxdb_client import InfluxDBClient

from config.config import SourceCfg
from timing.mapper import FIELD_ALIASES, MappingResult, map_records

log = logging.getLogger(__name__)


class FetchError(RuntimeError):
    """The order source could not be read after the allowed attempts."""

    def __init__(self, message: str, attempts: int):
        super().__init__(message)
        self.attempts = attempts


class OrderSource(Protocol):
    def fetch_records(self, start: datetime, end: datetime,
                      site_id: Optional[str] = None) -> List[Dict[str, Any]]:
        ...


def _utc(ts: datetime) -> datetime:
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def _rfc3339(ts: datetime) -> str:
    return _utc(ts).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


class InfluxOrderSource:
    """
    Reads one row per order from InfluxDB.

    Layout: measurement `cfg.measurement`, point time = created_at,
    tags order_id / site_id / status (/ site_name), stage timestamps as string fields.
    """

    def __init__(self, cfg: SourceCfg, client_factory: Optional[Callable[..., Any]] = None):
        self.cfg = cfg
        self.client_factory = client_factory or InfluxDBClient

    def get_client(self):
        return self.client_factory(
            url=self.cfg.url,
            token=self.cfg.token,
            org=self.cfg.org,
            timeout=self.cfg.timeout_ms,
        )

    def build_query(self, start: datetime, end: datetime, site_id: Optional[str] = None) -> str:
        site_filter = ""
        if site_id is not None:
            escaped = str(site_id).replace("\\", "\\\\").replace('"', '\\"')
            site_filter = f'\n          |> filter(fn: (r) => r.site_id == "{escaped}")'
        # range() stop is exclusive; the window is inclusive of `end`
        stop = _utc(end) + timedelta(microseconds=1)
        return f'''
        from(bucket: "{self.cfg.bucket}")
          |> range(start: {_rfc3339(start)}, stop: {_rfc3339(stop)})
          |> filter(fn: (r) => r._measurement == "{self.cfg.measurement}"){site_filter}
          |> pivot(rowKey:["_time"], columnKey: ["_field"], valueColumn: "_value")
        '''

    def fetch_records(self, start: datetime, end: datetime,
                      site_id: Optional[str] = None) -> List[Dict[str, Any]]:
        client = self.get_client()
        try:
            result = client.query_api().query(query=self.build_query(start, end, site_id), org=self.cfg.org)
            rows = []
            for table in result:
                for record in table.records:
                    row = {k: v for k, v in record.values.items()
                           if not k.startswith('_') and k not in ['result', 'table']}
                    row["created_at"] = record.get_time()
                    rows.append(row)
            log.info(f"[influx] loaded {len(rows)} order rows from {self.cfg.bucket}/{self.cfg.measurement}")
            return rows
        finally:
            client.close()


def _parse_ts(s: Any) -> pd.Timestamp:
    """Tolerant parse to a UTC timestamp; naive values are taken as UTC, bad values become NaT."""
    ts = pd.to_datetime(s, utc=True, errors="coerce")
    return ts if isinstance(ts, pd.Timestamp) else pd.NaT


def _clip(df: pd.DataFrame, start: Optional[pd.Timestamp], end: Optional[pd.Timestamp]) -> pd.DataFrame:
    """Restrict rows to [start, end] window (inclusive)."""
    if start is not None:
        df = df[df["_ts"] >= start]
    if end is not None:
        df = df[df["_ts"] <= end]
    return df


class CsvOrderSource:
    """One row per order in a CSV export; columns may use any alias the mapper understands."""

    def __init__(self, path: str):
        self.path = Path(path)
        if not self.path.exists():
            raise FileNotFoundError(f"Order CSV not found: {self.path}")

    def _column(self, df: pd.DataFrame, name: str) -> Optional[str]:
        return next((c for c in FIELD_ALIASES[name] if c in df.columns), None)

    def fetch_records(self, start: datetime, end: datetime,
                      site_id: Optional[str] = None) -> List[Dict[str, Any]]:
        try:
            df = pd.read_csv(self.path, dtype=str, keep_default_na=True)
        except (OSError, pd.errors.ParserError, pd.errors.EmptyDataError) as e:
            raise OSError(f"could not read {self.path}: {e}") from e

        created_col = self._column(df, "created_at")
        if created_col is None:
            raise ValueError(
                f"[csv] no created_at column in {self.path}. Available columns: {list(df.columns)}"
            )

        df["_ts"] = pd.to_datetime(df[created_col].map(_parse_ts), utc=True)
        # rows with an unreadable created_at are left for the mapper to exclude
        bad = df[df["_ts"].isna()]
        df = _clip(df[df["_ts"].notna()], pd.Timestamp(_utc(start)), pd.Timestamp(_utc(end)))

        site_col = self._column(df, "site_id")
        if site_id is not None and site_col is not None:
            df = df[df[site_col].astype(str).str.strip() == str(site_id)]
            bad = bad[bad[site_col].astype(str).str.strip() == str(site_id)]

        rows = []
        for _, row in pd.concat([df, bad]).iterrows():
            rows.append({k: v for k, v in row.to_dict().items() if k != "_ts" and pd.notna(v)})
        log.info(f"[csv] loaded {len(rows)} order rows from {self.path}")
        return rows


def fetch_order_timelines(source: OrderSource, start: datetime, end: datetime,
                          site_id: Optional[str] = None, retries: int = 1) -> MappingResult:
    """
    Fetch a snapshot and map it. At most one automatic retry; after that the
    failure is raised as FetchError for the caller to surface.
    """
    if retries not in (0, 1):
        raise ValueError(f"retries must be 0 or 1, got {retries}")
    if _utc(end) < _utc(start):
        raise ValueError(f"date range is reversed: {start} > {end}")

    attempts = 0
    while True:
        attempts += 1
        try:
            records = source.fetch_records(start, end, site_id)
            break
        except Exception as e:
            if attempts > retries:
                log.error(f"[fetch] giving up after {attempts} attempt(s): {e}")
                raise FetchError(f"order source failed after {attempts} attempt(s): {e}", attempts) from e
            log.warning(f"[fetch] attempt {attempts} failed, retrying: {e}")

    return map_records(records)
