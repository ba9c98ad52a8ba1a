from dataclasses import dataclass, field
from typing import Optional, Dict, Any
from pathlib import Path
import math
import os
import yaml

from timing import models

STAGES = tuple(s.value for s in models.STAGES)

DEFAULT_STUCK_THRESHOLDS = {"Received": 15.0, "Kitchen": 45.0, "EnRoute": 60.0, "Delivered": 5.0}
DEFAULT_IDEAL_DWELL = {"Received": 5.0, "Kitchen": 30.0, "EnRoute": 40.0, "Delivered": 2.0}


def _minutes_by_stage(raw: Optional[Dict[str, Any]], defaults: Dict[str, float], name: str) -> Dict[str, float]:
    """Merge a partial stage -> minutes mapping over the defaults and validate every stage."""
    merged = dict(defaults)
    for key, value in (raw or {}).items():
        if key not in STAGES:
            raise ValueError(f"[config] {name}: unknown stage '{key}', expected one of {list(STAGES)}")
        merged[key] = value
    for stage in STAGES:
        try:
            minutes = float(merged[stage])
        except (TypeError, ValueError):
            raise ValueError(f"[config] {name}.{stage} must be a number, got {merged[stage]!r}") from None
        if not math.isfinite(minutes) or minutes <= 0:
            raise ValueError(f"[config] {name}.{stage} must be a positive number of minutes, got {minutes}")
        merged[stage] = minutes
    return merged


@dataclass
class TimingCfg:
    stuck_thresholds: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_STUCK_THRESHOLDS))
    ideal_dwell: Dict[str, float] = field(default_factory=lambda: dict(DEFAULT_IDEAL_DWELL))
    business_timezone_offset_minutes: int = 0

    def __post_init__(self):
        self.stuck_thresholds = _minutes_by_stage(self.stuck_thresholds, DEFAULT_STUCK_THRESHOLDS, "stuck_thresholds")
        self.ideal_dwell = _minutes_by_stage(self.ideal_dwell, DEFAULT_IDEAL_DWELL, "ideal_dwell")
        try:
            offset = int(self.business_timezone_offset_minutes)
        except (TypeError, ValueError):
            raise ValueError(
                f"[config] business_timezone_offset_minutes must be an integer, got {self.business_timezone_offset_minutes!r}"
            ) from None
        # datetime.timezone only accepts offsets strictly inside one day
        if abs(offset) >= 24 * 60:
            raise ValueError(f"[config] business_timezone_offset_minutes out of range: {offset}")
        self.business_timezone_offset_minutes = offset


@dataclass
class SourceCfg:
    url: str = "http://localhost:8086"
    token: Optional[str] = None
    org: str = "restaurant"
    bucket: str = "orders"
    measurement: str = "orders"
    timeout_ms: int = 10_000
    retries: int = 1

    def __post_init__(self):
        for name in ("timeout_ms", "retries"):
            if not isinstance(getattr(self, name), (int, float, str)):
                raise ValueError(f"[config] source.{name} must be an integer, got {getattr(self, name)!r}")
        if int(self.timeout_ms) <= 0:
            raise ValueError(f"[config] source.timeout_ms must be positive, got {self.timeout_ms}")
        if int(self.retries) not in (0, 1):
            raise ValueError(f"[config] source.retries must be 0 or 1, got {self.retries}")
        self.timeout_ms = int(self.timeout_ms)
        self.retries = int(self.retries)


@dataclass
class AppCfg:
    timing: TimingCfg = None
    source: SourceCfg = None

    def __post_init__(self):
        if self.timing is None:
            self.timing = TimingCfg()
        if self.source is None:
            self.source = SourceCfg()


def _source_from_env(raw: Dict[str, Any]) -> Dict[str, Any]:
    env = {
        "url": os.getenv("INFLUXDB_URL"),
        "token": os.getenv("INFLUXDB_TOKEN"),
        "org": os.getenv("INFLUXDB_ORG"),
        "bucket": os.getenv("INFLUXDB_BUCKET"),
    }
    return {**raw, **{k: v for k, v in env.items() if v}}


def load_config(path: str) -> AppCfg:
    p = Path(path)
    if not p.exists():
        raise FileNotFoundError(f"Config file not found: {p}")
    raw = yaml.safe_load(p.read_text()) or {}

    timing_raw = raw.get("timing") or {}
    timing = TimingCfg(
        stuck_thresholds=timing_raw.get("stuck_thresholds"),
        ideal_dwell=timing_raw.get("ideal_dwell"),
        business_timezone_offset_minutes=timing_raw.get("business_timezone_offset_minutes", 0),
    )
    source = SourceCfg(**_source_from_env(raw.get("source") or {}))
    return AppCfg(timing=timing, source=source)
