"""
Boundary between loosely typed order records and OrderTimeline.

Records come from whatever the order source hands back (InfluxDB rows, CSV rows,
plain dicts) and may use either the English or the Spanish vocabulary of the
order pipeline. Everything is translated to the canonical Status enum here;
nothing downstream sees untyped data.
"""
from __future__ import annotations

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Iterable, List, Mapping, Optional

import pandas as pd
from dateutil import parser

from .models import ExcludedRecord, OrderTimeline, STAGES, Status

log = logging.getLogger(__name__)

STATUS_ALIASES = {
    "received": Status.RECEIVED,
    "recibido": Status.RECEIVED,
    "recibidos": Status.RECEIVED,
    "kitchen": Status.KITCHEN,
    "cocina": Status.KITCHEN,
    "enroute": Status.ENROUTE,
    "en_route": Status.ENROUTE,
    "en route": Status.ENROUTE,
    "delivery": Status.ENROUTE,
    "camino": Status.ENROUTE,
    "en camino": Status.ENROUTE,
    "delivered": Status.DELIVERED,
    "entregado": Status.DELIVERED,
    "entregados": Status.DELIVERED,
    "cancelled": Status.CANCELLED,
    "canceled": Status.CANCELLED,
    "cancelado": Status.CANCELLED,
    "cancelados": Status.CANCELLED,
}

FIELD_ALIASES = {
    "id": ("id", "order_id", "orderId"),
    "site_id": ("site_id", "siteId", "sede_id"),
    "site_name": ("site_name", "siteName", "sede_nombre"),
    "status": ("status", "estado"),
    "created_at": ("created_at", "createdAt"),
    "received_at": ("received_at", "receivedAt", "recibidos_at"),
    "kitchen_at": ("kitchen_at", "kitchenAt", "cocina_at"),
    "enroute_at": ("enroute_at", "enrouteAt", "camino_at"),
    "delivered_at": ("delivered_at", "deliveredAt", "entregado_at"),
    "cancelled_at": ("cancelled_at", "cancelledAt", "cancelado_at"),
}

STAGE_FIELDS = {
    Status.RECEIVED: "received_at",
    Status.KITCHEN: "kitchen_at",
    Status.ENROUTE: "enroute_at",
    Status.DELIVERED: "delivered_at",
}


class RecordError(ValueError):
    """Raised while mapping a single record; turned into an ExcludedRecord."""


@dataclass
class MappingResult:
    timelines: List[OrderTimeline] = field(default_factory=list)
    excluded: List[ExcludedRecord] = field(default_factory=list)

    @property
    def excluded_count(self) -> int:
        return len(self.excluded)


def _is_missing(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return not value.strip()
    # pd.NA, pd.NaT, numpy NaT and float NaN
    return pd.api.types.is_scalar(value) and bool(pd.isna(value))


def _pick(record: Mapping[str, Any], name: str) -> Any:
    for key in FIELD_ALIASES[name]:
        if key in record and not _is_missing(record[key]):
            return record[key]
    return None


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Coerce a timestamp-ish value to an aware UTC datetime.
    - None / NaN / NaT / blank -> None
    - datetime or pandas Timestamp; naive values are taken as UTC
    - int/float -> epoch seconds
    - str -> ISO-8601 or anything dateutil understands
    Raises RecordError for values that cannot be interpreted.
    """
    if _is_missing(value):
        return None
    if isinstance(value, pd.Timestamp) or getattr(getattr(value, "dtype", None), "kind", None) == "M":
        # numpy datetime64 .item() would give integer nanoseconds
        value = pd.Timestamp(value).to_pydatetime()
    if isinstance(value, bool):
        raise RecordError(f"boolean is not a timestamp: {value!r}")
    if not isinstance(value, (str, datetime)) and hasattr(value, "item"):
        value = value.item()
    if isinstance(value, (int, float)):
        if not math.isfinite(value):
            raise RecordError(f"non-finite epoch value: {value!r}")
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError) as e:
            raise RecordError(f"epoch value out of range: {value!r}") from e
    if isinstance(value, str):
        try:
            value = parser.isoparse(value.strip())
        except (ValueError, OverflowError):
            try:
                value = parser.parse(value)
            except (ValueError, OverflowError) as e:
                raise RecordError(f"unparseable timestamp: {value!r}") from e
    if not isinstance(value, datetime):
        raise RecordError(f"unsupported timestamp type: {type(value).__name__}")
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    try:
        return value.astimezone(timezone.utc)
    except OverflowError as e:
        raise RecordError(f"timestamp out of range in UTC: {value!r}") from e


def parse_status(value: Any) -> Status:
    if isinstance(value, Status):
        return value
    if not isinstance(value, str) or _is_missing(value):
        raise RecordError(f"missing or non-text status: {value!r}")
    status = STATUS_ALIASES.get(value.strip().lower())
    if status is None:
        raise RecordError(f"unknown status: {value!r}")
    return status


def _parse_key(value: Any, name: str = "id"):
    if _is_missing(value):
        raise RecordError(f"missing {name}")
    if isinstance(value, bool):
        raise RecordError(f"invalid {name}: {value!r}")
    if isinstance(value, float):
        # CSV columns with gaps come back as float64
        if not value.is_integer():
            raise RecordError(f"invalid {name}: {value!r}")
        return int(value)
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        key = value.strip()
        if not key:
            raise RecordError(f"missing {name}")
        return key
    # numpy scalars
    if hasattr(value, "item"):
        return _parse_key(value.item(), name)
    raise RecordError(f"invalid {name} type: {type(value).__name__}")


def _check_pattern(status: Status, stamps: Mapping[str, Optional[datetime]]) -> None:
    """Reject timestamp patterns that contradict the declared status."""
    reached = [s for s in STAGES if stamps[STAGE_FIELDS[s]] is not None]
    expected_prefix = list(STAGES[:len(reached)])
    if reached != expected_prefix:
        raise RecordError(f"gap in stage timestamps for status {status.value}")

    if status is Status.CANCELLED:
        if stamps["cancelled_at"] is None:
            raise RecordError("status Cancelled without cancelled_at")
        if stamps["delivered_at"] is not None:
            raise RecordError("cancelled after delivery")
        if not reached:
            raise RecordError("cancelled before being received")
        return

    if stamps["cancelled_at"] is not None:
        raise RecordError(f"cancelled_at set for status {status.value}")
    if not reached or reached[-1] is not status:
        last = reached[-1].value if reached else "none"
        raise RecordError(f"status {status.value} but furthest timestamp is {last}")


def map_record(record: Mapping[str, Any]) -> OrderTimeline:
    if not isinstance(record, Mapping):
        raise RecordError(f"record is not a mapping: {type(record).__name__}")

    order_id = _parse_key(_pick(record, "id"))
    site_id = _parse_key(_pick(record, "site_id"), "site_id")
    site_name = _pick(record, "site_name")

    created_at = parse_timestamp(_pick(record, "created_at"))
    if created_at is None:
        raise RecordError("missing created_at")

    status = parse_status(_pick(record, "status"))
    stamps = {
        name: parse_timestamp(_pick(record, name))
        for name in ("received_at", "kitchen_at", "enroute_at", "delivered_at", "cancelled_at")
    }
    _check_pattern(status, stamps)

    return OrderTimeline(
        id=order_id,
        site_id=str(site_id),
        site_name=str(site_name) if site_name is not None else None,
        status=status,
        created_at=created_at,
        **stamps,
    )


def map_records(records: Iterable[Any]) -> MappingResult:
    """Map every record; malformed ones are excluded with a reason, never raised."""
    result = MappingResult()
    for index, record in enumerate(records):
        try:
            result.timelines.append(map_record(record))
        except (ValueError, TypeError) as e:
            raw_id = _pick(record, "id") if isinstance(record, Mapping) else None
            result.excluded.append(ExcludedRecord(index=index, raw_id=raw_id, reason=str(e)))
            log.debug(f"[mapper] excluded record #{index} (id={raw_id!r}): {e}")

    if result.excluded:
        total = len(result.timelines) + len(result.excluded)
        log.warning(f"[mapper] excluded {result.excluded_count} of {total} records")
    return result
