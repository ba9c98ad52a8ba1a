from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

OrderId = Union[int, str]


class Status(str, Enum):
    RECEIVED = "Received"
    KITCHEN = "Kitchen"
    ENROUTE = "EnRoute"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"

    @property
    def terminal(self) -> bool:
        return self in (Status.DELIVERED, Status.CANCELLED)


# forward path; Cancelled sits outside it
STAGES = (Status.RECEIVED, Status.KITCHEN, Status.ENROUTE, Status.DELIVERED)


class Transition(str, Enum):
    RECEIVED_KITCHEN = "Received->Kitchen"
    KITCHEN_ENROUTE = "Kitchen->EnRoute"
    ENROUTE_DELIVERED = "EnRoute->Delivered"

    @property
    def source(self) -> Status:
        return STAGES[list(Transition).index(self)]

    @property
    def target(self) -> Status:
        return STAGES[list(Transition).index(self) + 1]


TRANSITIONS = tuple(Transition)


def _iso(ts: Optional[datetime]) -> Optional[str]:
    return ts.isoformat() if ts is not None else None


@dataclass(frozen=True)
class OrderTimeline:
    id: OrderId
    site_id: str
    status: Status
    created_at: datetime
    received_at: Optional[datetime] = None
    kitchen_at: Optional[datetime] = None
    enroute_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    site_name: Optional[str] = None

    def entered_at(self, state: Status) -> Optional[datetime]:
        return {
            Status.RECEIVED: self.received_at,
            Status.KITCHEN: self.kitchen_at,
            Status.ENROUTE: self.enroute_at,
            Status.DELIVERED: self.delivered_at,
            Status.CANCELLED: self.cancelled_at,
        }[state]

    def last_stage(self) -> Optional[Status]:
        """Furthest forward stage with a timestamp."""
        reached = [s for s in STAGES if self.entered_at(s) is not None]
        return reached[-1] if reached else None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "site_id": self.site_id,
            "site_name": self.site_name,
            "status": self.status.value,
            "created_at": _iso(self.created_at),
            "received_at": _iso(self.received_at),
            "kitchen_at": _iso(self.kitchen_at),
            "enroute_at": _iso(self.enroute_at),
            "delivered_at": _iso(self.delivered_at),
            "cancelled_at": _iso(self.cancelled_at),
        }


@dataclass(frozen=True)
class ExcludedRecord:
    index: int
    raw_id: Any
    reason: str

    def to_dict(self) -> Dict[str, Any]:
        raw_id = self.raw_id if isinstance(self.raw_id, (int, str)) or self.raw_id is None else str(self.raw_id)
        return {"index": self.index, "raw_id": raw_id, "reason": self.reason}


@dataclass(frozen=True)
class DataIntegrityAnomaly:
    """A negative delta between two timestamps of one order (clock skew or out-of-order writes)."""
    order_id: OrderId
    site_id: str
    leg: str
    started_at: datetime
    ended_at: datetime
    minutes: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "site_id": self.site_id,
            "leg": self.leg,
            "started_at": _iso(self.started_at),
            "ended_at": _iso(self.ended_at),
            "minutes": self.minutes,
        }


@dataclass
class OrderDurations:
    order_id: OrderId
    site_id: str
    status: Status
    dwell: Dict[Status, Optional[float]] = field(default_factory=dict)
    transitions: Dict[Transition, Optional[float]] = field(default_factory=dict)
    total_minutes: Optional[float] = None
    anomalies: List[DataIntegrityAnomaly] = field(default_factory=list)

    @property
    def open_dwell(self) -> Optional[float]:
        """Minutes spent so far in the current state, None for terminal orders."""
        if self.status.terminal:
            return None
        return self.dwell.get(self.status)


@dataclass
class StateStats:
    state: Status
    total_orders: int = 0
    avg_minutes: float = 0.0
    min_minutes: float = 0.0
    max_minutes: float = 0.0
    orders_stuck: int = 0
    efficiency_score: float = 100.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "total_orders": self.total_orders,
            "avg_minutes": self.avg_minutes,
            "min_minutes": self.min_minutes,
            "max_minutes": self.max_minutes,
            "orders_stuck": self.orders_stuck,
            "efficiency_score": self.efficiency_score,
        }


@dataclass
class TransitionStats:
    transition: Transition
    count: int = 0
    avg_minutes: float = 0.0
    min_minutes: float = 0.0
    max_minutes: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_state": self.transition.source.value,
            "to_state": self.transition.target.value,
            "count": self.count,
            "avg_minutes": self.avg_minutes,
            "min_minutes": self.min_minutes,
            "max_minutes": self.max_minutes,
        }


@dataclass
class StuckOrder:
    order_id: OrderId
    site_id: str
    state: Status
    elapsed_minutes: float
    threshold_minutes: float
    is_stuck: bool

    def to_dict(self) -> Dict[str, Any]:
        return {
            "order_id": self.order_id,
            "site_id": self.site_id,
            "state": self.state.value,
            "elapsed_minutes": self.elapsed_minutes,
            "threshold_minutes": self.threshold_minutes,
            "is_stuck": self.is_stuck,
        }


@dataclass
class TrendPoint:
    day: date
    site_id: str
    site_name: Optional[str] = None
    avg_transition_minutes: Dict[Transition, float] = field(default_factory=dict)
    avg_total_minutes: float = 0.0
    order_count: int = 0
    completed_count: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "date": self.day.isoformat(),
            "site_id": self.site_id,
            "site_name": self.site_name,
            "avg_transition_minutes": {t.value: m for t, m in self.avg_transition_minutes.items()},
            "avg_total_minutes": self.avg_total_minutes,
            "order_count": self.order_count,
            "completed_count": self.completed_count,
        }


@dataclass
class PhaseSummary:
    total_orders: int = 0
    completed_orders: int = 0
    cancelled_orders: int = 0
    in_progress_orders: int = 0
    avg_transition_minutes: Dict[Transition, float] = field(default_factory=dict)
    avg_total_minutes: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total_orders": self.total_orders,
            "completed_orders": self.completed_orders,
            "cancelled_orders": self.cancelled_orders,
            "in_progress_orders": self.in_progress_orders,
            "avg_transition_minutes": {t.value: m for t, m in self.avg_transition_minutes.items()},
            "avg_total_minutes": self.avg_total_minutes,
        }
