from __future__ import annotations

from datetime import datetime
from typing import Iterable, List, Optional, Tuple

from .models import (
    DataIntegrityAnomaly,
    OrderDurations,
    OrderTimeline,
    STAGES,
    Status,
    TRANSITIONS,
)


def minutes_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds() / 60.0


def _stage_end(timeline: OrderTimeline, state: Status, now: datetime) -> Optional[datetime]:
    """
    When the order left `state`: the next forward stage if reached, otherwise
    cancelled_at for a cancelled order, otherwise `now` if `state` is the open state.
    """
    idx = STAGES.index(state)
    if idx + 1 < len(STAGES):
        nxt = timeline.entered_at(STAGES[idx + 1])
        if nxt is not None:
            return nxt
    if timeline.status is Status.CANCELLED and timeline.last_stage() is state:
        return timeline.cancelled_at
    if timeline.status is state and not state.terminal:
        return now
    return None


def _delta(timeline: OrderTimeline, leg: str, start: Optional[datetime],
           end: Optional[datetime]) -> Tuple[Optional[float], Optional[DataIntegrityAnomaly]]:
    if start is None or end is None:
        return None, None
    minutes = minutes_between(start, end)
    if minutes < 0:
        return None, DataIntegrityAnomaly(
            order_id=timeline.id,
            site_id=timeline.site_id,
            leg=leg,
            started_at=start,
            ended_at=end,
            minutes=minutes,
        )
    return minutes, None


def dwell_minutes(timeline: OrderTimeline, state: Status, now: datetime) -> Optional[float]:
    """
    Minutes spent in `state`, or None when the state was never reached, has no end
    (Delivered), or the delta is negative.
    """
    if state not in STAGES:
        return None
    value, _ = _delta(timeline, state.value, timeline.entered_at(state), _stage_end(timeline, state, now))
    return value


def order_durations(timeline: OrderTimeline, now: datetime) -> OrderDurations:
    """Dwell per stage, the three transition legs and the Received->Delivered total for one order."""
    result = OrderDurations(order_id=timeline.id, site_id=timeline.site_id, status=timeline.status)
    seen = set()

    def record(anomaly: Optional[DataIntegrityAnomaly]):
        # a completed stage's dwell and its transition share the same two timestamps
        if anomaly is not None:
            key = (anomaly.started_at, anomaly.ended_at)
            if key not in seen:
                seen.add(key)
                result.anomalies.append(anomaly)

    for transition in TRANSITIONS:
        value, anomaly = _delta(
            timeline,
            transition.value,
            timeline.entered_at(transition.source),
            timeline.entered_at(transition.target),
        )
        result.transitions[transition] = value
        record(anomaly)

    for state in STAGES:
        value, anomaly = _delta(timeline, state.value, timeline.entered_at(state), _stage_end(timeline, state, now))
        result.dwell[state] = value
        record(anomaly)

    legs = list(result.transitions.values())
    if all(leg is not None for leg in legs):
        result.total_minutes = minutes_between(timeline.received_at, timeline.delivered_at)
    return result


def compute_durations(timelines: Iterable[OrderTimeline], now: datetime) -> List[OrderDurations]:
    return [order_durations(t, now) for t in timelines]
