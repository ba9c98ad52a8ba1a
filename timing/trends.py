from __future__ import annotations

from collections import defaultdict
from datetime import date, datetime, time, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Tuple

from .models import OrderDurations, OrderTimeline, Status, TRANSITIONS, TrendPoint
from .transitions import mean, valid_samples


def business_tz(offset_minutes: int) -> timezone:
    return timezone(timedelta(minutes=offset_minutes))


def business_day(ts: datetime, offset_minutes: int) -> date:
    """Calendar day of `ts` at the business offset, independent of the machine's local zone."""
    return ts.astimezone(business_tz(offset_minutes)).date()


def business_day_window(first_day: date, last_day: date, offset_minutes: int) -> Tuple[datetime, datetime]:
    """
    UTC instants covering business days [first_day, last_day] inclusive:
    start of first_day to the last microsecond of last_day, at the business offset.
    """
    if last_day < first_day:
        raise ValueError(f"date range is reversed: {first_day} > {last_day}")
    tz = business_tz(offset_minutes)
    start = datetime.combine(first_day, time.min, tzinfo=tz)
    end = datetime.combine(last_day, time.max, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)


def trend_points(timelines: Sequence[OrderTimeline], durations: Sequence[OrderDurations],
                 offset_minutes: int) -> List[TrendPoint]:
    """
    One point per (business day, site) that has at least one order; no zero-filling.
    `durations` must be aligned with `timelines`.
    """
    if len(timelines) != len(durations):
        raise ValueError(f"timelines and durations differ in length: {len(timelines)} != {len(durations)}")

    buckets: Dict[Tuple[date, str], List[Tuple[OrderTimeline, OrderDurations]]] = defaultdict(list)
    for t, d in zip(timelines, durations):
        buckets[(business_day(t.created_at, offset_minutes), t.site_id)].append((t, d))

    points = []
    for (day, site_id), members in sorted(buckets.items()):
        site_name: Optional[str] = next((t.site_name for t, _ in members if t.site_name), None)
        points.append(TrendPoint(
            day=day,
            site_id=site_id,
            site_name=site_name,
            avg_transition_minutes={
                tr: mean(valid_samples(d.transitions.get(tr) for _, d in members)) for tr in TRANSITIONS
            },
            avg_total_minutes=mean(valid_samples(d.total_minutes for _, d in members)),
            order_count=len(members),
            completed_count=sum(1 for t, _ in members if t.status is Status.DELIVERED),
        ))
    return points
