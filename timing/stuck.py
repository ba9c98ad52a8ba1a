from __future__ import annotations

from typing import Dict, Iterable, List

from .models import OrderDurations, OrderId, StuckOrder


def order_id_key(order_id: OrderId):
    """Integers sort numerically and before strings; strings sort lexicographically."""
    if isinstance(order_id, int):
        return (0, order_id, "")
    return (1, 0, str(order_id))


def is_stuck(elapsed_minutes: float, threshold_minutes: float) -> bool:
    # the threshold itself is still on time
    return elapsed_minutes > threshold_minutes


def detect_stuck(durations: Iterable[OrderDurations], thresholds: Dict[str, float]) -> List[StuckOrder]:
    """
    One entry per non-terminal order with a valid open dwell.
    Sorted stuck first, then by elapsed time descending, then by order id.
    """
    flagged: List[StuckOrder] = []
    for d in durations:
        elapsed = d.open_dwell
        if elapsed is None:
            # terminal, or clock skew already reported as an anomaly
            continue
        threshold = float(thresholds[d.status.value])
        flagged.append(StuckOrder(
            order_id=d.order_id,
            site_id=d.site_id,
            state=d.status,
            elapsed_minutes=elapsed,
            threshold_minutes=threshold,
            is_stuck=is_stuck(elapsed, threshold),
        ))

    flagged.sort(key=lambda s: (not s.is_stuck, -s.elapsed_minutes, order_id_key(s.order_id)))
    return flagged
