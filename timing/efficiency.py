from __future__ import annotations

import math
from typing import Dict, Iterable, List, Optional

from .models import OrderDurations, STAGES, StateStats, Status, StuckOrder, Transition
from .transitions import mean, valid_samples


def efficiency_score(avg_minutes: float, ideal_minutes: float) -> float:
    """
    Business scoring rule, 0 (slow) to 100 (on or under the ideal):

        avg == 0  -> 100 (no data)
        otherwise -> clamp(0, 100, 100 - ((avg - ideal) / ideal) * 50)

    Not rounded; callers format as they see fit.
    """
    if not math.isfinite(avg_minutes) or avg_minutes < 0:
        raise ValueError(f"average dwell must be a finite non-negative number, got {avg_minutes}")
    if not math.isfinite(ideal_minutes) or ideal_minutes <= 0:
        raise ValueError(f"ideal dwell must be a positive number, got {ideal_minutes}")
    if avg_minutes == 0:
        return 100.0
    score = 100.0 - ((avg_minutes - ideal_minutes) / ideal_minutes) * 50.0
    return max(0.0, min(100.0, score))


def _state_sample(d: OrderDurations, state: Status) -> Optional[float]:
    # Delivered has no open dwell; use the leg that brought the order there
    if state is Status.DELIVERED:
        return d.transitions.get(Transition.ENROUTE_DELIVERED)
    return d.open_dwell


def state_stats(durations: Iterable[OrderDurations], stuck: Iterable[StuckOrder],
                ideal_dwell: Dict[str, float],
                stuck_thresholds: Optional[Dict[str, float]] = None) -> List[StateStats]:
    """
    Per-stage stats over the orders whose current status is that stage.

    Open stages take their stuck count from the detector output. Delivered
    orders never reach the detector; with `stuck_thresholds` given, those whose
    delivery leg ran past the Delivered threshold are counted instead.
    """
    durations = list(durations)
    stuck_counts: Dict[Status, int] = {}
    for s in stuck:
        if s.is_stuck:
            stuck_counts[s.state] = stuck_counts.get(s.state, 0) + 1

    stats = []
    for state in STAGES:
        in_state = [d for d in durations if d.status is state]
        samples = valid_samples(_state_sample(d, state) for d in in_state)
        avg = mean(samples)
        if state is Status.DELIVERED and stuck_thresholds is not None:
            limit = float(stuck_thresholds[state.value])
            stuck_counts[state] = sum(1 for m in samples if m > limit)
        stats.append(StateStats(
            state=state,
            total_orders=len(in_state),
            avg_minutes=avg,
            min_minutes=min(samples) if samples else 0.0,
            max_minutes=max(samples) if samples else 0.0,
            orders_stuck=stuck_counts.get(state, 0),
            efficiency_score=efficiency_score(avg, float(ideal_dwell[state.value])),
        ))
    return stats
