from __future__ import annotations

from typing import Iterable, List, Optional, Sequence

from .models import OrderDurations, TRANSITIONS, Transition, TransitionStats


def valid_samples(values: Iterable[Optional[float]]) -> List[float]:
    """Drop missing and negative durations; zero is a valid sample."""
    return [v for v in values if v is not None and v >= 0]


def mean(samples: Sequence[float]) -> float:
    return sum(samples) / len(samples) if samples else 0.0


def summarize(transition: Transition, values: Iterable[Optional[float]]) -> TransitionStats:
    samples = valid_samples(values)
    if not samples:
        return TransitionStats(transition=transition)
    return TransitionStats(
        transition=transition,
        count=len(samples),
        avg_minutes=mean(samples),
        min_minutes=min(samples),
        max_minutes=max(samples),
    )


def transition_stats(durations: Iterable[OrderDurations]) -> List[TransitionStats]:
    durations = list(durations)
    return [summarize(t, (d.transitions.get(t) for d in durations)) for t in TRANSITIONS]
