"""
Timing engine: one fetched snapshot of orders plus configuration in, one
TimingReport out. Pure with respect to its inputs; every call allocates a fresh
report and never touches the source timelines.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional

import pandas as pd

from config.config import TimingCfg

from .durations import compute_durations
from .efficiency import state_stats
from .mapper import map_records
from .models import (
    DataIntegrityAnomaly,
    ExcludedRecord,
    OrderDurations,
    OrderTimeline,
    PhaseSummary,
    StateStats,
    Status,
    StuckOrder,
    TRANSITIONS,
    TransitionStats,
    TrendPoint,
)
from .stuck import detect_stuck
from .transitions import mean, transition_stats, valid_samples
from .trends import trend_points

log = logging.getLogger(__name__)


@dataclass
class TimingReport:
    generated_at: datetime
    state_stats: List[StateStats] = field(default_factory=list)
    transition_stats: List[TransitionStats] = field(default_factory=list)
    trend_points: List[TrendPoint] = field(default_factory=list)
    stuck_orders: List[StuckOrder] = field(default_factory=list)
    anomalies: List[DataIntegrityAnomaly] = field(default_factory=list)
    excluded: List[ExcludedRecord] = field(default_factory=list)
    summary: PhaseSummary = field(default_factory=PhaseSummary)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "generated_at": self.generated_at.isoformat(),
            "summary": self.summary.to_dict(),
            "state_stats": [s.to_dict() for s in self.state_stats],
            "transition_stats": [t.to_dict() for t in self.transition_stats],
            "trend_points": [p.to_dict() for p in self.trend_points],
            "stuck_orders": [s.to_dict() for s in self.stuck_orders],
            "anomalies": [a.to_dict() for a in self.anomalies],
            "excluded": [e.to_dict() for e in self.excluded],
        }

    def to_frames(self) -> Dict[str, pd.DataFrame]:
        """Flat tables for report/export code (one DataFrame per section)."""
        trends = []
        for p in self.trend_points:
            row = {k: v for k, v in p.to_dict().items() if k != "avg_transition_minutes"}
            row.update({f"avg_{t.value}": p.avg_transition_minutes.get(t, 0.0) for t in TRANSITIONS})
            trends.append(row)
        return {
            "state_stats": pd.DataFrame([s.to_dict() for s in self.state_stats]),
            "transition_stats": pd.DataFrame([t.to_dict() for t in self.transition_stats]),
            "trend_points": pd.DataFrame(trends),
            "stuck_orders": pd.DataFrame([s.to_dict() for s in self.stuck_orders]),
            "anomalies": pd.DataFrame([a.to_dict() for a in self.anomalies]),
        }


def phase_summary(timelines: List[OrderTimeline], durations: List[OrderDurations]) -> PhaseSummary:
    completed = sum(1 for t in timelines if t.status is Status.DELIVERED)
    cancelled = sum(1 for t in timelines if t.status is Status.CANCELLED)
    return PhaseSummary(
        total_orders=len(timelines),
        completed_orders=completed,
        cancelled_orders=cancelled,
        in_progress_orders=len(timelines) - completed - cancelled,
        avg_transition_minutes={
            tr: mean(valid_samples(d.transitions.get(tr) for d in durations)) for tr in TRANSITIONS
        },
        avg_total_minutes=mean(valid_samples(d.total_minutes for d in durations)),
    )


class TimingEngine:
    def __init__(self, cfg: Optional[TimingCfg] = None):
        self.cfg = cfg or TimingCfg()

    def compute(self, timelines: Iterable[OrderTimeline], now: Optional[datetime] = None,
                excluded: Optional[Iterable[ExcludedRecord]] = None) -> TimingReport:
        now = now or datetime.now(timezone.utc)
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        timelines = list(timelines)

        durations = compute_durations(timelines, now)
        stuck = detect_stuck(durations, self.cfg.stuck_thresholds)
        anomalies = [a for d in durations for a in d.anomalies]

        report = TimingReport(
            generated_at=now,
            state_stats=state_stats(durations, stuck, self.cfg.ideal_dwell, self.cfg.stuck_thresholds),
            transition_stats=transition_stats(durations),
            trend_points=trend_points(timelines, durations, self.cfg.business_timezone_offset_minutes),
            stuck_orders=stuck,
            anomalies=anomalies,
            excluded=list(excluded or []),
            summary=phase_summary(timelines, durations),
        )

        if anomalies:
            log.warning(f"[engine] {len(anomalies)} data integrity anomalies excluded from aggregation")
        log.info(
            f"[engine] {len(timelines)} orders, {sum(s.is_stuck for s in stuck)} stuck, "
            f"{len(report.trend_points)} trend points"
        )
        return report

    def compute_records(self, records: Iterable[Any], now: Optional[datetime] = None) -> TimingReport:
        mapped = map_records(records)
        return self.compute(mapped.timelines, now=now, excluded=mapped.excluded)
