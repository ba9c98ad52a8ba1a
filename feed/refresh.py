from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime
from itertools import count
from typing import List, Optional

from config.config import AppCfg
from timing.engine import TimingEngine, TimingReport
from timing.models import OrderTimeline

from .source import OrderSource, fetch_order_timelines

log = logging.getLogger(__name__)


@dataclass
class RefreshResult:
    seq: int
    report: TimingReport
    applied: bool
    timelines: List[OrderTimeline]


class RefreshCoordinator:
    """
    Runs fetch-and-compute passes for filter changes or explicit refreshes.

    Each pass takes the next number from a monotonically increasing sequence;
    its report becomes `latest` only if no newer pass has published already,
    so overlapping passes resolve last-request-wins.
    """

    def __init__(self, source: OrderSource, cfg: Optional[AppCfg] = None):
        self.cfg = cfg or AppCfg()
        self.source = source
        self.engine = TimingEngine(self.cfg.timing)
        self._seq = count(1)
        self._lock = threading.Lock()
        self._published_seq = 0
        self.latest: Optional[TimingReport] = None

    def next_seq(self) -> int:
        with self._lock:
            return next(self._seq)

    def publish(self, seq: int, report: TimingReport) -> bool:
        with self._lock:
            if seq <= self._published_seq:
                log.info(f"[refresh] dropping stale result #{seq} (latest is #{self._published_seq})")
                return False
            self._published_seq = seq
            self.latest = report
            return True

    def refresh(self, start: datetime, end: datetime, site_id: Optional[str] = None,
                now: Optional[datetime] = None) -> RefreshResult:
        seq = self.next_seq()
        log.info(f"[refresh] #{seq} {start.isoformat()} .. {end.isoformat()} site={site_id or 'all'}")
        mapped = fetch_order_timelines(self.source, start, end, site_id, retries=self.cfg.source.retries)
        report = self.engine.compute(mapped.timelines, now=now, excluded=mapped.excluded)
        return RefreshResult(seq=seq, report=report, applied=self.publish(seq, report), timelines=mapped.timelines)
