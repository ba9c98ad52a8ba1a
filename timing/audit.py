from __future__ import annotations

from typing import Iterable, List

from .models import OrderTimeline


def filter_by_id(timelines: Iterable[OrderTimeline], query: str) -> List[OrderTimeline]:
    """Orders whose id, as text, contains `query` literally (case-sensitive)."""
    return [t for t in timelines if query in str(t.id)]
