from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from config.config import TimingCfg
from timing.models import OrderTimeline, Status

T0 = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


@pytest.fixture
def t0() -> datetime:
    return T0


@pytest.fixture
def now() -> datetime:
    return T0 + timedelta(hours=3)


@pytest.fixture
def timing_cfg() -> TimingCfg:
    return TimingCfg()


@pytest.fixture
def make_order():
    """Build an OrderTimeline from minute offsets relative to T0."""

    def _make(order_id=1, status=Status.DELIVERED, site_id="norte", received=0, kitchen=None,
              enroute=None, delivered=None, cancelled=None, created=None, site_name=None):
        def at(minutes):
            return None if minutes is None else T0 + timedelta(minutes=minutes)

        return OrderTimeline(
            id=order_id,
            site_id=site_id,
            site_name=site_name,
            status=status,
            created_at=at(created if created is not None else (received or 0)),
            received_at=at(received),
            kitchen_at=at(kitchen),
            enroute_at=at(enroute),
            delivered_at=at(delivered),
            cancelled_at=at(cancelled),
        )

    return _make


@pytest.fixture
def raw_record():
    """A well-formed delivered order record in the Spanish field vocabulary."""
    return {
        "id": 101,
        "sede_id": "norte",
        "sede_nombre": "Sede Norte",
        "status": "Entregados",
        "created_at": "2025-03-10T15:00:00Z",
        "recibidos_at": "2025-03-10T15:00:00Z",
        "cocina_at": "2025-03-10T15:10:00Z",
        "camino_at": "2025-03-10T15:40:00Z",
        "entregado_at": "2025-03-10T16:10:00Z",
    }
