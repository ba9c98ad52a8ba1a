from __future__ import annotations

from datetime import datetime, timezone

import pytest

from config.config import SourceCfg
from feed.source import CsvOrderSource, FetchError, InfluxOrderSource, fetch_order_timelines
from timing.models import Status

START = datetime(2025, 3, 10, 0, 0, tzinfo=timezone.utc)
END = datetime(2025, 3, 10, 23, 59, 59, tzinfo=timezone.utc)


class FakeRecord:
    def __init__(self, time, values):
        self.values = {"result": "_result", "table": 0, "_time": time, "_measurement": "orders", **values}
        self._time = time

    def get_time(self):
        return self._time


class FakeTable:
    def __init__(self, records):
        self.records = records


class FakeClient:
    """Stands in for InfluxDBClient; records the constructor kwargs and the query."""

    instances = []

    def __init__(self, tables=None, error=None, **kwargs):
        self.kwargs = kwargs
        self.tables = tables or []
        self.error = error
        self.queries = []
        self.closed = False
        FakeClient.instances.append(self)

    def query_api(self):
        return self

    def query(self, query, org=None):
        self.queries.append((query, org))
        if self.error:
            raise self.error
        return self.tables

    def close(self):
        self.closed = True


def influx_rows():
    created = datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)
    return [FakeTable([FakeRecord(created, {
        "order_id": "101",
        "site_id": "norte",
        "status": "Cocina",
        "received_at": "2025-03-10T15:00:00Z",
        "kitchen_at": "2025-03-10T15:08:00Z",
    })])]


def test_influx_source_rows_and_client_settings():
    FakeClient.instances.clear()
    cfg = SourceCfg(url="http://db:8086", token="t", org="acme", bucket="ops", timeout_ms=2500)
    source = InfluxOrderSource(cfg, client_factory=lambda **kw: FakeClient(tables=influx_rows(), **kw))

    result = fetch_order_timelines(source, START, END, site_id="norte")
    [t] = result.timelines
    assert t.id == "101"
    assert t.status is Status.KITCHEN
    assert t.created_at == datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)

    client = FakeClient.instances[-1]
    assert client.kwargs == {"url": "http://db:8086", "token": "t", "org": "acme", "timeout": 2500}
    assert client.closed
    query, org = client.queries[0]
    assert org == "acme"
    assert 'from(bucket: "ops")' in query
    assert "range(start: 2025-03-10T00:00:00.000000Z, stop: 2025-03-10T23:59:59.000001Z)" in query
    assert 'r.site_id == "norte"' in query
    assert "pivot(" in query


def test_influx_query_without_site_has_no_site_filter():
    source = InfluxOrderSource(SourceCfg(), client_factory=FakeClient)
    assert "site_id" not in source.build_query(START, END)


def test_retries_once_then_succeeds():
    calls = []

    class Flaky:
        def fetch_records(self, start, end, site_id=None):
            calls.append(site_id)
            if len(calls) == 1:
                raise TimeoutError("read timed out")
            return []

    result = fetch_order_timelines(Flaky(), START, END, "sur")
    assert calls == ["sur", "sur"]
    assert result.timelines == []


def test_gives_up_after_one_retry():
    calls = []

    class Down:
        def fetch_records(self, start, end, site_id=None):
            calls.append(1)
            raise ConnectionError("connection refused")

    with pytest.raises(FetchError) as info:
        fetch_order_timelines(Down(), START, END)
    assert len(calls) == 2
    assert info.value.attempts == 2
    assert isinstance(info.value.__cause__, ConnectionError)


def test_no_retry_when_disabled():
    source = InfluxOrderSource(SourceCfg(), client_factory=lambda **kw: FakeClient(error=OSError("down"), **kw))
    with pytest.raises(FetchError) as info:
        fetch_order_timelines(source, START, END, retries=0)
    assert info.value.attempts == 1


def test_invalid_arguments():
    with pytest.raises(ValueError):
        fetch_order_timelines(None, START, END, retries=3)
    with pytest.raises(ValueError):
        fetch_order_timelines(None, END, START)


CSV = """id,sede_id,status,created_at,recibidos_at,cocina_at,camino_at,entregado_at
1,norte,Entregados,2025-03-10T15:00:00Z,2025-03-10T15:00:00Z,2025-03-10T15:10:00Z,2025-03-10T15:40:00Z,2025-03-10T16:10:00Z
2,sur,Cocina,2025-03-10T18:00:00Z,2025-03-10T18:00:00Z,2025-03-10T18:05:00Z,,
3,norte,Recibidos,2025-03-11T09:00:00Z,2025-03-11T09:00:00Z,,,
4,norte,Recibidos,yesterday-ish,2025-03-10T09:00:00Z,,,
"""


def test_csv_source_window_and_site(tmp_path):
    path = tmp_path / "orders.csv"
    path.write_text(CSV)
    source = CsvOrderSource(str(path))

    everything = fetch_order_timelines(source, START, END)
    assert sorted(t.id for t in everything.timelines) == ["1", "2"]
    # the unreadable created_at row is handed to the mapper and excluded there
    assert everything.excluded_count == 1

    norte = fetch_order_timelines(source, START, END, site_id="norte")
    assert [t.id for t in norte.timelines] == ["1"]
    [sur] = fetch_order_timelines(source, START, END, site_id="sur").timelines
    assert sur.enroute_at is None


def test_csv_missing_file():
    with pytest.raises(FileNotFoundError):
        CsvOrderSource("/nonexistent/orders.csv")


def test_csv_without_created_at_column_is_a_fetch_error(tmp_path):
    path = tmp_path / "orders.csv"
    path.write_text("id,status\n1,Cocina\n")
    with pytest.raises(FetchError):
        fetch_order_timelines(CsvOrderSource(str(path)), START, END)
