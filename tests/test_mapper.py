from __future__ import annotations

from datetime import datetime, timezone

import numpy as np
import pandas as pd

from timing.mapper import map_records, parse_status, parse_timestamp
from timing.models import Status


def test_spanish_record_maps_to_canonical_timeline(raw_record):
    result = map_records([raw_record])
    assert result.excluded_count == 0
    t = result.timelines[0]
    assert t.id == 101
    assert t.site_id == "norte"
    assert t.site_name == "Sede Norte"
    assert t.status is Status.DELIVERED
    assert t.kitchen_at == datetime(2025, 3, 10, 15, 10, tzinfo=timezone.utc)
    assert t.cancelled_at is None


def test_english_vocabulary_and_camel_case_fields():
    record = {
        "orderId": "A-7",
        "siteId": 3,
        "status": "delivery",
        "createdAt": "2025-03-10T10:00:00-05:00",
        "receivedAt": "2025-03-10T10:00:00-05:00",
        "kitchenAt": "2025-03-10T10:05:00-05:00",
        "enrouteAt": "2025-03-10T10:30:00-05:00",
    }
    t = map_records([record]).timelines[0]
    assert t.id == "A-7"
    assert t.site_id == "3"
    assert t.status is Status.ENROUTE
    assert t.created_at == datetime(2025, 3, 10, 15, 0, tzinfo=timezone.utc)


def test_status_aliases_are_case_insensitive():
    assert parse_status("COCINA") is Status.KITCHEN
    assert parse_status(" Camino ") is Status.ENROUTE
    assert parse_status("recibidos") is Status.RECEIVED
    assert parse_status("Cancelado") is Status.CANCELLED


def test_timestamp_coercion():
    naive = datetime(2025, 1, 1, 12, 0)
    assert parse_timestamp(naive) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp(pd.Timestamp("2025-01-01T12:00:00Z")) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp(0) == datetime(1970, 1, 1, tzinfo=timezone.utc)
    assert parse_timestamp(float("nan")) is None
    assert parse_timestamp("") is None
    assert parse_timestamp(None) is None


def test_malformed_records_are_excluded_not_raised(raw_record):
    records = [
        raw_record,
        {**raw_record, "id": None},
        {**raw_record, "id": "   "},
        {**raw_record, "sede_id": None},
        {**raw_record, "created_at": None},
        {**raw_record, "status": "perdido"},
        {**raw_record, "cocina_at": "not a date"},
        "not a record",
        None,
    ]
    result = map_records(records)
    assert len(result.timelines) == 1
    assert result.excluded_count == 8
    assert [e.index for e in result.excluded] == [1, 2, 3, 4, 5, 6, 7, 8]
    reasons = {e.index: e.reason for e in result.excluded}
    assert "missing id" in reasons[1]
    assert "site_id" in reasons[3]
    assert "created_at" in reasons[4]
    assert "unknown status" in reasons[5]
    assert "unparseable" in reasons[6]


def test_status_contradicting_timestamps_is_excluded(raw_record):
    # status says Kitchen but the order already has later timestamps
    ahead = {**raw_record, "status": "Cocina"}
    # status says Delivered but delivered_at is missing
    behind = {k: v for k, v in raw_record.items() if k != "entregado_at"}
    # a stage in the middle is missing
    gap = {**raw_record, "cocina_at": None}
    result = map_records([ahead, behind, gap])
    assert result.timelines == []
    assert result.excluded_count == 3


def test_cancellation_rules(raw_record):
    base = {k: v for k, v in raw_record.items() if k not in ("camino_at", "entregado_at")}
    ok = {**base, "status": "Cancelled", "cancelado_at": "2025-03-10T15:20:00Z"}
    after_delivery = {**raw_record, "status": "Cancelled", "cancelado_at": "2025-03-10T16:20:00Z"}
    without_time = {**base, "status": "Cancelled"}
    stray_cancel = {**raw_record, "cancelado_at": "2025-03-10T16:20:00Z"}

    result = map_records([ok, after_delivery, without_time, stray_cancel])
    assert [t.status for t in result.timelines] == [Status.CANCELLED]
    assert result.timelines[0].last_stage() is Status.KITCHEN
    assert result.excluded_count == 3


def test_out_of_order_timestamps_pass_the_mapper(raw_record):
    # ordering problems are reported by the duration calculator, not the mapper
    skewed = {**raw_record, "cocina_at": "2025-03-10T14:50:00Z"}
    assert len(map_records([skewed]).timelines) == 1


def test_mapper_does_not_mutate_input(raw_record):
    snapshot = dict(raw_record)
    map_records([raw_record])
    assert raw_record == snapshot


def test_timestamp_out_of_range_in_utc_is_excluded(raw_record):
    result = map_records([raw_record, {**raw_record, "id": 2, "cocina_at": "0001-01-01T00:00:00+05:00"}])
    assert [t.id for t in result.timelines] == [101]
    [excluded] = result.excluded
    assert excluded.raw_id == 2
    assert "out of range" in excluded.reason


def test_pandas_nullable_values_count_as_missing(raw_record):
    en_route = {**raw_record, "status": "Camino", "entregado_at": pd.NA}
    result = map_records([en_route, {**raw_record, "id": pd.NA}])
    [t] = result.timelines
    assert t.status is Status.ENROUTE
    assert t.delivered_at is None
    [excluded] = result.excluded
    assert excluded.index == 1
    assert "missing id" in excluded.reason


def test_numpy_datetime64_is_a_timestamp():
    assert parse_timestamp(np.datetime64("2025-01-01T12:00:00")) == datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert parse_timestamp(np.datetime64("NaT")) is None
