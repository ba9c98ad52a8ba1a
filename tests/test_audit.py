from __future__ import annotations

from timing.audit import filter_by_id


def test_substring_of_stringified_id(make_order):
    orders = [make_order(order_id=i) for i in (12, 120, 312, 45)] + [make_order(order_id="ORD-12a")]
    assert [o.id for o in filter_by_id(orders, "12")] == [12, 120, 312, "ORD-12a"]


def test_not_numeric_equality(make_order):
    orders = [make_order(order_id=7), make_order(order_id=17)]
    assert [o.id for o in filter_by_id(orders, "7")] == [7, 17]
    assert filter_by_id(orders, "7.0") == []


def test_case_sensitive(make_order):
    orders = [make_order(order_id="ord-1"), make_order(order_id="ORD-2")]
    assert [o.id for o in filter_by_id(orders, "ORD")] == ["ORD-2"]


def test_empty_query_matches_all(make_order):
    orders = [make_order(order_id=1), make_order(order_id=2)]
    assert filter_by_id(orders, "") == orders
