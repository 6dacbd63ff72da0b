from datetime import datetime, timedelta

import pytest

from pending_notifications import fetch_pending_notifications
from conftest import FakeDatabase

BASE = datetime(2025, 3, 1, 8, 0)


def order(order_id, status, minutes, profile="p1"):
    return {
        "id": order_id,
        "display_id": f"BO-{order_id}",
        "status": status,
        "created_at": BASE + timedelta(minutes=minutes),
        "total_amount": "100.00",
        "profile_id": profile,
        "customer_profile_id": profile,
    }


@pytest.mark.asyncio
async def test_returns_only_awaiting_orders_newest_first(status_filter):
    db = FakeDatabase(orders=[
        order("1", "pending", 1),
        order("2", "completed", 2),
        order("3", "Pending Payment", 3),
        order("4", "new", 0),
    ])

    result = await fetch_pending_notifications(db, status_filter)

    assert result.success
    assert [r.id for r in result.records] == ["3", "1", "4"]
    assert result.count == 3


@pytest.mark.asyncio
async def test_empty_result_is_success(status_filter):
    result = await fetch_pending_notifications(FakeDatabase(), status_filter)
    assert result.success
    assert result.records == []
    assert result.count == 0


@pytest.mark.asyncio
async def test_scope_restricts_to_one_profile(status_filter):
    db = FakeDatabase(orders=[order("1", "pending", 1, "p1"), order("2", "pending", 2, "p2")])

    result = await fetch_pending_notifications(db, status_filter, scope_id="p2")

    assert [r.id for r in result.records] == ["2"]
    assert db.recent_orders_calls == [(500, "p2")]


@pytest.mark.asyncio
async def test_result_is_capped_to_page_size(status_filter):
    db = FakeDatabase(orders=[order(str(n), "pending", n) for n in range(10)])

    result = await fetch_pending_notifications(db, status_filter, page_size=4, scan_limit=8)

    assert result.count == 4
    assert [r.id for r in result.records] == ["9", "8", "7", "6"]
    assert db.recent_orders_calls == [(8, None)]


@pytest.mark.asyncio
async def test_storage_error_is_reported_in_band(status_filter):
    db = FakeDatabase()
    db.recent_orders_error = RuntimeError("connection lost")

    result = await fetch_pending_notifications(db, status_filter)

    assert not result.success
    assert result.records == []
    assert "connection lost" in result.error
