import asyncio
import json
from datetime import datetime, timedelta

import pytest

from change_feed import ChangeFeedAdapter
from event_listener import EventListener
from messaging.manual_link import ManualLinkProvider
from models import ChangeKind, DeliveryOutcome, RawChange
from pipeline import NotificationPipeline
from conftest import FakeDatabase

BASE = datetime(2025, 3, 1, 9, 0)


def change(change_id, order_id, operation, status, old_status=None, seconds=0):
    return {
        "id": change_id,
        "table_name": "orders",
        "order_id": order_id,
        "operation_type": operation,
        "old_data": json.dumps({"id": order_id, "status": old_status}) if old_status else None,
        "new_data": json.dumps({"id": order_id, "status": status, "display_id": f"BO-{order_id}"}),
        "changed_at": BASE + timedelta(seconds=seconds),
    }


def make_listener(db, status_filter):
    listener = EventListener(db, ChangeFeedAdapter(status_filter), poll_interval=0.01)
    received = []

    async def collect(event):
        received.append(event)

    listener.subscribe(collect)
    return listener, received


@pytest.mark.asyncio
async def test_poll_once_emits_events_and_marks_rows_processed(status_filter):
    db = FakeDatabase(changes=[
        change(1, "o1", "INSERT", "pending"),
        change(2, "o2", "UPDATE", "completed", old_status="pending", seconds=1),
        change(3, "o3", "DELETE", "pending", seconds=2),
    ])
    listener, received = make_listener(db, status_filter)

    handled = await listener.poll_once()

    assert handled == 3
    assert sorted(db.processed) == [1, 2, 3]
    assert [e.order_id for e in received] == ["o1"]
    assert await listener.poll_once() == 0


@pytest.mark.asyncio
async def test_changes_to_one_order_keep_their_order(status_filter):
    db = FakeDatabase(changes=[
        change(1, "o1", "INSERT", "draft"),
        change(2, "o1", "UPDATE", "pending", old_status="draft", seconds=1),
        change(3, "o1", "UPDATE", "processing", old_status="pending", seconds=2),
    ])
    listener, received = make_listener(db, status_filter)

    await listener.poll_once()

    assert [(e.change_kind, e.status) for e in received] == [
        (ChangeKind.CREATED, "draft"),
        (ChangeKind.UPDATED, "pending"),
        (ChangeKind.UPDATED, "processing"),
    ]


@pytest.mark.asyncio
async def test_unreadable_rows_are_dropped_and_marked_processed(status_filter):
    bad = change(1, "o1", "INSERT", "pending")
    bad["new_data"] = "{not json"
    db = FakeDatabase(changes=[bad, change(2, "o2", "INSERT", "pending")])
    listener, received = make_listener(db, status_filter)

    await listener.poll_once()

    assert sorted(db.processed) == [1, 2]
    assert [e.order_id for e in received] == ["o2"]


@pytest.mark.asyncio
async def test_events_are_enriched_with_order_details(status_filter):
    db = FakeDatabase(details={"o1": {
        "id": "o1",
        "status": "completed",
        "customer_name": "Abebe",
        "items": [{"product_name": "Teff", "quantity": 3, "price": "80.00"}],
    }})
    listener, received = make_listener(db, status_filter)

    event = await listener.handle_raw_change(RawChange(
        table="orders", operation="INSERT", new_record={"id": "o1", "status": "pending"},
    ))

    assert event.status == "pending"
    assert event.snapshot.customer_name == "Abebe"
    assert event.snapshot.items[0].product_name == "Teff"
    assert received == [event]


@pytest.mark.asyncio
async def test_subscriber_errors_do_not_stop_other_subscribers(status_filter):
    db = FakeDatabase(changes=[change(1, "o1", "INSERT", "pending")])
    listener, received = make_listener(db, status_filter)

    async def broken(event):
        raise RuntimeError("subscriber down")

    listener.subscribe(broken)
    await listener.poll_once()

    assert len(received) == 1
    assert db.processed == [1]


@pytest.mark.asyncio
async def test_start_and_stop_run_the_polling_loop(status_filter):
    db = FakeDatabase(changes=[change(1, "o1", "INSERT", "pending")])
    listener, received = make_listener(db, status_filter)

    await listener.start()
    for _ in range(100):
        if received:
            break
        await asyncio.sleep(0.01)
    await listener.stop()

    assert not listener.running
    assert [e.order_id for e in received] == ["o1"]


@pytest.mark.asyncio
async def test_pending_order_reaches_bell_and_admin_link(settings):
    db = FakeDatabase(changes=[change(1, "o1", "INSERT", "pending")])
    pipeline = NotificationPipeline(settings, db, provider=ManualLinkProvider())
    await pipeline.session.connect()

    results = []
    dispatch = pipeline.dispatcher.dispatch

    async def record(event):
        results.append(await dispatch(event))

    pipeline.listener.subscribers = [record]
    await pipeline.listener.poll_once()

    [[bell, admin]] = results
    # No dashboard is connected, so the bell has nobody to ring.
    assert bell.outcome == DeliveryOutcome.SKIPPED
    assert admin.outcome == DeliveryOutcome.SENT
    assert admin.fallback_used
    assert admin.fallback_link.startswith("https://wa.me/251912345678")
