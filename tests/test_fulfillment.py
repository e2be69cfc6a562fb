"""Tests for the fulfillment status machine and engine."""

from datetime import date

import pytest
from sqlalchemy import select

from tests.fakes import StubSupplier
from videoshop.db.models import Order
from videoshop.errors import InvalidTransitionError, NotFoundError, SupplierError
from videoshop.fulfillment.engine import FulfillmentEngine, estimated_delivery
from videoshop.fulfillment.status import (
    ItemStatus,
    OrderFulfillment,
    aggregate_status,
    can_transition,
    transition,
)
from videoshop.suppliers import SupplierRegistry
from videoshop.suppliers.base import StatusLookupResult


class _Item:
    def __init__(self, status):
        self.fulfillment_status = status


class _Sleeps:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)


@pytest.mark.parametrize(
    "statuses,expected",
    [
        (["failed", "failed"], OrderFulfillment.FAILED),
        (["delivered", "delivered"], OrderFulfillment.COMPLETE),
        (["pending", "pending"], OrderFulfillment.PENDING),
        (["ordered", "failed"], OrderFulfillment.PROCESSING),
        (["delivered", "shipped"], OrderFulfillment.PROCESSING),
        (["pending", "ordered"], OrderFulfillment.PROCESSING),
        ([], OrderFulfillment.PENDING),
    ],
)
def test_aggregate_status(statuses, expected):
    assert aggregate_status(statuses) == expected


def test_transitions_are_forward_only():
    item = _Item("shipped")
    with pytest.raises(InvalidTransitionError):
        transition(item, ItemStatus.PENDING)
    assert item.fulfillment_status == "shipped"

    transition(item, ItemStatus.DELIVERED)
    assert item.fulfillment_status == "delivered"


def test_failed_reopens_only_for_retry():
    assert not can_transition("failed", "processing")
    assert can_transition("failed", "processing", reopen=True)
    assert not can_transition("delivered", "processing", reopen=True)


def _engine(session_factory, scheduler, mailer, *suppliers):
    registry = SupplierRegistry(clients={s.name: s for s in suppliers})
    sleeps = _Sleeps()
    engine = FulfillmentEngine(
        session_factory=session_factory,
        registry=registry,
        scheduler=scheduler,
        mailer=mailer,
        sleep=sleeps,
        item_delay=2.0,
    )
    return engine, sleeps


async def _reload(session_factory, order_id):
    async with session_factory() as db:
        result = await db.execute(select(Order).where(Order.id == order_id))
        return result.scalar_one()


@pytest.mark.asyncio
async def test_partial_failure_leaves_order_processing(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping")
    amazon = StubSupplier("amazon", order_error=SupplierError("relay down", supplier="amazon"))
    engine, sleeps = _engine(session_factory, scheduler, mailer, cj, amazon)
    order = await make_order([("cjdropshipping", "P1"), ("amazon", "B1")])

    await engine.process_order(order.id)

    stored = await _reload(session_factory, order.id)
    assert stored.fulfillment_status == "processing"
    assert [i.fulfillment_status for i in stored.items] == ["ordered", "failed"]
    assert stored.items[0].supplier_order_id == "CJDROPSHIPPING-1"
    assert stored.items[1].fulfillment_notes == "relay down"
    assert sorted(a.status for a in stored.attempts) == ["failed", "success"]
    assert cj.orders[0].reference == f"{order.order_number}-1"
    assert sleeps.calls == [2.0]
    assert len(scheduler.jobs) == 1
    assert scheduler.jobs[0]["args"] == (order.id, stored.items[0].id)
    assert mailer.sent and mailer.sent[0]["to"] == "buyer@example.com"


@pytest.mark.asyncio
async def test_all_items_failing_fails_the_order(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping", order_error=RuntimeError("timeout"))
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1"), ("cjdropshipping", "P2")])

    result = await engine.process_order(order.id)

    assert result.fulfillment_status == "failed"
    assert scheduler.jobs == []


@pytest.mark.asyncio
async def test_unknown_platform_fails_only_that_item(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping")
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1"), ("mystery", "X1")])

    result = await engine.process_order(order.id)

    assert [i.fulfillment_status for i in result.items] == ["ordered", "failed"]
    assert "Unknown supplier platform" in result.items[1].fulfillment_notes


@pytest.mark.asyncio
async def test_dispatched_and_failed_items_are_not_resubmitted(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping")
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    ordered = await make_order([("cjdropshipping", "P1")], item_status="ordered", order_number="VS-1")
    failed = await make_order([("cjdropshipping", "P2")], item_status="failed", order_number="VS-2")

    await engine.process_order(ordered.id)
    await engine.process_order(failed.id)

    assert cj.orders == []


@pytest.mark.asyncio
async def test_unexpected_error_flags_order_for_review(session_factory, scheduler, mailer, make_order):
    engine, _ = _engine(session_factory, scheduler, mailer, StubSupplier("cjdropshipping"))
    order = await make_order([("cjdropshipping", "P1")], item_status="bogus")

    with pytest.raises(ValueError):
        await engine.process_order(order.id)

    stored = await _reload(session_factory, order.id)
    assert stored.status == "processing"
    assert stored.fulfillment_status == "failed"
    assert stored.internal_notes.startswith("Auto-fulfillment failed:")


@pytest.mark.asyncio
async def test_crash_mid_order_keeps_ordered_items_tracked_and_retryable(
    session_factory, scheduler, mailer, make_order
):
    cj = StubSupplier("cjdropshipping")
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1"), ("cjdropshipping", "P2")])

    async def broken_sleep(seconds):
        raise RuntimeError("event loop shutting down")

    engine.sleep = broken_sleep
    with pytest.raises(RuntimeError):
        await engine.process_order(order.id)

    stored = await _reload(session_factory, order.id)
    assert [i.fulfillment_status for i in stored.items] == ["ordered", "pending"]
    assert stored.fulfillment_status == "failed"
    assert [job["args"] for job in scheduler.jobs] == [(order.id, stored.items[0].id)]

    engine.sleep = _Sleeps()
    summary = await engine.retry_failed(window_hours=24)

    assert summary == {"found": 1, "recovered": 1, "still_failed": 0, "errors": 0}
    assert [o.product_id for o in cj.orders] == ["P1", "P2"]
    stored = await _reload(session_factory, order.id)
    assert [i.fulfillment_status for i in stored.items] == ["ordered", "ordered"]
    assert len(scheduler.jobs) == 2


@pytest.mark.asyncio
async def test_missing_order_raises_not_found(session_factory, scheduler, mailer):
    engine, _ = _engine(session_factory, scheduler, mailer)

    with pytest.raises(NotFoundError):
        await engine.process_order(999)


@pytest.mark.asyncio
async def test_retry_sweep_reopens_failed_orders(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping")
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    await make_order([("cjdropshipping", "P1")], fulfillment_status="failed", item_status="failed", order_number="VS-1")
    await make_order([("cjdropshipping", "P2")], fulfillment_status="failed", item_status="failed",
                     payment_status="pending", order_number="VS-2")

    summary = await engine.retry_failed(window_hours=24)

    assert summary == {"found": 1, "recovered": 1, "still_failed": 0, "errors": 0}
    assert [o.product_id for o in cj.orders] == ["P1"]


@pytest.mark.asyncio
async def test_status_check_records_tracking_then_delivery(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping", status=StatusLookupResult(status="shipped", tracking_number="TRK1"))
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1")])
    await engine.process_order(order.id)
    item_id = scheduler.jobs[0]["args"][1]
    mailer.sent.clear()

    assert await engine.check_item_status(order.id, item_id) == "shipped"
    stored = await _reload(session_factory, order.id)
    assert stored.items[0].tracking_number == "TRK1"
    assert "TRK1" in stored.items[0].tracking_url
    assert stored.status == "shipped"
    assert stored.shipped_at is not None
    assert len(mailer.sent) == 1

    cj.status = StatusLookupResult(status="delivered", tracking_number="TRK1")
    assert await engine.check_item_status(order.id, item_id) == "delivered"
    stored = await _reload(session_factory, order.id)
    assert stored.status == "delivered"
    assert stored.fulfillment_status == "complete"
    assert len(mailer.sent) == 1


@pytest.mark.asyncio
async def test_status_check_error_leaves_item_unchanged(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping", status=StatusLookupResult(status="error", error="boom"))
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1")])
    await engine.process_order(order.id)

    assert await engine.check_item_status(order.id, scheduler.jobs[0]["args"][1]) == "ordered"


@pytest.mark.asyncio
async def test_fulfillment_stats(session_factory, scheduler, mailer, make_order):
    cj = StubSupplier("cjdropshipping")
    engine, _ = _engine(session_factory, scheduler, mailer, cj)
    order = await make_order([("cjdropshipping", "P1"), ("amazon", "B1")])
    await engine.process_order(order.id)

    stats = await engine.fulfillment_stats(days=7)

    assert stats["total_orders"] == 1
    assert stats["total_items"] == 2
    assert stats["fulfillment_stats"]["ordered"] == 1
    assert stats["fulfillment_stats"]["failed"] == 1
    assert stats["supplier_stats"]["cjdropshipping"] == {"orders": 1, "items": 1}


@pytest.mark.asyncio
async def test_estimated_delivery_uses_slowest_platform(make_order):
    order = await make_order([("cjdropshipping", "P1"), ("amazon", "B1")])

    assert estimated_delivery(order, today=date(2024, 5, 1)) == date(2024, 5, 11)
    assert estimated_delivery(order, order.items[1], today=date(2024, 5, 1)) == date(2024, 5, 3)
