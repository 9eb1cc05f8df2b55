import pytest
from decimal import Decimal
from unittest.mock import AsyncMock, patch
from uuid import uuid4

from app.models.order import Order, OrderStatus
from app.models.outbox import OutboxEntry, OutboxStatus


ITEMS = [
    {"sku": "SKU-1", "quantity": 2, "unit_price": "12.99"},
    {"sku": "SKU-2", "quantity": 1, "unit_price": "5"},
]


@pytest.mark.asyncio
async def test_place_order_writes_order_and_event_together(db, services, queue):
    order = await services.orders.place_order("cust-1", ITEMS)

    stored = await Order.get(id=order.id)
    assert stored.status == OrderStatus.PLACED
    assert stored.total_amount == Decimal("30.98")

    entry = await OutboxEntry.get(aggregate_id=str(order.id))
    assert entry.event_type == "order.placed"
    assert entry.status == OutboxStatus.PENDING
    assert entry.payload["payload"]["order_id"] == str(order.id)
    assert entry.payload["payload"]["items"][0] == {"sku": "SKU-1", "quantity": 2, "unit_price": "12.99"}

    # Scheduled after commit, keyed by event id
    assert list(queue.jobs) == [str(entry.event_id)]


@pytest.mark.asyncio
async def test_nothing_is_scheduled_when_the_transaction_rolls_back(db, services, queue):
    with patch.object(services.outbox, "save_event", AsyncMock(side_effect=RuntimeError("db down"))):
        with pytest.raises(RuntimeError):
            await services.orders.place_order("cust-1", ITEMS)

    assert await Order.all().count() == 0
    assert queue.calls == []


@pytest.mark.asyncio
@pytest.mark.parametrize("items", [
    [],
    [{"sku": "", "quantity": 1, "unit_price": "1"}],
    [{"sku": "SKU-1", "quantity": 0, "unit_price": "1"}],
    [{"sku": "SKU-1", "quantity": 1, "unit_price": "-1"}],
    [{"sku": "SKU-1", "quantity": 1, "unit_price": "abc"}],
])
async def test_place_order_rejects_invalid_lines(db, services, items):
    with pytest.raises(ValueError):
        await services.orders.place_order("cust-1", items)

    assert await Order.all().count() == 0
    assert await OutboxEntry.all().count() == 0


@pytest.mark.asyncio
async def test_cancel_order_emits_cancellation_and_status_change(db, services, queue):
    order = await services.orders.place_order("cust-1", ITEMS)
    queue.jobs.clear()
    queue.due.clear()

    cancelled = await services.orders.cancel_order(order.id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert (await Order.get(id=order.id)).status == OrderStatus.CANCELLED

    entries = await OutboxEntry.filter(aggregate_id=str(order.id)).exclude(event_type="order.placed")
    by_type = {e.event_type: e for e in entries}
    assert set(by_type) == {"order.cancelled", "order.status_changed"}
    assert by_type["order.status_changed"].payload["payload"]["old_status"] == "PLACED"
    assert by_type["order.status_changed"].payload["payload"]["new_status"] == "CANCELLED"
    assert sorted(queue.jobs) == sorted(str(e.event_id) for e in entries)


@pytest.mark.asyncio
async def test_cancel_unknown_order(db, services):
    with pytest.raises(ValueError, match="Order not found"):
        await services.orders.cancel_order(uuid4())


@pytest.mark.asyncio
async def test_cancel_twice_is_rejected(db, services):
    order = await services.orders.place_order("cust-1", ITEMS)
    await services.orders.cancel_order(order.id)

    with pytest.raises(ValueError):
        await services.orders.cancel_order(order.id)

    assert await OutboxEntry.filter(event_type="order.cancelled").count() == 1


@pytest.mark.asyncio
async def test_get_order(db, services):
    order = await services.orders.place_order("cust-1", ITEMS)

    assert (await services.orders.get_order(order.id)).id == order.id
    assert await services.orders.get_order(uuid4()) is None
