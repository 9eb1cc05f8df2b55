import pytest
from unittest.mock import patch

from app.core.exceptions import NestedUnitOfWorkError
from app.core.unit_of_work import TransactionContext, UnitOfWork
from app.models.order import Order
from app.models.outbox import OutboxEntry


class BoomError(Exception):
    pass


@pytest.mark.asyncio
async def test_commit_returns_work_result(db):
    uow = UnitOfWork()

    async def work(tx):
        assert isinstance(tx, TransactionContext)
        order = await Order.create(customer_id="cust-1", using_db=tx.connection)
        return order.id

    order_id = await uow.execute(work)

    assert await Order.filter(id=order_id).exists()


@pytest.mark.asyncio
async def test_rollback_reraises_the_original_exception(db):
    uow = UnitOfWork()
    error = BoomError("handler exploded")

    async def work(tx):
        await Order.create(customer_id="cust-1", using_db=tx.connection)
        raise error

    with pytest.raises(BoomError) as excinfo:
        await uow.execute(work)

    assert excinfo.value is error
    assert await Order.all().count() == 0


@pytest.mark.asyncio
async def test_nested_unit_of_work_is_rejected(db):
    uow = UnitOfWork()

    async def inner(tx):
        return None

    async def outer(tx):
        await uow.execute(inner)

    with pytest.raises(NestedUnitOfWorkError):
        await uow.execute(outer)


@pytest.mark.asyncio
async def test_unit_of_work_can_be_reused_after_a_failure(db):
    uow = UnitOfWork()

    async def failing(tx):
        raise BoomError()

    async def ok(tx):
        return "done"

    with pytest.raises(BoomError):
        await uow.execute(failing)
    assert await uow.execute(ok) == "done"


@pytest.mark.asyncio
async def test_aggregate_is_rolled_back_when_outbox_insert_fails(db, services):
    """Order and outbox row are written together or not at all."""

    async def work(tx):
        order = await Order.create(customer_id="cust-1", using_db=tx.connection)
        await services.outbox.save_event("order.placed", {"order_id": str(order.id)}, order.id, tx=tx)

    with patch.object(OutboxEntry, "save", side_effect=RuntimeError("outbox insert failed")):
        with pytest.raises(RuntimeError, match="outbox insert failed"):
            await services.uow.execute(work)

    assert await Order.all().count() == 0
    assert await OutboxEntry.all().count() == 0
    assert services.queue.jobs == {}


@pytest.mark.asyncio
async def test_outbox_row_is_rolled_back_when_work_fails_after_append(db, services):
    async def work(tx):
        order = await Order.create(customer_id="cust-1", using_db=tx.connection)
        await services.outbox.save_event("order.placed", {"order_id": str(order.id)}, order.id, tx=tx)
        raise BoomError("late failure")

    with pytest.raises(BoomError):
        await services.uow.execute(work)

    assert await Order.all().count() == 0
    assert await OutboxEntry.all().count() == 0
