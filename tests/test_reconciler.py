import pytest
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

from tortoise import timezone

from app.consumers.outbox_reconciler import OutboxReconciler
from app.models.outbox import OutboxEntry, OutboxStatus


async def insert_without_job(services, event_type="x.created"):
    """An entry whose post-commit enqueue never happened."""

    async def work(tx):
        return await services.outbox.save_event(event_type, {}, "agg-1", tx=tx)

    return await services.uow.execute(work)


async def age(event_id, seconds):
    await OutboxEntry.filter(event_id=event_id).update(created_at=timezone.now() - timedelta(seconds=seconds))


@pytest.mark.asyncio
async def test_stale_pending_entry_is_rescheduled(db, services, queue):
    event_id = await insert_without_job(services)
    await age(event_id, 300)
    reconciler = OutboxReconciler(queue, services.outbox, grace_seconds=60)

    assert await reconciler.sweep_pending() == 1
    assert list(queue.jobs) == [event_id]


@pytest.mark.asyncio
async def test_fresh_published_and_failed_entries_are_left_alone(db, services, queue):
    fresh = await insert_without_job(services)
    published = await insert_without_job(services)
    failed = await insert_without_job(services)
    await age(published, 300)
    await age(failed, 300)
    await OutboxEntry.filter(event_id=published).update(status=OutboxStatus.PUBLISHED)
    await OutboxEntry.filter(event_id=failed).update(status=OutboxStatus.FAILED)
    reconciler = OutboxReconciler(queue, services.outbox, grace_seconds=60)

    assert await reconciler.sweep_pending() == 0
    assert fresh not in queue.jobs
    assert queue.calls == []


@pytest.mark.asyncio
async def test_sweep_does_not_duplicate_a_queued_job(db, services, queue):
    event_id = await services.outbox.save_event("x.created", {}, "agg-1")
    await age(event_id, 300)
    reconciler = OutboxReconciler(queue, services.outbox, grace_seconds=60)

    await reconciler.sweep_pending()
    await reconciler.sweep_pending()

    assert list(queue.jobs) == [event_id]
    assert len(queue.due) == 1


@pytest.mark.asyncio
async def test_sweep_is_bounded_by_batch_size(db, services, queue):
    for _ in range(3):
        await age(await insert_without_job(services), 300)
    reconciler = OutboxReconciler(queue, services.outbox, grace_seconds=60, batch_size=2)

    assert await reconciler.sweep_pending() == 2
    assert len(queue.jobs) == 2


@pytest.mark.asyncio
async def test_run_once_recovers_stalled_jobs(db, services, queue, clock):
    event_id = await services.outbox.save_event("x.created", {}, "agg-1")
    await queue.reserve()
    clock.advance(120_000)
    reconciler = OutboxReconciler(queue, services.outbox)

    await reconciler.run_once()

    assert queue.active == {}
    assert event_id in queue.due


@pytest.mark.asyncio
async def test_ledger_cleanup_runs_at_most_once_per_interval():
    idempotency = MagicMock()
    idempotency.cleanup_old_events = AsyncMock(return_value=4)
    now = [0.0]
    reconciler = OutboxReconciler(
        MagicMock(), MagicMock(), idempotency,
        cleanup_interval=3600, retention_days=30, clock=lambda: now[0],
    )

    assert await reconciler.cleanup_ledger() == 4
    now[0] = 1800
    assert await reconciler.cleanup_ledger() == 0
    now[0] = 3600
    assert await reconciler.cleanup_ledger() == 4

    assert idempotency.cleanup_old_events.await_count == 2
    idempotency.cleanup_old_events.assert_awaited_with(30)


@pytest.mark.asyncio
async def test_ledger_cleanup_is_skipped_without_idempotency_service():
    reconciler = OutboxReconciler(MagicMock(), MagicMock())

    assert await reconciler.cleanup_ledger() == 0
