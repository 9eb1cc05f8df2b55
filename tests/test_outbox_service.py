import pytest
from uuid import UUID

from app.core.config import OUTBOX_JOB_NAME, SERVICE_NAME, SERVICE_VERSION
from app.core.exceptions import OutboxEntryNotFound
from app.events.outbox_service import OutgoingEvent
from app.models.outbox import OutboxEntry, OutboxStatus


@pytest.mark.asyncio
async def test_save_without_transaction_enqueues_exactly_one_job(db, services, queue):
    event_id = await services.outbox.save_event("x.created", {"foo": 1}, "agg-1")

    rows = await OutboxEntry.all()
    assert len(rows) == 1
    assert str(rows[0].event_id) == event_id
    assert rows[0].status == OutboxStatus.PENDING
    assert rows[0].retry_count == 0
    assert rows[0].published_at is None

    assert list(queue.jobs) == [event_id]
    job = queue.jobs[event_id]
    assert job.name == OUTBOX_JOB_NAME
    assert job.data == {"eventId": event_id}


@pytest.mark.asyncio
async def test_envelope_is_stored_on_the_entry(db, services):
    event_id = await services.outbox.save_event("user.created", {"user_id": "u-1"}, "agg-7")

    entry = await OutboxEntry.get(event_id=event_id)
    envelope = entry.payload
    assert set(envelope) == {"eventId", "eventType", "timestamp", "version", "source", "payload"}
    assert envelope["eventId"] == event_id
    assert envelope["eventType"] == "user.created"
    assert isinstance(envelope["timestamp"], int)
    assert envelope["version"] == SERVICE_VERSION
    assert envelope["source"] == SERVICE_NAME
    assert envelope["payload"] == {"user_id": "u-1"}
    assert entry.aggregate_id == "agg-7"
    UUID(event_id)


@pytest.mark.asyncio
async def test_save_with_transaction_does_not_enqueue(db, services, queue):
    async def work(tx):
        return await services.outbox.save_event("x.created", {"foo": 1}, "agg-1", tx=tx)

    event_id = await services.uow.execute(work)

    assert await OutboxEntry.filter(event_id=event_id).exists()
    assert queue.jobs == {}
    assert queue.calls == []

    await services.outbox.schedule_publishing([event_id])
    assert list(queue.jobs) == [event_id]


@pytest.mark.asyncio
async def test_batch_save_keeps_input_order(db, services, queue):
    events = [OutgoingEvent(f"x.step_{i}", {"i": i}, "agg-1") for i in range(3)]

    async def work(tx):
        return await services.outbox.save_events(events, tx=tx)

    event_ids = await services.uow.execute(work)

    assert len(event_ids) == 3
    for i, event_id in enumerate(event_ids):
        entry = await OutboxEntry.get(event_id=event_id)
        assert entry.event_type == f"x.step_{i}"
        assert entry.payload["payload"] == {"i": i}
    assert queue.jobs == {}


@pytest.mark.asyncio
async def test_batch_save_without_transaction_schedules_all_in_one_submission(db, services, queue):
    event_ids = await services.outbox.save_events(
        [OutgoingEvent("x.created", {}, "a"), OutgoingEvent("x.updated", {}, "a")]
    )

    assert sorted(queue.jobs) == sorted(event_ids)
    assert queue.calls == ["enqueue_bulk"]


@pytest.mark.asyncio
async def test_empty_batch_is_a_noop(db, services, queue):
    assert await services.outbox.save_events([]) == []
    assert await OutboxEntry.all().count() == 0
    assert queue.calls == []


@pytest.mark.asyncio
async def test_schedule_publishing_with_no_ids_does_not_touch_the_queue(services, queue):
    await services.outbox.schedule_publishing([])

    assert queue.calls == []
    assert queue.jobs == {}


@pytest.mark.asyncio
async def test_scheduling_the_same_id_twice_keeps_one_job(db, services, queue):
    async def work(tx):
        return await services.outbox.save_event("x.created", {}, "agg-1", tx=tx)

    event_id = await services.uow.execute(work)
    await services.outbox.schedule_publishing([event_id])
    await services.outbox.schedule_publishing([event_id])

    assert list(queue.jobs) == [event_id]


@pytest.mark.parametrize("event_type", ["UserCreated", "user", "user.Created", "user..created", ""])
@pytest.mark.asyncio
async def test_event_type_must_be_dotted_lowercase(db, services, event_type):
    with pytest.raises(ValueError):
        await services.outbox.save_event(event_type, {}, "agg-1")
    assert await OutboxEntry.all().count() == 0


@pytest.mark.asyncio
async def test_requeue_failed_entry(db, services, queue):
    event_id = await services.outbox.save_event("x.created", {}, "agg-1")
    job = await queue.reserve()
    await queue.fail(job, "broker down")
    await OutboxEntry.filter(event_id=event_id).update(status=OutboxStatus.FAILED, retry_count=3, last_error="broker down")

    await services.outbox.requeue_failed(event_id)

    entry = await OutboxEntry.get(event_id=event_id)
    assert entry.status == OutboxStatus.PENDING
    assert entry.retry_count == 3
    assert entry.last_error is None
    assert event_id not in queue.failed
    assert event_id in queue.due


@pytest.mark.asyncio
async def test_requeue_rejects_entries_that_are_not_failed(db, services):
    event_id = await services.outbox.save_event("x.created", {}, "agg-1")

    with pytest.raises(OutboxEntryNotFound):
        await services.outbox.requeue_failed(event_id)
