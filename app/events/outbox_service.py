import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from app.core.config import OUTBOX_JOB_NAME, SERVICE_NAME, SERVICE_VERSION
from app.core.exceptions import OutboxEntryNotFound
from app.core.unit_of_work import TransactionContext, connection_of
from app.events.envelope import build_envelope
from app.models.outbox import OutboxEntry, OutboxStatus
from app.queue.job_queue import Job, JobQueue, RetryPolicy

log = logging.getLogger("outbox")

EVENT_TYPE_PATTERN = re.compile(r"^[a-z0-9_]+(\.[a-z0-9_]+)+$")


@dataclass(frozen=True)
class OutgoingEvent:
    event_type: str
    payload: Dict[str, Any]
    aggregate_id: Any


class OutboxService:
    """
    Appends integration events to the outbox and schedules their delivery.

    With a TransactionContext the row joins the caller's transaction and no
    job is created; the caller runs `schedule_publishing` after its unit of
    work commits. Without one the row is written directly and a delivery job
    is enqueued right away.
    """

    def __init__(
        self,
        queue: JobQueue,
        retry_policy: Optional[RetryPolicy] = None,
        job_name: str = OUTBOX_JOB_NAME,
        source: str = SERVICE_NAME,
        version: str = SERVICE_VERSION,
    ):
        self._queue = queue
        self._retry_policy = retry_policy or RetryPolicy()
        self._job_name = job_name
        self._source = source
        self._version = version

    async def save_event(
        self,
        event_type: str,
        payload: Dict[str, Any],
        aggregate_id: Any,
        tx: Optional[TransactionContext] = None,
    ) -> str:
        entry = self._build_entry(event_type, payload, aggregate_id)
        await entry.save(using_db=connection_of(tx), force_create=True)

        if tx is None:
            await self._add_publish_job(str(entry.event_id))

        log.info(f"Outbox event saved: {entry.event_id} ({event_type}) aggregate={entry.aggregate_id}")
        return str(entry.event_id)

    async def save_events(self, events: List[OutgoingEvent], tx: Optional[TransactionContext] = None) -> List[str]:
        if not events:
            return []

        entries = [self._build_entry(e.event_type, e.payload, e.aggregate_id) for e in events]
        await OutboxEntry.bulk_create(entries, using_db=connection_of(tx))
        event_ids = [str(entry.event_id) for entry in entries]

        if tx is None:
            await self._add_publish_jobs(event_ids)

        log.info(f"Outbox batch saved: {len(entries)} events")
        return event_ids

    async def schedule_publishing(self, event_ids: List[str]) -> None:
        """Enqueues delivery for ids written inside a unit of work. Call only after it committed."""
        if not event_ids:
            return

        if len(event_ids) == 1:
            await self._add_publish_job(event_ids[0])
        else:
            await self._add_publish_jobs(event_ids)

        log.info(f"Scheduled {len(event_ids)} outbox events for publishing")

    async def list_failed(self, limit: int = 100) -> List[OutboxEntry]:
        return await OutboxEntry.filter(status=OutboxStatus.FAILED).order_by("created_at").limit(limit)

    async def requeue_failed(self, event_id: str) -> None:
        """Manual intervention: puts a failed entry back to pending and schedules a fresh job."""
        updated = await OutboxEntry.filter(event_id=event_id, status=OutboxStatus.FAILED).update(
            status=OutboxStatus.PENDING, last_error=None
        )
        if not updated:
            raise OutboxEntryNotFound(str(event_id), "is not in failed state")

        # The exhausted job is kept by the queue and would block the id
        await self._queue.discard(str(event_id))
        await self.schedule_publishing([str(event_id)])
        log.warning(f"Failed outbox event {event_id} requeued manually.")

    def _build_entry(self, event_type: str, payload: Dict[str, Any], aggregate_id: Any) -> OutboxEntry:
        if not EVENT_TYPE_PATTERN.match(event_type):
            raise ValueError(f"Event type must be a dotted lowercase name, got {event_type!r}")
        if aggregate_id is None or str(aggregate_id) == "":
            raise ValueError("aggregate_id is required")

        event_id = str(uuid.uuid4())
        envelope = build_envelope(event_id, event_type, payload, source=self._source, version=self._version)
        return OutboxEntry(
            event_id=event_id,
            aggregate_id=str(aggregate_id),
            event_type=event_type,
            payload=envelope,
            status=OutboxStatus.PENDING,
            retry_count=0,
        )

    def _job_for(self, event_id: str) -> Job:
        return Job(job_id=event_id, name=self._job_name, data={"eventId": event_id}, retry_policy=self._retry_policy)

    async def _add_publish_job(self, event_id: str) -> None:
        await self._queue.enqueue(event_id, self._job_name, {"eventId": event_id}, self._retry_policy)

    async def _add_publish_jobs(self, event_ids: List[str]) -> None:
        await self._queue.enqueue_bulk([self._job_for(event_id) for event_id in event_ids])
