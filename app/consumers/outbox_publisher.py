import asyncio
import logging
from typing import Awaitable, Callable, List

from tortoise import timezone
from tortoise.expressions import F

from app.core.config import (
    LOG_FORMAT,
    OUTBOX_JOB_NAME,
    OUTBOX_POLL_INTERVAL_MS,
    OUTBOX_PUBLISH_TIMEOUT_MS,
    OUTBOX_WORKER_CONCURRENCY,
)
from app.core.db import close_db, init_db
from app.core.exceptions import DeliveryError
from app.core.wiring import build_broker, build_services
from app.messaging.broker import MessageBroker, topic_for_event_type
from app.models.outbox import OutboxEntry, OutboxStatus
from app.queue.job_queue import Job, JobQueue

log = logging.getLogger("outbox.publisher")


class OutboxPublisher:
    """
    Delivers one outbox entry per job.

    pending -> published on broker ack; on failure retry_count is bumped and the
    entry stays pending, or becomes failed once the job used its last attempt.
    The stored envelope is sent as-is, keyed by aggregate id.
    """

    def __init__(
        self,
        broker: MessageBroker,
        publish_timeout_ms: int = OUTBOX_PUBLISH_TIMEOUT_MS,
        topic_resolver: Callable[[str], str] = topic_for_event_type,
    ):
        self._broker = broker
        self._timeout = publish_timeout_ms / 1000
        self._topic_for = topic_resolver

    async def handle(self, job: Job) -> None:
        event_id = job.data["eventId"]

        entry = await OutboxEntry.get_or_none(event_id=event_id, status=OutboxStatus.PENDING)
        if entry is None:
            log.info(f"Outbox event {event_id} already published or not found, skipping.")
            return

        topic = self._topic_for(entry.event_type)
        try:
            await asyncio.wait_for(
                self._broker.publish(topic, entry.payload, entry.aggregate_id),
                timeout=self._timeout,
            )
        except Exception as e:
            # Broker errors and timeouts are transient until the attempts run out
            reason = str(e) or type(e).__name__
            exhausted = not job.retry_policy.has_attempts_left(job.attempt)
            await OutboxEntry.filter(event_id=event_id, status=OutboxStatus.PENDING).update(
                retry_count=F("retry_count") + 1,
                last_error=reason,
                status=OutboxStatus.FAILED if exhausted else OutboxStatus.PENDING,
            )
            if exhausted:
                log.error(f"Outbox event {event_id} ({entry.event_type}) failed permanently after {job.attempt} attempts: {reason}")
            raise DeliveryError(event_id, job.attempt, reason) from e

        await OutboxEntry.filter(event_id=event_id, status=OutboxStatus.PENDING).update(
            status=OutboxStatus.PUBLISHED,
            published_at=timezone.now(),
        )
        log.info(f"Outbox event published: {event_id} ({entry.event_type}) to {topic}")

    async def mark_failed(self, job: Job, reason: str) -> None:
        """Moves a still-pending entry to failed once its job has no attempts left."""
        event_id = job.data.get("eventId")
        updated = await OutboxEntry.filter(event_id=event_id, status=OutboxStatus.PENDING).update(
            status=OutboxStatus.FAILED,
            last_error=reason,
        )
        if updated:
            log.error(f"Outbox event {event_id} failed permanently after {job.attempt} attempts: {reason}")


class OutboxPublisherWorker:
    """Pulls publish jobs off the queue with `concurrency` parallel loops."""

    def __init__(
        self,
        queue: JobQueue,
        publisher: OutboxPublisher,
        concurrency: int = OUTBOX_WORKER_CONCURRENCY,
        poll_interval_ms: int = OUTBOX_POLL_INTERVAL_MS,
        job_name: str = OUTBOX_JOB_NAME,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._queue = queue
        self._publisher = publisher
        self._concurrency = concurrency
        self._poll_interval = poll_interval_ms / 1000
        self._job_name = job_name
        self._sleep = sleep
        self._stopping = asyncio.Event()
        self._tasks: List[asyncio.Task] = []

    async def run_once(self) -> bool:
        """Processes at most one due job. Returns False when the queue had nothing due."""
        job = await self._queue.reserve()
        if job is None:
            return False
        await self._process(job)
        return True

    async def _process(self, job: Job) -> None:
        if job.name != self._job_name:
            log.error(f"Unknown job '{job.name}' ({job.job_id}) on outbox queue.")
            await self._queue.fail(job, f"unknown job name {job.name}")
            return

        try:
            await self._publisher.handle(job)
        except Exception as e:
            policy = job.retry_policy
            if policy.has_attempts_left(job.attempt):
                delay = policy.delay_for(job.attempt)
                log.warning(
                    f"Publish attempt {job.attempt}/{policy.max_attempts} for {job.job_id} failed: {e}. "
                    f"Retrying in {delay} ms."
                )
                await self._queue.retry(job, delay)
            else:
                # Entry first: if this raises, the job stays active and its lease expiry brings it back
                await self._publisher.mark_failed(job, str(e))
                await self._queue.fail(job, str(e))
            return

        await self._queue.complete(job)

    async def _loop(self, worker_no: int) -> None:
        log.info(f"Publisher loop {worker_no} started.")
        while not self._stopping.is_set():
            try:
                worked = await self.run_once()
            except Exception as e:
                log.error(f"Publisher loop {worker_no} hit a queue/database error: {e}")
                worked = False
            if not worked:
                await self._sleep(self._poll_interval)
        log.info(f"Publisher loop {worker_no} stopped.")

    async def run(self) -> None:
        self._stopping.clear()
        self._tasks = [asyncio.create_task(self._loop(n)) for n in range(self._concurrency)]
        await asyncio.gather(*self._tasks)

    def stop(self) -> None:
        self._stopping.set()


async def start_outbox_publisher():
    """Main loop for the publisher service."""
    await init_db()
    services = build_services()
    broker = build_broker()
    await broker.start()
    worker = OutboxPublisherWorker(services.queue, OutboxPublisher(broker))
    log.info("--- Outbox Publisher Service Started ---")
    try:
        await worker.run()
    finally:
        await broker.stop()
        await services.queue.close()
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        asyncio.run(start_outbox_publisher())
    except KeyboardInterrupt:
        log.info("Publisher service stopped.")
