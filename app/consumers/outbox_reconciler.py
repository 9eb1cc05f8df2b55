import asyncio
import logging
import time
from datetime import timedelta
from typing import Callable, Optional

from tortoise import timezone

from app.core.config import (
    LOG_FORMAT,
    OUTBOX_RECONCILE_BATCH_SIZE,
    OUTBOX_RECONCILE_GRACE_SECONDS,
    OUTBOX_RECONCILE_INTERVAL,
    PROCESSED_EVENT_CLEANUP_INTERVAL,
    PROCESSED_EVENT_RETENTION_DAYS,
)
from app.core.db import close_db, init_db
from app.core.wiring import build_services
from app.events.idempotency import EventIdempotencyService
from app.events.outbox_service import OutboxService
from app.models.outbox import OutboxEntry, OutboxStatus
from app.queue.job_queue import JobQueue

log = logging.getLogger("outbox.reconciler")


class OutboxReconciler:
    """
    Periodic safety net for the delivery path.

    A pending entry older than the grace period may have lost its job (the
    enqueue after a direct insert failed, or a worker died holding it), so it
    is scheduled again. Job ids equal event ids, so entries whose job is still
    queued are not duplicated. Failed entries are left alone.
    """

    def __init__(
        self,
        queue: JobQueue,
        outbox: OutboxService,
        idempotency: Optional[EventIdempotencyService] = None,
        grace_seconds: int = OUTBOX_RECONCILE_GRACE_SECONDS,
        batch_size: int = OUTBOX_RECONCILE_BATCH_SIZE,
        cleanup_interval: int = PROCESSED_EVENT_CLEANUP_INTERVAL,
        retention_days: int = PROCESSED_EVENT_RETENTION_DAYS,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._queue = queue
        self._outbox = outbox
        self._idempotency = idempotency
        self._grace = timedelta(seconds=grace_seconds)
        self._batch_size = batch_size
        self._cleanup_interval = cleanup_interval
        self._retention_days = retention_days
        self._clock = clock
        self._last_cleanup: Optional[float] = None

    async def sweep_pending(self) -> int:
        cutoff = timezone.now() - self._grace
        stale = await OutboxEntry.filter(
            status=OutboxStatus.PENDING, created_at__lt=cutoff
        ).order_by("created_at").limit(self._batch_size).values_list("event_id", flat=True)

        if not stale:
            return 0

        await self._outbox.schedule_publishing([str(event_id) for event_id in stale])
        log.info(f"Reconciler re-scheduled {len(stale)} stale pending events.")
        return len(stale)

    async def cleanup_ledger(self) -> int:
        if self._idempotency is None:
            return 0
        now = self._clock()
        if self._last_cleanup is not None and now - self._last_cleanup < self._cleanup_interval:
            return 0
        self._last_cleanup = now
        return await self._idempotency.cleanup_old_events(self._retention_days)

    async def run_once(self) -> None:
        await self._queue.recover_stalled()
        await self.sweep_pending()
        await self.cleanup_ledger()


async def start_outbox_reconciler(interval: int = OUTBOX_RECONCILE_INTERVAL):
    """Main loop for the reconciliation service."""
    await init_db()
    services = build_services()
    reconciler = OutboxReconciler(services.queue, services.outbox, services.idempotency)
    log.info("--- Outbox Reconciler Service Started ---")

    try:
        while True:
            try:
                await reconciler.run_once()
            except Exception as e:
                log.error(f"Reconciler sweep failed: {e}")
            await asyncio.sleep(interval)
    finally:
        await services.queue.close()
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        asyncio.run(start_outbox_reconciler())
    except KeyboardInterrupt:
        log.info("Reconciler service stopped.")
