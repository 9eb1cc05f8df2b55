import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional

from tortoise import timezone
from tortoise.exceptions import IntegrityError

from app.core.config import CONSUMER_SERVICE_NAME, PROCESSED_EVENT_RETENTION_DAYS
from app.core.unit_of_work import TransactionContext, UnitOfWork, connection_of
from app.models.processed_event import ProcessedEvent

log = logging.getLogger("idempotency")


class _AlreadyClaimed(Exception):
    """Internal signal: the ledger insert lost a race, roll the side effect back."""


class EventIdempotencyService:
    """
    Consumer-side ledger of handled events, one per subscribing service.

    Usage: `has_processed` first; if False, do the work, then `mark_processed`.
    `process_once` does both inside one transaction so a lost race also
    rolls back the duplicate side effect.
    """

    def __init__(self, uow: UnitOfWork, service_name: str = CONSUMER_SERVICE_NAME):
        self._uow = uow
        self.service_name = service_name

    async def has_processed(self, event_id: str, service_name: Optional[str] = None) -> bool:
        return await ProcessedEvent.filter(
            event_id=str(event_id), service_name=service_name or self.service_name
        ).exists()

    async def mark_processed(
        self,
        event_id: str,
        service_name: Optional[str] = None,
        event_type: Optional[str] = None,
        tx: Optional[TransactionContext] = None,
    ) -> bool:
        """Records the event; returns False when it was already recorded (constraint hit)."""
        service_name = service_name or self.service_name
        try:
            await ProcessedEvent.create(
                event_id=str(event_id),
                service_name=service_name,
                event_type=event_type,
                using_db=connection_of(tx),
            )
        except IntegrityError:
            log.info(f"Idempotency: Event {event_id} already processed by {service_name}.")
            return False
        log.debug(f"Event {event_id} marked as processed by {service_name}.")
        return True

    async def process_once(
        self,
        event_id: str,
        event_type: Optional[str],
        handler: Callable[[TransactionContext], Awaitable[Any]],
    ) -> bool:
        """Runs `handler` at most once per event for this service. Returns False for a duplicate."""
        if await self.has_processed(event_id):
            log.info(f"Idempotency: Skipping duplicate event {event_id} ({event_type}).")
            return False

        async def work(tx: TransactionContext) -> None:
            await handler(tx)
            if not await self.mark_processed(event_id, event_type=event_type, tx=tx):
                raise _AlreadyClaimed(event_id)

        try:
            await self._uow.execute(work)
        except _AlreadyClaimed:
            log.info(f"Idempotency: Concurrent delivery of {event_id} won the race, side effects rolled back.")
            return False
        return True

    async def cleanup_old_events(self, older_than_days: int = PROCESSED_EVENT_RETENTION_DAYS) -> int:
        cutoff = timezone.now() - timedelta(days=older_than_days)
        deleted = await ProcessedEvent.filter(processed_at__lt=cutoff).delete()
        log.info(f"Cleaned up {deleted} processed events older than {older_than_days} days.")
        return deleted
