import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List
from uuid import UUID

from aiokafka import AIOKafkaConsumer, TopicPartition

from app.core.config import (
    CONSUMER_RETRY_DELAY,
    CONSUMER_SERVICE_NAME,
    KAFKA_BOOTSTRAP_SERVERS,
    LOG_FORMAT,
    TOPIC_ROUTES,
)
from app.core.db import close_db, init_db
from app.core.exceptions import MalformedEventError
from app.core.unit_of_work import TransactionContext, UnitOfWork
from app.events.idempotency import EventIdempotencyService
from app.messaging.broker import decode_envelope
from app.models.inventory import InventoryReservation

log = logging.getLogger("inventory_consumer")

Handler = Callable[[Dict[str, Any], EventIdempotencyService], Awaitable[bool]]


def _order_id(envelope: Dict[str, Any]) -> UUID:
    try:
        return UUID(str(envelope["payload"]["order_id"]))
    except (KeyError, TypeError, ValueError) as e:
        raise MalformedEventError(f"Event {envelope['eventId']} has no valid order_id: {e!r}") from e


async def handle_order_placed(envelope: Dict[str, Any], idempotency: EventIdempotencyService) -> bool:
    """
    Consumer logic for 'order.placed'. Reserves stock for every order line.
    Returns False when the event was a redelivery and nothing was done.
    """
    event_id = str(envelope["eventId"])
    order_id = _order_id(envelope)
    try:
        items = [
            {"sku": str(item["sku"]), "quantity": int(item["quantity"])}
            for item in envelope["payload"].get("items", [])
        ]
    except (KeyError, TypeError, ValueError, AttributeError) as e:
        raise MalformedEventError(f"Event {event_id} has invalid order lines: {e!r}") from e

    async def reserve(tx: TransactionContext) -> None:
        for item in items:
            await InventoryReservation.create(
                order_id=order_id,
                sku=item["sku"],
                quantity=item["quantity"],
                source_event_id=event_id,
                using_db=tx.connection,
            )
        log.info(f"Reserved {len(items)} line(s) for Order {order_id}.")

    return await idempotency.process_once(event_id, envelope.get("eventType"), reserve)


async def handle_order_cancelled(envelope: Dict[str, Any], idempotency: EventIdempotencyService) -> bool:
    """Consumer logic for 'order.cancelled'. Releases the order's reservations."""
    event_id = str(envelope["eventId"])
    order_id = _order_id(envelope)

    async def release(tx: TransactionContext) -> None:
        released = await InventoryReservation.filter(order_id=order_id).using_db(tx.connection).delete()
        log.info(f"Released {released} reservation(s) for Order {order_id}.")

    return await idempotency.process_once(event_id, envelope.get("eventType"), release)


HANDLERS: Dict[str, Handler] = {
    "order.placed": handle_order_placed,
    "order.cancelled": handle_order_cancelled,
}


class EventConsumer:
    """
    Reads envelopes from the broker and routes them by eventType.

    Offsets are committed only after the handler returned; a failing handler
    rewinds to the same message so it is delivered again after a pause.
    """

    def __init__(
        self,
        consumer: Any,
        idempotency: EventIdempotencyService,
        handlers: Dict[str, Handler] = HANDLERS,
        retry_delay: float = CONSUMER_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._consumer = consumer
        self._idempotency = idempotency
        self._handlers = handlers
        self._retry_delay = retry_delay
        self._sleep = sleep

    async def handle_message(self, value: bytes) -> None:
        try:
            envelope = decode_envelope(value)
        except ValueError as e:
            # Poison message: skipping it is the only way to keep the partition moving
            log.error(f"Dropping undecodable message: {e}")
            return

        handler = self._handlers.get(envelope["eventType"])
        if handler is None:
            log.debug(f"No handler for event type {envelope['eventType']}, ignoring.")
            return
        try:
            await handler(envelope, self._idempotency)
        except MalformedEventError as e:
            log.error(f"Dropping malformed {envelope['eventType']} event: {e}")

    async def consume(self, msg: Any) -> bool:
        """Processes one broker record; returns True when its offset may be committed."""
        try:
            await self.handle_message(msg.value)
        except Exception as e:
            log.error(f"Handler failed for message at {msg.topic}[{msg.partition}]@{msg.offset}: {e}")
            self._consumer.seek(TopicPartition(msg.topic, msg.partition), msg.offset)
            await self._sleep(self._retry_delay)
            return False
        await self._consumer.commit()
        return True

    async def run(self) -> None:
        await self._consumer.start()
        try:
            async for msg in self._consumer:
                await self.consume(msg)
        finally:
            await self._consumer.stop()


def build_kafka_consumer(topics: List[str], group_id: str = CONSUMER_SERVICE_NAME) -> AIOKafkaConsumer:
    return AIOKafkaConsumer(
        *topics,
        bootstrap_servers=KAFKA_BOOTSTRAP_SERVERS,
        group_id=group_id,
        enable_auto_commit=False,
        auto_offset_reset="earliest",
    )


async def start_inventory_consumer():
    """Main loop for the inventory consumer service."""
    await init_db()
    idempotency = EventIdempotencyService(UnitOfWork(), CONSUMER_SERVICE_NAME)
    consumer = EventConsumer(build_kafka_consumer([TOPIC_ROUTES["order."]]), idempotency)
    log.info("--- Inventory Consumer Service Started ---")
    try:
        await consumer.run()
    finally:
        await close_db()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format=LOG_FORMAT)
    try:
        asyncio.run(start_inventory_consumer())
    except KeyboardInterrupt:
        log.info("Inventory consumer stopped.")
