"""Builds the object graph once at process start; collaborators are passed by constructor."""
from dataclasses import dataclass
from typing import Optional

from app.core.config import (
    CONSUMER_SERVICE_NAME,
    KAFKA_BOOTSTRAP_SERVERS,
    OUTBOX_BACKOFF_DELAY_MS,
    OUTBOX_QUEUE_NAME,
    OUTBOX_RETRY_ATTEMPTS,
    REDIS_URL,
)
from app.core.unit_of_work import UnitOfWork
from app.events.idempotency import EventIdempotencyService
from app.events.outbox_service import OutboxService
from app.messaging.broker import KafkaBroker, MessageBroker
from app.queue.job_queue import JobQueue, RetryPolicy
from app.queue.redis_queue import RedisJobQueue
from app.services.order_service import OrderService


@dataclass
class Services:
    uow: UnitOfWork
    queue: JobQueue
    outbox: OutboxService
    idempotency: EventIdempotencyService
    orders: OrderService


def build_services(queue: Optional[JobQueue] = None) -> Services:
    queue = queue or RedisJobQueue.from_url(REDIS_URL, OUTBOX_QUEUE_NAME)
    uow = UnitOfWork()
    outbox = OutboxService(queue, RetryPolicy(OUTBOX_RETRY_ATTEMPTS, OUTBOX_BACKOFF_DELAY_MS))
    return Services(
        uow=uow,
        queue=queue,
        outbox=outbox,
        idempotency=EventIdempotencyService(uow, CONSUMER_SERVICE_NAME),
        orders=OrderService(uow, outbox),
    )


def build_broker() -> MessageBroker:
    return KafkaBroker(KAFKA_BOOTSTRAP_SERVERS)
