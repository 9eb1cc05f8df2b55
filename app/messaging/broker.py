"""Message broker port and its Kafka implementation."""
from __future__ import annotations

import abc
import json
import logging
from typing import Any, Dict, Mapping, Optional

from aiokafka import AIOKafkaProducer

from app.core.config import KAFKA_BOOTSTRAP_SERVERS, OUTBOX_DEFAULT_TOPIC, TOPIC_ROUTES

log = logging.getLogger("messaging.broker")


def topic_for_event_type(
    event_type: str,
    routes: Mapping[str, str] = TOPIC_ROUTES,
    default: str = OUTBOX_DEFAULT_TOPIC,
) -> str:
    """Routes an event to its family topic; the longest matching prefix wins."""
    matches = [prefix for prefix in routes if event_type.startswith(prefix)]
    if not matches:
        return default
    return routes[max(matches, key=len)]


def encode_envelope(envelope: Dict[str, Any]) -> bytes:
    # Stable key order and separators: the same stored envelope always yields the same bytes
    return json.dumps(envelope, separators=(",", ":"), sort_keys=True).encode("utf-8")


def decode_envelope(raw: bytes) -> Dict[str, Any]:
    envelope = json.loads(raw)
    if not isinstance(envelope, dict) or "eventId" not in envelope or "eventType" not in envelope:
        raise ValueError("Message is not an event envelope")
    return envelope


class MessageBroker(abc.ABC):
    """Port: publishes one envelope and returns once the broker acknowledged it."""

    @abc.abstractmethod
    async def publish(self, topic: str, envelope: Dict[str, Any], key: str) -> None: ...

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        return None


class KafkaBroker(MessageBroker):
    """aiokafka producer; `key` selects the partition so one aggregate keeps its order."""

    def __init__(self, bootstrap_servers: str = KAFKA_BOOTSTRAP_SERVERS, producer: Optional[Any] = None, **producer_kwargs: Any) -> None:
        producer_kwargs.setdefault("acks", "all")
        producer_kwargs.setdefault("enable_idempotence", True)
        self._producer = producer or AIOKafkaProducer(bootstrap_servers=bootstrap_servers, **producer_kwargs)
        self._started = False

    async def start(self) -> None:
        if not self._started:
            await self._producer.start()
            self._started = True

    async def stop(self) -> None:
        if self._started:
            await self._producer.stop()
            self._started = False

    async def publish(self, topic: str, envelope: Dict[str, Any], key: str) -> None:
        await self.start()
        headers = [
            ("event-id", str(envelope["eventId"]).encode()),
            ("event-type", str(envelope["eventType"]).encode()),
        ]
        await self._producer.send_and_wait(
            topic,
            value=encode_envelope(envelope),
            key=key.encode("utf-8"),
            headers=headers,
        )
        log.debug(f"kafka.published topic={topic} id={envelope['eventId']}")


__all__ = ["KafkaBroker", "MessageBroker", "decode_envelope", "encode_envelope", "topic_for_event_type"]
