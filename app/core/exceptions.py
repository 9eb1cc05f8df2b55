class OutboxError(Exception):
    """Base class for errors raised by the outbox and delivery subsystem."""


class NestedUnitOfWorkError(OutboxError):
    """Raised when a Unit of Work is opened inside another one in the same task."""


class DeliveryError(OutboxError):
    """A publish attempt failed and the job should be retried."""

    def __init__(self, event_id: str, attempt: int, reason: str):
        self.event_id = event_id
        self.attempt = attempt
        self.reason = reason
        super().__init__(f"Delivery of {event_id} failed on attempt {attempt}: {reason}")


class OutboxEntryNotFound(OutboxError):
    def __init__(self, event_id: str, detail: str = "not found"):
        self.event_id = event_id
        super().__init__(f"Outbox entry {event_id} {detail}")


class MalformedEventError(OutboxError):
    """A decoded envelope whose payload a consumer cannot act on; redelivery will not fix it."""
