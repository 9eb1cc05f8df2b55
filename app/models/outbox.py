from enum import Enum
from tortoise import fields, models


class OutboxStatus(str, Enum):
    PENDING = "pending"  # Written with the aggregate, waiting for the publisher
    PUBLISHED = "published" # Broker acknowledged the envelope
    FAILED = "failed" # Retry ceiling exceeded, needs manual intervention


class OutboxEntry(models.Model):
    """
    The Outbox table stores integration events atomically with the aggregate change.
    `payload` holds the full wire envelope so redelivery sends the exact same message.
    Rows are never deleted by the application; they stay for audit.
    """
    event_id = fields.UUIDField(primary_key=True) # Also the broker message id and the job dedup key
    aggregate_id = fields.CharField(max_length=255) # Broker partition key
    event_type = fields.CharField(max_length=128) # e.g., 'order.placed'
    payload = fields.JSONField()
    status = fields.CharEnumField(OutboxStatus, max_length=16, default=OutboxStatus.PENDING)
    retry_count = fields.IntField(default=0)
    last_error = fields.TextField(null=True)
    created_at = fields.DatetimeField(auto_now_add=True)
    published_at = fields.DatetimeField(null=True)

    class Meta:
        table = "outbox"
        indexes = [
            ("status",),
            ("created_at",),
            ("status", "created_at"),  # Reconciliation sweep
            ("event_type",),
        ]

    def __str__(self):
        return f"{self.event_type}:{self.event_id}"
