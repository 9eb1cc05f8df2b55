from tortoise import fields, models
import uuid


class ProcessedEvent(models.Model):
    """
    Idempotency ledger for consumers. One row per (event_id, service_name);
    the unique constraint, not the existence check, is what stops two racing
    redeliveries from both applying their side effects.
    """
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    event_id = fields.CharField(max_length=255)
    service_name = fields.CharField(max_length=128)
    event_type = fields.CharField(max_length=128, null=True)
    processed_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "processed_events"
        unique_together = (("event_id", "service_name"),)
        indexes = [
            ("processed_at",),  # Retention cleanup
        ]
