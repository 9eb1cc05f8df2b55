from tortoise import fields, models
import uuid


class InventoryReservation(models.Model):
    """Stock held for one order line. Written by the inventory consumer on 'order.placed'."""
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    order_id = fields.UUIDField()
    sku = fields.CharField(max_length=64)
    quantity = fields.IntField()
    source_event_id = fields.CharField(max_length=255) # Event that triggered the reservation
    created_at = fields.DatetimeField(auto_now_add=True)

    class Meta:
        table = "inventory_reservations"
        indexes = [
            ("order_id",),
            ("sku",),
        ]
