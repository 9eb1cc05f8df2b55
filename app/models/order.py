from enum import Enum
from tortoise import fields, models
import uuid


class OrderStatus(str, Enum):
    PLACED = "PLACED"  # Initial state, stock reservation happens asynchronously
    CANCELLED = "CANCELLED"


class Order(models.Model):
    id = fields.UUIDField(primary_key=True, default=uuid.uuid4)
    customer_id = fields.CharField(max_length=64)
    status = fields.CharEnumField(OrderStatus, default=OrderStatus.PLACED)
    items = fields.JSONField(default=list) # [{"sku": ..., "quantity": ..., "unit_price": ...}]
    total_amount = fields.DecimalField(max_digits=14, decimal_places=2, default=0)
    created_at = fields.DatetimeField(auto_now_add=True)
    updated_at = fields.DatetimeField(auto_now=True)

    class Meta:
        table = "orders"
        indexes = [
            ("customer_id",),            # Customer order history
            ("status",),                 # Status-based filtering
            ("status", "created_at"),    # Composite: status with time
        ]
