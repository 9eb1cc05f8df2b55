# app/models/__init__.py
from .inventory import InventoryReservation
from .order import Order, OrderStatus
from .outbox import OutboxEntry, OutboxStatus
from .processed_event import ProcessedEvent

# Export all models
__all__ = [
    "InventoryReservation",
    "Order",
    "OrderStatus",
    "OutboxEntry",
    "OutboxStatus",
    "ProcessedEvent",
]
