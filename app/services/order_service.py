from decimal import Decimal, InvalidOperation
from typing import Dict, List, Optional, Tuple
from uuid import UUID

from app.core.unit_of_work import TransactionContext, UnitOfWork
from app.events.outbox_service import OutboxService, OutgoingEvent
from app.models.order import Order, OrderStatus


class OrderService:
    """
    Order commands. Each command writes the order and its outbox events in one
    unit of work and schedules delivery only after that unit of work committed.
    """

    def __init__(self, uow: UnitOfWork, outbox: OutboxService):
        self._uow = uow
        self._outbox = outbox

    async def place_order(self, customer_id: str, items: List[Dict]) -> Order:
        lines, total = _normalize_lines(items)

        async def work(tx: TransactionContext) -> Tuple[Order, str]:
            order = await Order.create(
                customer_id=customer_id,
                status=OrderStatus.PLACED,
                items=lines,
                total_amount=total,
                using_db=tx.connection,
            )
            event_id = await self._outbox.save_event(
                "order.placed",
                {
                    "order_id": str(order.id),
                    "customer_id": customer_id,
                    "items": lines,
                    "total_amount": str(total),
                },
                aggregate_id=order.id,
                tx=tx,
            )
            return order, event_id

        order, event_id = await self._uow.execute(work)
        await self._outbox.schedule_publishing([event_id])
        return order

    async def cancel_order(self, order_id: UUID) -> Order:
        """Cancels the order and announces both the cancellation and the status change."""

        async def work(tx: TransactionContext) -> Tuple[Order, List[str]]:
            order = await Order.get_or_none(id=order_id).using_db(tx.connection)
            if not order:
                raise ValueError("Order not found")
            if order.status == OrderStatus.CANCELLED:
                raise ValueError(f"Cannot cancel order in status {order.status}")

            old_status = order.status
            order.status = OrderStatus.CANCELLED
            await order.save(using_db=tx.connection)

            event_ids = await self._outbox.save_events(
                [
                    OutgoingEvent("order.cancelled", {"order_id": str(order.id), "items": order.items}, order.id),
                    OutgoingEvent(
                        "order.status_changed",
                        {
                            "order_id": str(order.id),
                            "old_status": old_status.value,
                            "new_status": order.status.value,
                            "customer_id": order.customer_id,
                        },
                        order.id,
                    ),
                ],
                tx=tx,
            )
            return order, event_ids

        order, event_ids = await self._uow.execute(work)
        await self._outbox.schedule_publishing(event_ids)
        return order

    async def get_order(self, order_id: UUID) -> Optional[Order]:
        return await Order.get_or_none(id=order_id)


def _normalize_lines(items: List[Dict]) -> Tuple[List[Dict], Decimal]:
    if not items:
        raise ValueError("Order must contain items.")

    lines = []
    total = Decimal("0")
    for it in items:
        sku = str(it.get("sku", "")).strip()
        qty = int(it.get("quantity", 0))
        try:
            unit_price = Decimal(str(it.get("unit_price", "0")))
        except InvalidOperation:
            raise ValueError(f"Invalid unit price for {sku}")
        if not sku:
            raise ValueError("Every order line needs a sku.")
        if qty <= 0 or unit_price < 0:
            raise ValueError(f"Invalid quantity or price for {sku}")

        total += unit_price * qty
        lines.append({"sku": sku, "quantity": qty, "unit_price": str(unit_price)})
    return lines, total
