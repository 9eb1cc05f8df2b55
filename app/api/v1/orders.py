import logging
from fastapi import APIRouter, Depends, HTTPException, status
from uuid import UUID

from app.api.deps import get_services
from app.core.wiring import Services
from app.schemas.order import OrderDetailResponse, OrderPlacementResponse, OrderRequest
from app.schemas.response import SuccessResponse

router = APIRouter()
log = logging.getLogger("api.orders")


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=SuccessResponse)
async def create_order_endpoint(request_data: OrderRequest, services: Services = Depends(get_services)):
    """
    Places a new order. Returns 202 Accepted because stock reservation happens
    asynchronously once the 'order.placed' event is delivered.
    """
    if not request_data.items:
        raise HTTPException(status_code=400, detail="Order must contain items.")

    items = [
        {"sku": item.sku, "quantity": item.quantity, "unit_price": str(item.unit_price)}
        for item in request_data.items
    ]
    order = await services.orders.place_order(customer_id=request_data.customer_id, items=items)
    log.info(f"Order {order.id} placed for customer {request_data.customer_id}.")

    data = OrderPlacementResponse(
        order_id=order.id,
        status=order.status,
        total_amount=order.total_amount,
        message="Order accepted and is being processed.",
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.get("/{order_id}", response_model=SuccessResponse)
async def get_order_endpoint(order_id: UUID, services: Services = Depends(get_services)):
    """Fetches details for a specific order."""
    order = await services.orders.get_order(order_id)
    if not order:
        raise HTTPException(status_code=404, detail="Order not found")

    data = OrderDetailResponse(
        id=order.id,
        customer_id=order.customer_id,
        status=order.status,
        total_amount=order.total_amount,
        items=order.items,
        created_at=str(order.created_at),
    ).model_dump(mode="json")
    return SuccessResponse(data=data)


@router.post("/{order_id}/cancel", response_model=SuccessResponse)
async def cancel_order_endpoint(order_id: UUID, services: Services = Depends(get_services)):
    """
    Cancels the order; inventory release is triggered by the 'order.cancelled' event.
    """
    order = await services.orders.cancel_order(order_id)
    data = OrderPlacementResponse(
        order_id=order.id,
        status=order.status,
        total_amount=order.total_amount,
        message="Order cancelled. Inventory release queued.",
    ).model_dump(mode="json")
    return SuccessResponse(data=data)
