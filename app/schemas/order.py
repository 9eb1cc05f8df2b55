from pydantic import BaseModel, Field
from typing import Any, Dict, List
import uuid
from decimal import Decimal

from app.models.order import OrderStatus


class OrderLineRequest(BaseModel):
    """Schema for a single line in the order request."""
    sku: str = Field(..., min_length=1, max_length=64)
    quantity: int = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)

class OrderRequest(BaseModel):
    """Schema for the full order placement request body."""
    customer_id: str = Field(..., min_length=1, max_length=64)
    items: List[OrderLineRequest]

class OrderPlacementResponse(BaseModel):
    """Response schema for a placed or cancelled order."""
    order_id: uuid.UUID
    status: OrderStatus
    total_amount: Decimal
    message: str

class OrderDetailResponse(BaseModel):
    """Schema for fetching detailed order information."""
    id: uuid.UUID
    customer_id: str
    status: OrderStatus
    total_amount: Decimal
    items: List[Dict[str, Any]]
    created_at: str
