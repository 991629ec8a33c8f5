from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, Field


class OrderItemIn(BaseModel):
    product_id: int
    quantity: int
    # Accepted for compatibility with older clients; the catalogue price wins
    price: Optional[float] = Field(default=None, ge=0)


class OrderCreate(BaseModel):
    address_id: int
    payment_method: str
    items: Optional[List[OrderItemIn]] = None
    notes: Optional[str] = Field(default=None, max_length=2000)


class OrderStatusUpdate(BaseModel):
    status: str


class PaymentStatusUpdate(BaseModel):
    payment_status: str
    reference: Optional[str] = Field(default=None, max_length=100)


class OrderItemOut(BaseModel):
    id: int
    product_id: Optional[int] = None
    product_name: str
    quantity: int
    unit_price: float
    total: float

    class Config:
        from_attributes = True


class TrackingEntryOut(BaseModel):
    status: str
    timestamp: datetime

    class Config:
        from_attributes = True


class OrderOut(BaseModel):
    id: int
    order_number: str
    user_id: int
    address_id: Optional[int] = None
    status: str
    payment_method: str
    payment_status: str
    payment_reference: Optional[str] = None
    notes: Optional[str] = None
    subtotal: float
    delivery_fee: float
    total: float
    items: List[OrderItemOut]
    tracking: List[TrackingEntryOut]
    created_at: datetime
    delivered_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class OrderCount(BaseModel):
    count: int


def order_snapshot(order) -> dict:
    """JSON-ready view of an order, as sent to sockets and push endpoints."""
    return OrderOut.model_validate(order).model_dump(mode="json")
