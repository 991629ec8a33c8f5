from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from core.db import get_db
from core.realtime import registry
from routes.auth import get_identity
from schemas.order import OrderCount, OrderCreate, OrderOut, OrderStatusUpdate, PaymentStatusUpdate
from security.identity import Identity
from services.notifications import NotificationDispatcher
from services.orders import OrderFilters, OrderService
from services.push import PushService

router = APIRouter(prefix="/orders", tags=["orders"])


def get_dispatcher(db: Session = Depends(get_db)) -> NotificationDispatcher:
    return NotificationDispatcher(registry, PushService(db))


def get_order_service(
    db: Session = Depends(get_db), dispatcher: NotificationDispatcher = Depends(get_dispatcher)
) -> OrderService:
    return OrderService(db, dispatcher)


def order_filters(
    status: Optional[str] = None,
    order_number: Optional[str] = Query(default=None, alias="orderNumber"),
    period: Optional[str] = None,
    date_from: Optional[datetime] = None,
    date_to: Optional[datetime] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
) -> OrderFilters:
    return OrderFilters(
        status=status,
        order_number=order_number,
        period=period,
        date_from=date_from,
        date_to=date_to,
        page=page,
        limit=limit,
    )


@router.post("/", response_model=OrderOut, status_code=201)
def create_order(
    data: OrderCreate,
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    items = None
    if data.items is not None:
        items = [(item.product_id, item.quantity) for item in data.items]
    return service.create_order(
        actor,
        address_id=data.address_id,
        payment_method=data.payment_method,
        items=items,
        notes=data.notes,
    )


@router.get("/", response_model=List[OrderOut])
def list_orders(
    filters: OrderFilters = Depends(order_filters),
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return service.list_orders(actor, filters)


@router.get("/count", response_model=OrderCount)
def count_orders(
    filters: OrderFilters = Depends(order_filters),
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return OrderCount(count=service.count_orders(actor, filters))


@router.get("/track", response_model=OrderOut)
def track_order(
    order_number: str = Query(alias="orderNumber"),
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return service.track_by_number(order_number, actor)


@router.get("/{order_id}", response_model=OrderOut)
def get_order(
    order_id: int,
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return service.get_order(order_id, actor)


@router.patch("/{order_id}", response_model=OrderOut)
def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return service.update_status(order_id, data.status, actor)


@router.patch("/{order_id}/payment", response_model=OrderOut)
def update_payment_status(
    order_id: int,
    data: PaymentStatusUpdate,
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    return service.update_payment_status(order_id, data.payment_status, actor, data.reference)


@router.delete("/{order_id}")
def delete_order(
    order_id: int,
    actor: Identity = Depends(get_identity),
    service: OrderService = Depends(get_order_service),
):
    service.delete_order(order_id, actor)
    return {"detail": "Order deleted"}
