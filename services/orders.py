import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Query, Session

from core.config import settings
from core.errors import AddressNotFound, Forbidden, InsufficientStock, NotFound, ValidationError
from models.address import Address
from models.order import Order, OrderStatus, PaymentMethod
from models.order_item import OrderItem
from models.product import Product
from schemas.order import order_snapshot
from security.identity import Identity
from services import inbox
from services.cart import CartStore
from services.inventory import InventoryLedger
from services.lifecycle import OrderStateMachine, parse_payment_status, parse_status, require_admin
from services.notifications import NotificationDispatcher
from services.order_numbers import OrderNumberGenerator

logger = logging.getLogger(__name__)

VALID_PAYMENT_METHODS = [m.value for m in PaymentMethod]
PERIOD_DAYS = {"7d": 7, "30d": 30, "90d": 90}
MAX_PAGE_SIZE = 100


def _to_decimal(value: float | int | Decimal) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass
class OrderFilters:
    status: Optional[str] = None
    order_number: Optional[str] = None
    period: Optional[str] = None
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    page: int = 1
    limit: int = 10


class OrderRepository:
    def __init__(self, db: Session):
        self.db = db

    def get(self, order_id: int) -> Order | None:
        return self.db.get(Order, order_id)

    def get_by_number(self, order_number: str) -> Order | None:
        return self.db.query(Order).filter(Order.order_number == order_number).one_or_none()

    def _filtered(self, filters: OrderFilters, owner_id: int | None) -> Query:
        qs = self.db.query(Order)
        if owner_id is not None:
            qs = qs.filter(Order.user_id == owner_id)
        if filters.status:
            qs = qs.filter(Order.status == parse_status(filters.status).value)
        if filters.order_number:
            qs = qs.filter(func.lower(Order.order_number).contains(filters.order_number.strip().lower()))
        if filters.period:
            days = PERIOD_DAYS.get(filters.period)
            if days is None:
                raise ValidationError(f"Invalid period. Must be one of: {', '.join(PERIOD_DAYS)}")
            qs = qs.filter(Order.created_at >= datetime.utcnow() - timedelta(days=days))
        if filters.date_from:
            qs = qs.filter(Order.created_at >= filters.date_from)
        if filters.date_to:
            qs = qs.filter(Order.created_at <= filters.date_to)
        return qs

    def find(self, filters: OrderFilters, owner_id: int | None = None) -> List[Order]:
        page = max(filters.page, 1)
        limit = min(max(filters.limit, 1), MAX_PAGE_SIZE)
        return (
            self._filtered(filters, owner_id)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )

    def count(self, filters: OrderFilters, owner_id: int | None = None) -> int:
        return self._filtered(filters, owner_id).count()

    def first_address_of(self, user_id: int) -> Address | None:
        return self.db.query(Address).filter(Address.user_id == user_id).order_by(Address.id).first()


class OrderService:
    """Order creation and lifecycle operations.

    Every mutation commits before the dispatcher is called, so sockets and
    push endpoints only ever see persisted state.
    """

    def __init__(
        self,
        db: Session,
        dispatcher: NotificationDispatcher,
        machine: OrderStateMachine | None = None,
        numbers: OrderNumberGenerator | None = None,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.machine = machine or OrderStateMachine()
        self.numbers = numbers or OrderNumberGenerator(db)
        self.repo = OrderRepository(db)
        self.ledger = InventoryLedger(db)
        self.carts = CartStore(db)

    # -- creation -----------------------------------------------------------

    def create_order(
        self,
        actor: Identity,
        address_id: int,
        payment_method: str,
        items: Optional[Iterable[Tuple[int, int]]] = None,
        notes: Optional[str] = None,
    ) -> Order:
        if payment_method not in VALID_PAYMENT_METHODS:
            logger.info("Rejected order for user %s: invalid payment method %r", actor.user_id, payment_method)
            raise ValidationError(f"Invalid payment method. Must be one of: {', '.join(VALID_PAYMENT_METHODS)}")

        if items is None:
            items = [(line.product_id, line.quantity) for line in self.carts.find_by_user(actor.user_id)]
        lines = self._normalise_lines(items)
        products = self._load_products(lines)
        address = self._check_address(actor, address_id)

        subtotal = Decimal("0.00")
        order_items: List[OrderItem] = []
        for product_id, quantity in lines:
            product = products[product_id]
            unit_price = _to_decimal(product.price)
            line_total = unit_price * quantity
            subtotal += line_total
            order_items.append(
                OrderItem(
                    product_id=product.id,
                    product_name=product.name,
                    quantity=quantity,
                    unit_price=unit_price,
                    total=line_total,
                )
            )
        delivery_fee = _to_decimal(settings.DELIVERY_FEE)

        now = datetime.utcnow()
        try:
            # Fixed product order keeps concurrent reservations from deadlocking
            for product_id, quantity in sorted(lines):
                self.ledger.reserve(product_id, quantity, products[product_id].name)
            order = Order(
                order_number=self.numbers.next(),
                user_id=actor.user_id,
                address_id=address.id,
                subtotal=subtotal,
                delivery_fee=delivery_fee,
                total=subtotal + delivery_fee,
                status=OrderStatus.PLACED.value,
                payment_method=payment_method,
                notes=notes.strip() if notes else None,
                created_at=now,
                items=order_items,
            )
            order.record_status(OrderStatus.PLACED.value, now)
            self.db.add(order)
            self.db.commit()
        except Exception:
            # Stock, counter and order go back together
            self.db.rollback()
            raise
        self.db.refresh(order)
        for product in products.values():
            self.db.expire(product, ["stock"])
        logger.info("Order %s placed by user %s, total %s", order.order_number, actor.user_id, order.total)

        self._clear_cart(actor.user_id, order.order_number)
        inbox.record(self.db, actor.user_id, f"Your order #{order.order_number} has been placed successfully!")
        self.dispatcher.order_created({**order_snapshot(order), "delivery_address": address.one_line()})
        return order

    def _normalise_lines(self, items: Iterable[Tuple[int, int]]) -> List[Tuple[int, int]]:
        merged: dict[int, int] = {}
        for product_id, quantity in items:
            if not isinstance(product_id, int) or product_id < 1 or not isinstance(quantity, int) or quantity < 1:
                raise ValidationError("Each item must have a valid product ID and quantity (>= 1)")
            merged[product_id] = merged.get(product_id, 0) + quantity
        if not merged:
            raise ValidationError("Items array is required and must not be empty")
        return list(merged.items())

    def _load_products(self, lines: Sequence[Tuple[int, int]]) -> dict[int, Product]:
        ids = [product_id for product_id, _ in lines]
        products = {p.id: p for p in self.db.query(Product).filter(Product.id.in_(ids)).populate_existing().all()}
        if len(products) != len(ids):
            logger.info("Rejected order: unknown products %s", sorted(set(ids) - set(products)))
            raise ValidationError("One or more products not found")
        for product_id, quantity in lines:
            product = products[product_id]
            if not product.is_active:
                raise ValidationError(f"Product is not available: {product.name}")
            # Early answer only; the conditional decrement is what guarantees it
            if product.stock < quantity:
                raise InsufficientStock(f"Insufficient stock for product: {product.name}", product_id=product.id)
        return products

    def _check_address(self, actor: Identity, address_id: int) -> Address:
        address = self.db.get(Address, address_id) if address_id else None
        if not address:
            raise AddressNotFound()
        if address.user_id != actor.user_id:
            raise Forbidden("Delivery address does not belong to the user")
        if not address.is_deliverable:
            raise ValidationError("Delivery address is invalid (missing state or country)")
        return address

    def _clear_cart(self, user_id: int, order_number: str) -> None:
        try:
            self.carts.clear(user_id)
        except SQLAlchemyError as exc:
            self.db.rollback()
            logger.error("Failed to clear cart for user %s after order %s", user_id, order_number, exc_info=True)
            self.dispatcher.system_alert(
                f"Failed to clear cart for user {user_id} after order {order_number}", str(exc)
            )

    # -- reads --------------------------------------------------------------

    def _visible(self, order: Order | None, actor: Identity) -> Order:
        if not order:
            raise NotFound("Order not found")
        if not actor.can_view(order.user_id):
            raise Forbidden("Unauthorized")
        return order

    def get_order(self, order_id: int, actor: Identity) -> Order:
        return self._visible(self.repo.get(order_id), actor)

    def track_by_number(self, order_number: str, actor: Identity) -> Order:
        order_number = (order_number or "").strip()
        if not order_number:
            raise ValidationError("orderNumber is required")
        return self._visible(self.repo.get_by_number(order_number), actor)

    def list_orders(self, actor: Identity, filters: OrderFilters | None = None) -> List[Order]:
        owner_id = None if actor.is_admin else actor.user_id
        return self.repo.find(filters or OrderFilters(), owner_id)

    def count_orders(self, actor: Identity, filters: OrderFilters | None = None) -> int:
        owner_id = None if actor.is_admin else actor.user_id
        return self.repo.count(filters or OrderFilters(), owner_id)

    # -- lifecycle ----------------------------------------------------------

    def _load_for_admin(self, order_id: int) -> Order:
        order = self.repo.get(order_id)
        if not order:
            logger.info("Order not found: %s", order_id)
            raise NotFound("Order not found")
        return order

    def update_status(self, order_id: int, new_status: str, actor: Identity) -> Order:
        require_admin(actor)
        parse_status(new_status)
        order = self._load_for_admin(order_id)

        try:
            changed = self.machine.apply_status(order, new_status, actor)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        if changed and order.status == OrderStatus.PACKED.value:
            inbox.record(self.db, order.user_id, f"Your order #{order.order_number} is ready for delivery or pickup!")
        self.dispatcher.order_status_changed(order_snapshot(order))
        return order

    def update_payment_status(
        self, order_id: int, payment_status: str, actor: Identity, reference: str | None = None
    ) -> Order:
        require_admin(actor)
        parse_payment_status(payment_status)
        order = self._load_for_admin(order_id)

        try:
            self.machine.apply_payment_status(order, payment_status, actor, reference)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        self.dispatcher.payment_status_changed(order_snapshot(order))
        return order

    def delete_order(self, order_id: int, actor: Identity) -> None:
        require_admin(actor)
        order = self._load_for_admin(order_id)
        snapshot = order_snapshot(order)

        try:
            self.db.delete(order)
            self.db.commit()
        except Exception:
            self.db.rollback()
            raise

        logger.info("Order %s deleted by admin %s", snapshot["order_number"], actor.user_id)
        self.dispatcher.order_deleted(snapshot)
