"""
Order status state machine.

    Placed -> Packed -> In Transit -> Delivered
    (any of the first three) -> Cancelled

Moves go forward only (skipping steps is allowed); ``Cancelled`` is reachable
from any state that is not terminal; ``Delivered`` and ``Cancelled`` are
terminal. Re-applying the current status is accepted and changes nothing.
"""

import logging
from datetime import datetime

from core.errors import Forbidden, InvalidStatus, InvalidTransition
from models.order import Order, OrderStatus, PaymentStatus
from security.identity import Identity

logger = logging.getLogger(__name__)

FORWARD_SEQUENCE = (
    OrderStatus.PLACED,
    OrderStatus.PACKED,
    OrderStatus.IN_TRANSIT,
    OrderStatus.DELIVERED,
)
TERMINAL_STATUSES = frozenset({OrderStatus.DELIVERED, OrderStatus.CANCELLED})

VALID_STATUSES = [s.value for s in OrderStatus]
VALID_PAYMENT_STATUSES = [s.value for s in PaymentStatus]


def parse_status(value: str | None) -> OrderStatus:
    try:
        return OrderStatus(value)
    except ValueError:
        raise InvalidStatus(f"Invalid status. Must be one of: {', '.join(VALID_STATUSES)}")


def parse_payment_status(value: str | None) -> PaymentStatus:
    try:
        return PaymentStatus(value)
    except ValueError:
        raise InvalidStatus(f"Invalid payment status. Must be one of: {', '.join(VALID_PAYMENT_STATUSES)}")


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    if current == target:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return FORWARD_SEQUENCE.index(target) > FORWARD_SEQUENCE.index(current)


def allowed_transitions(current: OrderStatus) -> list[OrderStatus]:
    return [s for s in OrderStatus if s != current and can_transition(current, s)]


def require_admin(actor: Identity) -> None:
    if not actor.is_admin:
        raise Forbidden("Admin access required")


class OrderStateMachine:
    def apply_status(self, order: Order, new_status: str, actor: Identity, now: datetime | None = None) -> bool:
        """Move ``order`` to ``new_status``.

        Returns False when the order already had that status (nothing is
        appended to the tracking log), True when a transition was recorded.
        The caller persists and broadcasts in both cases.
        """
        require_admin(actor)
        target = parse_status(new_status)
        current = parse_status(order.status)

        if target == current:
            logger.info("Order %s already %s, nothing to record", order.order_number, target.value)
            return False

        if not can_transition(current, target):
            allowed = ", ".join(s.value for s in allowed_transitions(current)) or "none"
            raise InvalidTransition(
                f"Cannot change order status from {current.value} to {target.value} (allowed: {allowed})"
            )

        now = now or datetime.utcnow()
        order.status = target.value
        if target == OrderStatus.DELIVERED:
            order.delivered_at = now
        order.record_status(target.value, now)
        logger.info("Order %s status %s -> %s", order.order_number, current.value, target.value)
        return True

    def apply_payment_status(
        self, order: Order, payment_status: str, actor: Identity, reference: str | None = None
    ) -> None:
        require_admin(actor)
        order.payment_status = parse_payment_status(payment_status).value
        if reference:
            order.payment_reference = reference.strip()
        logger.info("Order %s payment status set to %s", order.order_number, order.payment_status)
