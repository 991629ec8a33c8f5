"""
One-off repair of partially migrated order records.

Older rows can be missing ``subtotal``/``total``, point at an address that no
longer exists, or have a tracking log that does not end in the current
status. Run ``scripts/repair_orders.py`` once after importing legacy data;
the status-transition path assumes rows are already consistent.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from typing import List

from sqlalchemy.orm import Session

from core.config import settings
from models.address import Address
from models.order import Order

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    scanned: int = 0
    repaired: List[str] = field(default_factory=list)
    unrepairable: List[str] = field(default_factory=list)


def _items_subtotal(order: Order) -> Decimal:
    return sum((Decimal(str(i.unit_price)) * i.quantity for i in order.items), Decimal("0.00"))


def repair_order(db: Session, order: Order) -> List[str]:
    """Fix one order in place (no commit). Returns the fixes applied."""
    fixes: List[str] = []

    if not order.subtotal:
        order.subtotal = _items_subtotal(order)
        fixes.append("subtotal")
    if order.delivery_fee is None:
        order.delivery_fee = settings.DELIVERY_FEE
        fixes.append("delivery_fee")
    if not order.total:
        order.total = Decimal(str(order.subtotal)) + Decimal(str(order.delivery_fee))
        fixes.append("total")

    address = db.get(Address, order.address_id) if order.address_id else None
    if address is None or address.user_id != order.user_id:
        fallback = db.query(Address).filter(Address.user_id == order.user_id).order_by(Address.id).first()
        if fallback is None:
            raise LookupError(f"No address on file for user {order.user_id}")
        order.address_id = fallback.id
        fixes.append("address_id")

    if not order.tracking or order.tracking[-1].status != order.status:
        order.record_status(order.status, order.updated_at or order.created_at or datetime.utcnow())
        fixes.append("tracking")

    if fixes:
        logger.warning("Order %s repaired: %s", order.order_number, ", ".join(fixes))
    return fixes


def repair_orders(db: Session) -> RepairReport:
    report = RepairReport()
    for order in db.query(Order).order_by(Order.id).all():
        report.scanned += 1
        try:
            if repair_order(db, order):
                report.repaired.append(order.order_number)
        except LookupError as exc:
            logger.error("Order %s cannot be repaired: %s", order.order_number, exc)
            report.unrepairable.append(order.order_number)
    db.commit()
    logger.info(
        "Repair finished: %s scanned, %s repaired, %s unrepairable",
        report.scanned, len(report.repaired), len(report.unrepairable),
    )
    return report
