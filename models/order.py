from datetime import datetime
from enum import Enum

from sqlalchemy import String, DateTime, ForeignKey, Numeric, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from core.db import Base
from models.order_tracking import OrderTracking


class OrderStatus(str, Enum):
    PLACED = "Placed"
    PACKED = "Packed"
    IN_TRANSIT = "In Transit"
    DELIVERED = "Delivered"
    CANCELLED = "Cancelled"


class PaymentMethod(str, Enum):
    PAY_ON_DELIVERY = "Pay on Delivery"
    CARD_PAYMENT = "Card Payment"
    BANK_TRANSFER = "Bank Transfer"
    PAYSTACK = "Paystack"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[int] = mapped_column(primary_key=True, index=True)
    order_number: Mapped[str] = mapped_column(String(32), unique=True, index=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    # No FK: the address is a snapshot reference and survives address deletion
    address_id: Mapped[int | None] = mapped_column(nullable=True, index=True)
    subtotal: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    delivery_fee: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    total: Mapped[float] = mapped_column(Numeric(12, 2), default=0)
    status: Mapped[str] = mapped_column(String(20), default=OrderStatus.PLACED.value, index=True)
    payment_method: Mapped[str] = mapped_column(String(30))
    payment_status: Mapped[str] = mapped_column(String(20), default=PaymentStatus.PENDING.value)
    payment_reference: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, index=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)
    delivered_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)

    user = relationship("User")
    items = relationship("OrderItem", cascade="all, delete-orphan", back_populates="order", order_by="OrderItem.id")
    tracking = relationship(
        "OrderTracking",
        cascade="all, delete-orphan",
        back_populates="order",
        order_by="OrderTracking.seq",
    )

    def record_status(self, status: str, timestamp: datetime) -> None:
        """Append a tracking entry; the log is never rewritten."""
        next_seq = (self.tracking[-1].seq + 1) if self.tracking else 1
        self.tracking.append(OrderTracking(status=status, timestamp=timestamp, seq=next_seq))
