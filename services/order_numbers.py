import logging
import time
from typing import Callable

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from core.config import settings
from core.errors import OrderNumberExhausted
from models.order import Order
from models.order_counter import OrderCounter

logger = logging.getLogger(__name__)

COUNTER_NAME = "orders"


def format_order_number(sequence: int, prefix: str | None = None, width: int | None = None) -> str:
    prefix = settings.ORDER_NUMBER_PREFIX if prefix is None else prefix
    width = settings.ORDER_NUMBER_WIDTH if width is None else width
    return f"{prefix}{sequence:0{width}d}"


class OrderNumberGenerator:
    """Hands out ``ORD-000123`` style numbers from an atomic counter row.

    The increment runs in the caller's transaction, so the counter row stays
    locked until the order itself is committed or rolled back. Legacy orders
    numbered outside the counter can still collide; those candidates are
    skipped, with a short backoff, up to ``max_attempts`` times.
    """

    def __init__(
        self,
        db: Session,
        max_attempts: int | None = None,
        retry_delay: float | None = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.db = db
        self.max_attempts = max_attempts or settings.ORDER_NUMBER_MAX_ATTEMPTS
        self.retry_delay = settings.ORDER_NUMBER_RETRY_DELAY if retry_delay is None else retry_delay
        self.sleep = sleep

    def next(self) -> str:
        for attempt in range(1, self.max_attempts + 1):
            candidate = format_order_number(self._increment())
            if not self._exists(candidate):
                return candidate
            logger.warning("Order number %s already taken (attempt %s/%s)", candidate, attempt, self.max_attempts)
            # Skip past numbers issued outside the counter
            self._advance_to(self._highest_taken())
            if attempt < self.max_attempts:
                self.sleep(self.retry_delay * attempt)
        raise OrderNumberExhausted()

    def _exists(self, order_number: str) -> bool:
        return self.db.execute(
            select(Order.id).where(Order.order_number == order_number)
        ).first() is not None

    def _highest_taken(self) -> int:
        """Largest sequence among stored numbers carrying the configured prefix."""
        prefix = settings.ORDER_NUMBER_PREFIX
        highest = self.db.execute(
            select(Order.order_number)
            .where(Order.order_number.startswith(prefix, autoescape=True))
            .order_by(func.length(Order.order_number).desc(), Order.order_number.desc())
            .limit(1)
        ).scalar_one_or_none()
        if highest is None:
            return 0
        try:
            return int(highest[len(prefix):])
        except ValueError:
            logger.warning("Ignoring malformed order number %s", highest)
            return 0

    def _advance_to(self, value: int) -> None:
        self.db.execute(
            update(OrderCounter)
            .where(OrderCounter.name == COUNTER_NAME, OrderCounter.value < value)
            .values(value=value)
            .execution_options(synchronize_session=False)
        )

    def _increment(self) -> int:
        bumped = self.db.execute(
            update(OrderCounter)
            .where(OrderCounter.name == COUNTER_NAME)
            .values(value=OrderCounter.value + 1)
            .execution_options(synchronize_session=False)
        )
        if bumped.rowcount == 0:
            self._seed()
            return self._increment()
        return self.db.execute(
            select(OrderCounter.value).where(OrderCounter.name == COUNTER_NAME)
        ).scalar_one()

    def _seed(self) -> None:
        # First order ever (or counter table wiped): continue after what is already stored
        count = self.db.execute(select(func.count(Order.id))).scalar_one()
        existing = max(count, self._highest_taken())
        try:
            with self.db.begin_nested():
                self.db.add(OrderCounter(name=COUNTER_NAME, value=existing))
        except IntegrityError:
            # Another request seeded it first
            logger.debug("Order counter already seeded")
