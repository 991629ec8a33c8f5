import logging

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from core.errors import InsufficientStock, NotFound, ValidationError
from models.product import Product

logger = logging.getLogger(__name__)


class InventoryLedger:
    """Per-product stock counts backed by the ``products`` table.

    Stock is only ever changed with a single conditional UPDATE, so two
    requests racing for the last unit cannot both win. The ledger never
    commits; the caller's transaction decides whether a reservation sticks.
    """

    def __init__(self, db: Session):
        self.db = db

    def available(self, product_id: int) -> int:
        stock = self.db.execute(select(Product.stock).where(Product.id == product_id)).scalar_one_or_none()
        if stock is None:
            raise NotFound(f"Product {product_id} not found")
        return stock

    def reserve(self, product_id: int, quantity: int, product_name: str | None = None) -> int:
        """Decrement stock by ``quantity`` and return the new level."""
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")

        result = self.db.execute(
            update(Product)
            .where(Product.id == product_id, Product.stock >= quantity)
            .values(stock=Product.stock - quantity)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            current = self.available(product_id)
            label = product_name or f"#{product_id}"
            logger.info("Insufficient stock for product %s: requested %s, available %s", label, quantity, current)
            raise InsufficientStock(f"Insufficient stock for product: {label}", product_id=product_id)

        new_stock = self.available(product_id)
        logger.debug("Reserved %s of product %s, %s left", quantity, product_id, new_stock)
        return new_stock
