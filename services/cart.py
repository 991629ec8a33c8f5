import logging
from typing import List

from sqlalchemy.orm import Session

from core.errors import NotFound, ValidationError
from models.cart import Cart, CartItem
from models.product import Product

logger = logging.getLogger(__name__)


class CartStore:
    def __init__(self, db: Session):
        self.db = db

    def _cart(self, user_id: int, create: bool = False) -> Cart | None:
        cart = self.db.query(Cart).filter(Cart.user_id == user_id).one_or_none()
        if cart is None and create:
            cart = Cart(user_id=user_id)
            self.db.add(cart)
            self.db.flush()
        return cart

    def find_by_user(self, user_id: int) -> List[CartItem]:
        cart = self._cart(user_id)
        return list(cart.items) if cart else []

    def add_item(self, user_id: int, product_id: int, quantity: int = 1) -> List[CartItem]:
        if quantity < 1:
            raise ValidationError("Quantity must be at least 1")
        product = self.db.get(Product, product_id)
        if not product or not product.is_active:
            raise NotFound("Product not found")

        cart = self._cart(user_id, create=True)
        line = next((i for i in cart.items if i.product_id == product_id), None)
        if line:
            line.quantity += quantity
        else:
            cart.items.append(CartItem(product_id=product_id, quantity=quantity))
        self.db.commit()
        self.db.refresh(cart)
        return list(cart.items)

    def clear(self, user_id: int) -> bool:
        """Empty the user's cart. Returns False when the user has no cart."""
        cart = self._cart(user_id)
        if cart is None:
            logger.info("No cart found for user %s", user_id)
            return False
        cart.items.clear()
        self.db.commit()
        return True
