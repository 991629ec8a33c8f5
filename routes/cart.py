from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from core.db import get_db
from models.user import User
from routes.auth import get_current_user
from schemas.cart import CartItemIn, CartItemOut, CartOut
from services.cart import CartStore

router = APIRouter(prefix="/cart", tags=["cart"])


def _cart_out(items) -> CartOut:
    return CartOut(items=[CartItemOut.model_validate(i) for i in items])


@router.get("/", response_model=CartOut)
def view_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _cart_out(CartStore(db).find_by_user(current_user.id))


@router.post("/items", response_model=CartOut, status_code=201)
def add_to_cart(data: CartItemIn, current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return _cart_out(CartStore(db).add_item(current_user.id, data.product_id, data.quantity))


@router.delete("/", status_code=204)
def clear_cart(current_user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    CartStore(db).clear(current_user.id)
    return None
