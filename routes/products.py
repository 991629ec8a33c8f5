from typing import List

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from core.db import get_db
from models.product import Product
from models.user import User
from routes.auth import require_admin_user
from schemas.product import ProductCreate, ProductUpdate, ProductOut

router = APIRouter(prefix="/products", tags=["products"])


@router.get("/", response_model=List[ProductOut])
def list_products(include_inactive: bool = False, db: Session = Depends(get_db)):
    qs = db.query(Product)
    if not include_inactive:
        qs = qs.filter(Product.is_active.is_(True))
    return qs.order_by(Product.id).all()


@router.post("/", response_model=ProductOut, status_code=201)
def create_product(data: ProductCreate, admin: User = Depends(require_admin_user), db: Session = Depends(get_db)):
    if db.query(Product).filter(Product.slug == data.slug).one_or_none():
        raise HTTPException(status_code=400, detail="Slug already exists")
    product = Product(
        name=data.name.strip(),
        slug=data.slug,
        description=data.description,
        price=data.price,
        stock=data.stock,
        is_active=True,
    )
    db.add(product)
    db.commit()
    db.refresh(product)
    return product


@router.get("/{product_id}", response_model=ProductOut)
def get_product(product_id: int, db: Session = Depends(get_db)):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")
    return product


@router.patch("/{product_id}", response_model=ProductOut)
def update_product(
    product_id: int, data: ProductUpdate, admin: User = Depends(require_admin_user), db: Session = Depends(get_db)
):
    product = db.get(Product, product_id)
    if not product:
        raise HTTPException(status_code=404, detail="Product not found")

    # Stock set here is an absolute restock; orders only ever decrement it
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is not None:
            setattr(product, field, value)

    db.commit()
    db.refresh(product)
    return product
