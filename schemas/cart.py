from typing import List

from pydantic import BaseModel, Field


class CartItemIn(BaseModel):
    product_id: int
    quantity: int = Field(default=1, ge=1)


class CartItemOut(BaseModel):
    product_id: int
    quantity: int

    class Config:
        from_attributes = True


class CartOut(BaseModel):
    items: List[CartItemOut]
