from decimal import Decimal

from pydantic import BaseModel, Field


class CartItemIn(BaseModel):
    product_id: str = Field(min_length=1, max_length=64)
    unit_price: Decimal = Field(ge=0)
    quantity: int = Field(ge=1)
    weight: Decimal | None = Field(default=None, ge=0)
    category_id: str | None = None
    brand_id: str | None = None


class CartPayload(BaseModel):
    items: list[CartItemIn] = Field(default_factory=list)
    customer_id: str | None = Field(default=None, max_length=64)
