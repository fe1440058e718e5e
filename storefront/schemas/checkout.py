from decimal import Decimal

from pydantic import Field

from storefront.schemas.cart import CartPayload


class CheckoutTotalsRequest(CartPayload):
    coupon_codes: list[str] = Field(default_factory=list, max_length=5)
    customer_group: str | None = None
    destination_postal_code: str | None = Field(default=None, max_length=16)
    shipping_method_id: str | None = None
    tax_rate: Decimal | None = Field(default=None, ge=0)
