from pydantic import Field

from storefront.schemas.cart import CartPayload


class ShippingQuoteRequest(CartPayload):
    destination_postal_code: str = Field(max_length=16)
    origin_postal_code: str | None = Field(default=None, max_length=16)
