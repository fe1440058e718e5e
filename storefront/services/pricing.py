from __future__ import annotations

import enum
from dataclasses import dataclass
from decimal import Decimal, ROUND_DOWN, ROUND_HALF_EVEN, ROUND_HALF_UP, ROUND_UP
from typing import TYPE_CHECKING, Any, Literal

from storefront.models.coupon import CouponType
from storefront.services.cart import CartSnapshot

if TYPE_CHECKING:
    from storefront.services.coupons import DiscountOutcome
    from storefront.services.shipping import ShippingOption


MONEY_QUANT = Decimal("0.01")
ZERO = Decimal("0.00")

MoneyRounding = Literal["half_up", "half_even", "up", "down"]


_ROUNDING_MAP: dict[str, str] = {
    "half_up": ROUND_HALF_UP,
    "half_even": ROUND_HALF_EVEN,
    "up": ROUND_UP,
    "down": ROUND_DOWN,
}


def quantize_money(value: Decimal, *, rounding: MoneyRounding = "half_up") -> Decimal:
    mode = _ROUNDING_MAP.get(str(rounding), ROUND_HALF_UP)
    return Decimal(value).quantize(MONEY_QUANT, rounding=mode)


class CompositionError(str, enum.Enum):
    empty_cart = "EMPTY_CART"

    @property
    def message(self) -> str:
        return "Cart is empty; nothing to charge"


@dataclass(frozen=True)
class OrderTotals:
    subtotal: Decimal
    discount_amount: Decimal
    shipping_amount: Decimal
    taxable_base: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    free_shipping: bool = False
    coupon_code: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "discount_amount": self.discount_amount,
            "shipping_amount": self.shipping_amount,
            "taxable_base": self.taxable_base,
            "tax_amount": self.tax_amount,
            "total_amount": self.total_amount,
            "free_shipping": self.free_shipping,
            "coupon_code": self.coupon_code,
        }


@dataclass(frozen=True)
class TotalsResult:
    totals: OrderTotals | None = None
    error: CompositionError | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        return "Totals calculated"

    def to_envelope(self) -> dict[str, Any]:
        data: dict[str, Any] = {"totals": self.totals.as_dict() if self.totals else None}
        if self.error is not None:
            data["error"] = self.error.value
        return {"success": self.ok, "message": self.message, "data": data}


def _monetary_discount(discount: DiscountOutcome | None) -> Decimal:
    if discount is None or discount.type == CouponType.free_shipping:
        return ZERO
    amount = Decimal(discount.amount)
    return amount if amount > 0 else ZERO


def _shipping_cost(discount: DiscountOutcome | None, shipping_option: ShippingOption | None) -> Decimal:
    if shipping_option is None:
        return ZERO
    cost = Decimal(shipping_option.cost)
    if cost < 0:
        raise ValueError("Shipping cost cannot be negative")
    if discount is not None and discount.free_shipping:
        return ZERO
    return cost


def compose(
    cart: CartSnapshot,
    discount: DiscountOutcome | None = None,
    shipping_option: ShippingOption | None = None,
    tax_rate: Decimal = ZERO,
    *,
    rounding: MoneyRounding = "half_up",
) -> TotalsResult:
    """Combine subtotal, discount, shipping and tax into the order totals.

    The composition order is fixed: the discount comes off the subtotal, tax is
    charged on what remains, shipping is added last and is never taxed. Each
    reported field is rounded exactly once from unrounded intermediates, so the
    taxable base is not rounded before tax is computed on it.

    A discount larger than the subtotal is clamped rather than producing a
    negative taxable base.
    """
    if cart.is_empty:
        return TotalsResult(error=CompositionError.empty_cart)

    rate = Decimal(tax_rate)
    if rate < 0:
        raise ValueError("Tax rate cannot be negative")

    subtotal = cart.subtotal
    discount_amount = min(_monetary_discount(discount), subtotal)
    shipping_amount = _shipping_cost(discount, shipping_option)

    taxable_base = subtotal - discount_amount
    if taxable_base < 0:
        taxable_base = ZERO
    tax_amount = quantize_money(taxable_base * rate, rounding=rounding)
    total_amount = quantize_money(taxable_base + tax_amount + shipping_amount, rounding=rounding)
    if total_amount < 0:
        total_amount = ZERO

    totals = OrderTotals(
        subtotal=quantize_money(subtotal, rounding=rounding),
        discount_amount=quantize_money(discount_amount, rounding=rounding),
        shipping_amount=quantize_money(shipping_amount, rounding=rounding),
        taxable_base=quantize_money(taxable_base, rounding=rounding),
        tax_amount=tax_amount,
        total_amount=total_amount,
        free_shipping=bool(discount is not None and discount.free_shipping),
        coupon_code=discount.coupon_code if discount is not None else None,
    )
    return TotalsResult(totals=totals)
