from decimal import Decimal

import pytest

from storefront.models.coupon import CouponType
from storefront.services import pricing
from storefront.services.cart import CartLine, CartSnapshot
from storefront.services.coupons import DiscountOutcome
from storefront.services.shipping import ShippingOption


def _cart(*prices_and_qty: tuple[str, int]) -> CartSnapshot:
    return CartSnapshot(
        items=tuple(
            CartLine(product_id=f"p{idx}", unit_price=Decimal(price), quantity=qty)
            for idx, (price, qty) in enumerate(prices_and_qty)
        )
    )


def _option(cost: str) -> ShippingOption:
    return ShippingOption(
        method_id="m1",
        carrier="Correios",
        method_name="PAC",
        cost=Decimal(cost),
        estimated_days=(5, 15),
        weight_used=Decimal("0.3"),
        destination_postal_code="01310100",
    )


def _discount(kind: CouponType, amount: str, code: str = "CODE") -> DiscountOutcome:
    return DiscountOutcome(type=kind, amount=Decimal(amount), coupon_code=code)


def test_quantize_money_rounding_modes() -> None:
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.005"), rounding="half_even") == Decimal("1.00")
    assert pricing.quantize_money(Decimal("1.001"), rounding="up") == Decimal("1.01")
    assert pricing.quantize_money(Decimal("1.009"), rounding="down") == Decimal("1.00")


def test_percentage_coupon_with_tax_and_shipping() -> None:
    result = pricing.compose(
        _cart(("100.00", 2)),
        _discount(CouponType.percentage, "20.00", "DESCONTO10"),
        _option("15.00"),
        Decimal("0.10"),
    )
    assert result.ok
    totals = result.totals
    assert totals.subtotal == Decimal("200.00")
    assert totals.discount_amount == Decimal("20.00")
    assert totals.taxable_base == Decimal("180.00")
    assert totals.tax_amount == Decimal("18.00")
    assert totals.shipping_amount == Decimal("15.00")
    assert totals.total_amount == Decimal("213.00")
    assert totals.coupon_code == "DESCONTO10"


def test_discount_larger_than_subtotal_is_clamped() -> None:
    result = pricing.compose(
        _cart(("200.00", 1)), _discount(CouponType.fixed, "300.00"), _option("15.00"), Decimal("0.10")
    )
    totals = result.totals
    assert totals.discount_amount == Decimal("200.00")
    assert totals.taxable_base == Decimal("0.00")
    assert totals.tax_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("15.00")


def test_free_shipping_zeroes_shipping_only() -> None:
    cart = _cart(("200.00", 1))
    result = pricing.compose(cart, _discount(CouponType.free_shipping, "0.00"), _option("35.00"), Decimal("0.10"))
    totals = result.totals
    assert totals.shipping_amount == Decimal("0.00")
    assert totals.free_shipping is True
    assert totals.discount_amount == Decimal("0.00")
    assert totals.tax_amount == Decimal("20.00")
    assert totals.total_amount == Decimal("220.00")


def test_free_shipping_ignores_amount_on_free_shipping_outcome() -> None:
    result = pricing.compose(_cart(("50.00", 1)), _discount(CouponType.free_shipping, "10.00"), _option("12.00"))
    assert result.totals.discount_amount == Decimal("0.00")
    assert result.totals.total_amount == Decimal("50.00")


def test_merged_outcome_keeps_money_discount_and_waives_shipping() -> None:
    merged = DiscountOutcome(
        type=CouponType.fixed, amount=Decimal("10.00"), coupon_code="A+B", shipping_waived=True
    )
    result = pricing.compose(_cart(("50.00", 1)), merged, _option("12.00"))
    assert result.totals.discount_amount == Decimal("10.00")
    assert result.totals.shipping_amount == Decimal("0.00")
    assert result.totals.total_amount == Decimal("40.00")


def test_no_discount_no_shipping() -> None:
    result = pricing.compose(_cart(("19.90", 3)))
    assert result.totals.subtotal == Decimal("59.70")
    assert result.totals.total_amount == Decimal("59.70")
    assert result.totals.coupon_code is None


def test_tax_is_rounded_once_from_unrounded_base() -> None:
    result = pricing.compose(_cart(("0.335", 3)), None, None, Decimal("0.10"))
    # base 1.005, tax 0.1005 -> 0.10, total 1.105 -> 1.11
    assert result.totals.taxable_base == Decimal("1.01")
    assert result.totals.tax_amount == Decimal("0.10")
    assert result.totals.total_amount == Decimal("1.11")


@pytest.mark.parametrize("amount", ["0.00", "0.01", "99.99", "100.00", "150.00", "100000.00"])
def test_total_never_negative(amount: str) -> None:
    result = pricing.compose(_cart(("100.00", 1)), _discount(CouponType.fixed, amount), None, Decimal("0.25"))
    assert result.totals.total_amount >= Decimal("0.00")
    assert result.totals.discount_amount <= result.totals.subtotal


def test_empty_cart_is_a_business_error() -> None:
    result = pricing.compose(CartSnapshot())
    assert not result.ok
    assert result.error == pricing.CompositionError.empty_cart
    envelope = result.to_envelope()
    assert envelope["success"] is False
    assert envelope["data"]["error"] == "EMPTY_CART"


def test_negative_tax_rate_is_rejected() -> None:
    with pytest.raises(ValueError):
        pricing.compose(_cart(("10.00", 1)), tax_rate=Decimal("-0.01"))


def test_negative_shipping_cost_is_rejected() -> None:
    with pytest.raises(ValueError):
        pricing.compose(_cart(("10.00", 1)), shipping_option=_option("-1.00"))


def test_envelope_shape() -> None:
    envelope = pricing.compose(_cart(("10.00", 1))).to_envelope()
    assert envelope["success"] is True
    assert envelope["message"] == "Totals calculated"
    assert envelope["data"]["totals"]["total_amount"] == Decimal("10.00")
