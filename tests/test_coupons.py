import asyncio
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any

import pytest

from storefront.core import metrics
from storefront.models.coupon import CouponType
from storefront.services import coupons as coupons_service
from storefront.services import pricing
from storefront.services.cart import CartLine, CartSnapshot
from storefront.services.coupons import CouponError, CouponRule, InvalidCouponRecord, UsageSnapshot


NOW = datetime(2026, 3, 1, 12, 0, tzinfo=timezone.utc)


@dataclass
class InMemoryCouponStore:
    rules: dict[str, CouponRule] = field(default_factory=dict)

    @classmethod
    def of(cls, *rules: CouponRule) -> "InMemoryCouponStore":
        return cls(rules={rule.code: rule for rule in rules})

    async def get_by_code(self, code: str) -> CouponRule | None:
        return self.rules.get((code or "").strip().upper())


@dataclass
class InMemoryUsageHistory:
    usages: list[tuple[Any, Any]] = field(default_factory=list)
    orders: Counter = field(default_factory=Counter)

    def record(self, coupon_id: Any, customer_id: Any) -> None:
        self.usages.append((coupon_id, customer_id))

    async def global_usage_count(self, coupon_id: Any) -> int:
        return sum(1 for cid, _ in self.usages if cid == coupon_id)

    async def customer_usage_count(self, coupon_id: Any, customer_id: Any) -> int:
        return sum(1 for cid, cust in self.usages if cid == coupon_id and cust == customer_id)

    async def past_order_count(self, customer_id: Any) -> int:
        return int(self.orders.get(customer_id, 0))


def _rule(**overrides) -> CouponRule:
    data = {"id": 1, "code": "DESCONTO10", "type": CouponType.percentage, "value": Decimal("10")}
    data.update(overrides)
    return CouponRule(**data)


def _cart() -> CartSnapshot:
    return CartSnapshot(
        items=(
            CartLine(product_id="shirt", unit_price=Decimal("60.00"), quantity=2, category_id="apparel", brand_id="acme"),
            CartLine(product_id="mug", unit_price=Decimal("40.00"), quantity=2, category_id="kitchen", brand_id="potter"),
        )
    )


def _evaluate(rule: CouponRule, cart: CartSnapshot | None = None, history: InMemoryUsageHistory | None = None, **kwargs):
    return asyncio.run(
        coupons_service.evaluate(
            kwargs.pop("code", rule.code),
            cart if cart is not None else _cart(),
            kwargs.pop("customer_id", "cust-1"),
            kwargs.pop("now", NOW),
            coupons=InMemoryCouponStore.of(rule),
            history=history or InMemoryUsageHistory(),
            **kwargs,
        )
    )


def test_percentage_coupon_applies_to_subtotal() -> None:
    result = _evaluate(_rule())
    assert result.ok
    assert result.outcome.amount == Decimal("20.00")
    assert result.outcome.coupon_code == "DESCONTO10"
    assert result.message == "Coupon applied! 10% off"


def test_code_is_matched_case_insensitively() -> None:
    result = _evaluate(_rule(), code="  desconto10 ")
    assert result.ok
    assert result.code == "DESCONTO10"


def test_unknown_and_blank_codes_are_not_found() -> None:
    assert _evaluate(_rule(), code="NOPE").error == CouponError.not_found
    assert _evaluate(_rule(), code="   ").error == CouponError.not_found


def test_empty_cart_is_rejected() -> None:
    assert _evaluate(_rule(), cart=CartSnapshot()).error == CouponError.empty_cart


def test_evaluation_is_repeatable() -> None:
    history = InMemoryUsageHistory()
    first = _evaluate(_rule(), history=history)
    second = _evaluate(_rule(), history=history)
    assert first == second
    assert history.usages == []


def test_fixed_coupon_is_capped_at_subtotal() -> None:
    outcome = coupons_service.compute_discount(_rule(type=CouponType.fixed, value=Decimal("500")), _cart())
    assert outcome.amount == Decimal("200.00")


def test_percentage_coupon_respects_maximum_discount() -> None:
    rule = _rule(value=Decimal("25"), maximum_discount=Decimal("30"))
    assert coupons_service.compute_discount(rule, _cart()).amount == Decimal("30.00")
    rule = _rule(value=Decimal("10"), maximum_discount=Decimal("30"))
    assert coupons_service.compute_discount(rule, _cart()).amount == Decimal("20.00")


def test_free_shipping_coupon_has_no_money_amount() -> None:
    result = _evaluate(_rule(code="FRETE", type=CouponType.free_shipping, value=Decimal("1")))
    assert result.ok
    assert result.outcome.free_shipping is True
    assert result.outcome.amount == Decimal("0.00")
    assert result.description == "Free shipping"


def test_scoped_coupon_discounts_only_eligible_lines() -> None:
    rule = _rule(applicable_categories=["apparel"])
    outcome = coupons_service.compute_discount(rule, _cart())
    assert outcome.eligible_subtotal == Decimal("120.00")
    assert outcome.amount == Decimal("12.00")


def test_exclusions_win_over_inclusions() -> None:
    rule = _rule(applicable_brands=["acme", "potter"], excluded_products=["mug"])
    assert coupons_service.eligible_subtotal(rule, _cart()) == Decimal("120.00")


def test_scoped_coupon_without_eligible_items() -> None:
    result = _evaluate(_rule(applicable_products=["laptop"]))
    assert result.error == CouponError.no_eligible_items


def test_expired_coupon_leaves_totals_untouched() -> None:
    result = _evaluate(_rule(expires_at=NOW - timedelta(days=1)))
    assert result.error == CouponError.outside_validity_window
    assert result.outcome is None
    totals = pricing.compose(_cart(), result.outcome).totals
    assert totals.discount_amount == Decimal("0.00")
    assert totals.total_amount == Decimal("200.00")


def test_validity_window_is_inclusive() -> None:
    rule = _rule(starts_at=NOW, expires_at=NOW + timedelta(hours=1))
    assert _evaluate(rule).ok
    assert _evaluate(rule, now=NOW + timedelta(hours=1)).ok
    assert _evaluate(rule, now=NOW - timedelta(seconds=1)).error == CouponError.outside_validity_window


def test_naive_window_is_treated_as_utc() -> None:
    rule = _rule(starts_at=datetime(2026, 3, 2), expires_at=datetime(2026, 3, 5))
    assert _evaluate(rule).error == CouponError.outside_validity_window


def test_first_failure_wins() -> None:
    rule = _rule(is_active=False, expires_at=NOW - timedelta(days=1), usage_limit=1)
    usage = UsageSnapshot(global_count=5, customer_count=5)
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW) == CouponError.inactive
    rule = _rule(expires_at=NOW - timedelta(days=1), usage_limit=1)
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW) == CouponError.outside_validity_window
    rule = _rule(usage_limit=1)
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW) == CouponError.global_usage_limit_reached
    rule = _rule()
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW) == CouponError.per_customer_usage_limit_reached


def test_usage_limits_read_history() -> None:
    history = InMemoryUsageHistory()
    history.record(1, "someone-else")
    history.record(1, "another")
    assert _evaluate(_rule(usage_limit=2), history=history).error == CouponError.global_usage_limit_reached

    history = InMemoryUsageHistory()
    history.record(1, "cust-1")
    assert _evaluate(_rule(usage_per_customer=1), history=history).error == (
        CouponError.per_customer_usage_limit_reached
    )
    assert _evaluate(_rule(usage_per_customer=2), history=history).ok


def test_guest_checkout_skips_per_customer_history() -> None:
    history = InMemoryUsageHistory()
    history.record(1, None)
    assert _evaluate(_rule(), history=history, customer_id=None).ok


def test_minimum_amount() -> None:
    assert _evaluate(_rule(minimum_amount=Decimal("200.01"))).error == CouponError.below_minimum_amount
    assert _evaluate(_rule(minimum_amount=Decimal("200.00"))).ok


def test_first_purchase_only() -> None:
    history = InMemoryUsageHistory()
    history.orders["cust-1"] = 1
    rule = _rule(first_purchase_only=True)
    assert _evaluate(rule, history=history).error == CouponError.not_first_purchase
    assert _evaluate(rule, history=history, customer_id="cust-2").ok


def test_customer_groups() -> None:
    rule = _rule(customer_groups=["vip"])
    assert _evaluate(rule).error == CouponError.customer_group_not_allowed
    assert _evaluate(rule, customer_group="retail").error == CouponError.customer_group_not_allowed
    assert _evaluate(rule, customer_group="vip").ok


def test_combinability() -> None:
    assert _evaluate(_rule(), applied_codes=["OTHER"]).error == CouponError.not_combinable
    assert _evaluate(_rule(), applied_codes=["desconto10"]).ok
    assert _evaluate(_rule(combine_with_others=True), applied_codes=["OTHER"]).ok


def _evaluate_against(store: InMemoryCouponStore, code: str, applied_codes: list[str]):
    return asyncio.run(
        coupons_service.evaluate(
            code, _cart(), "cust-1", NOW, coupons=store, history=InMemoryUsageHistory(), applied_codes=applied_codes
        )
    )


def test_applied_exclusive_coupon_blocks_stacking_in_either_order() -> None:
    exclusive = _rule(id=1, code="EXCLUSIVO", type=CouponType.fixed, value=Decimal("10"))
    extra = _rule(id=2, code="EXTRA5", type=CouponType.fixed, value=Decimal("5"), combine_with_others=True)
    store = InMemoryCouponStore.of(exclusive, extra)

    assert _evaluate_against(store, "EXTRA5", ["EXCLUSIVO"]).error == CouponError.not_combinable
    assert _evaluate_against(store, "EXCLUSIVO", ["EXTRA5"]).error == CouponError.not_combinable
    assert _evaluate_against(store, "EXCLUSIVO", ["exclusivo"]).ok


def test_combinable_coupons_stack_and_unknown_applied_codes_are_ignored() -> None:
    first = _rule(id=1, code="TEN", combine_with_others=True)
    second = _rule(id=2, code="FIVE", type=CouponType.fixed, value=Decimal("5"), combine_with_others=True)
    store = InMemoryCouponStore.of(first, second)
    assert _evaluate_against(store, "FIVE", ["TEN"]).ok
    assert _evaluate_against(store, "FIVE", ["TEN", "GONE"]).ok


def test_check_eligibility_honours_exclusive_codes() -> None:
    rule = _rule(combine_with_others=True)
    usage = UsageSnapshot()
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW, applied_codes=["A"], exclusive_codes=["a"]) == (
        CouponError.not_combinable
    )
    assert coupons_service.check_eligibility(rule, _cart(), usage, NOW, applied_codes=["A"], exclusive_codes=[]) is None


def test_rejections_are_counted() -> None:
    _evaluate(_rule(), code="NOPE")
    snap = metrics.snapshot()
    assert snap["coupon_evaluations"] == 1
    assert snap["coupon_rejections.NOT_FOUND"] == 1


def test_remove_coupon() -> None:
    assert coupons_service.remove_coupon(["A", "b", "C"], " B ") == ("A", "C")
    assert coupons_service.remove_coupon(["A"], "Z") == ("A",)


def test_merge_outcomes_adds_amounts() -> None:
    first = coupons_service.compute_discount(_rule(code="TEN", combine_with_others=True), _cart())
    second = coupons_service.compute_discount(
        _rule(code="FIVE", type=CouponType.fixed, value=Decimal("5"), combine_with_others=True), _cart()
    )
    shipping = coupons_service.compute_discount(_rule(code="FRETE", type=CouponType.free_shipping, value=1), _cart())
    merged = coupons_service.merge_outcomes([first, second, shipping])
    assert merged.amount == Decimal("25.00")
    assert merged.coupon_code == "TEN+FIVE+FRETE"
    assert merged.free_shipping is True
    assert coupons_service.merge_outcomes([]) is None
    assert coupons_service.merge_outcomes([first]) is first


@pytest.mark.parametrize(
    "overrides",
    [
        {"value": Decimal("0")},
        {"value": Decimal("101")},
        {"usage_per_customer": 0},
        {"starts_at": NOW, "expires_at": NOW},
    ],
)
def test_malformed_records_are_hard_errors(overrides) -> None:
    with pytest.raises(InvalidCouponRecord):
        _rule(**overrides)


def test_generate_coupon_code() -> None:
    code = coupons_service.generate_coupon_code()
    assert code.startswith("CP")
    assert len(code) == 8
    assert code == code.upper()
    assert code.isalnum()


def test_validate_coupon_data() -> None:
    assert coupons_service.validate_coupon_data({"name": "Promo", "type": "fixed", "value": "10"}) == []
    errors = coupons_service.validate_coupon_data(
        {
            "code": "AB",
            "name": "",
            "type": "percentage",
            "value": "120",
            "minimum_amount": "-1",
            "usage_per_customer": 0,
            "starts_at": NOW,
            "expires_at": NOW - timedelta(days=1),
        }
    )
    assert "Code must have at least 3 characters" in errors
    assert "Coupon name is required" in errors
    assert "Percentage cannot exceed 100%" in errors
    assert "Minimum amount must be positive" in errors
    assert "Usage per customer must be at least 1" in errors
    assert "Start date must be before the expiration date" in errors
    assert "Invalid coupon type" in coupons_service.validate_coupon_data({"name": "x", "type": "bogus", "value": 1})
