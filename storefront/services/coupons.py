from __future__ import annotations

import enum
import logging
import secrets
import string
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Mapping, Sequence

from storefront.core import metrics
from storefront.models.coupon import CouponType
from storefront.services import pricing
from storefront.services.cart import CartLine, CartSnapshot
from storefront.services.stores import CouponStore, UsageHistory


logger = logging.getLogger("storefront.coupons")

CODE_PREFIX = "CP"
CODE_SUFFIX_LENGTH = 6
CODE_MIN_LENGTH = 3
CODE_MAX_LENGTH = 40


class CouponError(str, enum.Enum):
    not_found = "NOT_FOUND"
    empty_cart = "EMPTY_CART"
    inactive = "INACTIVE"
    outside_validity_window = "OUTSIDE_VALIDITY_WINDOW"
    global_usage_limit_reached = "GLOBAL_USAGE_LIMIT_REACHED"
    per_customer_usage_limit_reached = "PER_CUSTOMER_USAGE_LIMIT_REACHED"
    below_minimum_amount = "BELOW_MINIMUM_AMOUNT"
    not_first_purchase = "NOT_FIRST_PURCHASE"
    customer_group_not_allowed = "CUSTOMER_GROUP_NOT_ALLOWED"
    no_eligible_items = "NO_ELIGIBLE_ITEMS"
    not_combinable = "NOT_COMBINABLE"
    order_not_owned = "ORDER_NOT_OWNED"

    @property
    def message(self) -> str:
        return _ERROR_MESSAGES[self]


_ERROR_MESSAGES: dict[CouponError, str] = {
    CouponError.not_found: "Coupon not found",
    CouponError.empty_cart: "Coupons cannot be applied to an empty cart",
    CouponError.inactive: "Coupon is not active",
    CouponError.outside_validity_window: "Coupon is not valid at this time",
    CouponError.global_usage_limit_reached: "Coupon usage limit reached",
    CouponError.per_customer_usage_limit_reached: "You have already used this coupon the maximum number of times",
    CouponError.below_minimum_amount: "Order does not reach the coupon minimum amount",
    CouponError.not_first_purchase: "Coupon is only valid on a first purchase",
    CouponError.customer_group_not_allowed: "Coupon is not available for your customer group",
    CouponError.no_eligible_items: "No items in the cart are eligible for this coupon",
    CouponError.not_combinable: "Coupon cannot be combined with another applied coupon",
    CouponError.order_not_owned: "Order does not belong to this customer",
}


class InvalidCouponRecord(ValueError):
    """A stored coupon violates its own invariants (bad value, limits or window)."""


def normalize_code(code: str | None) -> str:
    return (code or "").strip().upper()


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ids(values: Iterable[Any] | None) -> frozenset[str]:
    return frozenset(str(value) for value in (values or ()))


@dataclass(frozen=True)
class CouponRule:
    """Storage-independent view of a coupon record."""

    id: Any
    code: str
    type: CouponType
    value: Decimal
    usage_per_customer: int = 1
    name: str | None = None
    minimum_amount: Decimal | None = None
    maximum_discount: Decimal | None = None
    usage_limit: int | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    first_purchase_only: bool = False
    combine_with_others: bool = False
    applicable_products: frozenset[str] = field(default_factory=frozenset)
    applicable_categories: frozenset[str] = field(default_factory=frozenset)
    applicable_brands: frozenset[str] = field(default_factory=frozenset)
    excluded_products: frozenset[str] = field(default_factory=frozenset)
    excluded_categories: frozenset[str] = field(default_factory=frozenset)
    excluded_brands: frozenset[str] = field(default_factory=frozenset)
    customer_groups: frozenset[str] | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "code", normalize_code(self.code))
        object.__setattr__(self, "type", CouponType(self.type))
        object.__setattr__(self, "value", Decimal(str(self.value)))
        for name in ("minimum_amount", "maximum_discount"):
            raw = getattr(self, name)
            if raw is not None:
                object.__setattr__(self, name, Decimal(str(raw)))
        for name in (
            "applicable_products",
            "applicable_categories",
            "applicable_brands",
            "excluded_products",
            "excluded_categories",
            "excluded_brands",
        ):
            object.__setattr__(self, name, _ids(getattr(self, name)))
        if self.customer_groups is not None:
            groups = _ids(self.customer_groups)
            object.__setattr__(self, "customer_groups", groups or None)
        object.__setattr__(self, "starts_at", _as_utc(self.starts_at))
        object.__setattr__(self, "expires_at", _as_utc(self.expires_at))

        if not self.code:
            raise InvalidCouponRecord("Coupon code is empty")
        if self.value <= 0:
            raise InvalidCouponRecord(f"Coupon {self.code} has a non-positive value")
        if self.type == CouponType.percentage and self.value > 100:
            raise InvalidCouponRecord(f"Coupon {self.code} has a percentage above 100")
        if int(self.usage_per_customer) < 1:
            raise InvalidCouponRecord(f"Coupon {self.code} allows fewer than one use per customer")
        if self.usage_limit is not None and int(self.usage_limit) < 0:
            raise InvalidCouponRecord(f"Coupon {self.code} has a negative usage limit")
        if self.starts_at and self.expires_at and self.starts_at >= self.expires_at:
            raise InvalidCouponRecord(f"Coupon {self.code} starts after it expires")

    @property
    def is_scoped(self) -> bool:
        return bool(
            self.applicable_products
            or self.applicable_categories
            or self.applicable_brands
            or self.excluded_products
            or self.excluded_categories
            or self.excluded_brands
        )

    def describe(self) -> str:
        if self.type == CouponType.fixed:
            return f"{pricing.quantize_money(self.value)} off"
        if self.type == CouponType.percentage:
            return f"{self.value.normalize():f}% off"
        return "Free shipping"


@dataclass(frozen=True)
class UsageSnapshot:
    global_count: int = 0
    customer_count: int = 0
    past_order_count: int = 0


@dataclass(frozen=True)
class DiscountOutcome:
    type: CouponType
    amount: Decimal
    coupon_code: str
    eligible_subtotal: Decimal = pricing.ZERO
    shipping_waived: bool = False

    @property
    def free_shipping(self) -> bool:
        return self.type == CouponType.free_shipping or self.shipping_waived

    def as_dict(self) -> dict[str, Any]:
        return {
            "type": self.type.value,
            "amount": self.amount,
            "coupon_code": self.coupon_code,
            "eligible_subtotal": self.eligible_subtotal,
            "free_shipping": self.free_shipping,
        }


@dataclass(frozen=True)
class CouponResult:
    code: str
    outcome: DiscountOutcome | None = None
    error: CouponError | None = None
    description: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.outcome is not None

    @property
    def message(self) -> str:
        if self.error is not None:
            return self.error.message
        return f"Coupon applied! {self.description}" if self.description else "Coupon applied!"

    def to_envelope(self) -> dict[str, Any]:
        data: dict[str, Any] = {"code": self.code}
        if self.outcome is not None:
            data["discount"] = self.outcome.as_dict()
        if self.error is not None:
            data["error"] = self.error.value
        return {"success": self.ok, "message": self.message, "data": data}


def _line_is_eligible(rule: CouponRule, line: CartLine) -> bool:
    if line.product_id in rule.excluded_products:
        return False
    if line.category_id is not None and line.category_id in rule.excluded_categories:
        return False
    if line.brand_id is not None and line.brand_id in rule.excluded_brands:
        return False
    if not (rule.applicable_products or rule.applicable_categories or rule.applicable_brands):
        return True
    return (
        line.product_id in rule.applicable_products
        or (line.category_id is not None and line.category_id in rule.applicable_categories)
        or (line.brand_id is not None and line.brand_id in rule.applicable_brands)
    )


def eligible_lines(rule: CouponRule, cart: CartSnapshot) -> list[CartLine]:
    return [line for line in cart.items if _line_is_eligible(rule, line)]


def eligible_subtotal(rule: CouponRule, cart: CartSnapshot) -> Decimal:
    return sum((line.line_total for line in eligible_lines(rule, cart)), start=pricing.ZERO)


def _within_window(rule: CouponRule, now: datetime) -> bool:
    if rule.starts_at is not None and now < rule.starts_at:
        return False
    if rule.expires_at is not None and now > rule.expires_at:
        return False
    return True


def _conflicting_codes(rule: CouponRule, applied_codes: Sequence[str]) -> list[str]:
    return [code for code in (normalize_code(c) for c in applied_codes) if code and code != rule.code]


def check_eligibility(
    rule: CouponRule,
    cart: CartSnapshot,
    usage: UsageSnapshot,
    now: datetime,
    *,
    customer_group: str | None = None,
    applied_codes: Sequence[str] = (),
    exclusive_codes: Sequence[str] = (),
) -> CouponError | None:
    """Return the first failing eligibility reason, or None when the coupon applies.

    The checks run in a fixed order so that a coupon failing several rules
    always reports the same reason. ``exclusive_codes`` lists the applied
    coupons that themselves refuse to be combined.
    """
    now = _as_utc(now) or datetime.now(timezone.utc)
    if not rule.is_active:
        return CouponError.inactive
    if not _within_window(rule, now):
        return CouponError.outside_validity_window
    if rule.usage_limit is not None and usage.global_count >= int(rule.usage_limit):
        return CouponError.global_usage_limit_reached
    if usage.customer_count >= int(rule.usage_per_customer):
        return CouponError.per_customer_usage_limit_reached
    if rule.minimum_amount is not None and cart.subtotal < rule.minimum_amount:
        return CouponError.below_minimum_amount
    if rule.first_purchase_only and usage.past_order_count > 0:
        return CouponError.not_first_purchase
    if rule.customer_groups is not None and (customer_group is None or str(customer_group) not in rule.customer_groups):
        return CouponError.customer_group_not_allowed
    if rule.is_scoped and not eligible_lines(rule, cart):
        return CouponError.no_eligible_items
    conflicting = _conflicting_codes(rule, applied_codes)
    if conflicting and not rule.combine_with_others:
        return CouponError.not_combinable
    if set(conflicting) & {normalize_code(c) for c in exclusive_codes}:
        return CouponError.not_combinable
    return None


def compute_discount(rule: CouponRule, cart: CartSnapshot) -> DiscountOutcome:
    base = eligible_subtotal(rule, cart)
    amount = pricing.ZERO
    if rule.type == CouponType.fixed:
        amount = min(rule.value, base)
    elif rule.type == CouponType.percentage:
        amount = base * rule.value / Decimal("100")
        if rule.maximum_discount is not None:
            amount = min(amount, rule.maximum_discount)
        amount = min(amount, base)
    return DiscountOutcome(
        type=rule.type,
        amount=pricing.quantize_money(amount),
        coupon_code=rule.code,
        eligible_subtotal=pricing.quantize_money(base),
    )


async def load_usage(history: UsageHistory, *, rule: CouponRule, customer_id: Any | None) -> UsageSnapshot:
    global_count = await history.global_usage_count(rule.id) if rule.usage_limit is not None else 0
    if customer_id is None:
        return UsageSnapshot(global_count=global_count)
    customer_count = await history.customer_usage_count(rule.id, customer_id)
    past_orders = await history.past_order_count(customer_id) if rule.first_purchase_only else 0
    return UsageSnapshot(global_count=global_count, customer_count=customer_count, past_order_count=past_orders)


async def _exclusive_codes(coupons: CouponStore, rule: CouponRule, applied_codes: Sequence[str]) -> list[str]:
    exclusive: list[str] = []
    for code in _conflicting_codes(rule, applied_codes):
        other = await coupons.get_by_code(code)
        if other is not None and not other.combine_with_others:
            exclusive.append(other.code)
    return exclusive


def _rejected(code: str, error: CouponError) -> CouponResult:
    metrics.record_coupon_rejection(error.value)
    logger.info("coupon_rejected", extra={"coupon_code": code, "reason": error.value})
    return CouponResult(code=code, error=error)


async def evaluate(
    code: str,
    cart: CartSnapshot,
    customer_id: Any | None,
    now: datetime | None = None,
    *,
    coupons: CouponStore,
    history: UsageHistory,
    customer_group: str | None = None,
    applied_codes: Sequence[str] = (),
) -> CouponResult:
    """Provisionally evaluate a coupon code against a cart.

    Nothing is recorded: usage is only committed when an order is finalized,
    so this is safe to call on every cart view.
    """
    metrics.record_coupon_evaluation()
    cleaned = normalize_code(code)
    if not cleaned:
        return _rejected(cleaned, CouponError.not_found)
    rule = await coupons.get_by_code(cleaned)
    if rule is None:
        return _rejected(cleaned, CouponError.not_found)
    if cart.is_empty:
        return _rejected(cleaned, CouponError.empty_cart)

    usage = await load_usage(history, rule=rule, customer_id=customer_id)
    error = check_eligibility(
        rule,
        cart,
        usage,
        now or datetime.now(timezone.utc),
        customer_group=customer_group,
        applied_codes=applied_codes,
        exclusive_codes=await _exclusive_codes(coupons, rule, applied_codes),
    )
    if error is not None:
        return _rejected(cleaned, error)

    outcome = compute_discount(rule, cart)
    return CouponResult(code=cleaned, outcome=outcome, description=rule.describe())


def remove_coupon(applied_codes: Sequence[str], code: str) -> tuple[str, ...]:
    cleaned = normalize_code(code)
    return tuple(c for c in (normalize_code(a) for a in applied_codes) if c and c != cleaned)


def merge_outcomes(outcomes: Sequence[DiscountOutcome]) -> DiscountOutcome | None:
    """Fold several combinable coupon outcomes into one for the composer.

    Monetary amounts are added, never compounded; any free-shipping coupon makes
    the merged outcome free-shipping while keeping the summed amount.
    """
    if not outcomes:
        return None
    if len(outcomes) == 1:
        return outcomes[0]
    monetary = [o for o in outcomes if o.type != CouponType.free_shipping]
    amount = sum((o.amount for o in monetary), start=pricing.ZERO)
    return DiscountOutcome(
        type=CouponType.fixed,
        amount=pricing.quantize_money(amount),
        coupon_code="+".join(o.coupon_code for o in outcomes),
        eligible_subtotal=max((o.eligible_subtotal for o in outcomes), default=pricing.ZERO),
        shipping_waived=any(o.free_shipping for o in outcomes),
    )


def generate_coupon_code(*, prefix: str = CODE_PREFIX, length: int = CODE_SUFFIX_LENGTH) -> str:
    alphabet = string.ascii_uppercase + string.digits
    suffix = "".join(secrets.choice(alphabet) for _ in range(length))
    return f"{prefix}{suffix}"[:CODE_MAX_LENGTH]


def _decimal_or_none(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None


def validate_coupon_data(data: Mapping[str, Any]) -> list[str]:
    """Validate admin input for a new coupon; returns human-readable errors."""
    errors: list[str] = []

    code = normalize_code(data.get("code"))
    if code and len(code) < CODE_MIN_LENGTH:
        errors.append(f"Code must have at least {CODE_MIN_LENGTH} characters")
    if len(code) > CODE_MAX_LENGTH:
        errors.append(f"Code must have at most {CODE_MAX_LENGTH} characters")

    if not (data.get("name") or "").strip():
        errors.append("Coupon name is required")

    raw_type = data.get("type")
    coupon_type = raw_type.value if isinstance(raw_type, CouponType) else raw_type
    if not coupon_type:
        errors.append("Coupon type is required")
    elif coupon_type not in {t.value for t in CouponType}:
        errors.append("Invalid coupon type")

    value = _decimal_or_none(data.get("value"))
    if value is None or value <= 0:
        errors.append("Coupon value must be greater than zero")
    elif coupon_type == CouponType.percentage.value and value > 100:
        errors.append("Percentage cannot exceed 100%")

    minimum = _decimal_or_none(data.get("minimum_amount"))
    if minimum is not None and minimum < 0:
        errors.append("Minimum amount must be positive")
    maximum = _decimal_or_none(data.get("maximum_discount"))
    if maximum is not None and maximum < 0:
        errors.append("Maximum discount must be positive")

    usage_limit = data.get("usage_limit")
    if usage_limit is not None and int(usage_limit) < 0:
        errors.append("Usage limit must be positive")
    per_customer = data.get("usage_per_customer")
    if per_customer is not None and int(per_customer) < 1:
        errors.append("Usage per customer must be at least 1")

    starts_at = _as_utc(data.get("starts_at"))
    expires_at = _as_utc(data.get("expires_at"))
    if starts_at and expires_at and starts_at >= expires_at:
        errors.append("Start date must be before the expiration date")

    return errors
