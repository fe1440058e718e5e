from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core import metrics
from storefront.models.coupon import Coupon, CouponType, CouponUsage
from storefront.models.order import Order, OrderStatus
from storefront.services import pricing
from storefront.services.cart import CartSnapshot
from storefront.services.coupons import (
    CouponError,
    CouponResult,
    CouponRule,
    InvalidCouponRecord,
    check_eligibility,
    compute_discount,
    generate_coupon_code,
    load_usage,
    normalize_code,
    validate_coupon_data,
)


logger = logging.getLogger("storefront.coupons")

_SCOPE_FIELDS = (
    "applicable_products",
    "applicable_categories",
    "applicable_brands",
    "excluded_products",
    "excluded_categories",
    "excluded_brands",
)
_EDITABLE_FIELDS = (
    "code",
    "name",
    "description",
    "type",
    "value",
    "minimum_amount",
    "maximum_discount",
    "usage_limit",
    "usage_per_customer",
    "starts_at",
    "expires_at",
    "is_active",
    "first_purchase_only",
    "combine_with_others",
    "customer_groups",
    *_SCOPE_FIELDS,
)
_NOT_NULL_FIELDS = frozenset(
    {"code", "name", "type", "value", "usage_per_customer", "is_active", "first_purchase_only", "combine_with_others"}
)


class CouponValidationError(ValueError):
    def __init__(self, errors: list[str]):
        super().__init__("; ".join(errors))
        self.errors = errors


class CouponUsageRejected(Exception):
    """Finalization found the coupon no longer usable for this order."""

    def __init__(self, code: str, error: CouponError):
        super().__init__(error.message)
        self.code = code
        self.error = error


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime | None) -> datetime | None:
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def rule_from_model(coupon: Coupon) -> CouponRule:
    return CouponRule(
        id=coupon.id,
        code=coupon.code,
        name=coupon.name,
        type=coupon.type,
        value=coupon.value,
        minimum_amount=coupon.minimum_amount,
        maximum_discount=coupon.maximum_discount,
        usage_limit=coupon.usage_limit,
        usage_per_customer=coupon.usage_per_customer or 1,
        starts_at=coupon.starts_at,
        expires_at=coupon.expires_at,
        is_active=bool(coupon.is_active),
        first_purchase_only=bool(coupon.first_purchase_only),
        combine_with_others=bool(coupon.combine_with_others),
        customer_groups=coupon.customer_groups or None,
        **{name: getattr(coupon, name) or () for name in _SCOPE_FIELDS},
    )


async def get_coupon_by_code(session: AsyncSession, *, code: str) -> Coupon | None:
    cleaned = normalize_code(code)
    if not cleaned:
        return None
    result = await session.execute(select(Coupon).where(Coupon.code == cleaned))
    return result.scalars().first()


class SqlCouponStore:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_code(self, code: str) -> CouponRule | None:
        coupon = await get_coupon_by_code(self.session, code=code)
        return rule_from_model(coupon) if coupon is not None else None


async def _count_usages(session: AsyncSession, *, coupon_id: Any, customer_id: Any | None = None) -> int:
    stmt = select(func.count()).select_from(CouponUsage).where(CouponUsage.coupon_id == coupon_id)
    if customer_id is not None:
        stmt = stmt.where(CouponUsage.customer_id == str(customer_id))
    return int((await session.execute(stmt)).scalar_one() or 0)


class SqlUsageHistory:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def global_usage_count(self, coupon_id: Any) -> int:
        return await _count_usages(self.session, coupon_id=coupon_id)

    async def customer_usage_count(self, coupon_id: Any, customer_id: Any) -> int:
        return await _count_usages(self.session, coupon_id=coupon_id, customer_id=customer_id)

    async def past_order_count(self, customer_id: Any) -> int:
        result = await self.session.execute(
            select(func.count())
            .select_from(Order)
            .where(Order.customer_id == str(customer_id), Order.status != OrderStatus.cancelled)
        )
        return int(result.scalar_one() or 0)


async def _unique_code(session: AsyncSession) -> str:
    for _ in range(10):
        candidate = generate_coupon_code()
        exists = (await session.execute(select(func.count()).select_from(Coupon).where(Coupon.code == candidate))).scalar_one()
        if int(exists) == 0:
            return candidate
    raise RuntimeError("Failed to generate a unique coupon code")


def _optional_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    return Decimal(str(value))


def _column_values(data: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "name": str(data["name"]).strip(),
        "description": data.get("description"),
        "type": CouponType(data["type"]),
        "value": Decimal(str(data["value"])),
        "minimum_amount": _optional_decimal(data.get("minimum_amount")),
        "maximum_discount": _optional_decimal(data.get("maximum_discount")),
        "usage_limit": int(data["usage_limit"]) if data.get("usage_limit") is not None else None,
        "usage_per_customer": int(data.get("usage_per_customer") or 1),
        "starts_at": _as_utc(data.get("starts_at")),
        "expires_at": _as_utc(data.get("expires_at")),
        "is_active": bool(data.get("is_active", True)),
        "first_purchase_only": bool(data.get("first_purchase_only", False)),
        "combine_with_others": bool(data.get("combine_with_others", False)),
        "customer_groups": list(data.get("customer_groups") or []) or None,
        **{name: [str(v) for v in (data.get(name) or [])] or None for name in _SCOPE_FIELDS},
    }


def coupon_data(coupon: Coupon) -> dict[str, Any]:
    """The editable fields of a stored coupon, in the shape ``create_coupon`` accepts."""
    data = {name: getattr(coupon, name) for name in _EDITABLE_FIELDS}
    data["type"] = coupon.type.value
    return data


async def create_coupon(session: AsyncSession, data: Mapping[str, Any]) -> Coupon:
    errors = validate_coupon_data(data)
    code = normalize_code(data.get("code"))
    if code and not errors and await get_coupon_by_code(session, code=code) is not None:
        errors.append("Coupon code already exists")
    if errors:
        raise CouponValidationError(errors)
    if not code:
        code = await _unique_code(session)

    coupon = Coupon(code=code, **_column_values(data))
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_created", extra={"coupon_code": coupon.code, "coupon_type": coupon.type.value})
    return coupon


async def update_coupon(session: AsyncSession, *, code: str, changes: Mapping[str, Any]) -> Coupon | None:
    """Apply a partial update; the merged coupon is validated as a whole."""
    coupon = await get_coupon_by_code(session, code=code)
    if coupon is None:
        return None
    updates = {
        k: v for k, v in changes.items() if k in _EDITABLE_FIELDS and not (v is None and k in _NOT_NULL_FIELDS)
    }
    merged = {**coupon_data(coupon), **updates}
    errors = validate_coupon_data(merged)
    new_code = normalize_code(merged.get("code")) or coupon.code
    if not errors and new_code != coupon.code and await get_coupon_by_code(session, code=new_code) is not None:
        errors.append("Coupon code already exists")
    if errors:
        raise CouponValidationError(errors)

    coupon.code = new_code
    for name, value in _column_values(merged).items():
        setattr(coupon, name, value)
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_updated", extra={"coupon_code": coupon.code, "fields": sorted(updates)})
    return coupon


async def duplicate_coupon(
    session: AsyncSession, *, code: str, overrides: Mapping[str, Any] | None = None
) -> Coupon | None:
    """Copy a coupon under a freshly generated code; usage counters start at zero."""
    source = await get_coupon_by_code(session, code=code)
    if source is None:
        return None
    data = {**coupon_data(source), **dict(overrides or {})}
    data["code"] = None
    copy = await create_coupon(session, data)
    logger.info("coupon_duplicated", extra={"coupon_code": copy.code, "source_code": source.code})
    return copy


async def get_applicable_coupons(
    session: AsyncSession,
    cart: CartSnapshot,
    *,
    customer_id: Any | None,
    customer_group: str | None = None,
    now: datetime | None = None,
) -> list[CouponResult]:
    """Every active coupon the cart could use on its own, largest discount first."""
    if cart.is_empty:
        return []
    now = _as_utc(now) or _now()
    history = SqlUsageHistory(session)
    coupons = (await session.execute(select(Coupon).where(Coupon.is_active.is_(True)))).scalars().all()
    results: list[CouponResult] = []
    for coupon in coupons:
        try:
            rule = rule_from_model(coupon)
        except InvalidCouponRecord as exc:
            logger.error("invalid_coupon_record", extra={"coupon_code": coupon.code, "error": str(exc)})
            continue
        usage = await load_usage(history, rule=rule, customer_id=customer_id)
        if check_eligibility(rule, cart, usage, now, customer_group=customer_group) is not None:
            continue
        results.append(CouponResult(code=rule.code, outcome=compute_discount(rule, cart), description=rule.describe()))
    results.sort(key=lambda result: (-result.outcome.amount, result.code))
    return results


async def get_customer_usage_history(
    session: AsyncSession, *, customer_id: Any, limit: int = 10, offset: int = 0
) -> list[CouponUsage]:
    result = await session.execute(
        select(CouponUsage)
        .where(CouponUsage.customer_id == str(customer_id))
        .order_by(CouponUsage.used_at.desc(), CouponUsage.id)
        .offset(max(0, int(offset)))
        .limit(max(1, int(limit)))
    )
    return list(result.scalars().all())


async def set_coupon_active(session: AsyncSession, *, code: str, active: bool) -> Coupon | None:
    coupon = await get_coupon_by_code(session, code=code)
    if coupon is None:
        return None
    coupon.is_active = bool(active)
    session.add(coupon)
    await session.commit()
    await session.refresh(coupon)
    logger.info("coupon_active_changed", extra={"coupon_code": coupon.code, "is_active": coupon.is_active})
    return coupon


def _reject(code: str, error: CouponError) -> CouponUsageRejected:
    metrics.record_coupon_rejection(error.value)
    logger.info("coupon_usage_rejected", extra={"coupon_code": code, "reason": error.value})
    return CouponUsageRejected(code, error)


async def _existing_usage(session: AsyncSession, *, coupon_id: Any, order_id: uuid.UUID) -> CouponUsage | None:
    result = await session.execute(
        select(CouponUsage).where(CouponUsage.coupon_id == coupon_id, CouponUsage.order_id == order_id)
    )
    return result.scalars().first()


async def record_coupon_usage(
    session: AsyncSession,
    *,
    code: str,
    customer_id: Any,
    order_id: uuid.UUID,
    discount_amount: Decimal,
    now: datetime | None = None,
) -> CouponUsage:
    """Record that a finalized order used a coupon.

    Evaluation is provisional, so the limits are re-checked here with the
    coupon row locked; two orders racing for the last use cannot both pass.
    Recording the same coupon twice for one order returns the existing usage,
    including when two requests for that order race to the insert.
    """
    now = _as_utc(now) or _now()
    cleaned = normalize_code(code)
    locked = (
        (await session.execute(select(Coupon).where(Coupon.code == cleaned).with_for_update())).scalars().first()
    )
    if locked is None:
        raise _reject(cleaned, CouponError.not_found)
    coupon_id = locked.id

    order = await session.get(Order, order_id)
    if order is None or order.customer_id != str(customer_id):
        raise _reject(cleaned, CouponError.order_not_owned)

    existing = await _existing_usage(session, coupon_id=coupon_id, order_id=order_id)
    if existing is not None:
        return existing

    if not locked.is_active:
        raise _reject(cleaned, CouponError.inactive)
    starts_at = _as_utc(locked.starts_at)
    expires_at = _as_utc(locked.expires_at)
    if (starts_at is not None and now < starts_at) or (expires_at is not None and now > expires_at):
        raise _reject(cleaned, CouponError.outside_validity_window)
    if locked.usage_limit is not None:
        if await _count_usages(session, coupon_id=coupon_id) >= int(locked.usage_limit):
            raise _reject(cleaned, CouponError.global_usage_limit_reached)
    per_customer = int(locked.usage_per_customer or 1)
    if await _count_usages(session, coupon_id=coupon_id, customer_id=customer_id) >= per_customer:
        raise _reject(cleaned, CouponError.per_customer_usage_limit_reached)

    usage = CouponUsage(
        coupon_id=coupon_id,
        customer_id=str(customer_id),
        order_id=order_id,
        coupon_code=locked.code,
        discount_amount=pricing.quantize_money(Decimal(discount_amount)),
        used_at=now,
    )
    locked.used_count = int(locked.used_count or 0) + 1
    session.add(usage)
    session.add(locked)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        existing = await _existing_usage(session, coupon_id=coupon_id, order_id=order_id)
        if existing is None:
            raise
        logger.info("coupon_usage_already_recorded", extra={"coupon_code": cleaned, "order_id": str(order_id)})
        return existing
    await session.refresh(usage)
    metrics.record_coupon_usage()
    logger.info(
        "coupon_usage_recorded",
        extra={"coupon_code": locked.code, "order_id": str(order_id), "customer_id": str(customer_id)},
    )
    return usage
