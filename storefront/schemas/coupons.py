from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.models.coupon import CouponType
from storefront.schemas.cart import CartPayload


class CouponEvaluateRequest(CartPayload):
    code: str = Field(max_length=40)
    customer_group: str | None = None
    applied_codes: list[str] = Field(default_factory=list)


class CouponApplicableRequest(CartPayload):
    customer_group: str | None = None


class CouponRemoveRequest(BaseModel):
    code: str = Field(max_length=40)
    applied_codes: list[str] = Field(default_factory=list)


class CouponCreate(BaseModel):
    code: str | None = Field(default=None, max_length=40)
    name: str = Field(default="", max_length=120)
    description: str | None = None
    type: CouponType
    value: Decimal
    minimum_amount: Decimal | None = None
    maximum_discount: Decimal | None = None
    usage_limit: int | None = None
    usage_per_customer: int = 1
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool = True
    first_purchase_only: bool = False
    combine_with_others: bool = False
    applicable_products: list[str] = Field(default_factory=list)
    applicable_categories: list[str] = Field(default_factory=list)
    applicable_brands: list[str] = Field(default_factory=list)
    excluded_products: list[str] = Field(default_factory=list)
    excluded_categories: list[str] = Field(default_factory=list)
    excluded_brands: list[str] = Field(default_factory=list)
    customer_groups: list[str] | None = None


class CouponUpdate(BaseModel):
    code: str | None = Field(default=None, max_length=40)
    name: str | None = Field(default=None, max_length=120)
    description: str | None = None
    type: CouponType | None = None
    value: Decimal | None = None
    minimum_amount: Decimal | None = None
    maximum_discount: Decimal | None = None
    usage_limit: int | None = None
    usage_per_customer: int | None = None
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool | None = None
    first_purchase_only: bool | None = None
    combine_with_others: bool | None = None
    applicable_products: list[str] | None = None
    applicable_categories: list[str] | None = None
    applicable_brands: list[str] | None = None
    excluded_products: list[str] | None = None
    excluded_categories: list[str] | None = None
    excluded_brands: list[str] | None = None
    customer_groups: list[str] | None = None


class CouponRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    code: str
    name: str
    description: str | None = None
    type: CouponType
    value: Decimal
    minimum_amount: Decimal | None = None
    maximum_discount: Decimal | None = None
    usage_limit: int | None = None
    usage_per_customer: int
    used_count: int
    starts_at: datetime | None = None
    expires_at: datetime | None = None
    is_active: bool
    first_purchase_only: bool
    combine_with_others: bool
    customer_groups: list[str] | None = None


class CouponRedeemRequest(BaseModel):
    code: str = Field(min_length=1, max_length=40)
    customer_id: str = Field(min_length=1, max_length=64)
    order_id: UUID
    discount_amount: Decimal = Field(default=Decimal("0.00"), ge=0)


class CouponUsageRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: UUID
    coupon_id: UUID
    coupon_code: str
    customer_id: str
    order_id: UUID
    discount_amount: Decimal
    used_at: datetime
