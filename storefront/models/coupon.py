import enum
import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, Enum, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base
from storefront.models.order import Order


class CouponType(str, enum.Enum):
    fixed = "fixed"
    percentage = "percentage"
    free_shipping = "free_shipping"


class Coupon(Base):
    __tablename__ = "coupons"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[CouponType] = mapped_column(
        Enum(CouponType, native_enum=False),
        nullable=False,
        default=CouponType.percentage,
    )
    value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    minimum_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    maximum_discount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    usage_limit: Mapped[int | None] = mapped_column(Integer, nullable=True)
    usage_per_customer: Mapped[int] = mapped_column(Integer, nullable=False, default=1, server_default="1")
    used_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0, server_default="0")
    starts_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    first_purchase_only: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    combine_with_others: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    applicable_products: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applicable_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
    applicable_brands: Mapped[list | None] = mapped_column(JSON, nullable=True)
    excluded_products: Mapped[list | None] = mapped_column(JSON, nullable=True)
    excluded_categories: Mapped[list | None] = mapped_column(JSON, nullable=True)
    excluded_brands: Mapped[list | None] = mapped_column(JSON, nullable=True)
    customer_groups: Mapped[list | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False
    )

    usages: Mapped[list["CouponUsage"]] = relationship(
        "CouponUsage", back_populates="coupon", cascade="all, delete-orphan", lazy="raise"
    )


class CouponUsage(Base):
    __tablename__ = "coupon_usages"
    __table_args__ = (UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usages_coupon_order"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    coupon_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("coupons.id"), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    order_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("orders.id"), nullable=False)
    coupon_code: Mapped[str] = mapped_column(String(40), nullable=False)
    discount_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    used_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    coupon: Mapped[Coupon] = relationship("Coupon", back_populates="usages")
    order: Mapped[Order] = relationship("Order")
