import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, func
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.db.base import Base


class ShippingCarrier(Base):
    __tablename__ = "shipping_carriers"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    code: Mapped[str] = mapped_column(String(40), unique=True, nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    tracking_url: Mapped[str | None] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    # Region codes (UF) the carrier serves; empty or containing "BR" means nationwide.
    supported_regions: Mapped[list | None] = mapped_column(JSON, nullable=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    methods: Mapped[list["ShippingMethod"]] = relationship(
        "ShippingMethod", back_populates="carrier", cascade="all, delete-orphan", lazy="selectin"
    )


class ShippingMethod(Base):
    __tablename__ = "shipping_methods"
    __table_args__ = (UniqueConstraint("carrier_id", "code", name="uq_shipping_methods_carrier_code"),)

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    carrier_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("shipping_carriers.id", ondelete="CASCADE"), nullable=False, index=True
    )
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    code: Mapped[str] = mapped_column(String(40), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    base_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    cost_per_kg: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    min_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    max_days: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    active_region_codes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    supported_postal_codes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    excluded_postal_codes: Mapped[list | None] = mapped_column(JSON, nullable=True)
    min_weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    max_weight: Mapped[Decimal | None] = mapped_column(Numeric(10, 3), nullable=True)
    min_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    max_value: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    carrier: Mapped[ShippingCarrier] = relationship("ShippingCarrier", back_populates="methods", lazy="selectin")


class ShippingCalculation(Base):
    """Audit trail of quoted shipping costs; never reused to price an order."""

    __tablename__ = "shipping_calculations"

    id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)
    method_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), ForeignKey("shipping_methods.id", ondelete="CASCADE"), nullable=False, index=True
    )
    customer_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    calculated_cost: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    estimated_days_min: Mapped[int] = mapped_column(Integer, nullable=False)
    estimated_days_max: Mapped[int] = mapped_column(Integer, nullable=False)
    weight_used: Mapped[Decimal] = mapped_column(Numeric(10, 3), nullable=False)
    destination_postal_code: Mapped[str] = mapped_column(String(8), nullable=False)
    origin_postal_code: Mapped[str | None] = mapped_column(String(8), nullable=True)
    approximate: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    calculated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), nullable=False, index=True
    )

    method: Mapped[ShippingMethod] = relationship("ShippingMethod")
