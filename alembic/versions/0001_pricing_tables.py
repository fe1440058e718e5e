"""pricing tables: orders, coupons, shipping

Revision ID: 0001
Revises:
Create Date: 2026-10-19
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "orders",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("total_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_orders_customer_id", "orders", ["customer_id"])

    op.create_table(
        "coupons",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("type", sa.String(length=20), nullable=False, server_default="percentage"),
        sa.Column("value", sa.Numeric(10, 2), nullable=False),
        sa.Column("minimum_amount", sa.Numeric(10, 2), nullable=True),
        sa.Column("maximum_discount", sa.Numeric(10, 2), nullable=True),
        sa.Column("usage_limit", sa.Integer(), nullable=True),
        sa.Column("usage_per_customer", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("used_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("starts_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("first_purchase_only", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("combine_with_others", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("applicable_products", sa.JSON(), nullable=True),
        sa.Column("applicable_categories", sa.JSON(), nullable=True),
        sa.Column("applicable_brands", sa.JSON(), nullable=True),
        sa.Column("excluded_products", sa.JSON(), nullable=True),
        sa.Column("excluded_categories", sa.JSON(), nullable=True),
        sa.Column("excluded_brands", sa.JSON(), nullable=True),
        sa.Column("customer_groups", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
            onupdate=sa.func.now(),
            nullable=False,
        ),
    )
    op.create_index("ix_coupons_code", "coupons", ["code"], unique=True)

    op.create_table(
        "coupon_usages",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("coupon_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("coupons.id"), nullable=False),
        sa.Column("customer_id", sa.String(length=64), nullable=False),
        sa.Column("order_id", postgresql.UUID(as_uuid=True), sa.ForeignKey("orders.id"), nullable=False),
        sa.Column("coupon_code", sa.String(length=40), nullable=False),
        sa.Column("discount_amount", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("used_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("coupon_id", "order_id", name="uq_coupon_usages_coupon_order"),
    )
    op.create_index("ix_coupon_usages_coupon_id", "coupon_usages", ["coupon_id"])
    op.create_index("ix_coupon_usages_customer_id", "coupon_usages", ["customer_id"])

    op.create_table(
        "shipping_carriers",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("tracking_url", sa.String(length=255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("supported_regions", sa.JSON(), nullable=True),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_shipping_carriers_code", "shipping_carriers", ["code"], unique=True)

    op.create_table(
        "shipping_methods",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "carrier_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shipping_carriers.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.String(length=120), nullable=False),
        sa.Column("code", sa.String(length=40), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("base_cost", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("cost_per_kg", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("min_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("max_days", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("active_region_codes", sa.JSON(), nullable=True),
        sa.Column("supported_postal_codes", sa.JSON(), nullable=True),
        sa.Column("excluded_postal_codes", sa.JSON(), nullable=True),
        sa.Column("min_weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("max_weight", sa.Numeric(10, 3), nullable=True),
        sa.Column("min_value", sa.Numeric(10, 2), nullable=True),
        sa.Column("max_value", sa.Numeric(10, 2), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint("carrier_id", "code", name="uq_shipping_methods_carrier_code"),
    )
    op.create_index("ix_shipping_methods_carrier_id", "shipping_methods", ["carrier_id"])

    op.create_table(
        "shipping_calculations",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True, nullable=False),
        sa.Column(
            "method_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("shipping_methods.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("customer_id", sa.String(length=64), nullable=True),
        sa.Column("calculated_cost", sa.Numeric(10, 2), nullable=False),
        sa.Column("estimated_days_min", sa.Integer(), nullable=False),
        sa.Column("estimated_days_max", sa.Integer(), nullable=False),
        sa.Column("weight_used", sa.Numeric(10, 3), nullable=False),
        sa.Column("destination_postal_code", sa.String(length=8), nullable=False),
        sa.Column("origin_postal_code", sa.String(length=8), nullable=True),
        sa.Column("approximate", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("calculated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index("ix_shipping_calculations_method_id", "shipping_calculations", ["method_id"])
    op.create_index("ix_shipping_calculations_calculated_at", "shipping_calculations", ["calculated_at"])


def downgrade() -> None:
    op.drop_index("ix_shipping_calculations_calculated_at", table_name="shipping_calculations")
    op.drop_index("ix_shipping_calculations_method_id", table_name="shipping_calculations")
    op.drop_table("shipping_calculations")
    op.drop_index("ix_shipping_methods_carrier_id", table_name="shipping_methods")
    op.drop_table("shipping_methods")
    op.drop_index("ix_shipping_carriers_code", table_name="shipping_carriers")
    op.drop_table("shipping_carriers")
    op.drop_index("ix_coupon_usages_customer_id", table_name="coupon_usages")
    op.drop_index("ix_coupon_usages_coupon_id", table_name="coupon_usages")
    op.drop_table("coupon_usages")
    op.drop_index("ix_coupons_code", table_name="coupons")
    op.drop_table("coupons")
    op.drop_index("ix_orders_customer_id", table_name="orders")
    op.drop_table("orders")
