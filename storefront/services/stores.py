"""Lookup interfaces the pricing core consumes.

The SQLAlchemy-backed implementations live in ``coupon_store`` and
``shipping_store``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, Protocol, Sequence

if TYPE_CHECKING:
    from storefront.services.coupons import CouponRule
    from storefront.services.shipping import ShippingMethodRule


class CouponStore(Protocol):
    async def get_by_code(self, code: str) -> CouponRule | None: ...


class UsageHistory(Protocol):
    async def global_usage_count(self, coupon_id: Any) -> int: ...

    async def customer_usage_count(self, coupon_id: Any, customer_id: Any) -> int: ...

    async def past_order_count(self, customer_id: Any) -> int: ...


class ShippingMethodStore(Protocol):
    async def list_active_methods(self) -> Sequence[ShippingMethodRule]: ...
