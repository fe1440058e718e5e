from storefront.db.base import Base  # noqa: F401
from storefront.models.order import Order, OrderStatus  # noqa: F401
from storefront.models.coupon import Coupon, CouponType, CouponUsage  # noqa: F401
from storefront.models.shipping import ShippingCalculation, ShippingCarrier, ShippingMethod  # noqa: F401

__all__ = [
    "Base",
    "Order",
    "OrderStatus",
    "Coupon",
    "CouponType",
    "CouponUsage",
    "ShippingCarrier",
    "ShippingMethod",
    "ShippingCalculation",
]
