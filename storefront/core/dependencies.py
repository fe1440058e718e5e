from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.db.session import get_session
from storefront.services import postal
from storefront.services.coupon_store import SqlCouponStore, SqlUsageHistory
from storefront.services.shipping_store import SqlShippingMethodStore


def get_postal_resolver() -> postal.PostalCodeResolver:
    return postal.get_resolver(settings)


def get_coupon_store(session: AsyncSession = Depends(get_session)) -> SqlCouponStore:
    return SqlCouponStore(session)


def get_usage_history(session: AsyncSession = Depends(get_session)) -> SqlUsageHistory:
    return SqlUsageHistory(session)


def get_shipping_store(session: AsyncSession = Depends(get_session)) -> SqlShippingMethodStore:
    return SqlShippingMethodStore(session)
