from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.dependencies import get_postal_resolver, get_shipping_store
from storefront.db.session import get_session
from storefront.schemas.envelope import Envelope
from storefront.schemas.shipping import ShippingQuoteRequest
from storefront.services import postal
from storefront.services import shipping as shipping_service
from storefront.services import shipping_store
from storefront.services.cart import snapshot_from_items


router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.post("/quote", response_model=Envelope)
async def quote_shipping(
    payload: ShippingQuoteRequest,
    response: Response,
    session: AsyncSession = Depends(get_session),
    methods: shipping_store.SqlShippingMethodStore = Depends(get_shipping_store),
    resolver: postal.PostalCodeResolver = Depends(get_postal_resolver),
) -> Envelope:
    cart = snapshot_from_items(item.model_dump() for item in payload.items)
    quote = await shipping_service.calculate(
        cart,
        payload.destination_postal_code,
        payload.origin_postal_code,
        methods=methods,
        resolver=resolver,
        config=settings,
    )
    if not quote.ok:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
        return Envelope(**quote.to_envelope())
    await shipping_store.record_calculations(session, quote, customer_id=payload.customer_id)
    return Envelope(**quote.to_envelope())
