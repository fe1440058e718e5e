from decimal import Decimal
from typing import Any

from fastapi import APIRouter, Depends, Response, status

from storefront.core.config import settings
from storefront.core.dependencies import get_coupon_store, get_postal_resolver, get_shipping_store, get_usage_history
from storefront.schemas.checkout import CheckoutTotalsRequest
from storefront.schemas.envelope import Envelope
from storefront.services import coupons as coupons_service
from storefront.services import postal
from storefront.services import pricing
from storefront.services import shipping as shipping_service
from storefront.services.cart import CartSnapshot, snapshot_from_items
from storefront.services.coupon_store import SqlCouponStore, SqlUsageHistory
from storefront.services.shipping_store import SqlShippingMethodStore


router = APIRouter(prefix="/checkout", tags=["checkout"])


def _unique_codes(codes: list[str]) -> list[str]:
    seen: list[str] = []
    for code in codes:
        cleaned = coupons_service.normalize_code(code)
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return seen


async def _apply_coupons(
    payload: CheckoutTotalsRequest, cart: CartSnapshot, coupons: SqlCouponStore, history: SqlUsageHistory
) -> tuple[list[coupons_service.DiscountOutcome], list[dict[str, Any]]]:
    outcomes: list[coupons_service.DiscountOutcome] = []
    reports: list[dict[str, Any]] = []
    for code in _unique_codes(payload.coupon_codes):
        if outcomes and not settings.allow_multiple_coupons:
            result = coupons_service.CouponResult(code=code, error=coupons_service.CouponError.not_combinable)
        else:
            result = await coupons_service.evaluate(
                code,
                cart,
                payload.customer_id,
                coupons=coupons,
                history=history,
                customer_group=payload.customer_group,
                applied_codes=[o.coupon_code for o in outcomes],
            )
        if result.ok and result.outcome is not None:
            outcomes.append(result.outcome)
        envelope = result.to_envelope()
        reports.append({"success": envelope["success"], "message": envelope["message"], **envelope["data"]})
    return outcomes, reports


@router.post("/totals", response_model=Envelope)
async def checkout_totals(
    payload: CheckoutTotalsRequest,
    response: Response,
    coupons: SqlCouponStore = Depends(get_coupon_store),
    history: SqlUsageHistory = Depends(get_usage_history),
    methods: SqlShippingMethodStore = Depends(get_shipping_store),
    resolver: postal.PostalCodeResolver = Depends(get_postal_resolver),
) -> Envelope:
    """Price a cart end to end.

    Rejected coupons and shipping failures are reported in ``data`` and the
    totals are still composed without them.
    """
    cart = snapshot_from_items(item.model_dump() for item in payload.items)
    outcomes, coupon_reports = await _apply_coupons(payload, cart, coupons, history)

    shipping_data: dict[str, Any] | None = None
    option: shipping_service.ShippingOption | None = None
    if payload.destination_postal_code:
        quote = await shipping_service.calculate(
            cart, payload.destination_postal_code, methods=methods, resolver=resolver, config=settings
        )
        shipping_data = quote.to_envelope()["data"]
        option = shipping_service.select_option(quote, payload.shipping_method_id)
        if quote.ok and payload.shipping_method_id and option is None:
            shipping_data["error"] = shipping_service.ShippingError.no_coverage.value
        if option is not None:
            shipping_data["selected"] = option.as_dict()

    tax_rate = payload.tax_rate if payload.tax_rate is not None else Decimal(settings.default_tax_rate)
    result = pricing.compose(cart, coupons_service.merge_outcomes(outcomes), option, tax_rate)
    if not result.ok:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY

    envelope = result.to_envelope()
    envelope["data"]["coupons"] = coupon_reports
    envelope["data"]["shipping"] = shipping_data
    envelope["data"]["currency"] = settings.currency
    return Envelope(**envelope)
