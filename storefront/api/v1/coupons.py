from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.config import settings
from storefront.core.dependencies import get_coupon_store, get_usage_history
from storefront.db.session import get_session
from storefront.schemas.coupons import (
    CouponApplicableRequest,
    CouponCreate,
    CouponEvaluateRequest,
    CouponRead,
    CouponRedeemRequest,
    CouponRemoveRequest,
    CouponUpdate,
    CouponUsageRead,
)
from storefront.schemas.envelope import Envelope
from storefront.services import coupon_store
from storefront.services import coupons as coupons_service
from storefront.services.cart import snapshot_from_items


router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.post("/evaluate", response_model=Envelope)
async def evaluate_coupon(
    payload: CouponEvaluateRequest,
    response: Response,
    coupons: coupon_store.SqlCouponStore = Depends(get_coupon_store),
    history: coupon_store.SqlUsageHistory = Depends(get_usage_history),
) -> Envelope:
    cart = snapshot_from_items(item.model_dump() for item in payload.items)
    others = coupons_service.remove_coupon(payload.applied_codes, payload.code)
    if others and not settings.allow_multiple_coupons:
        result = coupons_service.CouponResult(
            code=coupons_service.normalize_code(payload.code), error=coupons_service.CouponError.not_combinable
        )
    else:
        result = await coupons_service.evaluate(
            payload.code,
            cart,
            payload.customer_id,
            coupons=coupons,
            history=history,
            customer_group=payload.customer_group,
            applied_codes=payload.applied_codes,
        )
    if not result.ok:
        response.status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    return Envelope(**result.to_envelope())


@router.post("/applicable", response_model=Envelope)
async def applicable_coupons(
    payload: CouponApplicableRequest, session: AsyncSession = Depends(get_session)
) -> Envelope:
    cart = snapshot_from_items(item.model_dump() for item in payload.items)
    results = await coupon_store.get_applicable_coupons(
        session, cart, customer_id=payload.customer_id, customer_group=payload.customer_group
    )
    coupons = [result.to_envelope()["data"] | {"description": result.description} for result in results]
    return Envelope(success=True, message=f"{len(coupons)} coupon(s) available", data={"coupons": coupons})


@router.post("/remove", response_model=Envelope)
async def remove_coupon(payload: CouponRemoveRequest) -> Envelope:
    remaining = coupons_service.remove_coupon(payload.applied_codes, payload.code)
    return Envelope(success=True, message="Coupon removed", data={"applied_codes": list(remaining)})


@router.post("", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def create_coupon(payload: CouponCreate, session: AsyncSession = Depends(get_session)) -> CouponRead:
    try:
        coupon = await coupon_store.create_coupon(session, payload.model_dump())
    except coupon_store.CouponValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    return CouponRead.model_validate(coupon)


async def _set_active(session: AsyncSession, code: str, active: bool) -> CouponRead:
    coupon = await coupon_store.set_coupon_active(session, code=code, active=active)
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return CouponRead.model_validate(coupon)


@router.post("/{code}/activate", response_model=CouponRead)
async def activate_coupon(code: str, session: AsyncSession = Depends(get_session)) -> CouponRead:
    return await _set_active(session, code, True)


@router.post("/{code}/deactivate", response_model=CouponRead)
async def deactivate_coupon(code: str, session: AsyncSession = Depends(get_session)) -> CouponRead:
    return await _set_active(session, code, False)


@router.post("/redeem", response_model=CouponUsageRead, status_code=status.HTTP_201_CREATED)
async def redeem_coupon(payload: CouponRedeemRequest, session: AsyncSession = Depends(get_session)) -> CouponUsageRead:
    usage = await coupon_store.record_coupon_usage(
        session,
        code=payload.code,
        customer_id=payload.customer_id,
        order_id=payload.order_id,
        discount_amount=payload.discount_amount,
    )
    return CouponUsageRead.model_validate(usage)


@router.get("/usages", response_model=list[CouponUsageRead])
async def customer_usage_history(
    customer_id: str = Query(min_length=1, max_length=64),
    limit: int = Query(default=10, ge=1, le=100),
    offset: int = Query(default=0, ge=0),
    session: AsyncSession = Depends(get_session),
) -> list[CouponUsageRead]:
    usages = await coupon_store.get_customer_usage_history(session, customer_id=customer_id, limit=limit, offset=offset)
    return [CouponUsageRead.model_validate(usage) for usage in usages]


@router.patch("/{code}", response_model=CouponRead)
async def update_coupon(code: str, payload: CouponUpdate, session: AsyncSession = Depends(get_session)) -> CouponRead:
    try:
        coupon = await coupon_store.update_coupon(session, code=code, changes=payload.model_dump(exclude_unset=True))
    except coupon_store.CouponValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return CouponRead.model_validate(coupon)


@router.post("/{code}/duplicate", response_model=CouponRead, status_code=status.HTTP_201_CREATED)
async def duplicate_coupon(
    code: str, payload: CouponUpdate | None = None, session: AsyncSession = Depends(get_session)
) -> CouponRead:
    overrides = payload.model_dump(exclude_unset=True) if payload is not None else {}
    try:
        coupon = await coupon_store.duplicate_coupon(session, code=code, overrides=overrides)
    except coupon_store.CouponValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=exc.errors) from exc
    if coupon is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Coupon not found")
    return CouponRead.model_validate(coupon)
