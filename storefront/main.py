import logging

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from storefront.api.v1 import api_router
from storefront.core.config import settings
from storefront.core.logging_config import configure_logging
from storefront.middleware import RequestLoggingMiddleware
from storefront.schemas.error import ErrorResponse
from storefront.services.cart import InvalidCartError
from storefront.services.coupon_store import CouponUsageRejected
from storefront.services.coupons import InvalidCouponRecord

logger = logging.getLogger("storefront.app")


def get_application() -> FastAPI:
    configure_logging(settings.log_json)
    tags_metadata = [
        {"name": "coupons", "description": "Coupon evaluation and administration"},
        {"name": "shipping", "description": "Shipping quotes"},
        {"name": "checkout", "description": "Order totals"},
    ]
    app = FastAPI(
        title=settings.app_name,
        version=settings.app_version,
        openapi_tags=tags_metadata,
    )
    app.add_middleware(RequestLoggingMiddleware)
    app.include_router(api_router, prefix="/api/v1")

    @app.exception_handler(StarletteHTTPException)
    async def http_exception_handler(request: Request, exc: StarletteHTTPException):
        payload = ErrorResponse(detail=exc.detail, code=None)
        return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(payload.model_dump()))

    @app.exception_handler(RequestValidationError)
    async def validation_exception_handler(request: Request, exc: RequestValidationError):
        errors = jsonable_encoder(exc.errors())
        payload = ErrorResponse(detail=errors, code="validation_error")
        return JSONResponse(status_code=422, content=payload.model_dump())

    @app.exception_handler(InvalidCartError)
    async def invalid_cart_handler(request: Request, exc: InvalidCartError):
        payload = ErrorResponse(detail=str(exc), code="invalid_cart")
        return JSONResponse(status_code=422, content=payload.model_dump())

    @app.exception_handler(CouponUsageRejected)
    async def coupon_usage_rejected_handler(request: Request, exc: CouponUsageRejected):
        payload = ErrorResponse(detail=exc.error.message, code=exc.error.value)
        return JSONResponse(status_code=400, content=payload.model_dump())

    @app.exception_handler(InvalidCouponRecord)
    async def invalid_coupon_record_handler(request: Request, exc: InvalidCouponRecord):
        logger.error("invalid_coupon_record", extra={"path": request.url.path, "error": str(exc)})
        payload = ErrorResponse(detail="Coupon is misconfigured", code="invalid_coupon_record")
        return JSONResponse(status_code=500, content=payload.model_dump())

    return app


app = get_application()
