from fastapi import APIRouter

from storefront.api.v1 import checkout, coupons, shipping
from storefront.core.metrics import snapshot as metrics_snapshot

api_router = APIRouter()

api_router.include_router(coupons.router)
api_router.include_router(shipping.router)
api_router.include_router(checkout.router)


@api_router.get("/health", tags=["health"])
def healthcheck() -> dict[str, str]:
    return {"status": "ok"}


@api_router.get("/metrics", tags=["metrics"])
def metrics() -> dict:
    return metrics_snapshot()
