import logging
import time
import uuid
from typing import Awaitable, Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from storefront.core.logging_config import request_id_ctx_var

logger = logging.getLogger("storefront.request")

REQUEST_ID_HEADER = "X-Request-ID"


def _incoming_request_id(request: Request) -> str:
    raw = (request.headers.get(REQUEST_ID_HEADER) or "").strip()
    if raw and len(raw) <= 64:
        return raw
    return str(uuid.uuid4())


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next: Callable[[Request], Awaitable[Response]]) -> Response:
        request_id = _incoming_request_id(request)
        token = request_id_ctx_var.set(request_id)
        started = time.perf_counter()
        request.state.request_id = request_id
        response: Response | None = None
        try:
            response = await call_next(request)
            return response
        finally:
            if response is not None:
                response.headers[REQUEST_ID_HEADER] = request_id
                logger.info(
                    "request",
                    extra={
                        "path": request.url.path,
                        "method": request.method,
                        "status_code": response.status_code,
                        "duration_ms": int((time.perf_counter() - started) * 1000),
                    },
                )
            request_id_ctx_var.reset(token)
