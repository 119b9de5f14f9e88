"""
OpsDesk - API Middleware
========================
Request logging with a per-request id bound to the logging context.
"""

import time
import uuid
from collections.abc import Callable

from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

from opsdesk.core.logging import get_logger, reset_request_id, set_request_id

logger = get_logger("api.middleware")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Log all requests with timing information.
    Honors an incoming X-Request-ID, otherwise assigns one.
    """

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id
        token = set_request_id(request_id)
        start_time = time.time()

        try:
            logger.info(f"{request.method} {request.url.path}")
            response = await call_next(request)
            duration_ms = (time.time() - start_time) * 1000
            logger.info(f"{request.method} {request.url.path} status={response.status_code} duration={duration_ms:.2f}ms")
        finally:
            reset_request_id(token)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Processing-Time-Ms"] = f"{duration_ms:.2f}"
        return response
