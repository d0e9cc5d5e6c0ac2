"""
Request Context Middleware.

Binds request_id / method / path into structlog's contextvars for every
log line emitted while handling the request, and reports the request id
and duration back in X-Request-ID / X-Response-Time.

Webhook deliveries from Current RMS carry no request id, so one is
generated unless an upstream proxy supplied X-Request-ID.
"""

import time
import uuid

import structlog
from fastapi import Request, Response
from starlette.middleware.base import BaseHTTPMiddleware

logger = structlog.get_logger(__name__)

# Probes hit these every few seconds; keep them out of the request log.
QUIET_PATHS = frozenset({"/health", "/ready", "/metrics"})


class RequestContextMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next) -> Response:
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(
            request_id=request_id,
            method=request.method,
            path=request.url.path,
        )

        start = time.perf_counter()
        response = await call_next(request)
        elapsed_ms = round((time.perf_counter() - start) * 1000, 2)

        response.headers["X-Request-ID"] = request_id
        response.headers["X-Response-Time"] = f"{elapsed_ms}ms"

        if request.url.path not in QUIET_PATHS:
            logger.info("request_completed", status=response.status_code, elapsed_ms=elapsed_ms)

        return response
