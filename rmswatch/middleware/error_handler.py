"""
Global Error Handler Middleware.

Unhandled exceptions become a generic JSON 500 carrying an error_id that
matches the server-side log line. Exception text (including Current RMS
error bodies) never reaches the client.
"""

import uuid

import structlog
from fastapi import Request, Response
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from rmswatch.config import settings

logger = structlog.get_logger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Innermost of the app's own middleware; the response body is:

    {"error": "...", "error_id": "<uuid>", "status": 500}
    """

    async def dispatch(self, request: Request, call_next) -> Response:
        try:
            return await call_next(request)
        except Exception as exc:
            error_id = str(uuid.uuid4())
            logger.error(
                "unhandled_exception",
                error_id=error_id,
                path=request.url.path,
                method=request.method,
                error=str(exc),
                exc_info=True,
            )

            body: dict = {
                "error": "Internal server error",
                "error_id": error_id,
                "status": 500,
            }
            if settings.debug:
                body["debug_hint"] = type(exc).__name__

            return JSONResponse(status_code=500, content=body)
