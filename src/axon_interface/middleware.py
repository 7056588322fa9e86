"""
Custom middleware for the Synapse Feed Cache API

Request logging with a per-request correlation id for the Axon Interface.
"""

import time

import structlog
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

from ..shared.logging_config import CorrelationContext

logger = structlog.get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"


class LoggingMiddleware(BaseHTTPMiddleware):
    """Logging middleware for request/response tracking."""

    async def dispatch(self, request: Request, call_next):
        """Log request and response information under one correlation id."""
        start_time = time.time()

        with CorrelationContext(request.headers.get(REQUEST_ID_HEADER)) as context:
            logger.info(
                "Request received",
                method=request.method,
                path=request.url.path,
                client=request.client.host if request.client else "unknown",
            )

            response = await call_next(request)

            process_time = time.time() - start_time
            logger.info(
                "Response sent",
                status_code=response.status_code,
                duration_ms=round(process_time * 1000, 2),
            )

        response.headers["X-Process-Time"] = str(process_time)
        response.headers[REQUEST_ID_HEADER] = context.correlation_id_value
        return response
