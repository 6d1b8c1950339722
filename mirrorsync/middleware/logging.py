"""
Request Logging Middleware
Logs all HTTP requests and responses with timing information

Webhook deliveries are logged with the provider's channel / message identifiers
so a redelivery can be matched to the original in the logs.
"""
import logging
import time
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """
    Request logging middleware.
    Logs every HTTP request with method, path, status code, and duration.
    """

    async def dispatch(self, request: Request, call_next):
        start_time = time.perf_counter()

        response = await call_next(request)

        duration_ms = (time.perf_counter() - start_time) * 1000

        extra = {
            "method": request.method,
            "path": request.url.path,
            "status_code": response.status_code,
            "duration_ms": round(duration_ms, 2),
            "client_host": request.client.host if request.client else None
        }
        channel_id = request.headers.get("x-goog-channel-id")
        if channel_id:
            extra["channel_id"] = channel_id
            extra["message_number"] = request.headers.get("x-goog-message-number")

        logger.info(
            f"{request.method} {request.url.path} - {response.status_code} ({duration_ms:.2f}ms)",
            extra=extra
        )

        return response
