"""
Global Error Handler Middleware
Catches all unhandled exceptions and returns structured error responses

Sync errors that reach a user endpoint are mapped to HTTP here as well:
- AuthExpiredError   -> 409 {"reconnect_required": true}
- RateLimitedError   -> 503 with Retry-After
- TransientError     -> 503
- MalformedInputError -> 400
"""
import logging
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from mirrorsync.core.errors import AuthExpiredError, ErrorKind, RateLimitedError, SyncError

logger = logging.getLogger(__name__)


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    """
    Global error handler middleware.
    Catches all unhandled exceptions and returns JSON error responses.
    """

    async def dispatch(self, request: Request, call_next):
        try:
            response = await call_next(request)
            return response
        except Exception as exc:
            # Log the full exception with traceback
            logger.error(
                f"Unhandled exception during request",
                exc_info=True,
                extra={
                    "path": request.url.path,
                    "method": request.method,
                    "client_host": request.client.host if request.client else None
                }
            )

            # Return structured error response
            return JSONResponse(
                status_code=500,
                content={
                    "detail": "Internal server error",
                    "error_type": type(exc).__name__,
                    "path": request.url.path
                }
            )


async def auth_expired_handler(request: Request, exc: AuthExpiredError) -> JSONResponse:
    logger.warning(f"Reconnect required: {request.url.path} - {exc}")
    return JSONResponse(
        status_code=409,
        content={
            "detail": "Google access expired. Reconnect your account.",
            "reconnect_required": True,
        }
    )


_STATUS_BY_KIND = {
    ErrorKind.TRANSIENT: 503,
    ErrorKind.RATE_LIMITED: 503,
    ErrorKind.PERMANENT: 400,
    ErrorKind.CURSOR_INVALID: 503,
    ErrorKind.INTERNAL: 500,
}


async def sync_error_handler(request: Request, exc: SyncError) -> JSONResponse:
    status_code = _STATUS_BY_KIND.get(exc.kind, 500)
    logger.error(f"Sync error on {request.url.path}: {exc.kind.value} - {exc}")

    headers = {}
    if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
        headers["Retry-After"] = str(int(exc.retry_after))

    return JSONResponse(
        status_code=status_code,
        content={
            "detail": exc.message or "Sync failed",
            "error_type": exc.kind.value,
            "path": request.url.path
        },
        headers=headers,
    )
