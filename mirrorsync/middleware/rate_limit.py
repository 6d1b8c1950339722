"""
Rate Limiting Middleware
Keeps manual refresh from hammering the provider, using slowapi

RATE LIMITS:
- Global: 100 requests/minute per IP (default)
- Manual refresh: MANUAL_SYNC_RATE_LIMIT per user (default 10/minute)
- Webhook endpoints are exempt (provider retries must never be throttled)

SECURITY: Uses user_id for authenticated requests (can't bypass via IP switching)
"""
import logging
from slowapi import Limiter
from slowapi.util import get_remote_address
from fastapi import Request

from mirrorsync.core.config import settings

logger = logging.getLogger(__name__)


def rate_limit_key_func(request: Request) -> str:
    """
    Determine rate limit key based on authentication status.

    - Authenticated requests: user_id (set on request.state by the auth dependency)
    - Unauthenticated requests: IP address
    """
    user_id = getattr(request.state, "user_id", None)
    if user_id:
        logger.debug(f"Rate limit key: user_id={user_id[:8]}...")
        return f"user:{user_id}"

    ip = get_remote_address(request)
    logger.debug(f"Rate limit key: ip={ip}")
    return f"ip:{ip}"


# Redis-backed when available so limits hold across API instances
limiter = Limiter(
    key_func=rate_limit_key_func,
    default_limits=["100/minute"],
    storage_uri=settings.redis_url or "memory://",
)
