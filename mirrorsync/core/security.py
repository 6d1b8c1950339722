"""
Security and Authentication
Handles JWT validation for user endpoints and shared-secret checks for webhooks

SECURITY FEATURES:
- JWT validation via Supabase Auth (user endpoints)
- Webhook secret with timing-safe comparison (provider push endpoints)
"""
import logging
import hmac
from typing import Dict, List, Optional
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from supabase import Client

from mirrorsync.core.dependencies import get_supabase
from mirrorsync.core.config import settings

logger = logging.getLogger(__name__)

# Security schemes
bearer_scheme = HTTPBearer()


# ============================================================================
# JWT AUTHENTICATION (Supabase)
# ============================================================================

async def get_current_user_context(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
    supabase: Client = Depends(get_supabase)
) -> Dict[str, str]:
    """
    Validate the Supabase JWT and return the caller's identity.

    Returns:
        dict with user_id and email
    """
    if not credentials:
        logger.warning("No authorization credentials provided")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authorization header required"
        )

    token = credentials.credentials

    try:
        response = supabase.auth.get_user(token)

        if not response or not response.user:
            logger.warning("JWT validation failed: no user returned")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid authentication token"
            )

        user = response.user
        # Per-user rate limit key
        request.state.user_id = user.id
        logger.info(f"✅ User authenticated: {sanitize_for_logging(user.email or '')}")

        return {
            "user_id": user.id,
            "email": user.email or "",
        }

    except HTTPException:
        # Re-raise HTTP exceptions (already formatted)
        raise
    except Exception as e:
        logger.error(f"JWT validation error: {e}", exc_info=True)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication failed"
        )


async def get_current_user_id(
    user_context: Dict[str, str] = Depends(get_current_user_context)
) -> str:
    """Convenience dependency for endpoints that only need user_id."""
    return user_context["user_id"]


# ============================================================================
# WEBHOOK SECRET (provider push endpoints)
# ============================================================================

def _presented_secrets(request: Request) -> List[str]:
    """
    Every secret candidate a webhook caller presented:
    - X-Goog-Channel-Token (Calendar channels echo the token given at watch time)
    - Authorization: Bearer <secret>
    - ?token=<secret> (Pub/Sub push endpoint URL)
    """
    candidates = [request.headers.get("x-goog-channel-token"), request.query_params.get("token")]

    authorization = request.headers.get("authorization") or ""
    if authorization.lower().startswith("bearer "):
        candidates.append(authorization[7:].strip())

    return [c for c in candidates if c]


def check_webhook_secret(request: Request, expected: Optional[str]) -> bool:
    if not expected:
        return True
    # Timing-safe comparison (prevents timing attacks)
    return any(hmac.compare_digest(c.encode(), expected.encode()) for c in _presented_secrets(request))


async def verify_webhook_secret(request: Request) -> bool:
    """
    Reject webhook calls that do not carry WEBHOOK_SECRET.

    Raises:
        HTTPException 401 if a secret is configured and not presented
    """
    if not check_webhook_secret(request, settings.webhook_secret):
        logger.warning(f"Rejected webhook with invalid secret: {request.url.path}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid webhook secret"
        )
    return True


# ============================================================================
# HELPER FUNCTIONS
# ============================================================================

def sanitize_for_logging(text: str, max_length: int = 50) -> str:
    """
    Sanitize sensitive data for logging (prevent PII leakage).

    Example:
        "user@example.com" -> "u***@example.com"
    """
    if not text:
        return ""

    if len(text) > max_length:
        text = text[:max_length] + "..."

    if "@" in text:
        parts = text.split("@")
        if len(parts) == 2:
            local = parts[0]
            domain = parts[1]
            masked_local = local[0] + "***" if len(local) > 1 else local
            text = f"{masked_local}@{domain}"

    return text
