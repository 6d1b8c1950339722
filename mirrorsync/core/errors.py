"""
Sync Error Taxonomy

Every failure the sync engine can hit is classified into one kind, and the
kind decides what happens next:

- transient      retry with backoff (5xx, network errors, timeouts)
- rate_limited   retry, honoring the provider's Retry-After
- cursor_invalid fall back to a full bounded-window resync (not an error)
- auth_expired   stop, flag the credential, surface "reconnect required"
- permanent      malformed input, skip the item and continue
- internal       a bug, logged and surfaced
"""
import asyncio
import logging
from datetime import datetime, timezone
from email.utils import parsedate_to_datetime
from enum import Enum
from typing import Optional

import httpx
from pydantic import ValidationError

logger = logging.getLogger(__name__)


class ErrorKind(str, Enum):
    TRANSIENT = "transient"
    RATE_LIMITED = "rate_limited"
    CURSOR_INVALID = "cursor_invalid"
    AUTH_EXPIRED = "auth_expired"
    PERMANENT = "permanent"
    INTERNAL = "internal"


class SyncError(Exception):
    """Base class for all sync engine errors."""

    kind: ErrorKind = ErrorKind.INTERNAL

    def __init__(self, message: str = "", *, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class TransientError(SyncError):
    kind = ErrorKind.TRANSIENT


class AccessTokenRejectedError(TransientError):
    """Provider answered 401 for an access token we believed was valid."""


class RateLimitedError(SyncError):
    kind = ErrorKind.RATE_LIMITED

    def __init__(self, message: str = "", *, retry_after: Optional[float] = None, status_code: Optional[int] = 429):
        super().__init__(message, status_code=status_code)
        self.retry_after = retry_after


class CursorInvalidError(SyncError):
    """Stored sync cursor was rejected; caller must run a full resync."""

    kind = ErrorKind.CURSOR_INVALID


class AuthExpiredError(SyncError):
    """Refresh grant rejected or credential missing; user must reconnect."""

    kind = ErrorKind.AUTH_EXPIRED


class MalformedInputError(SyncError):
    kind = ErrorKind.PERMANENT


class InternalSyncError(SyncError):
    kind = ErrorKind.INTERNAL


# ============================================================================
# CLASSIFICATION
# ============================================================================

def classify(exc: BaseException) -> ErrorKind:
    """Map any exception raised during a sync run onto an ErrorKind."""
    if isinstance(exc, SyncError):
        return exc.kind

    if isinstance(exc, (asyncio.TimeoutError, httpx.TimeoutException, httpx.TransportError)):
        return ErrorKind.TRANSIENT

    if isinstance(exc, httpx.HTTPStatusError):
        status = exc.response.status_code
        if status == 429:
            return ErrorKind.RATE_LIMITED
        if status >= 500:
            return ErrorKind.TRANSIENT
        return ErrorKind.PERMANENT

    if isinstance(exc, (ValidationError, ValueError, KeyError)):
        return ErrorKind.PERMANENT

    return ErrorKind.INTERNAL


def is_retryable(exc: BaseException) -> bool:
    """Transient and rate-limited failures are retried; a rejected access token needs a new token first."""
    if isinstance(exc, AccessTokenRejectedError):
        return False
    return classify(exc) in (ErrorKind.TRANSIENT, ErrorKind.RATE_LIMITED)


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """
    Parse a Retry-After header.

    Accepts both delta-seconds and HTTP-date forms. Returns seconds to wait,
    or None when the header is absent or unparseable.
    """
    if not value:
        return None

    value = value.strip()
    try:
        return max(0.0, float(value))
    except ValueError:
        pass

    try:
        when = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if when.tzinfo is None:
        when = when.replace(tzinfo=timezone.utc)
    return max(0.0, (when - datetime.now(timezone.utc)).total_seconds())


def error_from_response(response: httpx.Response, context: str = "") -> SyncError:
    """
    Convert a non-success provider response into a typed error.

    Provider-specific meanings (410 for Calendar sync tokens, 404 for Gmail
    history ids, invalid_grant on refresh) are handled by the callers before
    falling back to this generic mapping.
    """
    status = response.status_code
    prefix = f"{context}: " if context else ""
    message = f"{prefix}HTTP {status}"

    if status == 401:
        return AccessTokenRejectedError(message, status_code=status)
    if status == 429:
        return RateLimitedError(
            message,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            status_code=status,
        )
    if status == 403 and _is_rate_limit_reason(response):
        # Google reports per-user quota exhaustion as 403 rateLimitExceeded
        return RateLimitedError(
            message,
            retry_after=parse_retry_after(response.headers.get("Retry-After")),
            status_code=status,
        )
    if status >= 500:
        return TransientError(message, status_code=status)
    return MalformedInputError(message, status_code=status)


def _is_rate_limit_reason(response: httpx.Response) -> bool:
    try:
        body = response.json()
    except ValueError:
        return False
    if not isinstance(body, dict):
        return False
    error = body.get("error")
    if not isinstance(error, dict):
        return False
    errors = error.get("errors") or []
    return any(
        isinstance(e, dict) and e.get("reason") in ("rateLimitExceeded", "userRateLimitExceeded")
        for e in errors
    )
