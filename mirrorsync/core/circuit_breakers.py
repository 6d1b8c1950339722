"""
Circuit Breakers and Retry Logic
Prevents cascading failures when the provider (Google OAuth / Calendar / Gmail) misbehaves

One RetryPolicy is shared by the Token Broker, the Watch Manager and the Sync
Engine so every provider call gets the same treatment:
- Per-call timeout (a timeout counts as transient)
- Retries only transient and rate_limited failures
- Exponential backoff, bounded attempts
- Rate limits wait at least the provider's Retry-After
"""
import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    before_sleep_log,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from mirrorsync.core.errors import RateLimitedError, TransientError, is_retryable

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """Tenacity-backed retry policy for provider calls."""

    def __init__(
        self,
        max_attempts: int = 3,
        multiplier: float = 1.0,
        max_wait: float = 30.0,
        timeout: Optional[float] = 20.0,
        sleep: Optional[Callable[[float], Awaitable[None]]] = None,
    ):
        self.max_attempts = max(1, max_attempts)
        self.multiplier = multiplier
        self.max_wait = max_wait
        self.timeout = timeout
        self._sleep = sleep or asyncio.sleep
        self._backoff = wait_exponential(multiplier=multiplier, max=max_wait)

    @classmethod
    def from_settings(cls, settings) -> "RetryPolicy":
        return cls(
            max_attempts=settings.retry_max_attempts,
            multiplier=settings.retry_backoff_multiplier,
            max_wait=settings.retry_backoff_max_seconds,
            timeout=settings.provider_timeout_seconds,
        )

    def _wait(self, retry_state: RetryCallState) -> float:
        backoff = self._backoff(retry_state)
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitedError) and exc.retry_after is not None:
            return min(max(exc.retry_after, backoff), self.max_wait)
        return backoff

    async def _with_timeout(self, func: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        if self.timeout is None:
            return await func(*args, **kwargs)
        try:
            return await asyncio.wait_for(func(*args, **kwargs), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            name = getattr(func, "__name__", repr(func))
            raise TransientError(f"{name} timed out after {self.timeout}s") from e

    async def call(self, func: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """
        Run an async provider call under the policy.

        Non-retryable errors (cursor_invalid, auth_expired, permanent) propagate
        on the first attempt. After the last attempt the final error is re-raised.
        """
        retrying = AsyncRetrying(
            retry=retry_if_exception(is_retryable),
            stop=stop_after_attempt(self.max_attempts),
            wait=self._wait,
            sleep=self._sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        result = None
        async for attempt in retrying:
            with attempt:
                result = await self._with_timeout(func, *args, **kwargs)
        return result
