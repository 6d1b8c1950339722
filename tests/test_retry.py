"""
Retry policy: which failures are retried, how long it waits, when it gives up.
"""
import asyncio

import pytest

from mirrorsync.core.circuit_breakers import RetryPolicy
from mirrorsync.core.errors import (
    AuthExpiredError,
    CursorInvalidError,
    MalformedInputError,
    RateLimitedError,
    TransientError,
)


class Flaky:
    def __init__(self, *outcomes):
        self.outcomes = list(outcomes)
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def policy(sleeps):
    async def record(seconds):
        sleeps.append(seconds)
    return RetryPolicy(max_attempts=3, multiplier=1.0, max_wait=5.0, sleep=record)


@pytest.mark.asyncio
async def test_transient_failure_is_retried(policy, sleeps):
    call = Flaky(TransientError("HTTP 503"), "ok")

    assert await policy.call(call) == "ok"
    assert call.calls == 2
    assert sleeps == [1.0]


@pytest.mark.asyncio
async def test_gives_up_after_max_attempts(policy):
    call = Flaky(TransientError("1"), TransientError("2"), TransientError("3"))

    with pytest.raises(TransientError, match="3"):
        await policy.call(call)
    assert call.calls == 3


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [
    CursorInvalidError("410"),
    AuthExpiredError("invalid_grant"),
    MalformedInputError("bad"),
])
async def test_non_retryable_errors_propagate_immediately(policy, error):
    call = Flaky(error, "unreachable")

    with pytest.raises(type(error)):
        await policy.call(call)
    assert call.calls == 1


@pytest.mark.asyncio
async def test_retry_after_is_capped(policy, sleeps):
    call = Flaky(RateLimitedError("429", retry_after=120), "ok")

    await policy.call(call)

    assert sleeps == [5.0]


@pytest.mark.asyncio
async def test_timeout_counts_as_transient(sleeps):
    async def record(seconds):
        sleeps.append(seconds)

    policy = RetryPolicy(max_attempts=2, timeout=0.01, sleep=record)

    async def hang():
        await asyncio.sleep(1)

    with pytest.raises(TransientError):
        await policy.call(hang)
    assert len(sleeps) == 1
