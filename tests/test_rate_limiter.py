"""Tests for the fixed-window rate limiters."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from otp_auth.services.rate_limiter import (
    InMemoryRateLimiter,
    RedisRateLimiter,
    rate_limit_key,
)


class TickingClock:
    def __init__(self, start: float) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now


@pytest.fixture
def tick():
    # Aligned to a 15-minute window boundary
    return TickingClock(1_767_268_800.0)


def test_rate_limit_key_prefers_email():
    assert rate_limit_key("a@b.com", "10.0.0.1") == "email:a@b.com"
    assert rate_limit_key("", "10.0.0.1") == "ip:10.0.0.1"
    assert rate_limit_key(None, None) == "ip:unknown"


@pytest.mark.asyncio
async def test_sixth_request_in_window_is_rejected(tick):
    limiter = InMemoryRateLimiter(max_requests=5, window=900, clock=tick)

    for expected_remaining in (4, 3, 2, 1, 0):
        decision = await limiter.check("email:a@b.com")
        assert decision.allowed is True
        assert decision.remaining == expected_remaining

    tick.now += 60
    denied = await limiter.check("email:a@b.com")
    assert denied.allowed is False
    assert denied.retry_after == 840


@pytest.mark.asyncio
async def test_new_window_resets_count(tick):
    limiter = InMemoryRateLimiter(max_requests=5, window=900, clock=tick)
    for _ in range(6):
        await limiter.check("email:a@b.com")

    tick.now += 900
    assert (await limiter.check("email:a@b.com")).allowed is True


@pytest.mark.asyncio
async def test_keys_are_independent(tick):
    limiter = InMemoryRateLimiter(max_requests=1, window=900, clock=tick)

    assert (await limiter.check("email:a@b.com")).allowed is True
    assert (await limiter.check("email:a@b.com")).allowed is False
    assert (await limiter.check("email:c@d.com")).allowed is True


@pytest.mark.asyncio
async def test_denied_requests_are_not_counted(tick):
    limiter = InMemoryRateLimiter(max_requests=5, window=900, clock=tick)
    for _ in range(5):
        await limiter.check("email:a@b.com")
    for _ in range(20):
        assert (await limiter.check("email:a@b.com")).allowed is False

    assert limiter._buckets["email:a@b.com"]["count"] == 5
    tick.now += 900
    for _ in range(5):
        assert (await limiter.check("email:a@b.com")).allowed is True


@pytest.mark.asyncio
async def test_buckets_from_previous_window_are_evicted(tick):
    limiter = InMemoryRateLimiter(max_requests=5, window=900, clock=tick)
    for i in range(10_000):
        await limiter.check(f"ip:10.0.{i // 256}.{i % 256}")
    assert len(limiter._buckets) == 10_000

    tick.now += 900
    await limiter.check("email:late@b.com")

    assert list(limiter._buckets) == ["email:late@b.com"]


@pytest.mark.asyncio
async def test_buckets_in_current_window_survive(tick):
    limiter = InMemoryRateLimiter(max_requests=5, window=900, clock=tick)
    await limiter.check("email:a@b.com")
    tick.now += 300
    await limiter.check("email:c@d.com")

    assert len(limiter._buckets) == 2
    assert (await limiter.check("email:a@b.com")).remaining == 3


def _redis_limiter(script: AsyncMock) -> RedisRateLimiter:
    client = MagicMock()
    client.register_script.return_value = script
    return RedisRateLimiter(client, max_requests=5, window=900)


@pytest.mark.asyncio
async def test_redis_limiter_allowed():
    script = AsyncMock(return_value=[1, 4, 5, 1_767_269_700, 0])
    limiter = _redis_limiter(script)

    decision = await limiter.check("email:a@b.com")

    assert decision.allowed is True
    assert decision.remaining == 4
    assert decision.retry_after is None
    assert script.await_args.kwargs["keys"] == ["ratelimit:otp:email:a@b.com"]
    assert script.await_args.kwargs["args"][:2] == [5, 900]


@pytest.mark.asyncio
async def test_redis_limiter_denied():
    limiter = _redis_limiter(AsyncMock(return_value=[0, 0, 5, 1_767_269_700, 120]))

    decision = await limiter.check("email:a@b.com")

    assert decision.allowed is False
    assert decision.retry_after == 120


@pytest.mark.asyncio
async def test_redis_limiter_fails_closed():
    limiter = _redis_limiter(AsyncMock(side_effect=RedisConnectionError("down")))

    with pytest.raises(RedisConnectionError):
        await limiter.check("email:a@b.com")
