"""Fixed-window rate limiting for code requests.

Two implementations share the ``check(key)`` contract:

* :class:`InMemoryRateLimiter` — per-process counters, for development
  and single-instance deployments.
* :class:`RedisRateLimiter` — counters in Redis, updated by a Lua script
  so the read-check-increment is atomic across workers.

Unlike a typical API quota limiter, errors are **not** swallowed here: a
limiter that cannot be reached must reject issuance, and the caller
turns the exception into a 503.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

from redis.asyncio import Redis

logger = logging.getLogger(__name__)


@dataclass
class RateLimitDecision:
    """Rate limit check result with quota information."""

    allowed: bool
    remaining: int
    limit: int
    reset_at: int  # Unix timestamp
    retry_after: int | None = None  # Seconds until retry allowed


def rate_limit_key(email: str | None, origin: str | None) -> str:
    """Key by the requested identity when there is one, else by origin."""
    if email:
        return f"email:{email}"
    return f"ip:{origin or 'unknown'}"


class InMemoryRateLimiter:
    """Fixed-window counter per key, held in process memory."""

    def __init__(
        self,
        max_requests: int = 5,
        window: int = 900,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._clock = clock
        self._buckets: dict[str, dict[str, int]] = {}
        self._current_window: int | None = None
        self._lock = asyncio.Lock()

    def _evict_stale(self, window_start: int) -> None:
        """Drop every bucket from an earlier window once a new one begins."""
        if self._current_window == window_start:
            return
        self._current_window = window_start
        stale = [k for k, b in self._buckets.items() if b["window"] < window_start]
        for k in stale:
            del self._buckets[k]
        if stale:
            logger.debug("Evicted %d stale rate-limit buckets", len(stale))

    async def check(self, key: str) -> RateLimitDecision:
        """Count one request for *key* and decide whether it may proceed."""
        async with self._lock:
            now = self._clock()
            window_start = int(now // self.window) * self.window
            self._evict_stale(window_start)
            bucket = self._buckets.setdefault(key, {"window": window_start, "count": 0})

            # Reset if new window
            if bucket["window"] < window_start:
                bucket["window"] = window_start
                bucket["count"] = 0

            reset_at = window_start + self.window
            if bucket["count"] >= self.max_requests:
                return RateLimitDecision(
                    allowed=False,
                    remaining=0,
                    limit=self.max_requests,
                    reset_at=reset_at,
                    retry_after=max(1, int(reset_at - now)),
                )

            bucket["count"] += 1
            return RateLimitDecision(
                allowed=True,
                remaining=self.max_requests - bucket["count"],
                limit=self.max_requests,
                reset_at=reset_at,
            )


# Atomic fixed window in Redis
FIXED_WINDOW_SCRIPT = """
local key = KEYS[1]
local limit = tonumber(ARGV[1])
local window = tonumber(ARGV[2])
local now = tonumber(ARGV[3])

local window_start = math.floor(now / window) * window
local reset_at = window_start + window
local saved_window = tonumber(redis.call('HGET', key, 'window') or '-1')
local count = 0
if saved_window == window_start then
    count = tonumber(redis.call('HGET', key, 'count') or '0')
end

if count >= limit then
    return {0, 0, limit, reset_at, reset_at - now}
end

count = count + 1
redis.call('HSET', key, 'window', window_start, 'count', count)
redis.call('EXPIRE', key, window * 2)
return {1, limit - count, limit, reset_at, 0}
"""


class RedisRateLimiter:
    """Redis-backed fixed-window limiter shared by every worker."""

    def __init__(
        self,
        client: Redis,
        max_requests: int = 5,
        window: int = 900,
        prefix: str = "ratelimit:otp:",
    ) -> None:
        self.max_requests = max_requests
        self.window = window
        self._prefix = prefix
        self._script = client.register_script(FIXED_WINDOW_SCRIPT)

    async def check(self, key: str) -> RateLimitDecision:
        """Count one request for *key*; Redis errors propagate to the caller."""
        now = int(time.time())
        allowed, remaining, limit, reset_at, retry_after = await self._script(
            keys=[f"{self._prefix}{key}"],
            args=[self.max_requests, self.window, now],
        )
        return RateLimitDecision(
            allowed=bool(int(allowed)),
            remaining=int(remaining),
            limit=int(limit),
            reset_at=int(reset_at),
            retry_after=max(1, int(retry_after)) if not int(allowed) else None,
        )
