"""Per-key rate limiting for inbound processing and outbound prompts."""

import asyncio
import logging
import time
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass
from datetime import timedelta
from typing import Protocol

from redis.asyncio import Redis
from redis.exceptions import RedisError

from prima.config import settings

logger = logging.getLogger(__name__)

INBOUND_PREFIX = "patient_response"
OUTBOUND_PREFIX = "whatsapp"


@dataclass
class RateLimitResult:
    allowed: bool
    remaining: int
    retry_after: timedelta | None = None


class RateLimiter(Protocol):
    async def check_and_consume(self, key: str) -> RateLimitResult: ...


class RedisRateLimiter:
    """
    Fixed-window limiter on Redis.

    INCR, EXPIRE NX and TTL run in one MULTI/EXEC pipeline, so concurrent
    callers across processes never lose a count and the window only starts
    on the first hit.
    """

    def __init__(self, redis: Redis, prefix: str, max_requests: int, window_seconds: int):
        self.redis = redis
        self.prefix = prefix
        self.max_requests = max_requests
        self.window_seconds = window_seconds

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    async def check_and_consume(self, key: str) -> RateLimitResult:
        redis_key = self._key(key)
        try:
            async with self.redis.pipeline(transaction=True) as pipe:
                pipe.incr(redis_key)
                pipe.expire(redis_key, self.window_seconds, nx=True)
                pipe.ttl(redis_key)
                count, _, ttl = await pipe.execute()
        except RedisError as e:
            # Fail open while Redis is unavailable
            logger.warning(f"Rate limit check failed for {redis_key}, allowing request: {e}")
            return RateLimitResult(allowed=True, remaining=self.max_requests)

        count = int(count)
        remaining = max(self.max_requests - count, 0)
        if count <= self.max_requests:
            return RateLimitResult(allowed=True, remaining=remaining)

        ttl = int(ttl)
        retry_after = timedelta(seconds=ttl if ttl > 0 else self.window_seconds)
        logger.warning(
            f"Rate limit exceeded for {redis_key}: {count}/{self.max_requests} "
            f"(retry after {retry_after.total_seconds():.0f}s)"
        )
        return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)


class InMemoryRateLimiter:
    """
    Sliding-window limiter kept in process memory.

    Only correct for a single process. Used when RATE_LIMIT_BACKEND is
    "memory" and in tests.
    """

    def __init__(
        self,
        prefix: str,
        max_requests: int,
        window_seconds: int,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.prefix = prefix
        self.max_requests = max_requests
        self.window_seconds = window_seconds
        self._clock = clock
        self._hits: dict[str, deque[float]] = {}
        self._lock = asyncio.Lock()
        self._last_sweep = clock()

    async def check_and_consume(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            self._sweep(now)
            hits = self._hits.setdefault(key, deque())
            while hits and hits[0] <= now - self.window_seconds:
                hits.popleft()

            if len(hits) >= self.max_requests:
                retry_after = timedelta(seconds=max(hits[0] + self.window_seconds - now, 0))
                logger.warning(
                    f"Rate limit exceeded for {self.prefix}:{key}: "
                    f"{len(hits)}/{self.max_requests} in {self.window_seconds}s"
                )
                return RateLimitResult(allowed=False, remaining=0, retry_after=retry_after)

            hits.append(now)
            return RateLimitResult(
                allowed=True, remaining=self.max_requests - len(hits)
            )

    def _sweep(self, now: float) -> None:
        """Forget keys with no hits left in the window, at most once per window."""
        if now - self._last_sweep < self.window_seconds:
            return
        cutoff = now - self.window_seconds
        for key in [k for k, hits in self._hits.items() if not hits or hits[-1] <= cutoff]:
            del self._hits[key]
        self._last_sweep = now

    def reset(self) -> None:
        self._hits.clear()

    def __len__(self) -> int:
        return len(self._hits)


_memory_limiters: dict[str, InMemoryRateLimiter] = {}


def _build(prefix: str, max_requests: int, window_seconds: int, redis: Redis | None) -> RateLimiter:
    if settings.RATE_LIMIT_BACKEND == "redis" and redis is not None:
        return RedisRateLimiter(redis, prefix, max_requests, window_seconds)

    # One in-memory limiter per prefix, shared by every request in the process
    limiter = _memory_limiters.get(prefix)
    if limiter is None:
        limiter = InMemoryRateLimiter(prefix, max_requests, window_seconds)
        _memory_limiters[prefix] = limiter
    return limiter


def build_inbound_limiter(redis: Redis | None = None) -> RateLimiter:
    """Limiter for patient replies, keyed by sender address."""
    return _build(
        INBOUND_PREFIX,
        settings.INBOUND_RATE_LIMIT_MAX,
        settings.INBOUND_RATE_LIMIT_WINDOW_SECONDS,
        redis,
    )


def build_outbound_limiter(redis: Redis | None = None) -> RateLimiter:
    """Limiter for prompts sent to a recipient."""
    return _build(
        OUTBOUND_PREFIX,
        settings.OUTBOUND_RATE_LIMIT_MAX,
        settings.OUTBOUND_RATE_LIMIT_WINDOW_SECONDS,
        redis,
    )
