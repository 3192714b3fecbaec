"""Sliding-window attempt limiting for domain operations.

Two backends implement the same interface:
- MemoryAttemptLimiter keeps an exact log of attempt times per key. It is only
  correct when a single process serves all requests.
- RedisAttemptLimiter keeps the log in a Redis sorted set, so every instance
  of a horizontally scaled deployment shares one budget per key.

Example:
    limiter = create_attempt_limiter(config.rate_limit)

    result = await limiter.hit(f"domain-attempts:{tenant_id}")
    if not result.allowed:
        raise RateLimited(..., reset_in=result.reset_after)
"""

from __future__ import annotations

import asyncio
import uuid
from abc import ABC, abstractmethod
from collections import OrderedDict, deque
from collections.abc import Callable
from dataclasses import dataclass
from time import monotonic, time
from typing import TYPE_CHECKING

import structlog
from redis import asyncio as aioredis

if TYPE_CHECKING:
    from hostgate.core.config import RateLimitingConfig

logger = structlog.get_logger()


@dataclass
class RateLimitConfig:
    """Configuration for one attempt limiter."""

    max_attempts: int = 5
    window_seconds: float = 3600.0
    max_entries: int = 10000


@dataclass
class RateLimitResult:
    """Result of a rate limit check."""

    allowed: bool
    remaining: int
    reset_after: float
    limit: int


class AttemptLimiter(ABC):
    """Counts attempts per key in a trailing window."""

    def __init__(self, config: RateLimitConfig) -> None:
        self.config = config

    @abstractmethod
    async def hit(self, key: str) -> RateLimitResult:
        """Record an attempt if the budget allows it."""

    @abstractmethod
    async def peek(self, key: str) -> RateLimitResult:
        """Report the budget without recording an attempt."""

    @abstractmethod
    async def reset(self, key: str) -> None:
        """Forget every attempt recorded for key."""

    async def close(self) -> None:
        return None


class MemoryAttemptLimiter(AttemptLimiter):
    """Exact sliding log per key with LRU eviction.

    Thread-safe for async usage within one process.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        clock: Callable[[], float] = monotonic,
    ) -> None:
        super().__init__(config or RateLimitConfig())
        self._clock = clock
        self._logs: OrderedDict[str, deque[float]] = OrderedDict()
        self._lock = asyncio.Lock()

    def _log_for(self, key: str, now: float) -> deque[float]:
        log = self._logs.get(key)
        if log is None:
            log = deque()
            self._logs[key] = log
            while len(self._logs) > self.config.max_entries:
                self._logs.popitem(last=False)
        else:
            self._logs.move_to_end(key)

        cutoff = now - self.config.window_seconds
        while log and log[0] <= cutoff:
            log.popleft()
        return log

    def _result(self, log: deque[float], now: float, allowed: bool) -> RateLimitResult:
        limit = self.config.max_attempts
        reset_after = (log[0] + self.config.window_seconds - now) if log else 0.0
        return RateLimitResult(
            allowed=allowed,
            remaining=max(0, limit - len(log)),
            reset_after=max(0.0, reset_after),
            limit=limit,
        )

    async def hit(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            log = self._log_for(key, now)
            if len(log) >= self.config.max_attempts:
                return self._result(log, now, allowed=False)
            log.append(now)
            return self._result(log, now, allowed=True)

    async def peek(self, key: str) -> RateLimitResult:
        async with self._lock:
            now = self._clock()
            log = self._logs.get(key)
            if log is None:
                return self._result(deque(), now, allowed=True)
            log = self._log_for(key, now)
            return self._result(log, now, allowed=len(log) < self.config.max_attempts)

    async def reset(self, key: str) -> None:
        async with self._lock:
            self._logs.pop(key, None)

    @property
    def entry_count(self) -> int:
        """Number of tracked keys."""
        return len(self._logs)


class RedisAttemptLimiter(AttemptLimiter):
    """Sliding window in a Redis sorted set, shared by all instances.

    Each attempt is a member scored by its wall-clock time. Trimming, counting
    and adding run in one MULTI/EXEC pipeline; a rejected attempt removes the
    member it just added.
    """

    def __init__(
        self,
        config: RateLimitConfig | None = None,
        redis_url: str = "redis://localhost:6379/0",
        client: aioredis.Redis | None = None,
        key_prefix: str = "hostgate:ratelimit:",
        clock: Callable[[], float] = time,
    ) -> None:
        super().__init__(config or RateLimitConfig())
        self._client = client or aioredis.Redis.from_url(
            redis_url,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        self._prefix = key_prefix
        self._clock = clock

    def _key(self, key: str) -> str:
        return f"{self._prefix}{key}"

    async def _reset_after(self, redis_key: str, now: float) -> float:
        oldest = await self._client.zrange(redis_key, 0, 0, withscores=True)
        if not oldest:
            return 0.0
        return max(0.0, oldest[0][1] + self.config.window_seconds - now)

    async def hit(self, key: str) -> RateLimitResult:
        redis_key = self._key(key)
        now = self._clock()
        window = self.config.window_seconds
        limit = self.config.max_attempts
        member = f"{now}:{uuid.uuid4().hex}"

        async with self._client.pipeline(transaction=True) as pipe:
            pipe.zremrangebyscore(redis_key, 0, now - window)
            pipe.zcard(redis_key)
            pipe.zadd(redis_key, {member: now})
            pipe.expire(redis_key, int(window) + 10)
            results = await pipe.execute()
        current = results[1]

        if current >= limit:
            await self._client.zrem(redis_key, member)
            logger.debug("Attempt rejected", key=key, count=current)
            return RateLimitResult(
                allowed=False,
                remaining=0,
                reset_after=await self._reset_after(redis_key, now),
                limit=limit,
            )

        return RateLimitResult(
            allowed=True,
            remaining=max(0, limit - current - 1),
            reset_after=await self._reset_after(redis_key, now),
            limit=limit,
        )

    async def peek(self, key: str) -> RateLimitResult:
        redis_key = self._key(key)
        now = self._clock()
        await self._client.zremrangebyscore(redis_key, 0, now - self.config.window_seconds)
        current = await self._client.zcard(redis_key)
        limit = self.config.max_attempts
        return RateLimitResult(
            allowed=current < limit,
            remaining=max(0, limit - current),
            reset_after=await self._reset_after(redis_key, now),
            limit=limit,
        )

    async def reset(self, key: str) -> None:
        await self._client.delete(self._key(key))

    async def close(self) -> None:
        await self._client.aclose()


def create_attempt_limiter(
    settings: RateLimitingConfig,
    scope: str = "tenant",
) -> AttemptLimiter:
    """Create the limiter for a scope from configuration.

    Args:
        settings: The rate_limit configuration section.
        scope: "tenant" for claim/verify attempts, "churn" for per-actor claims.
    """
    if scope == "churn":
        config = RateLimitConfig(
            max_attempts=settings.churn_max_claims,
            window_seconds=settings.churn_window_seconds,
            max_entries=settings.max_entries,
        )
    else:
        config = RateLimitConfig(
            max_attempts=settings.max_attempts,
            window_seconds=settings.window_seconds,
            max_entries=settings.max_entries,
        )

    if settings.backend == "redis":
        return RedisAttemptLimiter(config=config, redis_url=settings.redis_url)

    logger.warning(
        "Using in-memory attempt limiter; counts are not shared between instances",
        scope=scope,
    )
    return MemoryAttemptLimiter(config=config)
