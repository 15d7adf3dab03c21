"""Fixed-window request limiters with a Redis backend and a per-process fallback.

Both backends expose ``await consume(key)`` which either returns or raises
:class:`LimitExceeded` carrying the wait in milliseconds.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from redis.exceptions import RedisError

from practice_tracker.config import Settings

logger = logging.getLogger(__name__)

AI_ENDPOINTS = frozenset({"parseEntry", "weeklyInsights", "dailyTip"})


class LimitExceeded(Exception):
    def __init__(self, key: str, retry_after_ms: int):
        self.key = key
        self.retry_after_ms = max(0, int(retry_after_ms))
        super().__init__(f"limit exceeded for {key}")

    @property
    def retry_after_seconds(self) -> int:
        return math.ceil(self.retry_after_ms / 1000)


@dataclass
class _Window:
    count: int
    reset_at: float


class MemoryRateLimiter:
    """Per-process limiter; counts are not shared between workers."""

    _PRUNE_THRESHOLD = 10_000

    def __init__(
        self,
        points: int,
        duration: int,
        *,
        block_duration: int = 0,
        key_prefix: str = "rl",
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.points = points
        self.duration = duration
        self.block_duration = block_duration
        self.key_prefix = key_prefix
        self._clock = clock
        self._windows: dict[str, _Window] = {}

    async def consume(self, key: str) -> None:
        full_key = f"{self.key_prefix}:{key}"
        now = self._clock()
        window = self._windows.get(full_key)
        if window is None or window.reset_at <= now:
            if len(self._windows) >= self._PRUNE_THRESHOLD:
                self._prune(now)
            window = _Window(count=0, reset_at=now + self.duration)
            self._windows[full_key] = window
        window.count += 1
        if window.count <= self.points:
            return
        if self.block_duration and window.count == self.points + 1:
            window.reset_at = max(window.reset_at, now + self.block_duration)
        raise LimitExceeded(full_key, round((window.reset_at - now) * 1000))

    def _prune(self, now: float) -> None:
        expired = [k for k, w in self._windows.items() if w.reset_at <= now]
        for k in expired:
            del self._windows[k]


class RedisRateLimiter:
    """Limiter shared across processes through atomic Redis counters.

    Redis errors degrade to the ``insurance`` limiter instead of failing the
    request.
    """

    def __init__(
        self,
        client,
        points: int,
        duration: int,
        *,
        block_duration: int = 0,
        key_prefix: str = "rl",
        insurance: MemoryRateLimiter | None = None,
    ) -> None:
        self.client = client
        self.points = points
        self.duration = duration
        self.block_duration = block_duration
        self.key_prefix = key_prefix
        self.insurance = insurance or MemoryRateLimiter(
            points, duration, block_duration=block_duration, key_prefix=key_prefix
        )

    async def consume(self, key: str) -> None:
        full_key = f"{self.key_prefix}:{key}"
        duration_ms = self.duration * 1000
        try:
            pipe = self.client.pipeline()
            pipe.set(full_key, 0, nx=True, px=duration_ms)
            pipe.incr(full_key)
            pipe.pttl(full_key)
            _, count, ttl = await pipe.execute()
            if self.block_duration and count == self.points + 1:
                ttl = self.block_duration * 1000
                await self.client.pexpire(full_key, ttl)
        except RedisError as exc:
            logger.warning(
                "rate_limiter_degraded",
                extra={"limiter": self.key_prefix, "error": str(exc)},
            )
            await self.insurance.consume(key)
            return
        if count > self.points:
            raise LimitExceeded(full_key, ttl if ttl and ttl > 0 else duration_ms)


class RequestRateLimiter:
    """Global, per-user and per-user-per-AI-endpoint buckets checked in order."""

    def __init__(self, global_limiter, user_limiter, ai_limiter) -> None:
        self.global_limiter = global_limiter
        self.user_limiter = user_limiter
        self.ai_limiter = ai_limiter

    async def check(self, user_id: str | None, endpoint: str) -> None:
        subject = user_id or "anon"
        try:
            await self.global_limiter.consume("global")
            await self.user_limiter.consume(subject)
            if endpoint in AI_ENDPOINTS:
                await self.ai_limiter.consume(f"{subject}:{endpoint}")
        except LimitExceeded as exc:
            logger.warning(
                "rate_limit_exceeded",
                extra={
                    "user_id": subject,
                    "endpoint": endpoint,
                    "bucket": exc.key,
                    "retry_after_sec": exc.retry_after_seconds,
                },
            )
            raise


def build_request_limiter(settings: Settings, redis_client=None) -> RequestRateLimiter:
    """Pick the Redis backend when a client is available, memory otherwise."""

    specs = (
        ("rl_global", settings.rate_limit_global_per_minute, 0),
        ("rl_user", settings.rate_limit_user_per_minute, settings.rate_limit_user_block_seconds),
        ("rl_ai", settings.rate_limit_ai_per_minute, settings.rate_limit_ai_block_seconds),
    )
    limiters = []
    for prefix, points, block in specs:
        memory = MemoryRateLimiter(points, 60, block_duration=block, key_prefix=prefix)
        if redis_client is None:
            limiters.append(memory)
        else:
            limiters.append(
                RedisRateLimiter(
                    redis_client,
                    points,
                    60,
                    block_duration=block,
                    key_prefix=prefix,
                    insurance=memory,
                )
            )
    if redis_client is None:
        logger.info("Using in-memory rate limiter")
    return RequestRateLimiter(*limiters)


__all__ = [
    "AI_ENDPOINTS",
    "LimitExceeded",
    "MemoryRateLimiter",
    "RedisRateLimiter",
    "RequestRateLimiter",
    "build_request_limiter",
]
