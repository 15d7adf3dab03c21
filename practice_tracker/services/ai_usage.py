"""Per-user governance of metered AI calls.

``enforce`` rejects a call before it is made; ``record`` appends the usage
ledger row afterwards and never raises.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable
from zoneinfo import ZoneInfo

from practice_tracker.config import Settings
from practice_tracker.metrics import (
    ai_limit_reject_total,
    ai_tokens_total,
    ai_usage_record_fail_total,
)
from practice_tracker.services.practice_store import UsageRecord
from practice_tracker.services.rate_limiter import LimitExceeded, RequestRateLimiter

logger = logging.getLogger(__name__)

# USD per 1000 tokens, blended prompt/completion rate.
MODEL_COST_PER_1K = {
    "gpt-4o-mini": 0.0003,
    "gpt-4o": 0.005,
    "gpt-4.1-mini": 0.0008,
    "gpt-4.1": 0.004,
    "gpt-4.1-nano": 0.0002,
}
DEFAULT_COST_PER_1K = 0.002
COST_PRECISION = 6


class RateLimitError(Exception):
    code = "RATE_LIMITED"

    def __init__(self, message: str = "rate limit exceeded", retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class QuotaExceededError(Exception):
    code = "QUOTA_EXCEEDED"

    def __init__(self, message: str = "token quota exceeded", retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


@dataclass(frozen=True)
class UsageLimits:
    requests_per_minute: int
    requests_per_day: int
    tokens_per_month: int

    @classmethod
    def from_settings(cls, cfg: Settings) -> "UsageLimits":
        return cls(
            requests_per_minute=cfg.ai_max_requests_per_minute,
            requests_per_day=cfg.ai_max_requests_per_day,
            tokens_per_month=cfg.ai_max_tokens_per_month,
        )

    def merged(self, override: dict[str, int | None] | None) -> "UsageLimits":
        if not override:
            return self
        return UsageLimits(
            requests_per_minute=_pick(override.get("requests_per_minute"), self.requests_per_minute),
            requests_per_day=_pick(override.get("requests_per_day"), self.requests_per_day),
            tokens_per_month=_pick(override.get("tokens_per_month"), self.tokens_per_month),
        )


def _pick(value: int | None, fallback: int) -> int:
    return fallback if value is None else value


def estimate_cost(model: str, total_tokens: int | None) -> float | None:
    if total_tokens is None:
        return None
    rate = MODEL_COST_PER_1K.get(model, DEFAULT_COST_PER_1K)
    return round(total_tokens / 1000 * rate, COST_PRECISION)


class UsageGovernor:
    def __init__(
        self,
        store,
        limiter: RequestRateLimiter,
        defaults: UsageLimits,
        *,
        tz: str = "UTC",
        now: Callable[[], datetime] | None = None,
    ) -> None:
        self.store = store
        self.limiter = limiter
        self.defaults = defaults
        self.tz = ZoneInfo(tz)
        self._now = now or (lambda: datetime.now(timezone.utc))

    async def limits_for(self, user_id: str) -> UsageLimits:
        override = await asyncio.to_thread(self.store.get_limits, user_id)
        return self.defaults.merged(override)

    def _boundaries(self) -> tuple[datetime, datetime, datetime, datetime, datetime]:
        now = self._now()
        local = now.astimezone(self.tz)
        day_start = local.replace(hour=0, minute=0, second=0, microsecond=0)
        # Wall-clock addition keeps this on local midnight across DST shifts.
        next_day = day_start + timedelta(days=1)
        month_start = day_start.replace(day=1)
        if month_start.month == 12:
            next_month = month_start.replace(year=month_start.year + 1, month=1)
        else:
            next_month = month_start.replace(month=month_start.month + 1)
        return (
            now - timedelta(seconds=60),
            day_start.astimezone(timezone.utc),
            next_day.astimezone(timezone.utc),
            month_start.astimezone(timezone.utc),
            next_month.astimezone(timezone.utc),
        )

    async def enforce(
        self,
        user_id: str,
        endpoint: str,
        model: str,
        estimated_tokens: int | None = None,
    ) -> None:
        """Raise RateLimitError or QuotaExceededError if the call must not happen.

        Checks run in order: requests in the last 60 s, requests since local
        midnight, projected monthly tokens, then the shared limiter buckets.
        """
        limits = await self.limits_for(user_id)
        minute_ago, day_start, next_day, month_start, next_month = self._boundaries()

        minute_count = await asyncio.to_thread(self.store.count_since, user_id, minute_ago)
        if minute_count >= limits.requests_per_minute:
            self._reject("rate_minute", user_id, endpoint, model)
            raise RateLimitError("Too many AI requests per minute", retry_after=60)

        day_count = await asyncio.to_thread(self.store.count_since, user_id, day_start)
        if day_count >= limits.requests_per_day:
            self._reject("rate_day", user_id, endpoint, model)
            wait = int((next_day - self._now()).total_seconds())
            raise RateLimitError("Daily AI request limit reached", retry_after=max(wait, 1))

        used = await asyncio.to_thread(self.store.sum_tokens_since, user_id, month_start)
        projected = used + (estimated_tokens or 0)
        if projected > limits.tokens_per_month:
            self._reject("quota_month", user_id, endpoint, model, used=used, projected=projected)
            wait = int((next_month - self._now()).total_seconds())
            raise QuotaExceededError("Monthly AI token quota reached", retry_after=max(wait, 1))

        try:
            await self.limiter.check(user_id, endpoint)
        except LimitExceeded as exc:
            self._reject("limiter", user_id, endpoint, model)
            raise RateLimitError(
                f"Rate limit exceeded. Try again in {exc.retry_after_seconds} seconds.",
                retry_after=exc.retry_after_seconds,
            ) from exc

    def _reject(self, kind: str, user_id: str, endpoint: str, model: str, **extra) -> None:
        ai_limit_reject_total.labels(kind=kind).inc()
        event = "quota_exceeded" if kind.startswith("quota") else "rate_limit_exceeded"
        logger.warning(
            event,
            extra={"kind": kind, "user_id": user_id, "endpoint": endpoint, "model": model, **extra},
        )

    async def record(
        self,
        user_id: str,
        endpoint: str,
        model: str,
        prompt_tokens: int | None = None,
        completion_tokens: int | None = None,
        total_tokens: int | None = None,
        *,
        status: str = "ok",
    ) -> None:
        """Append a usage row. Failures are logged and swallowed."""
        if total_tokens is None and (prompt_tokens is not None or completion_tokens is not None):
            total_tokens = (prompt_tokens or 0) + (completion_tokens or 0)
        record = UsageRecord(
            user_id=user_id,
            endpoint=endpoint,
            model=model,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=total_tokens,
            cost_usd=estimate_cost(model, total_tokens),
            status=status,
            created_at=self._now(),
        )
        try:
            await asyncio.to_thread(self.store.add, record)
        except Exception:
            ai_usage_record_fail_total.inc()
            logger.exception(
                "usage_record_failed",
                extra={"user_id": user_id, "endpoint": endpoint, "model": model},
            )
            return
        if total_tokens:
            ai_tokens_total.labels(endpoint=endpoint).inc(total_tokens)


__all__ = [
    "MODEL_COST_PER_1K",
    "DEFAULT_COST_PER_1K",
    "RateLimitError",
    "QuotaExceededError",
    "UsageLimits",
    "UsageGovernor",
    "estimate_cost",
]
