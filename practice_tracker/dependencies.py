from __future__ import annotations

import logging

import redis.asyncio as redis
from fastapi import Depends, Header, HTTPException, Request
from pydantic import BaseModel

from practice_tracker.config import Settings
from practice_tracker.models import ErrorCode
from practice_tracker.services.ai_parser import AIParser
from practice_tracker.services.ai_usage import (
    QuotaExceededError,
    RateLimitError,
    UsageGovernor,
    UsageLimits,
)
from practice_tracker.services.gpt import ConfigurationError, get_chat_provider
from practice_tracker.services.insights import WeeklyInsightGenerator
from practice_tracker.services.parsing import EntryParser
from practice_tracker.services.practice_store import SqlUsageStore
from practice_tracker.services.rate_limiter import LimitExceeded, build_request_limiter

settings = Settings()
redis_client = (
    redis.from_url(settings.redis_url, encoding="utf-8", decode_responses=True)
    if settings.redis_url
    else None
)
request_limiter = build_request_limiter(settings, redis_client)
usage_store = SqlUsageStore()

logger = logging.getLogger(__name__)


class ErrorResponse(BaseModel):
    code: str
    message: str


async def require_api_headers(
    x_api_key: str = Header(..., alias="X-API-Key"),
    x_api_ver: str | None = Header(None, alias="X-API-Ver"),
    x_user_id: str | None = Header(None, alias="X-User-ID"),
) -> str:
    if x_api_ver is None:
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Missing API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_ver != "v1":
        err = ErrorResponse(code=ErrorCode.UPGRADE_REQUIRED, message="Invalid API version")
        raise HTTPException(status_code=426, detail=err.model_dump())

    if x_api_key != settings.api_key:
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Invalid API key")
        raise HTTPException(status_code=401, detail=err.model_dump())

    if x_user_id is None or not x_user_id.strip():
        err = ErrorResponse(code=ErrorCode.UNAUTHORIZED, message="Missing user ID")
        raise HTTPException(status_code=401, detail=err.model_dump())

    return x_user_id.strip()


async def limit_request(user_id: str, endpoint: str) -> None:
    """Consume the global and per-user buckets for a non-metered request."""
    try:
        await request_limiter.check(user_id, endpoint)
    except LimitExceeded as exc:
        err = ErrorResponse(
            code=ErrorCode.RATE_LIMITED,
            message=f"Rate limit exceeded. Try again in {exc.retry_after_seconds} seconds.",
        )
        raise HTTPException(
            status_code=429,
            detail=err.model_dump(),
            headers={"Retry-After": str(exc.retry_after_seconds)},
        ) from exc


async def rate_limit(request: Request, user_id: str = Depends(require_api_headers)) -> str:
    """Throttle requests by user via the shared limiter."""
    await limit_request(user_id, request.url.path)
    return user_id


def usage_error(exc: RateLimitError | QuotaExceededError) -> HTTPException:
    """Map a governor rejection to a 429 response."""
    code = ErrorCode.QUOTA_EXCEEDED if isinstance(exc, QuotaExceededError) else ErrorCode.RATE_LIMITED
    headers = {"Retry-After": str(exc.retry_after)} if exc.retry_after else None
    err = ErrorResponse(code=code, message=str(exc))
    return HTTPException(status_code=429, detail=err.model_dump(), headers=headers)


def not_found(message: str) -> HTTPException:
    err = ErrorResponse(code=ErrorCode.NOT_FOUND, message=message)
    return HTTPException(status_code=404, detail=err.model_dump())


def get_governor() -> UsageGovernor:
    return UsageGovernor(
        usage_store,
        request_limiter,
        UsageLimits.from_settings(settings),
        tz=settings.usage_timezone,
    )


def get_ai_parser(governor: UsageGovernor = Depends(get_governor)) -> AIParser | None:
    """AI parser, or None when no provider credential is configured."""
    if not settings.ai_enabled:
        return None
    try:
        provider = get_chat_provider(settings)
    except ConfigurationError as exc:
        logger.warning("ai_unavailable", extra={"error": str(exc)})
        return None
    return AIParser(provider, governor)


def get_entry_parser(
    governor: UsageGovernor = Depends(get_governor),
    ai_parser: AIParser | None = Depends(get_ai_parser),
) -> EntryParser:
    return EntryParser(governor, ai_parser)


def get_insight_generator(
    governor: UsageGovernor = Depends(get_governor),
    ai_parser: AIParser | None = Depends(get_ai_parser),
) -> WeeklyInsightGenerator:
    return WeeklyInsightGenerator(governor, ai_parser)
