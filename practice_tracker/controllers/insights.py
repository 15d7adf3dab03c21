from __future__ import annotations

import asyncio
import datetime as dt
import logging
from dataclasses import asdict
from typing import Any

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from practice_tracker.dependencies import (
    ErrorResponse,
    get_insight_generator,
    limit_request,
    not_found,
    rate_limit,
    require_api_headers,
    usage_error,
)
from practice_tracker.services import practice_store
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError
from practice_tracker.services.insights import (
    WeeklyInsightGenerator,
    build_week_aggregate,
    week_bounds,
)

logger = logging.getLogger(__name__)

router = APIRouter()


class InsightsRequest(BaseModel):
    week_start: dt.date | None = None
    force_regenerate: bool = False
    use_ai: bool = True


class InsightsResponse(BaseModel):
    ok: bool = True
    insights: dict[str, Any] | None
    cached: bool = False
    message: str | None = None


def _collect_week(user_id: str, monday: dt.date):
    start, end = week_bounds(monday)
    prev_start, prev_end = week_bounds(start - dt.timedelta(days=7))
    logs = practice_store.list_logs_between(user_id, start, end)
    previous = practice_store.list_logs_between(user_id, prev_start, prev_end)
    target = practice_store.get_daily_target(user_id)
    goal = practice_store.get_active_goal(user_id)
    return build_week_aggregate(logs, previous, target, goal)


@router.get(
    "/weekly-insights",
    response_model=InsightsResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_weekly_insights(
    week_start: dt.date | None = Query(None),
    user_id: str = Depends(rate_limit),
):
    monday, _ = week_bounds(week_start or dt.date.today())
    row = await asyncio.to_thread(practice_store.get_weekly_insight, user_id, monday)
    if row is None:
        raise not_found("No insights for this week")
    return InsightsResponse(insights=row, cached=True)


@router.post(
    "/weekly-insights",
    response_model=InsightsResponse,
    responses={429: {"model": ErrorResponse}},
)
async def create_weekly_insights(
    body: InsightsRequest,
    user_id: str = Depends(require_api_headers),
    generator: WeeklyInsightGenerator = Depends(get_insight_generator),
):
    monday, _ = week_bounds(body.week_start or dt.date.today())

    if not body.force_regenerate:
        cached = await asyncio.to_thread(practice_store.get_weekly_insight, user_id, monday)
        if cached is not None:
            await limit_request(user_id, "weekly-insights")
            return InsightsResponse(insights=cached, cached=True)

    ai_path = body.use_ai and generator.ai_parser is not None
    if not ai_path:
        await limit_request(user_id, "weekly-insights")

    agg = await asyncio.to_thread(_collect_week, user_id, monday)
    try:
        outcome = await generator.generate(user_id, agg, use_ai=body.use_ai)
    except (RateLimitError, QuotaExceededError) as exc:
        raise usage_error(exc) from exc

    if outcome is None:
        if ai_path:
            # Empty weeks never reach the governor.
            await limit_request(user_id, "weekly-insights")
        return InsightsResponse(insights=None, message="No practice logged this week")

    metrics = agg.to_metrics()
    metrics["insights"] = [asdict(item) for item in outcome.result.insights]
    row = await asyncio.to_thread(
        practice_store.upsert_weekly_insight,
        user_id,
        monday,
        summary=outcome.result.summary,
        suggestions=outcome.result.recommendations,
        metrics=metrics,
        method=outcome.method,
    )
    logger.info(
        "weekly_insights_generated",
        extra={"user_id": user_id, "week_start": monday.isoformat(), "method": outcome.method},
    )
    return InsightsResponse(insights=row)
