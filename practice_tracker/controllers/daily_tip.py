from __future__ import annotations

import asyncio
import datetime as dt

from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel

from practice_tracker.dependencies import (
    ErrorResponse,
    get_ai_parser,
    get_governor,
    limit_request,
    require_api_headers,
    usage_error,
)
from practice_tracker.services import practice_store
from practice_tracker.services.ai_parser import AIParser
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError, UsageGovernor
from practice_tracker.services.daily_tip import generate_daily_tip

router = APIRouter()

RECENT_DAYS = 7


class DailyTipResponse(BaseModel):
    ok: bool = True
    tip: str | None
    method: str | None = None
    goal: dict | None = None


@router.get(
    "/daily-tip",
    response_model=DailyTipResponse,
    responses={429: {"model": ErrorResponse}},
)
async def daily_tip(
    use_ai: bool = Query(True),
    user_id: str = Depends(require_api_headers),
    governor: UsageGovernor = Depends(get_governor),
    ai_parser: AIParser | None = Depends(get_ai_parser),
):
    goal = await asyncio.to_thread(practice_store.get_active_goal, user_id)
    if goal is None or not (use_ai and ai_parser is not None):
        await limit_request(user_id, "daily-tip")
    if goal is None:
        return DailyTipResponse(tip=None)

    today = dt.date.today()
    recent = await asyncio.to_thread(
        practice_store.list_logs_between,
        user_id,
        today - dt.timedelta(days=RECENT_DAYS),
        today,
    )
    try:
        outcome = await generate_daily_tip(
            governor, ai_parser, user_id, goal, list(reversed(recent)), use_ai=use_ai
        )
    except (RateLimitError, QuotaExceededError) as exc:
        raise usage_error(exc) from exc
    return DailyTipResponse(tip=outcome.tip, method=outcome.method, goal=goal.to_dict())
