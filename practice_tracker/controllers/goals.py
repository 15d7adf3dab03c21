from __future__ import annotations

import asyncio
import datetime as dt
import logging
from typing import Annotated, Any, Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, Field, StringConstraints

from practice_tracker.dependencies import ErrorResponse, not_found, rate_limit
from practice_tracker.models import ErrorCode
from practice_tracker.services import practice_store

logger = logging.getLogger(__name__)

router = APIRouter()

GoalType = Literal["piece", "exam", "technique", "performance", "general"]
Difficulty = Literal["beginner", "intermediate", "advanced"]
GoalStatus = Literal["active", "completed", "paused"]
Title = Annotated[str, StringConstraints(strip_whitespace=True, min_length=3, max_length=120)]
Description = Annotated[str, StringConstraints(strip_whitespace=True, max_length=600)]

# Columns that may be cleared with an explicit null.
NULLABLE_FIELDS = {"description", "difficulty_level", "target_date"}


class GoalCreateRequest(BaseModel):
    title: Title
    description: Description | None = None
    goal_type: GoalType
    difficulty_level: Difficulty | None = None
    target_date: dt.date | None = None


class GoalUpdateRequest(BaseModel):
    title: Title | None = None
    description: Description | None = None
    goal_type: GoalType | None = None
    difficulty_level: Difficulty | None = None
    target_date: dt.date | None = None
    status: GoalStatus | None = None


class GoalResponse(BaseModel):
    ok: bool = True
    goal: dict[str, Any] | None


class DailyTargetRequest(BaseModel):
    daily_target: int = Field(..., ge=1, le=480)


class DailyTargetResponse(BaseModel):
    ok: bool = True
    daily_target: int


@router.get("/overarching-goals", response_model=GoalResponse)
async def get_goal(user_id: str = Depends(rate_limit)):
    goal = await asyncio.to_thread(practice_store.get_active_goal_row, user_id)
    return GoalResponse(goal=goal)


@router.post(
    "/overarching-goals",
    response_model=GoalResponse,
    responses={400: {"model": ErrorResponse}},
)
async def create_goal(body: GoalCreateRequest, user_id: str = Depends(rate_limit)):
    fields = body.model_dump()
    try:
        goal = await asyncio.to_thread(practice_store.create_goal, user_id, **fields)
    except practice_store.ActiveGoalExists as exc:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message=str(exc))
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc
    logger.info("goal_created", extra={"user_id": user_id, "goal_id": goal["id"]})
    return GoalResponse(goal=goal)


@router.put(
    "/overarching-goals",
    response_model=GoalResponse,
    responses={404: {"model": ErrorResponse}},
)
async def update_goal(body: GoalUpdateRequest, user_id: str = Depends(rate_limit)):
    fields = {
        name: value
        for name, value in body.model_dump(exclude_unset=True).items()
        if value is not None or name in NULLABLE_FIELDS
    }
    goal = await asyncio.to_thread(practice_store.update_active_goal, user_id, **fields)
    if goal is None:
        raise not_found("No active goal found to update")
    return GoalResponse(goal=goal)


@router.delete(
    "/overarching-goals",
    response_model=GoalResponse,
    responses={404: {"model": ErrorResponse}},
)
async def pause_goal(user_id: str = Depends(rate_limit)):
    goal = await asyncio.to_thread(practice_store.update_active_goal, user_id, status="paused")
    if goal is None:
        raise not_found("No active goal found to pause")
    return GoalResponse(goal=goal)


@router.get("/goal", response_model=DailyTargetResponse)
async def get_daily_target(user_id: str = Depends(rate_limit)):
    target = await asyncio.to_thread(practice_store.get_daily_target, user_id)
    return DailyTargetResponse(daily_target=target)


@router.put("/goal", response_model=DailyTargetResponse)
async def set_daily_target(body: DailyTargetRequest, user_id: str = Depends(rate_limit)):
    target = await asyncio.to_thread(practice_store.set_daily_target, user_id, body.daily_target)
    logger.info("daily_target_updated", extra={"user_id": user_id, "daily_target": target})
    return DailyTargetResponse(daily_target=target)
