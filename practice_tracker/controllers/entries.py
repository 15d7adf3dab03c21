from __future__ import annotations

import asyncio
import logging
import datetime as dt
from typing import Any

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field

from practice_tracker.dependencies import (
    ErrorResponse,
    get_entry_parser,
    limit_request,
    not_found,
    rate_limit,
    require_api_headers,
    usage_error,
)
from practice_tracker.models import ErrorCode
from practice_tracker.services import practice_store
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError
from practice_tracker.services.parsing import EntryParser, ParseOutcome

logger = logging.getLogger(__name__)

router = APIRouter()

MAX_RAW_TEXT_LENGTH = 2000


class LogRequest(BaseModel):
    raw_text: str = Field(..., min_length=1, max_length=MAX_RAW_TEXT_LENGTH)
    date: dt.date | None = None
    use_ai: bool = True


class LogResponse(BaseModel):
    ok: bool = True
    log: dict[str, Any]
    method: str


class DeleteActivityResponse(BaseModel):
    ok: bool = True
    deleted_entry: bool
    deleted_activity: dict[str, Any]
    entry: dict[str, Any] | None = None


async def _parse(
    parser: EntryParser, user_id: str, body: LogRequest, endpoint: str
) -> ParseOutcome:
    if not (body.use_ai and parser.ai_available):
        # Heuristic-only requests never reach the governor.
        await limit_request(user_id, endpoint)
    goal = await asyncio.to_thread(practice_store.get_active_goal, user_id)
    try:
        return await parser.parse(user_id, body.raw_text, use_ai=body.use_ai, goal=goal)
    except (RateLimitError, QuotaExceededError) as exc:
        raise usage_error(exc) from exc


@router.post(
    "/log",
    response_model=LogResponse,
    responses={
        401: {"model": ErrorResponse},
        426: {"model": ErrorResponse},
        429: {"model": ErrorResponse},
    },
)
async def log_practice(
    body: LogRequest,
    user_id: str = Depends(require_api_headers),
    parser: EntryParser = Depends(get_entry_parser),
):
    outcome = await _parse(parser, user_id, body, "log")
    row = await asyncio.to_thread(
        practice_store.save_practice_log,
        user_id,
        body.raw_text,
        outcome.entry,
        outcome.method,
        body.date,
    )
    logger.info(
        "practice_logged",
        extra={
            "user_id": user_id,
            "log_id": row["id"],
            "method": outcome.method,
            "total_minutes": row["total_minutes"],
        },
    )
    return LogResponse(log=row, method=outcome.method)


@router.get(
    "/entries/{entry_id}",
    responses={404: {"model": ErrorResponse}},
)
async def get_entry(entry_id: int, user_id: str = Depends(rate_limit)):
    row = await asyncio.to_thread(practice_store.get_practice_log, user_id, entry_id)
    if row is None:
        raise not_found("Entry not found")
    return row


@router.put(
    "/entries/{entry_id}",
    response_model=LogResponse,
    responses={404: {"model": ErrorResponse}, 429: {"model": ErrorResponse}},
)
async def update_entry(
    entry_id: int,
    body: LogRequest,
    user_id: str = Depends(require_api_headers),
    parser: EntryParser = Depends(get_entry_parser),
):
    existing = await asyncio.to_thread(practice_store.get_practice_log, user_id, entry_id)
    if existing is None:
        raise not_found("Entry not found")

    outcome = await _parse(parser, user_id, body, "entries")
    row = await asyncio.to_thread(
        practice_store.update_practice_log,
        user_id,
        entry_id,
        body.raw_text,
        outcome.entry,
        outcome.method,
        body.date,
    )
    if row is None:
        raise not_found("Entry not found")
    return LogResponse(log=row, method=outcome.method)


@router.delete(
    "/entries/{entry_id}",
    response_model=DeleteActivityResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def delete_entry_activity(
    entry_id: int,
    activity_index: int = Query(..., ge=0),
    user_id: str = Depends(rate_limit),
):
    try:
        result = await asyncio.to_thread(
            practice_store.delete_activity, user_id, entry_id, activity_index
        )
    except IndexError as exc:
        err = ErrorResponse(code=ErrorCode.BAD_REQUEST, message="Activity index out of range")
        raise HTTPException(status_code=400, detail=err.model_dump()) from exc
    if result is None:
        raise not_found("Entry not found")
    return DeleteActivityResponse(**result)
