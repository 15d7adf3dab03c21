from __future__ import annotations

import asyncio

from fastapi import APIRouter, Depends, Query

from practice_tracker.dependencies import rate_limit, usage_store

router = APIRouter()


@router.get("/ai-usage")
async def ai_usage(
    days: int = Query(30, ge=1, le=365),
    user_id: str = Depends(rate_limit),
):
    """Caller's own AI usage over the last ``days`` days."""
    summary = await asyncio.to_thread(usage_store.summary, days, user_id)
    return {"ok": True, **summary}
