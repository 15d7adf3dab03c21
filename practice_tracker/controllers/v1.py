from fastapi import APIRouter

from . import daily_tip, entries, goals, insights, usage

router = APIRouter(prefix="/v1")
router.include_router(entries.router)
router.include_router(insights.router)
router.include_router(daily_tip.router)
router.include_router(goals.router)
router.include_router(usage.router)
