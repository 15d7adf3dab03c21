"""Synchronous persistence helpers; async callers wrap them in ``asyncio.to_thread``."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from sqlalchemy import func, select

from practice_tracker import db as db_module
from practice_tracker.config import Settings
from practice_tracker.models import (
    AiLimits,
    AiUsage,
    OverarchingGoal,
    PracticeLog,
    Profile,
    WeeklyInsight,
)
from practice_tracker.services.entry_schema import MAX_MINUTES, ParsedEntry

settings = Settings()


@dataclass(frozen=True)
class GoalContext:
    """Read-only view of the active goal handed to prompts and summaries."""

    id: int | None
    title: str
    goal_type: str = "general"
    description: str | None = None
    difficulty_level: str | None = None
    target_date: date | None = None

    @classmethod
    def from_model(cls, goal: OverarchingGoal) -> "GoalContext":
        return cls(
            id=goal.id,
            title=goal.title,
            goal_type=goal.goal_type or "general",
            description=goal.description,
            difficulty_level=goal.difficulty_level,
            target_date=goal.target_date,
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "goal_type": self.goal_type,
            "description": self.description,
            "difficulty_level": self.difficulty_level,
            "target_date": self.target_date.isoformat() if self.target_date else None,
        }


@dataclass(frozen=True)
class UsageRecord:
    user_id: str
    endpoint: str
    model: str
    prompt_tokens: int | None
    completion_tokens: int | None
    total_tokens: int | None
    cost_usd: float | None
    status: str
    created_at: datetime


# --------------------------------------------------------------------------- #
# Goals and profiles
# --------------------------------------------------------------------------- #
class ActiveGoalExists(ValueError):
    """A user may hold only one active goal at a time."""


def _active_goal_row(db, user_id: str) -> OverarchingGoal | None:
    return db.execute(
        select(OverarchingGoal)
        .where(OverarchingGoal.user_id == user_id, OverarchingGoal.status == "active")
        .order_by(OverarchingGoal.created_at.desc(), OverarchingGoal.id.desc())
        .limit(1)
    ).scalar_one_or_none()


def get_active_goal(user_id: str) -> GoalContext | None:
    with db_module.SessionLocal() as db:
        goal = _active_goal_row(db, user_id)
        return GoalContext.from_model(goal) if goal else None


def get_active_goal_row(user_id: str) -> dict[str, Any] | None:
    with db_module.SessionLocal() as db:
        goal = _active_goal_row(db, user_id)
        return goal.to_dict() if goal else None


def create_goal(user_id: str, **fields: Any) -> dict[str, Any]:
    with db_module.SessionLocal() as db:
        if _active_goal_row(db, user_id) is not None:
            raise ActiveGoalExists("You already have an active goal. Complete or pause it first.")
        goal = OverarchingGoal(user_id=user_id, status="active", **fields)
        db.add(goal)
        db.commit()
        db.refresh(goal)
        return goal.to_dict()


def update_active_goal(user_id: str, **fields: Any) -> dict[str, Any] | None:
    """Apply ``fields`` to the active goal; None when there is none.

    Setting ``status`` to paused or completed frees the slot for a new goal.
    """
    with db_module.SessionLocal() as db:
        goal = _active_goal_row(db, user_id)
        if goal is None:
            return None
        for name, value in fields.items():
            setattr(goal, name, value)
        db.commit()
        db.refresh(goal)
        return goal.to_dict()


def get_daily_target(user_id: str) -> int:
    with db_module.SessionLocal() as db:
        target = db.execute(
            select(Profile.daily_target).where(Profile.user_id == user_id)
        ).scalar_one_or_none()
    return target or settings.default_daily_target


def set_daily_target(user_id: str, minutes: int) -> int:
    with db_module.SessionLocal() as db:
        profile = db.get(Profile, user_id)
        if profile is None:
            profile = Profile(user_id=user_id)
            db.add(profile)
        profile.daily_target = minutes
        db.commit()
    return minutes


# --------------------------------------------------------------------------- #
# Practice logs
# --------------------------------------------------------------------------- #
def save_practice_log(
    user_id: str,
    raw_text: str,
    parsed: ParsedEntry,
    method: str,
    logged_at: date | None = None,
) -> dict[str, Any]:
    with db_module.SessionLocal() as db:
        row = PracticeLog(
            user_id=user_id,
            logged_at=logged_at or date.today(),
            raw_text=raw_text,
            total_minutes=parsed.total_minutes,
            activities=parsed.as_payload(),
            parse_method=method,
        )
        db.add(row)
        db.commit()
        db.refresh(row)
        return row.to_dict()


def get_practice_log(user_id: str, log_id: int) -> dict[str, Any] | None:
    with db_module.SessionLocal() as db:
        row = _owned_log(db, user_id, log_id)
        return row.to_dict() if row else None


def update_practice_log(
    user_id: str,
    log_id: int,
    raw_text: str,
    parsed: ParsedEntry,
    method: str,
    logged_at: date | None = None,
) -> dict[str, Any] | None:
    with db_module.SessionLocal() as db:
        row = _owned_log(db, user_id, log_id)
        if row is None:
            return None
        row.raw_text = raw_text
        row.total_minutes = parsed.total_minutes
        row.activities = parsed.as_payload()
        row.parse_method = method
        if logged_at is not None:
            row.logged_at = logged_at
        db.commit()
        db.refresh(row)
        return row.to_dict()


def delete_activity(user_id: str, log_id: int, index: int) -> dict[str, Any] | None:
    """Remove one activity; the whole row goes when nothing is left.

    Returns None when the log is missing, otherwise a dict with
    ``deleted_activity`` and either ``entry`` or ``deleted_entry=True``.
    Raises IndexError for an out-of-range index.
    """
    with db_module.SessionLocal() as db:
        row = _owned_log(db, user_id, log_id)
        if row is None:
            return None
        activities = list(row.activities or [])
        if index < 0 or index >= len(activities):
            raise IndexError("activity index out of range")
        removed = activities.pop(index)
        if not activities:
            db.delete(row)
            db.commit()
            return {"deleted_entry": True, "deleted_activity": removed}
        row.activities = activities
        row.total_minutes = min(MAX_MINUTES, sum(int(a.get("minutes") or 0) for a in activities))
        db.commit()
        db.refresh(row)
        return {"deleted_entry": False, "deleted_activity": removed, "entry": row.to_dict()}


def list_logs_between(user_id: str, start: date, end: date) -> list[dict[str, Any]]:
    with db_module.SessionLocal() as db:
        rows = db.execute(
            select(PracticeLog)
            .where(
                PracticeLog.user_id == user_id,
                PracticeLog.logged_at >= start,
                PracticeLog.logged_at <= end,
            )
            .order_by(PracticeLog.logged_at.asc(), PracticeLog.id.asc())
        ).scalars()
        return [row.to_dict() for row in rows]


def _owned_log(db, user_id: str, log_id: int) -> PracticeLog | None:
    return db.execute(
        select(PracticeLog).where(PracticeLog.id == log_id, PracticeLog.user_id == user_id)
    ).scalar_one_or_none()


# --------------------------------------------------------------------------- #
# Weekly insights
# --------------------------------------------------------------------------- #
def get_weekly_insight(user_id: str, week_start: date) -> dict[str, Any] | None:
    with db_module.SessionLocal() as db:
        row = db.execute(
            select(WeeklyInsight).where(
                WeeklyInsight.user_id == user_id, WeeklyInsight.week_start == week_start
            )
        ).scalar_one_or_none()
        return row.to_dict() if row else None


def upsert_weekly_insight(
    user_id: str,
    week_start: date,
    *,
    summary: str | None,
    suggestions: list[str],
    metrics: dict[str, Any],
    method: str | None,
) -> dict[str, Any]:
    with db_module.SessionLocal() as db:
        row = db.execute(
            select(WeeklyInsight).where(
                WeeklyInsight.user_id == user_id, WeeklyInsight.week_start == week_start
            )
        ).scalar_one_or_none()
        if row is None:
            row = WeeklyInsight(user_id=user_id, week_start=week_start)
            db.add(row)
        row.summary = summary
        row.suggestions = suggestions
        row.metrics = metrics
        row.method = method
        db.commit()
        db.refresh(row)
        return row.to_dict()


# --------------------------------------------------------------------------- #
# AI usage ledger
# --------------------------------------------------------------------------- #
def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class SqlUsageStore:
    """Usage ledger and limit overrides backed by the ``ai_usage``/``ai_limits`` tables."""

    def get_limits(self, user_id: str) -> dict[str, int | None] | None:
        with db_module.SessionLocal() as db:
            row = db.get(AiLimits, user_id)
            if row is None:
                return None
            return {
                "requests_per_minute": row.requests_per_minute,
                "requests_per_day": row.requests_per_day,
                "tokens_per_month": row.tokens_per_month,
            }

    def set_limits(
        self,
        user_id: str,
        *,
        requests_per_minute: int | None = None,
        requests_per_day: int | None = None,
        tokens_per_month: int | None = None,
    ) -> None:
        with db_module.SessionLocal() as db:
            row = db.get(AiLimits, user_id)
            if row is None:
                row = AiLimits(user_id=user_id)
                db.add(row)
            row.requests_per_minute = requests_per_minute
            row.requests_per_day = requests_per_day
            row.tokens_per_month = tokens_per_month
            db.commit()

    def count_since(self, user_id: str, since: datetime) -> int:
        with db_module.SessionLocal() as db:
            return db.execute(
                select(func.count(AiUsage.id)).where(
                    AiUsage.user_id == user_id, AiUsage.created_at >= _as_utc(since)
                )
            ).scalar_one()

    def sum_tokens_since(self, user_id: str, since: datetime) -> int:
        with db_module.SessionLocal() as db:
            total = db.execute(
                select(func.coalesce(func.sum(AiUsage.total_tokens), 0)).where(
                    AiUsage.user_id == user_id, AiUsage.created_at >= _as_utc(since)
                )
            ).scalar_one()
            return int(total or 0)

    def add(self, record: UsageRecord) -> None:
        with db_module.SessionLocal() as db:
            db.add(
                AiUsage(
                    user_id=record.user_id,
                    endpoint=record.endpoint,
                    model=record.model,
                    prompt_tokens=record.prompt_tokens,
                    completion_tokens=record.completion_tokens,
                    total_tokens=record.total_tokens,
                    cost_usd=record.cost_usd,
                    status=record.status,
                    created_at=_as_utc(record.created_at),
                )
            )
            db.commit()

    def summary(self, days: int = 30, user_id: str | None = None) -> dict[str, Any]:
        """Requests, tokens and cost over the last ``days`` grouped by endpoint and model."""
        since = datetime.now(timezone.utc) - timedelta(days=days)
        with db_module.SessionLocal() as db:
            query = select(AiUsage).where(AiUsage.created_at >= since)
            if user_id is not None:
                query = query.where(AiUsage.user_id == user_id)
            rows = db.execute(query).scalars().all()

        totals = {"requests": 0, "tokens": 0, "cost_usd": 0.0}
        by_endpoint: dict[str, dict[str, Any]] = {}
        by_model: dict[str, dict[str, Any]] = {}
        for row in rows:
            tokens = row.total_tokens or 0
            cost = row.cost_usd or 0.0
            for bucket in (
                totals,
                by_endpoint.setdefault(row.endpoint, {"requests": 0, "tokens": 0, "cost_usd": 0.0}),
                by_model.setdefault(row.model, {"requests": 0, "tokens": 0, "cost_usd": 0.0}),
            ):
                bucket["requests"] += 1
                bucket["tokens"] += tokens
                bucket["cost_usd"] += cost
        for bucket in (totals, *by_endpoint.values(), *by_model.values()):
            bucket["cost_usd"] = round(bucket["cost_usd"], 6)
        return {"days": days, "totals": totals, "by_endpoint": by_endpoint, "by_model": by_model}


__all__ = [
    "GoalContext",
    "UsageRecord",
    "SqlUsageStore",
    "ActiveGoalExists",
    "get_active_goal",
    "get_active_goal_row",
    "create_goal",
    "update_active_goal",
    "get_daily_target",
    "set_daily_target",
    "save_practice_log",
    "get_practice_log",
    "update_practice_log",
    "delete_activity",
    "list_logs_between",
    "get_weekly_insight",
    "upsert_weekly_insight",
]
