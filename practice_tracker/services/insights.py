"""Weekly practice aggregation and insight generation (AI or rule based)."""

from __future__ import annotations

import json
import logging
from dataclasses import asdict, dataclass, field
from datetime import date, timedelta
from typing import Any, Iterable

from practice_tracker.metrics import ai_fallback_total, weekly_insights_total
from practice_tracker.services.ai_parser import AIParseError, AIParser, extract_json_object
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError, UsageGovernor
from practice_tracker.services.practice_store import GoalContext

logger = logging.getLogger(__name__)

INSIGHTS_ENDPOINT = "weeklyInsights"
INSIGHT_TYPES = ("progress", "achievement", "concern", "recommendation")
MAX_INSIGHTS = 5
MAX_BASIC_INSIGHTS = 3
MAX_RECOMMENDATIONS = 5
INSIGHTS_TEMPERATURE = 0.7
INSIGHTS_MAX_TOKENS = 800
INSIGHTS_ESTIMATED_TOKENS = 1500

SYSTEM_PROMPT = (
    "You are an encouraging music teacher reviewing a student's week of practice. "
    "Return only valid JSON, no additional text or formatting."
)


@dataclass(frozen=True)
class WeekAggregate:
    total_minutes: int
    days_practiced: int
    days_hit_goal: int
    daily_target: int
    category_minutes: dict[str, int] = field(default_factory=dict)
    previous_week_minutes: int | None = None
    activities: tuple[dict[str, Any], ...] = ()
    goal: GoalContext | None = None

    @property
    def category_percentages(self) -> dict[str, int]:
        if self.total_minutes <= 0:
            return {cat: 0 for cat in self.category_minutes}
        return {
            cat: round(mins / self.total_minutes * 100)
            for cat, mins in self.category_minutes.items()
        }

    @property
    def minutes_change_percent(self) -> int | None:
        if not self.previous_week_minutes:
            return None
        delta = self.total_minutes - self.previous_week_minutes
        return round(delta / self.previous_week_minutes * 100)

    def to_metrics(self) -> dict[str, Any]:
        return {
            "total_minutes": self.total_minutes,
            "days_practiced": self.days_practiced,
            "days_hit_goal": self.days_hit_goal,
            "daily_target": self.daily_target,
            "category_minutes": dict(self.category_minutes),
            "category_percentages": self.category_percentages,
            "previous_week_minutes": self.previous_week_minutes,
            "minutes_change_percent": self.minutes_change_percent,
        }


@dataclass(frozen=True)
class Insight:
    type: str
    title: str
    content: str


@dataclass(frozen=True)
class WeeklyInsights:
    summary: str
    insights: list[Insight]
    recommendations: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class InsightOutcome:
    result: WeeklyInsights
    method: str


def week_bounds(day: date) -> tuple[date, date]:
    """Monday and Sunday of the week containing ``day``."""
    monday = day - timedelta(days=day.weekday())
    return monday, monday + timedelta(days=6)


def build_week_aggregate(
    logs: Iterable[dict[str, Any]],
    previous_logs: Iterable[dict[str, Any]] = (),
    daily_target: int = 20,
    goal: GoalContext | None = None,
) -> WeekAggregate:
    """Aggregate practice log rows (as returned by ``practice_store``) for one week."""
    daily_totals: dict[str, int] = {}
    category_minutes: dict[str, int] = {}
    activities: list[dict[str, Any]] = []
    for log in logs:
        day = str(log["logged_at"])
        daily_totals[day] = daily_totals.get(day, 0) + int(log.get("total_minutes") or 0)
        for act in log.get("activities") or []:
            minutes = int(act.get("minutes") or 0)
            category = act.get("category") or "Repertoire"
            category_minutes[category] = category_minutes.get(category, 0) + minutes
            activities.append(
                {"category": category, "sub": act.get("sub", ""), "minutes": minutes}
            )

    previous = sum(int(log.get("total_minutes") or 0) for log in previous_logs)
    return WeekAggregate(
        total_minutes=sum(daily_totals.values()),
        days_practiced=len(daily_totals),
        days_hit_goal=sum(1 for mins in daily_totals.values() if mins >= daily_target),
        daily_target=daily_target,
        category_minutes=category_minutes,
        previous_week_minutes=previous or None,
        activities=tuple(activities),
        goal=goal,
    )


# --------------------------------------------------------------------------- #
# Rule-based summary
# --------------------------------------------------------------------------- #
def _plural(count: int, word: str) -> str:
    return f"{count} {word}" if count == 1 else f"{count} {word}s"


def _week_delta_phrase(agg: WeekAggregate) -> str | None:
    if not agg.previous_week_minutes:
        return None
    delta = agg.total_minutes - agg.previous_week_minutes
    if delta > 0:
        return f"+{delta} minutes compared to last week"
    if delta < 0:
        return f"{-delta} fewer minutes than last week"
    return "the same amount as last week"


def generate_basic_insights(agg: WeekAggregate) -> WeeklyInsights:
    summary = (
        f"You practiced {agg.total_minutes} minutes across "
        f"{_plural(agg.days_practiced, 'day')} this week."
    )
    delta_phrase = _week_delta_phrase(agg)
    if delta_phrase:
        summary += f" That's {delta_phrase}."
    if agg.days_hit_goal:
        summary += (
            f" You reached your {agg.daily_target}-minute daily target on "
            f"{_plural(agg.days_hit_goal, 'day')}."
        )

    insights: list[Insight] = []
    if agg.days_practiced >= 3:
        insights.append(
            Insight(
                "achievement",
                "Consistent Practice",
                f"You practiced on {agg.days_practiced} days this week. Keep the streak going!",
            )
        )
    if agg.category_minutes:
        top, minutes = max(agg.category_minutes.items(), key=lambda item: item[1])
        share = agg.category_percentages.get(top, 0)
        insights.append(
            Insight(
                "progress",
                "Focus Area",
                f"{top} took the largest share of your practice ({minutes} minutes, {share}%).",
            )
        )
    if delta_phrase:
        growing = agg.total_minutes >= agg.previous_week_minutes
        insights.append(
            Insight(
                "progress" if growing else "concern",
                "Weekly Change",
                f"You practiced {delta_phrase}.",
            )
        )
    if not insights:
        insights.append(
            Insight("progress", "Practice Logged", f"You logged {agg.total_minutes} minutes this week.")
        )

    recommendations: list[str] = []
    if agg.days_practiced < 3:
        recommendations.append(
            "Try more frequent, shorter sessions: 15 minutes on three or more days "
            "builds skills faster than one long session."
        )
    if agg.days_hit_goal < agg.days_practiced:
        recommendations.append(
            f"Aim to reach your {agg.daily_target}-minute daily target on more of your practice days."
        )
    if agg.category_minutes and "Technique" not in agg.category_minutes:
        recommendations.append("Start sessions with a short technique warm-up such as scales or arpeggios.")
    if agg.goal is not None:
        recommendations.append(f"Plan next week's sessions around your goal: {agg.goal.title}.")
    if not recommendations:
        recommendations.append("Keep up your current routine and add one new challenge next week.")

    return WeeklyInsights(
        summary=summary,
        insights=insights[:MAX_BASIC_INSIGHTS],
        recommendations=recommendations[:MAX_RECOMMENDATIONS],
    )


# --------------------------------------------------------------------------- #
# AI summary
# --------------------------------------------------------------------------- #
def build_insights_prompt(agg: WeekAggregate) -> str:
    data: dict[str, Any] = agg.to_metrics()
    data["top_activities"] = sorted(agg.activities, key=lambda a: a["minutes"], reverse=True)[:15]
    goal_block = ""
    if agg.goal is not None:
        goal_block = (
            "STUDENT GOAL:\n"
            f"- Title: {agg.goal.title}\n"
            f"- Type: {agg.goal.goal_type}\n"
            f"- Description: {agg.goal.description or 'n/a'}\n"
            f"- Target date: {agg.goal.target_date or 'n/a'}\n\n"
            "Relate the insights and recommendations to this goal.\n\n"
        )
    return (
        "Review this week of music practice and write a short, specific summary.\n\n"
        f"WEEK DATA:\n{json.dumps(data, ensure_ascii=False, indent=2)}\n\n"
        f"{goal_block}"
        "Return ONLY valid JSON in this exact format:\n"
        "{\n"
        '  "summary": "<2-3 sentence overview>",\n'
        '  "insights": [\n'
        '    {"type": "progress|achievement|concern|recommendation", '
        '"title": "<short title>", "content": "<1-2 sentences>"}\n'
        "  ],\n"
        '  "recommendations": ["<actionable suggestion>"]\n'
        "}\n"
        f"Use 2-{MAX_INSIGHTS} insights and 2-4 recommendations."
    )


def parse_insights_payload(payload: dict[str, Any]) -> WeeklyInsights:
    """Loose validation: a summary string and a list of insights are required."""
    summary = payload.get("summary")
    if not isinstance(summary, str) or not summary.strip():
        raise ValueError("summary is required")
    raw_insights = payload.get("insights")
    if not isinstance(raw_insights, list):
        raise ValueError("insights must be a list")

    insights = []
    for item in raw_insights:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        content = str(item.get("content") or "").strip()
        if not title or not content:
            continue
        kind = str(item.get("type") or "").strip().lower()
        insights.append(Insight(kind if kind in INSIGHT_TYPES else "progress", title, content))

    raw_recs = payload.get("recommendations") or []
    if isinstance(raw_recs, str):
        raw_recs = [raw_recs]
    if not isinstance(raw_recs, list):
        raw_recs = []
    recommendations = [r.strip() for r in raw_recs if isinstance(r, str) and r.strip()]

    return WeeklyInsights(
        summary=summary.strip(),
        insights=insights[:MAX_INSIGHTS],
        recommendations=recommendations[:MAX_RECOMMENDATIONS],
    )


class WeeklyInsightGenerator:
    def __init__(self, governor: UsageGovernor, ai_parser: AIParser | None = None) -> None:
        self.governor = governor
        self.ai_parser = ai_parser

    async def generate(
        self,
        user_id: str,
        agg: WeekAggregate,
        use_ai: bool = True,
    ) -> InsightOutcome | None:
        """Summarize the week, or return None when nothing was practiced.

        Governor rejections propagate; other AI failures fall back to the
        rule-based summary.
        """
        if agg.total_minutes <= 0:
            return None
        if not (use_ai and self.ai_parser is not None):
            return self._basic(agg)

        await self.governor.enforce(
            user_id,
            INSIGHTS_ENDPOINT,
            self.ai_parser.model,
            estimated_tokens=INSIGHTS_ESTIMATED_TOKENS,
        )
        try:
            completion = await self.ai_parser.complete(
                user_id,
                INSIGHTS_ENDPOINT,
                SYSTEM_PROMPT,
                build_insights_prompt(agg),
                temperature=INSIGHTS_TEMPERATURE,
                max_tokens=INSIGHTS_MAX_TOKENS,
            )
            result = parse_insights_payload(extract_json_object(completion.text))
        except (RateLimitError, QuotaExceededError):
            raise
        except AIParseError as exc:
            ai_fallback_total.labels(cause=exc.cause).inc()
            logger.warning("ai_insights_failed", extra={"user_id": user_id, "cause": exc.cause})
            return self._basic(agg)
        except ValueError as exc:
            ai_fallback_total.labels(cause="invalid_json").inc()
            logger.warning(
                "ai_insights_failed",
                extra={"user_id": user_id, "cause": "invalid_json", "error": str(exc)},
            )
            return self._basic(agg)
        except Exception:
            ai_fallback_total.labels(cause="unexpected").inc()
            logger.exception("ai_insights_failed", extra={"user_id": user_id, "cause": "unexpected"})
            return self._basic(agg)

        weekly_insights_total.labels(method="ai").inc()
        return InsightOutcome(result=result, method="ai")

    def _basic(self, agg: WeekAggregate) -> InsightOutcome:
        weekly_insights_total.labels(method="basic").inc()
        return InsightOutcome(result=generate_basic_insights(agg), method="basic")


__all__ = [
    "INSIGHT_TYPES",
    "Insight",
    "InsightOutcome",
    "WeekAggregate",
    "WeeklyInsightGenerator",
    "WeeklyInsights",
    "build_insights_prompt",
    "build_week_aggregate",
    "generate_basic_insights",
    "parse_insights_payload",
    "week_bounds",
]
