"""Goal-aware daily practice tip."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Iterable

from practice_tracker.metrics import ai_fallback_total
from practice_tracker.services.ai_parser import AIParseError, AIParser
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError, UsageGovernor
from practice_tracker.services.practice_store import GoalContext

logger = logging.getLogger(__name__)

TIP_ENDPOINT = "dailyTip"
TIP_MAX_LENGTH = 400
TIP_ESTIMATED_TOKENS = 600

SYSTEM_PROMPT = (
    "You are a concise, practical music teacher. "
    "Reply with a single tip in plain text, at most three sentences."
)


@dataclass(frozen=True)
class TipOutcome:
    tip: str
    method: str


def fallback_tip(goal: GoalContext) -> str:
    tips = {
        "piece": (
            f'Today, focus on a specific section of "{goal.title}". '
            "Practice slowly and pay attention to fingering."
        ),
        "exam": f"Work on exam requirements today. Practice scales or sight-reading for your {goal.title}.",
        "technique": (
            f"Dedicate 15 minutes to technical exercises related to {goal.title}. "
            "Focus on accuracy over speed."
        ),
        "performance": "Practice performing sections of your pieces today. Work on expression and confidence.",
        "general": (
            "Set aside focused practice time today. "
            f"Work on fundamentals that support your goal: {goal.title}."
        ),
    }
    return tips.get(goal.goal_type, tips["general"])


def build_tip_prompt(goal: GoalContext, recent_logs: Iterable[dict[str, Any]]) -> str:
    lines = []
    for log in list(recent_logs)[:10]:
        acts = ", ".join(
            f"{a.get('category')}: {a.get('sub')} ({a.get('minutes')}m)"
            for a in log.get("activities") or []
        )
        lines.append(f"- {log.get('logged_at')}: {log.get('total_minutes')} min ({acts})")
    history = "\n".join(lines) or "- no practice logged in the last 7 days"
    return (
        f"Student goal: {goal.title} (type: {goal.goal_type}).\n"
        f"Goal description: {goal.description or 'n/a'}\n\n"
        f"Recent practice:\n{history}\n\n"
        "Suggest one specific thing to practice today that moves the student toward the goal "
        "and balances what they have been neglecting."
    )


async def generate_daily_tip(
    governor: UsageGovernor,
    ai_parser: AIParser | None,
    user_id: str,
    goal: GoalContext | None,
    recent_logs: Iterable[dict[str, Any]] = (),
    use_ai: bool = True,
) -> TipOutcome | None:
    if goal is None:
        return None
    if not (use_ai and ai_parser is not None):
        return TipOutcome(tip=fallback_tip(goal), method="basic")

    await governor.enforce(user_id, TIP_ENDPOINT, ai_parser.model, estimated_tokens=TIP_ESTIMATED_TOKENS)
    try:
        completion = await ai_parser.complete(
            user_id,
            TIP_ENDPOINT,
            SYSTEM_PROMPT,
            build_tip_prompt(goal, recent_logs),
            temperature=0.7,
            max_tokens=200,
            json_mode=False,
        )
    except (RateLimitError, QuotaExceededError):
        raise
    except AIParseError as exc:
        ai_fallback_total.labels(cause=exc.cause).inc()
        logger.warning("ai_tip_failed", extra={"user_id": user_id, "cause": exc.cause})
        return TipOutcome(tip=fallback_tip(goal), method="basic")
    except Exception:
        ai_fallback_total.labels(cause="unexpected").inc()
        logger.exception("ai_tip_failed", extra={"user_id": user_id, "cause": "unexpected"})
        return TipOutcome(tip=fallback_tip(goal), method="basic")
    tip = (completion.text or "")[:TIP_MAX_LENGTH].strip()
    if not tip:
        ai_fallback_total.labels(cause="empty").inc()
        logger.warning("ai_tip_failed", extra={"user_id": user_id, "cause": "empty"})
        return TipOutcome(tip=fallback_tip(goal), method="basic")
    return TipOutcome(tip=tip, method="ai")


__all__ = ["TipOutcome", "build_tip_prompt", "fallback_tip", "generate_daily_tip"]
