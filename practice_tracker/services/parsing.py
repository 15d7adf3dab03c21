"""Choose between the AI and heuristic parsers for one practice submission."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Literal

from practice_tracker.metrics import ai_fallback_total, entry_parse_total
from practice_tracker.services.ai_parser import PARSE_ENDPOINT, PARSE_ESTIMATED_TOKENS, AIParseError, AIParser
from practice_tracker.services.ai_usage import QuotaExceededError, RateLimitError, UsageGovernor
from practice_tracker.services.entry_schema import ParsedEntry
from practice_tracker.services.heuristic_parser import parse_heuristic
from practice_tracker.services.practice_store import GoalContext

logger = logging.getLogger(__name__)

ParseMethod = Literal["ai", "heuristic"]


@dataclass(frozen=True)
class ParseOutcome:
    entry: ParsedEntry
    method: ParseMethod


class EntryParser:
    """AI first when configured and requested, heuristics otherwise.

    Governor rejections propagate unchanged; every other AI failure falls
    back to :func:`parse_heuristic`.
    """

    def __init__(self, governor: UsageGovernor, ai_parser: AIParser | None = None) -> None:
        self.governor = governor
        self.ai_parser = ai_parser

    @property
    def ai_available(self) -> bool:
        return self.ai_parser is not None

    async def parse(
        self,
        user_id: str,
        raw_text: str,
        use_ai: bool = True,
        goal: GoalContext | None = None,
    ) -> ParseOutcome:
        if not (use_ai and self.ai_parser is not None):
            return self._heuristic(raw_text)

        await self.governor.enforce(
            user_id,
            PARSE_ENDPOINT,
            self.ai_parser.model,
            estimated_tokens=PARSE_ESTIMATED_TOKENS,
        )
        try:
            entry = await self.ai_parser.parse_with_ai(user_id, raw_text, goal)
        except (RateLimitError, QuotaExceededError):
            raise
        except AIParseError as exc:
            ai_fallback_total.labels(cause=exc.cause).inc()
            logger.warning(
                "ai_parse_failed",
                extra={"user_id": user_id, "cause": exc.cause, "error": str(exc)},
            )
            return self._heuristic(raw_text)
        except Exception:
            ai_fallback_total.labels(cause="unexpected").inc()
            logger.exception("ai_parse_failed", extra={"user_id": user_id, "cause": "unexpected"})
            return self._heuristic(raw_text)

        entry_parse_total.labels(method="ai").inc()
        return ParseOutcome(entry=entry, method="ai")

    def _heuristic(self, raw_text: str) -> ParseOutcome:
        entry_parse_total.labels(method="heuristic").inc()
        return ParseOutcome(entry=parse_heuristic(raw_text), method="heuristic")


__all__ = ["EntryParser", "ParseOutcome", "ParseMethod"]
