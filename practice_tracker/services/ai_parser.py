"""LLM-backed practice text parser.

Callers are expected to pass :meth:`UsageGovernor.enforce` before calling
:meth:`AIParser.parse_with_ai`; the parser records token spend itself.
"""

from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any

from practice_tracker.metrics import ai_latency_seconds
from practice_tracker.services.ai_usage import UsageGovernor
from practice_tracker.services.entry_schema import (
    MAX_ACTIVITIES,
    MAX_MINUTES,
    EntryValidationError,
    ParsedEntry,
    validate_parsed_entry,
)
from practice_tracker.services.gpt import ChatCompletion, ProviderError
from practice_tracker.services.practice_store import GoalContext

logger = logging.getLogger(__name__)

PARSE_ENDPOINT = "parseEntry"
PARSE_TEMPERATURE = 0.1
PARSE_MAX_TOKENS = 500
# Rough pre-call estimate used for the monthly quota projection.
PARSE_ESTIMATED_TOKENS = 900

SYSTEM_PROMPT = (
    "You are a precise music practice parser. "
    "Return only valid JSON, no additional text or formatting."
)

CATEGORY_GUIDE = """CATEGORIES (use exactly these):
- "Technique": scales, arpeggios, exercises, finger work, bow technique, breathing, embouchure, posture
- "Repertoire": specific pieces, songs, compositions, etudes, studies
- "Improvisation": improvisation, jamming, free play, composition, songwriting
- "Ear": ear training, interval recognition, chord identification, transcription
- "Theory": music theory, harmony, analysis, sight-reading, rhythm studies
- "Recording": recording, mixing, production, audio work"""


class AIParseError(RuntimeError):
    """AI parsing failed; ``cause`` is provider, timeout, invalid_json or schema."""

    def __init__(self, message: str, cause: str):
        super().__init__(f"AI parsing failed: {message}")
        self.cause = cause


def build_parse_prompt(raw_text: str, goal: GoalContext | None = None) -> str:
    goal_block = ""
    goal_rule = ""
    goal_field = ""
    if goal is not None:
        lines = [f"- Title: {goal.title}", f"- Type: {goal.goal_type}"]
        if goal.description:
            lines.append(f"- Description: {goal.description}")
        goal_block = "CURRENT GOAL:\n" + "\n".join(lines) + "\n\n"
        goal_rule = (
            "7. Set \"goal_related\" to true for activities that directly advance "
            "the current goal, false otherwise\n"
        )
        goal_field = ',\n      "goal_related": <true|false>'

    return (
        "You are a music practice tracker AI. Parse the following practice session "
        "description into structured JSON.\n\n"
        f"{CATEGORY_GUIDE}\n\n"
        f"{goal_block}"
        "RULES:\n"
        "1. Extract time durations from text (30min, 1 hour, half hour, etc.)\n"
        "2. If no time specified, estimate reasonable duration (10-30 minutes)\n"
        "3. Create clear, standardized descriptions for \"sub\" field (max 100 characters)\n"
        f"4. Total minutes should not exceed {MAX_MINUTES} (4 hours)\n"
        f"5. Each activity should be 1-{MAX_MINUTES} minutes\n"
        f"6. Return 1-{MAX_ACTIVITIES} activities maximum\n"
        f"{goal_rule}\n"
        f"INPUT: {json.dumps(raw_text, ensure_ascii=False)}\n\n"
        "Return ONLY valid JSON in this exact format:\n"
        "{\n"
        '  "total_minutes": <number>,\n'
        '  "activities": [\n'
        "    {\n"
        '      "category": "<category>",\n'
        '      "sub": "<clear description>",\n'
        f'      "minutes": <number>{goal_field}\n'
        "    }\n"
        "  ]\n"
        "}\n\n"
        'Examples of good "sub" descriptions:\n'
        '- "Major scales - C, G, D"\n'
        '- "Bach Invention No. 1 - hands together"\n'
        '- "Jazz improvisation over ii-V-I"\n'
        '- "Interval recognition training"'
    )


def extract_json_object(text: str) -> dict[str, Any]:
    """Return the first JSON object in model output, tolerating code fences."""
    if not text:
        raise ValueError("Empty model response")
    try:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            start = text.find("{")
            end = text.rfind("}")
            if start == -1 or end <= start:
                raise ValueError("No JSON object found in model response") from None
            parsed = json.loads(text[start : end + 1])
    except RecursionError as exc:
        raise ValueError("Model response JSON is nested too deeply") from exc
    if not isinstance(parsed, dict):
        raise ValueError("Model response JSON is not an object")
    return parsed


class AIParser:
    def __init__(self, provider, governor: UsageGovernor) -> None:
        self.provider = provider
        self.governor = governor

    @property
    def model(self) -> str:
        return self.provider.model

    async def complete(
        self,
        user_id: str,
        endpoint: str,
        system: str,
        prompt: str,
        *,
        temperature: float,
        max_tokens: int,
        json_mode: bool = True,
    ) -> ChatCompletion:
        """Call the provider off the event loop and record the spend.

        A failed call is recorded without tokens; provider and timeout
        failures are re-raised as :class:`AIParseError`.
        """
        started = time.perf_counter()
        try:
            completion = await asyncio.to_thread(
                self.provider.complete_chat,
                system,
                prompt,
                temperature=temperature,
                max_tokens=max_tokens,
                json_mode=json_mode,
            )
        except TimeoutError as exc:
            await self.governor.record(user_id, endpoint, self.model, status="timeout")
            raise AIParseError(str(exc), cause="timeout") from exc
        except ProviderError as exc:
            await self.governor.record(user_id, endpoint, self.model, status="error")
            raise AIParseError(str(exc), cause="provider") from exc
        finally:
            ai_latency_seconds.labels(endpoint=endpoint).observe(time.perf_counter() - started)

        await self.governor.record(
            user_id,
            endpoint,
            completion.model,
            completion.prompt_tokens,
            completion.completion_tokens,
            completion.total_tokens,
        )
        return completion

    async def parse_with_ai(
        self,
        user_id: str,
        raw_text: str,
        goal: GoalContext | None = None,
    ) -> ParsedEntry:
        completion = await self.complete(
            user_id,
            PARSE_ENDPOINT,
            SYSTEM_PROMPT,
            build_parse_prompt(raw_text, goal),
            temperature=PARSE_TEMPERATURE,
            max_tokens=PARSE_MAX_TOKENS,
        )
        try:
            payload = extract_json_object(completion.text)
        except ValueError as exc:
            raise AIParseError(f"invalid JSON response: {exc}", cause="invalid_json") from exc
        try:
            return validate_parsed_entry(payload)
        except EntryValidationError as exc:
            raise AIParseError(f"validation failed: {exc}", cause="schema") from exc


__all__ = [
    "AIParseError",
    "AIParser",
    "PARSE_ENDPOINT",
    "PARSE_ESTIMATED_TOKENS",
    "build_parse_prompt",
    "extract_json_object",
]
