"""Structured practice entries and the validator shared by both parse paths."""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, StringConstraints
from pydantic import ValidationError as PydanticValidationError

CATEGORIES = ("Technique", "Improvisation", "Ear", "Theory", "Recording", "Repertoire")
MIN_MINUTES = 1
MAX_MINUTES = 240
MAX_ACTIVITIES = 10
MAX_SUB_LENGTH = 100

Category = Literal["Technique", "Improvisation", "Ear", "Theory", "Recording", "Repertoire"]
SubLabel = Annotated[
    str,
    StringConstraints(strip_whitespace=True, min_length=1, max_length=MAX_SUB_LENGTH),
]


class EntryValidationError(ValueError):
    """Raised when a candidate entry violates the structural or bound rules."""

    def __init__(self, errors: list[str]):
        self.errors = errors
        super().__init__("; ".join(errors) or "invalid parsed entry")


class Activity(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    category: Category
    sub: SubLabel
    minutes: int = Field(strict=True, ge=MIN_MINUTES, le=MAX_MINUTES)
    goal_related: bool | None = None


class ParsedEntry(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    total_minutes: int = Field(strict=True, ge=MIN_MINUTES, le=MAX_MINUTES)
    activities: list[Activity] = Field(min_length=1, max_length=MAX_ACTIVITIES)

    def as_payload(self) -> list[dict[str, Any]]:
        """Activities as stored in the practice log row."""
        return [a.model_dump(exclude_none=True) for a in self.activities]


def clamp_total(activities: list[Activity]) -> int:
    return min(MAX_MINUTES, sum(a.minutes for a in activities))


def build_entry(activities: list[Activity]) -> ParsedEntry:
    """Assemble an entry whose total is always the clamped activity sum."""
    return ParsedEntry(total_minutes=clamp_total(activities), activities=activities)


def validate_parsed_entry(candidate: Any) -> ParsedEntry:
    """Validate an untrusted parse result and return it with a recomputed total.

    Every violated constraint is reported in ``EntryValidationError.errors``.
    The incoming ``total_minutes`` is only bound-checked; the returned entry
    carries ``min(240, sum(minutes))``.
    """
    if not isinstance(candidate, dict):
        raise EntryValidationError(["entry: must be an object"])
    try:
        entry = ParsedEntry.model_validate(candidate)
    except PydanticValidationError as exc:
        raise EntryValidationError(_describe(exc)) from exc
    return build_entry(list(entry.activities))


def _describe(exc: PydanticValidationError) -> list[str]:
    messages = []
    for err in exc.errors():
        location = ".".join(str(part) for part in err["loc"]) or "entry"
        messages.append(f"{location}: {err['msg']}")
    return messages


__all__ = [
    "CATEGORIES",
    "MAX_ACTIVITIES",
    "MAX_MINUTES",
    "MIN_MINUTES",
    "Activity",
    "ParsedEntry",
    "EntryValidationError",
    "build_entry",
    "clamp_total",
    "validate_parsed_entry",
]
