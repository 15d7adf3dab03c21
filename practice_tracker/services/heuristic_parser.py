"""Keyword-based practice text parser used when the AI path is unavailable."""

from __future__ import annotations

import re

from .entry_schema import (
    MAX_ACTIVITIES,
    MAX_MINUTES,
    MAX_SUB_LENGTH,
    MIN_MINUTES,
    Activity,
    ParsedEntry,
    build_entry,
)

DEFAULT_MINUTES = 10
GENERAL_LABEL = "General practice"
FALLBACK_MINUTES = 30

_CHUNK_SPLIT = re.compile(r"[;,]+")
_DURATION = re.compile(r"(\d+)\s*(?:minutes?|mins?|m)\b", re.IGNORECASE)

# First match wins; anything unmatched is Repertoire.
_CATEGORY_RULES: tuple[tuple[str, re.Pattern[str]], ...] = (
    ("Technique", re.compile(r"scale|arpeggio|slap|metronome|technique|finger|bow|breathing", re.I)),
    ("Improvisation", re.compile(r"improv|jam|composition|songwriting", re.I)),
    ("Ear", re.compile(r"ear|interval|transcription|chord identification", re.I)),
    ("Theory", re.compile(r"theory|mode|harmony|sight.reading|rhythm", re.I)),
    ("Recording", re.compile(r"record|mix|production|audio", re.I)),
)


def classify(label: str) -> str:
    for category, pattern in _CATEGORY_RULES:
        if pattern.search(label):
            return category
    return "Repertoire"


def _parse_chunk(chunk: str) -> Activity:
    match = _DURATION.search(chunk)
    minutes = int(match.group(1)) if match else DEFAULT_MINUTES
    if match:
        chunk = chunk[: match.start()] + chunk[match.end():]
    label = " ".join(chunk.split()) or GENERAL_LABEL
    return Activity(
        category=classify(label),
        sub=label[:MAX_SUB_LENGTH],
        minutes=max(MIN_MINUTES, min(MAX_MINUTES, minutes)),
    )


def parse_heuristic(raw: str) -> ParsedEntry:
    """Split ``raw`` on ``;``/``,`` and turn each chunk into one activity.

    Never fails: text without usable chunks becomes a single 30 minute
    Repertoire activity.
    """
    chunks = [c.strip() for c in _CHUNK_SPLIT.split(raw or "")]
    chunks = [c for c in chunks if c]
    if not chunks:
        return build_entry(
            [Activity(category="Repertoire", sub=GENERAL_LABEL, minutes=FALLBACK_MINUTES)]
        )
    activities = [_parse_chunk(c) for c in chunks[:MAX_ACTIVITIES]]
    return build_entry(activities)


__all__ = ["parse_heuristic", "classify", "DEFAULT_MINUTES", "GENERAL_LABEL"]
