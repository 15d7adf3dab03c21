from __future__ import annotations

import random

import pytest

from practice_tracker.services.entry_schema import CATEGORIES, validate_parsed_entry
from practice_tracker.services.heuristic_parser import (
    DEFAULT_MINUTES,
    GENERAL_LABEL,
    classify,
    parse_heuristic,
)


def test_mixed_session_splits_into_activities():
    entry = parse_heuristic("scales 20m; Bach invention 15 min; jam session")

    assert [(a.category, a.sub, a.minutes) for a in entry.activities] == [
        ("Technique", "scales", 20),
        ("Repertoire", "Bach invention", 15),
        ("Improvisation", "jam session", DEFAULT_MINUTES),
    ]
    assert entry.total_minutes == 45


@pytest.mark.parametrize("raw", ["", "   ", ";;,", " , ; "])
def test_empty_input_yields_single_fallback(raw):
    entry = parse_heuristic(raw)

    assert entry.total_minutes == 30
    assert len(entry.activities) == 1
    only = entry.activities[0]
    assert only.category == "Repertoire"
    assert only.sub == GENERAL_LABEL
    assert only.minutes == 30


def test_total_is_clamped_to_four_hours():
    entry = parse_heuristic("marathon practice 300m")

    assert entry.total_minutes == 240
    assert entry.activities[0].minutes == 240


def test_sum_over_limit_clamps_total_only():
    entry = parse_heuristic("scales 200m, etudes 100m")

    assert [a.minutes for a in entry.activities] == [200, 100]
    assert entry.total_minutes == 240


def test_duration_only_chunk_gets_general_label():
    entry = parse_heuristic("25 minutes")

    assert entry.activities[0].sub == GENERAL_LABEL
    assert entry.activities[0].minutes == 25


def test_zero_minutes_raised_to_one():
    entry = parse_heuristic("scales 0m")

    assert entry.activities[0].minutes == 1


def test_more_than_ten_chunks_are_truncated():
    raw = ", ".join(f"piece {i} 5m" for i in range(14))
    entry = parse_heuristic(raw)

    assert len(entry.activities) == 10
    assert entry.activities[-1].sub == "piece 9"
    assert entry.total_minutes == 50


def test_long_label_is_truncated():
    entry = parse_heuristic("x" * 150 + " 10m")

    assert len(entry.activities[0].sub) == 100


def test_parsing_is_pure():
    raw = "arpeggios 12 mins; ear training; record demo 30m"
    assert parse_heuristic(raw) == parse_heuristic(raw)


@pytest.mark.parametrize(
    "label,expected",
    [
        ("Major scales", "Technique"),
        ("metronome work", "Technique"),
        ("free improv", "Improvisation"),
        ("songwriting", "Improvisation"),
        ("interval drills", "Ear"),
        ("transcription of a solo", "Ear"),
        ("harmony homework", "Theory"),
        ("sight-reading", "Theory"),
        ("mixing the demo", "Recording"),
        ("Chopin nocturne", "Repertoire"),
    ],
)
def test_classify(label, expected):
    assert classify(label) == expected


_WORDS = [
    "scales", "Bach", "jam", "intervals", "harmony", "record", "etude", "arpeggios",
    "sight-reading", "Chopin", "ñandú", "🎹", "mins", "m", "minute", "0", "999999", "   ",
]
_SEPARATORS = [";", ",", ";;", ", ", " ; ", " "]


def _random_text(rng: random.Random) -> str:
    parts = []
    for _ in range(rng.randint(0, 25)):
        token = rng.choice(_WORDS)
        if rng.random() < 0.4:
            token += f" {rng.randint(0, 500)}{rng.choice(['m', ' min', ' minutes', 'mins', ''])}"
        parts.append(token + rng.choice(_SEPARATORS))
    if rng.random() < 0.1:
        parts.append("x" * rng.randint(90, 300))
    return "".join(parts)


@pytest.mark.parametrize("seed", range(200))
def test_heuristic_output_always_valid(seed):
    raw = _random_text(random.Random(seed))

    entry = parse_heuristic(raw)

    assert 1 <= len(entry.activities) <= 10
    for activity in entry.activities:
        assert activity.category in CATEGORIES
        assert 1 <= activity.minutes <= 240
        assert 1 <= len(activity.sub) <= 100
    assert entry.total_minutes == min(240, sum(a.minutes for a in entry.activities))
    assert validate_parsed_entry(entry.model_dump()) == entry
    assert parse_heuristic(raw) == entry
