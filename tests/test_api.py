from __future__ import annotations

import json
from datetime import date

import pytest
from fastapi import Depends

from practice_tracker import db as db_module
from practice_tracker import dependencies
from practice_tracker.main import app
from practice_tracker.models import OverarchingGoal, Profile
from practice_tracker.services.ai_parser import AIParser
from practice_tracker.services.gpt import ChatCompletion
from practice_tracker.services.practice_store import SqlUsageStore
from practice_tracker.services.rate_limiter import MemoryRateLimiter, RequestRateLimiter

HEADERS = {
    "X-API-Key": "test-api-key",
    "X-API-Ver": "v1",
    "X-User-ID": "user-1",
}

AI_RESULT = {
    "total_minutes": 40,
    "activities": [
        {"category": "Technique", "sub": "Scales in thirds", "minutes": 25, "goal_related": True},
        {"category": "Theory", "sub": "Chord analysis", "minutes": 15},
    ],
}


class FakeProvider:
    model = "gpt-4o-mini"

    def __init__(self, text: str) -> None:
        self.text = text
        self.calls = 0

    def complete_chat(self, system, prompt, *, temperature, max_tokens, json_mode=True):
        self.calls += 1
        return ChatCompletion(self.text, self.model, 300, 100, 400)


@pytest.fixture
def fake_ai():
    provider = FakeProvider(json.dumps(AI_RESULT))

    def _ai_parser(governor=Depends(dependencies.get_governor)):
        return AIParser(provider, governor)

    app.dependency_overrides[dependencies.get_ai_parser] = _ai_parser
    yield provider
    app.dependency_overrides.pop(dependencies.get_ai_parser, None)


def _add_goal(user_id: str = "user-1", **kwargs) -> None:
    with db_module.SessionLocal() as db:
        db.add(OverarchingGoal(user_id=user_id, title=kwargs.pop("title", "Grade 6 exam"), **kwargs))
        db.commit()


def _log(client, raw_text: str, **extra):
    return client.post("/v1/log", headers=HEADERS, json={"raw_text": raw_text, **extra})


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "ok"
    assert resp.json()["ai_enabled"] is False


def test_metrics_exposed(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "entry_parse_total" in resp.text


@pytest.mark.parametrize(
    "headers,status,code",
    [
        ({"X-API-Key": "test-api-key", "X-User-ID": "u"}, 426, "UPGRADE_REQUIRED"),
        ({"X-API-Key": "test-api-key", "X-API-Ver": "v2", "X-User-ID": "u"}, 426, "UPGRADE_REQUIRED"),
        ({"X-API-Key": "wrong", "X-API-Ver": "v1", "X-User-ID": "u"}, 401, "UNAUTHORIZED"),
        ({"X-API-Key": "test-api-key", "X-API-Ver": "v1"}, 401, "UNAUTHORIZED"),
    ],
)
def test_auth_headers(client, headers, status, code):
    resp = client.post("/v1/log", headers=headers, json={"raw_text": "scales"})
    assert resp.status_code == status
    assert resp.json()["detail"]["code"] == code


def test_log_heuristic_without_ai(client):
    resp = _log(client, "scales 20m; Bach invention 15 min; jam session", date="2026-03-10")

    assert resp.status_code == 200
    data = resp.json()
    assert data["ok"] is True
    assert data["method"] == "heuristic"
    assert data["log"]["total_minutes"] == 45
    assert data["log"]["logged_at"] == "2026-03-10"
    assert [a["category"] for a in data["log"]["activities"]] == [
        "Technique",
        "Repertoire",
        "Improvisation",
    ]


def test_log_rejects_empty_text(client):
    resp = _log(client, "")
    assert resp.status_code == 422


def test_log_with_ai(client, fake_ai):
    _add_goal(goal_type="exam")

    resp = _log(client, "thirds 25, chord analysis 15")

    assert resp.status_code == 200
    data = resp.json()
    assert data["method"] == "ai"
    assert data["log"]["total_minutes"] == 40
    assert data["log"]["activities"][0]["goal_related"] is True
    assert fake_ai.calls == 1

    usage = client.get("/v1/ai-usage", headers=HEADERS).json()
    assert usage["totals"]["requests"] == 1
    assert usage["totals"]["tokens"] == 400
    assert usage["by_endpoint"]["parseEntry"]["requests"] == 1


def test_log_ai_invalid_output_falls_back(client, fake_ai):
    fake_ai.text = "sorry, I cannot help"

    resp = _log(client, "scales 20m")

    assert resp.status_code == 200
    assert resp.json()["method"] == "heuristic"
    assert resp.json()["log"]["activities"][0]["sub"] == "scales"


def test_log_use_ai_false_skips_provider(client, fake_ai):
    resp = _log(client, "scales 20m", use_ai=False)

    assert resp.json()["method"] == "heuristic"
    assert fake_ai.calls == 0


def test_quota_exceeded_returns_429(client, fake_ai):
    SqlUsageStore().set_limits("user-1", tokens_per_month=10)

    resp = _log(client, "scales 20m")

    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "QUOTA_EXCEEDED"
    assert int(resp.headers["Retry-After"]) > 0
    assert fake_ai.calls == 0


def test_rate_limited_returns_429(client, fake_ai):
    SqlUsageStore().set_limits("user-1", requests_per_minute=1)

    assert _log(client, "scales 20m").status_code == 200
    resp = _log(client, "scales 20m")

    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "RATE_LIMITED"
    assert resp.headers["Retry-After"] == "60"
    assert fake_ai.calls == 1


def test_generic_limiter_on_plain_routes(client, monkeypatch):
    monkeypatch.setattr(
        dependencies,
        "request_limiter",
        RequestRateLimiter(
            MemoryRateLimiter(100, 60, key_prefix="g"),
            MemoryRateLimiter(2, 60, block_duration=60, key_prefix="u"),
            MemoryRateLimiter(100, 60, key_prefix="ai"),
        ),
    )

    assert client.get("/v1/entries/1", headers=HEADERS).status_code == 404
    assert client.get("/v1/entries/1", headers=HEADERS).status_code == 404
    resp = client.get("/v1/entries/1", headers=HEADERS)

    assert resp.status_code == 429
    assert resp.json()["detail"]["code"] == "RATE_LIMITED"
    assert resp.headers["Retry-After"] == "60"


def test_get_and_update_entry(client):
    entry_id = _log(client, "scales 20m").json()["log"]["id"]

    resp = client.get(f"/v1/entries/{entry_id}", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["raw_text"] == "scales 20m"

    other = dict(HEADERS, **{"X-User-ID": "user-2"})
    assert client.get(f"/v1/entries/{entry_id}", headers=other).status_code == 404

    resp = client.put(
        f"/v1/entries/{entry_id}",
        headers=HEADERS,
        json={"raw_text": "arpeggios 30m, etude 10m", "use_ai": False},
    )
    assert resp.status_code == 200
    assert resp.json()["log"]["total_minutes"] == 40
    assert len(resp.json()["log"]["activities"]) == 2

    missing = client.put("/v1/entries/999999", headers=HEADERS, json={"raw_text": "scales"})
    assert missing.status_code == 404
    assert missing.json()["detail"]["code"] == "NOT_FOUND"


def test_delete_activity(client):
    entry_id = _log(client, "scales 20m, etude 10m").json()["log"]["id"]

    resp = client.delete(f"/v1/entries/{entry_id}?activity_index=5", headers=HEADERS)
    assert resp.status_code == 400

    resp = client.delete(f"/v1/entries/{entry_id}?activity_index=0", headers=HEADERS)
    assert resp.status_code == 200
    data = resp.json()
    assert data["deleted_entry"] is False
    assert data["deleted_activity"]["sub"] == "scales"
    assert data["entry"]["total_minutes"] == 10

    resp = client.delete(f"/v1/entries/{entry_id}?activity_index=0", headers=HEADERS)
    assert resp.json()["deleted_entry"] is True
    assert client.get(f"/v1/entries/{entry_id}", headers=HEADERS).status_code == 404

    resp = client.delete(f"/v1/entries/{entry_id}?activity_index=0", headers=HEADERS)
    assert resp.status_code == 404


def test_weekly_insights_basic_and_cached(client):
    today = date.today().isoformat()
    _log(client, "scales 20m, Bach 15m", date=today)
    with db_module.SessionLocal() as db:
        db.add(Profile(user_id="user-1", daily_target=30))
        db.commit()

    resp = client.post("/v1/weekly-insights", headers=HEADERS, json={"use_ai": False})
    assert resp.status_code == 200
    data = resp.json()
    assert data["cached"] is False
    insight = data["insights"]
    assert insight["method"] == "basic"
    assert insight["metrics"]["total_minutes"] == 35
    assert insight["metrics"]["daily_target"] == 30
    assert insight["metrics"]["days_hit_goal"] == 1
    assert insight["summary"].startswith("You practiced 35 minutes")
    assert insight["suggestions"]

    again = client.post("/v1/weekly-insights", headers=HEADERS, json={"use_ai": False})
    assert again.json()["cached"] is True
    assert again.json()["insights"]["id"] == insight["id"]

    fetched = client.get("/v1/weekly-insights", headers=HEADERS)
    assert fetched.status_code == 200
    assert fetched.json()["insights"]["summary"] == insight["summary"]

    _log(client, "ear training 10m", date=today)
    regen = client.post(
        "/v1/weekly-insights",
        headers=HEADERS,
        json={"use_ai": False, "force_regenerate": True},
    )
    assert regen.json()["insights"]["id"] == insight["id"]
    assert regen.json()["insights"]["metrics"]["total_minutes"] == 45


def test_weekly_insights_empty_week(client):
    resp = client.post(
        "/v1/weekly-insights",
        headers=HEADERS,
        json={"week_start": "2020-01-06", "use_ai": False},
    )
    assert resp.status_code == 200
    assert resp.json()["insights"] is None

    missing = client.get("/v1/weekly-insights?week_start=2020-01-06", headers=HEADERS)
    assert missing.status_code == 404


def test_daily_tip(client):
    resp = client.get("/v1/daily-tip", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["tip"] is None

    _add_goal(title="Fur Elise", goal_type="piece")
    resp = client.get("/v1/daily-tip", headers=HEADERS)
    data = resp.json()
    assert data["method"] == "basic"
    assert "Fur Elise" in data["tip"]
    assert data["goal"]["title"] == "Fur Elise"


def test_ai_usage_days_validation(client):
    assert client.get("/v1/ai-usage?days=0", headers=HEADERS).status_code == 422
    resp = client.get("/v1/ai-usage?days=7", headers=HEADERS)
    assert resp.status_code == 200
    assert resp.json()["days"] == 7
    assert resp.json()["totals"]["requests"] == 0


def test_empty_week_ai_request_counts_against_limiter(client, fake_ai, monkeypatch):
    monkeypatch.setattr(
        dependencies,
        "request_limiter",
        RequestRateLimiter(
            MemoryRateLimiter(100, 60, key_prefix="g"),
            MemoryRateLimiter(1, 60, block_duration=60, key_prefix="u"),
            MemoryRateLimiter(100, 60, key_prefix="ai"),
        ),
    )
    body = {"week_start": "2020-01-06"}

    first = client.post("/v1/weekly-insights", headers=HEADERS, json=body)
    assert first.status_code == 200
    assert first.json()["insights"] is None

    second = client.post("/v1/weekly-insights", headers=HEADERS, json=body)
    assert second.status_code == 429
    assert second.json()["detail"]["code"] == "RATE_LIMITED"
    assert fake_ai.calls == 0


def test_overarching_goal_lifecycle(client):
    assert client.get("/v1/overarching-goals", headers=HEADERS).json()["goal"] is None

    resp = client.post(
        "/v1/overarching-goals",
        headers=HEADERS,
        json={"title": "  Fur Elise  ", "goal_type": "piece", "target_date": "2026-12-01"},
    )
    assert resp.status_code == 200
    goal = resp.json()["goal"]
    assert goal["title"] == "Fur Elise"
    assert goal["status"] == "active"
    assert goal["target_date"] == "2026-12-01"

    second = client.post(
        "/v1/overarching-goals", headers=HEADERS, json={"title": "Grade 5", "goal_type": "exam"}
    )
    assert second.status_code == 400
    assert second.json()["detail"]["code"] == "BAD_REQUEST"

    updated = client.put(
        "/v1/overarching-goals",
        headers=HEADERS,
        json={"description": "Both hands at tempo", "title": None},
    )
    assert updated.status_code == 200
    assert updated.json()["goal"]["description"] == "Both hands at tempo"
    assert updated.json()["goal"]["title"] == "Fur Elise"

    # the active goal feeds the daily tip
    tip = client.get("/v1/daily-tip", headers=HEADERS).json()
    assert tip["goal"]["title"] == "Fur Elise"

    paused = client.delete("/v1/overarching-goals", headers=HEADERS)
    assert paused.json()["goal"]["status"] == "paused"
    assert client.get("/v1/overarching-goals", headers=HEADERS).json()["goal"] is None
    assert client.delete("/v1/overarching-goals", headers=HEADERS).status_code == 404
    assert client.put("/v1/overarching-goals", headers=HEADERS, json={}).status_code == 404

    again = client.post(
        "/v1/overarching-goals", headers=HEADERS, json={"title": "Grade 5", "goal_type": "exam"}
    )
    assert again.status_code == 200


def test_complete_goal_frees_slot(client):
    client.post("/v1/overarching-goals", headers=HEADERS, json={"title": "Scales", "goal_type": "technique"})

    done = client.put("/v1/overarching-goals", headers=HEADERS, json={"status": "completed"})

    assert done.json()["goal"]["status"] == "completed"
    assert client.get("/v1/overarching-goals", headers=HEADERS).json()["goal"] is None


@pytest.mark.parametrize(
    "body",
    [
        {"title": "ab", "goal_type": "piece"},
        {"title": "Fur Elise", "goal_type": "hobby"},
        {"title": "Fur Elise", "goal_type": "piece", "difficulty_level": "expert"},
    ],
)
def test_overarching_goal_validation(client, body):
    assert client.post("/v1/overarching-goals", headers=HEADERS, json=body).status_code == 422


def test_daily_target(client):
    assert client.get("/v1/goal", headers=HEADERS).json()["daily_target"] == 20

    resp = client.put("/v1/goal", headers=HEADERS, json={"daily_target": 45})
    assert resp.status_code == 200
    assert resp.json()["daily_target"] == 45
    assert client.get("/v1/goal", headers=HEADERS).json()["daily_target"] == 45

    assert client.put("/v1/goal", headers=HEADERS, json={"daily_target": 0}).status_code == 422
    assert client.put("/v1/goal", headers=HEADERS, json={"daily_target": 481}).status_code == 422

    today = date.today().isoformat()
    _log(client, "scales 50m", date=today)
    insight = client.post("/v1/weekly-insights", headers=HEADERS, json={"use_ai": False}).json()["insights"]
    assert insight["metrics"]["daily_target"] == 45
    assert insight["metrics"]["days_hit_goal"] == 1
