import os
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

# Ensure tests run against a throwaway SQLite database and without AI or Redis
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/practice_tracker_test.db")
os.environ["REDIS_URL"] = ""
os.environ["OPENAI_API_KEY"] = ""

from fastapi.testclient import TestClient
from sqlalchemy import delete

from practice_tracker import db as db_module
from practice_tracker import dependencies
from practice_tracker.config import Settings
from practice_tracker.db import init_db
from practice_tracker.main import app
from practice_tracker.models import Base
from practice_tracker.services.rate_limiter import build_request_limiter


def _sqlite_path() -> Path | None:
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        return Path(db_url.replace("sqlite:///", ""))
    return None


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    stdout_buf, stderr_buf = StringIO(), StringIO()
    try:
        with redirect_stdout(stdout_buf), redirect_stderr(stderr_buf):
            command.upgrade(config, "head")
    except Exception as exc:
        print("Alembic upgrade failed:", exc)
        print("stdout:\n", stdout_buf.getvalue())
        print("stderr:\n", stderr_buf.getvalue())
        raise
    init_db(Settings())


@pytest.fixture(scope="session", autouse=True)
def remove_test_db():
    """Remove temporary SQLite database after tests finish."""
    yield
    db_path = _sqlite_path()
    if db_path is not None and db_path.exists():
        db_path.unlink()


@pytest.fixture(autouse=True)
def clean_tables(apply_migrations):
    yield
    with db_module.SessionLocal() as db:
        for table in reversed(Base.metadata.sorted_tables):
            db.execute(delete(table))
        db.commit()


@pytest.fixture(autouse=True)
def fresh_limiter(monkeypatch):
    """Each test starts with empty limiter buckets."""
    monkeypatch.setattr(
        dependencies,
        "request_limiter",
        build_request_limiter(dependencies.settings),
    )
    yield


@pytest.fixture(scope="module")
def client(apply_migrations):
    """Yields a TestClient with lifespan events."""
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def fake_redis():
    """In-memory stand-in for the redis.asyncio pipeline commands the limiter uses."""

    class _Pipe:
        def __init__(self, owner):
            self.owner = owner
            self.ops = []

        def set(self, key, value, nx=False, px=None):
            self.ops.append(("set", key, value, nx, px))
            return self

        def incr(self, key):
            self.ops.append(("incr", key))
            return self

        def pttl(self, key):
            self.ops.append(("pttl", key))
            return self

        async def execute(self):
            results = []
            for op in self.ops:
                if op[0] == "set":
                    _, key, value, nx, px = op
                    if nx and key in self.owner.store:
                        results.append(None)
                        continue
                    self.owner.store[key] = value
                    self.owner.ttl[key] = px
                    results.append(True)
                elif op[0] == "incr":
                    key = op[1]
                    self.owner.store[key] = int(self.owner.store.get(key, 0)) + 1
                    results.append(self.owner.store[key])
                else:
                    results.append(self.owner.ttl.get(op[1], -1))
            self.ops.clear()
            return results

    class _Redis:
        def __init__(self):
            self.store = {}
            self.ttl = {}

        def pipeline(self):
            return _Pipe(self)

        async def pexpire(self, key, ttl):
            self.ttl[key] = ttl
            return True

    return _Redis()
