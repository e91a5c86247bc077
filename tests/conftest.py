import os
import uuid
from contextlib import redirect_stderr, redirect_stdout
from io import StringIO
from pathlib import Path

import pytest
from alembic import command
from alembic.config import Config

# Ensure tests run against SQLite when DATABASE_URL is not defined
os.environ.setdefault("DATABASE_URL", "sqlite:////tmp/stockai_test.db")
os.environ.setdefault("OPENAI_API_KEY", "test")

from fastapi.testclient import TestClient

from stockai import dependencies
from stockai.config import Settings
from stockai.db import init_db
from stockai.main import app
from stockai.services.analysis_chain import AnalysisChain, get_analysis_chain
from stockai.services.cache import analysis_cache
from stockai.services.market_data import get_market_data
from tests.utils.auth import build_headers
from tests.utils.market import FakeMarket, FakeRenderer, fake_text_scorer


@pytest.fixture(scope="session", autouse=True)
def apply_migrations():
    """Apply Alembic migrations before running tests."""
    cfg_path = Path(__file__).resolve().parent.parent / "alembic.ini"
    config = Config(str(cfg_path))
    config.set_main_option("script_location", str(cfg_path.parent / "migrations"))
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
    db_url = os.environ.get("DATABASE_URL")
    if db_url and db_url.startswith("sqlite:///"):
        db_path = Path(db_url.replace("sqlite:///", ""))
        for path in (db_path, Path(f"{db_path}-wal"), Path(f"{db_path}-shm")):
            if path.exists():
                path.unlink()


@pytest.fixture
def market():
    return FakeMarket()


@pytest.fixture
def chain():
    return AnalysisChain(FakeRenderer(), text_scorer=fake_text_scorer, timeout=5)


@pytest.fixture
def client(apply_migrations, market, chain):
    """Yields a TestClient with lifespan events and fake market providers."""
    app.dependency_overrides[get_market_data] = lambda: market
    app.dependency_overrides[get_analysis_chain] = lambda: chain
    with TestClient(app) as client:
        yield client
    app.dependency_overrides.clear()


@pytest.fixture
def user_id() -> str:
    return f"user-{uuid.uuid4().hex[:12]}"


@pytest.fixture
def headers(user_id):
    return build_headers(user_id)


@pytest.fixture
def db(apply_migrations):
    from stockai.db import SessionLocal

    with SessionLocal() as session:
        yield session


@pytest.fixture(autouse=True)
def clear_cache():
    analysis_cache.clear_all()
    yield
    analysis_cache.clear_all()


class FakeRedis:
    """In-memory stand-in for the rate limiter's counters."""

    def __init__(self):
        self.counters: dict[str, int] = {}
        self.ttls: dict[str, int] = {}

    def pipeline(self):
        return _FakePipeline(self)


class _FakePipeline:
    def __init__(self, redis):
        self.redis = redis
        self.queued = []

    def incr(self, key):
        self.queued.append(lambda: self._incr(key))
        return self

    def expire(self, key, ttl):
        self.queued.append(lambda: self._expire(key, ttl))
        return self

    def _expire(self, key, ttl):
        self.redis.ttls[key] = ttl
        return True

    def _incr(self, key):
        self.redis.counters[key] = self.redis.counters.get(key, 0) + 1
        return self.redis.counters[key]

    async def execute(self):
        results = [op() for op in self.queued]
        self.queued = []
        return results


@pytest.fixture(autouse=True)
def mock_redis(monkeypatch):
    fake = FakeRedis()
    monkeypatch.setattr(dependencies, "redis_client", fake)
    yield fake
