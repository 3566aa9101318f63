"""Pytest configuration and fixtures."""

import os
from collections.abc import AsyncIterator, Callable, Iterator
from datetime import datetime, timezone

import fakeredis.aioredis
import pytest
import pytest_asyncio

from resume_parser_api.config import Settings

# Set test environment variables before importing app modules
os.environ.setdefault("AI_PROVIDER", "openai")
os.environ.setdefault("OPENAI_API_KEY", "sk-test-key-1234567890")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("ADMIN_API_KEY", "")
# Increase rate limit for testing
os.environ.setdefault("RATE_LIMIT_PER_MINUTE", "1000")
os.environ.setdefault("DAILY_RATE_LIMIT", "10")


@pytest.fixture(autouse=True)
def reset_caches() -> Iterator[None]:
    """Reset cached settings and limiter storage before each test."""
    from resume_parser_api.config import get_settings

    get_settings.cache_clear()

    try:
        from resume_parser_api.main import limiter

        if hasattr(limiter, "_storage") and limiter._storage:
            limiter._storage.reset()
    except (ImportError, AttributeError):
        pass

    yield
    get_settings.cache_clear()


@pytest.fixture
def mock_settings(monkeypatch: pytest.MonkeyPatch) -> Callable[..., Settings]:
    """Fixture to set test settings."""

    def _mock_settings(**kwargs: str) -> Settings:
        for key, value in kwargs.items():
            monkeypatch.setenv(key.upper(), str(value))
        from resume_parser_api.config import get_settings

        get_settings.cache_clear()
        return get_settings()

    return _mock_settings


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[fakeredis.aioredis.FakeRedis]:
    """In-memory Redis speaking the real protocol semantics."""
    client = fakeredis.aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()
    await client.aclose()


class FixedClock:
    """Settable clock for quota tests."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(datetime(2024, 3, 15, 14, 30, tzinfo=timezone.utc))
