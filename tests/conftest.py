"""Shared fixtures for the TrendPilot test suite."""

from datetime import datetime, timedelta, timezone
from typing import Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from trendpilot.config import reset_settings
from trendpilot.models import Agent, AgentSettings, PostingSchedule, TrendCandidate


# ---------------------------------------------------------------------------
# Ensure we don't hit real APIs during tests
# ---------------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _block_env_keys(monkeypatch):
    """Clear all API keys and overrides so tests never hit real services."""
    keys = [
        "SUPABASE_URL",
        "SUPABASE_SERVICE_KEY",
        "ANTHROPIC_API_KEY",
        "NEWSAPI_KEY",
        "GNEWS_API_KEY",
        "TELEGRAM_BOT_TOKEN",
        "TELEGRAM_CHAT_ID",
        "LLM_MODEL",
        "LOG_LEVEL",
        "ENABLED_CATEGORIES",
        "DISABLED_CATEGORIES",
        "CATEGORY_WEIGHTS",
        "SCHEDULER_BATCH_SIZE",
        "SCHEDULER_CHECK_INTERVAL",
        "SCHEDULER_AGENT_DELAY",
        "SCHEDULER_BATCH_DELAY",
        "SCHEDULER_CALL_TIMEOUT",
        "RATE_LIMIT_WINDOW_SECONDS",
        "RATE_LIMIT_LINKEDIN",
        "RATE_LIMIT_TWITTER",
        "DUPLICATE_LOOKBACK_HOURS",
        "SIMILARITY_THRESHOLD",
        "TREND_MIN_CONFIDENCE",
        "TREND_CACHE_TTL",
        "TREND_PENALTY_SATURATED",
        "TREND_VOLUME_THRESHOLD",
        "TREND_VIRAL_THRESHOLD",
    ]
    for key in keys:
        monkeypatch.delenv(key, raising=False)
    reset_settings()
    yield
    reset_settings()


# ---------------------------------------------------------------------------
# Common datetime fixtures
# ---------------------------------------------------------------------------
@pytest.fixture
def sample_utc_now():
    """A fixed UTC datetime for deterministic tests."""
    return datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable clock: call it for the current time, ``advance`` to move it."""

    def __init__(self, now: datetime) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float = 0, **kwargs: float) -> datetime:
        self.now = self.now + timedelta(seconds=seconds, **kwargs)
        return self.now


@pytest.fixture
def clock(sample_utc_now):
    """A FakeClock starting at ``sample_utc_now``."""
    return FakeClock(sample_utc_now)


# ---------------------------------------------------------------------------
# Domain object factories
# ---------------------------------------------------------------------------
def make_agent(
    agent_id: str = "agent-1",
    user_id: str = "user-1",
    platform: str = "linkedin",
    topics: Optional[list] = None,
    posts_per_day: int = 5,
    **kwargs,
) -> Agent:
    """An active agent whose schedule window covers the whole day."""
    schedule = PostingSchedule(posts_per_day=posts_per_day, start_time="00:00", end_time="00:00")
    return Agent(
        id=agent_id,
        user_id=user_id,
        platform=platform,
        settings=AgentSettings(topics=topics if topics is not None else ["ai"], schedule=schedule),
        **kwargs,
    )


def make_candidate(topic: str = "OpenAI releases new model", **kwargs) -> TrendCandidate:
    """A candidate that passes the strict filter unless overridden."""
    kwargs.setdefault("confidence", 0.8)
    kwargs.setdefault("sources", ["Reuters", "BBC"])
    return TrendCandidate(topic=topic, **kwargs)


@pytest.fixture
def agent():
    return make_agent()


# ---------------------------------------------------------------------------
# Mock Supabase client
# ---------------------------------------------------------------------------
@pytest.fixture
def mock_supabase_client():
    """A mock Supabase async client with a chainable query builder.

    Set ``client.query.execute.return_value = MagicMock(data=[...])`` to
    control results.
    """
    client = MagicMock()
    table_mock = MagicMock()
    for method in ("select", "insert", "update", "delete", "eq", "gt", "gte",
                   "lt", "lte", "order", "limit", "range", "single"):
        getattr(table_mock, method).return_value = table_mock
    table_mock.execute = AsyncMock(return_value=MagicMock(data=[], count=0))
    client.table.return_value = table_mock
    client.query = table_mock
    return client
