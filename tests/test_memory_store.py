"""Tests for trendpilot.memory_store.InMemoryStore."""

from datetime import timedelta

import pytest

from conftest import make_agent
from trendpilot.exceptions import DatabaseError, ValidationError
from trendpilot.memory_store import InMemoryStore
from trendpilot.models import PublishedPost, TrendUsageRecord


def _post(platform="linkedin", topic="AI", published_at=None, text="hello"):
    post = PublishedPost(
        agent_id="agent-1",
        user_id="user-1",
        platform=platform,
        trend={"topic": topic},
        text=text,
    )
    if published_at is not None:
        post.published_at = published_at
    return post


# =============================================================================
# Agents
# =============================================================================


class TestAgents:
    """Due agents and daily counters."""

    @pytest.mark.asyncio
    async def test_get_due_agents_keeps_insertion_order(self, sample_utc_now):
        store = InMemoryStore([
            make_agent(agent_id="b"),
            make_agent(agent_id="exhausted", posts_today=5),
            make_agent(agent_id="a"),
            make_agent(agent_id="off", is_active=False),
        ])

        due = await store.get_due_agents(sample_utc_now)

        assert [agent.id for agent in due] == ["b", "a"]

    @pytest.mark.asyncio
    async def test_increment_post_count(self, sample_utc_now):
        store = InMemoryStore([make_agent()])

        assert await store.increment_post_count("agent-1", sample_utc_now) == 1
        assert await store.increment_post_count("agent-1", sample_utc_now) == 2
        assert store.agents["agent-1"].last_posted_at == sample_utc_now

    @pytest.mark.asyncio
    async def test_increment_unknown_agent(self, sample_utc_now):
        with pytest.raises(DatabaseError, match="not found"):
            await InMemoryStore().increment_post_count("ghost", sample_utc_now)

    @pytest.mark.asyncio
    async def test_reset_daily_counters_counts_changed_rows(self):
        store = InMemoryStore([
            make_agent(agent_id="a", posts_today=2),
            make_agent(agent_id="b", posts_today=0),
            make_agent(agent_id="c", posts_today=4),
        ])

        assert await store.reset_daily_counters() == 2
        assert all(agent.posts_today == 0 for agent in store.agents.values())

    @pytest.mark.asyncio
    async def test_get_agent(self):
        store = InMemoryStore([make_agent()])
        assert (await store.get_agent("agent-1")).id == "agent-1"
        assert await store.get_agent("missing") is None
        with pytest.raises(ValidationError):
            await store.get_agent("")


# =============================================================================
# Published posts
# =============================================================================


class TestPosts:
    """History used by the duplicate guard."""

    @pytest.mark.asyncio
    async def test_recent_posts_newest_first_and_limited(self, sample_utc_now):
        store = InMemoryStore()
        for hours_ago in (5, 1, 3, 10):
            await store.save_published_post(
                _post(topic=f"t{hours_ago}", published_at=sample_utc_now - timedelta(hours=hours_ago))
            )

        posts = await store.get_recent_posts(sample_utc_now - timedelta(hours=8), limit=2)

        assert [p.topic for p in posts] == ["t1", "t3"]

    @pytest.mark.asyncio
    async def test_recent_posts_by_platform(self, sample_utc_now):
        store = InMemoryStore()
        await store.save_published_post(_post("linkedin", "A", sample_utc_now))
        await store.save_published_post(_post("twitter", "B", sample_utc_now))

        posts = await store.get_recent_posts(sample_utc_now - timedelta(hours=1), platform="twitter")

        assert [p.topic for p in posts] == ["B"]

    @pytest.mark.asyncio
    async def test_empty_text_rejected(self):
        with pytest.raises(ValidationError):
            await InMemoryStore().save_published_post(_post(text=""))

    @pytest.mark.asyncio
    async def test_bad_limit_rejected(self, sample_utc_now):
        with pytest.raises(ValidationError):
            await InMemoryStore().get_recent_posts(sample_utc_now, limit=0)


# =============================================================================
# Trend usage
# =============================================================================


class TestTrendUsage:
    """Usage counts per platform and pruning."""

    @pytest.mark.asyncio
    async def test_counts_within_window_per_platform(self, sample_utc_now):
        store = InMemoryStore()
        for topic, platform, hours_ago in [
            ("ai", "linkedin", 1),
            ("ai", "linkedin", 10),
            ("ai", "linkedin", 30),
            ("ai", "twitter", 1),
            ("robots", "linkedin", 2),
        ]:
            await store.save_trend_usage(
                TrendUsageRecord(topic, platform, "agent-1", used_at=sample_utc_now - timedelta(hours=hours_ago))
            )

        counts = await store.get_trend_usage_counts("linkedin", sample_utc_now - timedelta(hours=24))

        assert counts == {"ai": 2, "robots": 1}

    @pytest.mark.asyncio
    async def test_prune_removes_older_rows(self, sample_utc_now):
        store = InMemoryStore()
        for hours_ago in (1, 50):
            await store.save_trend_usage(
                TrendUsageRecord("ai", "linkedin", "agent-1", used_at=sample_utc_now - timedelta(hours=hours_ago))
            )

        assert await store.prune_trend_usage(sample_utc_now - timedelta(hours=48)) == 1
        assert len(store.trend_usage) == 1

    @pytest.mark.asyncio
    async def test_empty_topic_rejected(self):
        with pytest.raises(ValidationError):
            await InMemoryStore().save_trend_usage(TrendUsageRecord("", "linkedin", "agent-1"))


# =============================================================================
# Audit and logs
# =============================================================================


class TestAuditAndLogs:
    """Activity rows and log rows get ids."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("entry", [{}, {"agent_id": "a1"}, {"outcome": "no_trend"}])
    async def test_activity_validation(self, entry):
        with pytest.raises(ValidationError):
            await InMemoryStore().record_agent_activity(entry)

    @pytest.mark.asyncio
    async def test_activity_row_gets_id(self):
        store = InMemoryStore()
        row_id = await store.record_agent_activity({"agent_id": "a1", "outcome": "no_trend"})
        assert store.activity == [{"agent_id": "a1", "outcome": "no_trend", "id": row_id}]

    @pytest.mark.asyncio
    async def test_save_log(self):
        store = InMemoryStore()
        await store.save_log({"message": "hi", "level": 20})
        assert store.logs[0]["message"] == "hi"
        with pytest.raises(ValidationError):
            await store.save_log({})
