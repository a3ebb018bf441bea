"""
In-process store with the same coroutine API as ``SupabaseStore``.

Used by ``run.py --dry-run`` and by tests. Rows are kept as model objects
in plain lists and dicts; nothing survives the process.
"""

import logging
from collections import Counter
from datetime import datetime
from typing import Any, Dict, Iterable, List, Optional

from trendpilot.database import validate_not_empty, validate_positive
from trendpilot.exceptions import DatabaseError, ValidationError
from trendpilot.models import Agent, PublishedPost, TrendUsageRecord
from trendpilot.utils import ensure_utc, generate_id

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Dictionary-backed store.

    Args:
        agents: Initial agents; insertion order is the due-agents order.
    """

    def __init__(self, agents: Optional[Iterable[Agent]] = None) -> None:
        self.agents: Dict[str, Agent] = {}
        self.posts: List[PublishedPost] = []
        self.trend_usage: List[TrendUsageRecord] = []
        self.activity: List[Dict[str, Any]] = []
        self.logs: List[Dict[str, Any]] = []
        for agent in agents or []:
            self.add_agent(agent)

    def add_agent(self, agent: Agent) -> None:
        self.agents[agent.id] = agent

    # -----------------------------------------------------------------
    # AGENTS
    # -----------------------------------------------------------------

    async def get_due_agents(self, now: datetime) -> List[Agent]:
        return [agent for agent in self.agents.values() if agent.is_due(now)]

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        validate_not_empty(agent_id, "agent_id")
        return self.agents.get(agent_id)

    async def increment_post_count(self, agent_id: str, posted_at: datetime) -> int:
        validate_not_empty(agent_id, "agent_id")
        agent = self.agents.get(agent_id)
        if agent is None:
            raise DatabaseError(f"Agent {agent_id} not found")
        agent.posts_today += 1
        agent.last_posted_at = ensure_utc(posted_at)
        return agent.posts_today

    async def reset_daily_counters(self) -> int:
        count = 0
        for agent in self.agents.values():
            if agent.posts_today > 0:
                agent.posts_today = 0
                count += 1
        return count

    # -----------------------------------------------------------------
    # PUBLISHED POSTS
    # -----------------------------------------------------------------

    async def save_published_post(self, post: PublishedPost) -> str:
        if post is None:
            raise ValidationError("post cannot be None")
        validate_not_empty(post.text, "post.text")
        self.posts.append(post)
        return post.id

    async def get_recent_posts(
        self,
        since: datetime,
        limit: int = 100,
        platform: Optional[str] = None,
    ) -> List[PublishedPost]:
        validate_positive(limit, "limit")
        since = ensure_utc(since)
        matching = [
            post
            for post in self.posts
            if ensure_utc(post.published_at) >= since
            and (platform is None or post.platform == platform)
        ]
        matching.sort(key=lambda p: p.published_at, reverse=True)
        return matching[:limit]

    # -----------------------------------------------------------------
    # TREND USAGE
    # -----------------------------------------------------------------

    async def save_trend_usage(self, record: TrendUsageRecord) -> str:
        if record is None:
            raise ValidationError("record cannot be None")
        validate_not_empty(record.normalized_topic, "record.normalized_topic")
        self.trend_usage.append(record)
        return record.id

    async def get_trend_usage_counts(self, platform: str, since: datetime) -> Dict[str, int]:
        validate_not_empty(platform, "platform")
        since = ensure_utc(since)
        return dict(Counter(
            record.normalized_topic
            for record in self.trend_usage
            if record.platform == platform and ensure_utc(record.used_at) >= since
        ))

    async def prune_trend_usage(self, before: datetime) -> int:
        before = ensure_utc(before)
        kept = [r for r in self.trend_usage if ensure_utc(r.used_at) >= before]
        removed = len(self.trend_usage) - len(kept)
        self.trend_usage = kept
        return removed

    # -----------------------------------------------------------------
    # AUDIT AND LOGS
    # -----------------------------------------------------------------

    async def record_agent_activity(self, entry: Dict[str, Any]) -> str:
        if not entry:
            raise ValidationError("entry cannot be None or empty")
        if "agent_id" not in entry or "outcome" not in entry:
            raise ValidationError("entry must have 'agent_id' and 'outcome'")
        row = dict(entry, id=generate_id())
        self.activity.append(row)
        return row["id"]

    async def save_log(self, log_entry: Dict[str, Any]) -> str:
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        row = dict(log_entry, id=generate_id())
        self.logs.append(row)
        return row["id"]


__all__ = [
    "InMemoryStore",
]
