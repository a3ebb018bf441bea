"""
Async Supabase store for the agent scheduler.

ALL persistent reads and writes go through the SupabaseStore class defined
here. No direct Supabase calls should appear anywhere else in the codebase.

Usage::

    from trendpilot.database import SupabaseStore, get_db

    # In async context:
    store = await get_db()
    agents = await store.get_due_agents(utc_now())

Tables:
    agents           -- user-owned automation agents (settings as JSON)
    published_posts  -- append-only post history (duplicate corpus)
    trend_usage      -- one row per topic use, pruned by retention
    agent_activity   -- per-agent failure audit trail
    agent_logs       -- structured log sink for AgentLogger
"""

import asyncio
import logging
import os
import threading
from collections import Counter
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from supabase import AsyncClient, create_async_client

from trendpilot.exceptions import DatabaseError, ValidationError
from trendpilot.models import Agent, PublishedPost, TrendUsageRecord
from trendpilot.utils import ensure_utc

logger = logging.getLogger(__name__)


# =============================================================================
# VALIDATION HELPERS
# =============================================================================


def validate_not_empty(value: Any, name: str) -> None:
    """Validate that *value* is not ``None`` or a blank string.

    Raises:
        ValidationError: If *value* is ``None`` or a blank string.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if isinstance(value, str) and not value.strip():
        raise ValidationError(f"{name} cannot be empty string")


def validate_positive(value: Union[int, float], name: str) -> None:
    """Validate that *value* is strictly positive.

    Raises:
        ValidationError: If *value* is ``None`` or not positive.
    """
    if value is None:
        raise ValidationError(f"{name} cannot be None")
    if value <= 0:
        raise ValidationError(f"{name} must be positive, got {value}")


# =============================================================================
# CONFIGURATION
# =============================================================================


@dataclass
class SupabaseConfig:
    """Supabase connection settings.

    Attributes:
        url: Project URL (``SUPABASE_URL``).
        key: Service-role key (``SUPABASE_SERVICE_KEY``).
    """

    url: str
    key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Read ``SUPABASE_URL`` and ``SUPABASE_SERVICE_KEY``.

        Raises:
            ValueError: If either variable is missing or empty.
        """
        url = os.environ.get("SUPABASE_URL")
        key = os.environ.get("SUPABASE_SERVICE_KEY")

        if not url or not key:
            raise ValueError("SUPABASE_URL and SUPABASE_SERVICE_KEY must be set")

        return cls(url=url, key=key)


# =============================================================================
# SUPABASE STORE
# =============================================================================


class SupabaseStore:
    """Async store backed by Supabase.

    **Important:** use the :meth:`create` factory method; the async client
    needs an ``await`` during initialisation.

    ``increment_post_count`` reads then writes. That is safe under the
    scheduler's single-writer model; several writers would need an RPC
    doing the increment in SQL.
    """

    AGENT_PAGE_SIZE: int = 500

    def __init__(self, client: AsyncClient) -> None:
        """Private constructor. Use :meth:`create`."""
        self.client = client

    @classmethod
    async def create(cls, config: Optional[SupabaseConfig] = None) -> "SupabaseStore":
        """Create a store connected with *config* (or the environment)."""
        config = config or SupabaseConfig.from_env()
        client = await create_async_client(config.url, config.key)
        return cls(client)

    # -----------------------------------------------------------------
    # AGENTS
    # -----------------------------------------------------------------

    async def get_due_agents(self, now: datetime) -> List[Agent]:
        """Active agents whose schedule says they should post at *now*.

        Schedule windows and spacing are evaluated in Python; the query
        only narrows to active agents. Order follows ``created_at``.
        Rows are read in pages of ``AGENT_PAGE_SIZE`` so the server's
        response row cap never hides agents.
        """
        due: List[Agent] = []
        offset = 0
        while True:
            result = await (
                self.client.table("agents")
                .select("*")
                .eq("is_active", True)
                .order("created_at", desc=False)
                .order("id", desc=False)
                .range(offset, offset + self.AGENT_PAGE_SIZE - 1)
                .execute()
            )
            rows = result.data or []
            for row in rows:
                try:
                    agent = Agent.from_row(row)
                except (KeyError, ValueError) as exc:
                    logger.warning("[DB] Skipping malformed agent row %s: %s", row.get("id"), exc)
                    continue
                if agent.is_due(now):
                    due.append(agent)

            if len(rows) < self.AGENT_PAGE_SIZE:
                break
            offset += self.AGENT_PAGE_SIZE
        return due

    async def get_agent(self, agent_id: str) -> Optional[Agent]:
        """Get one agent by id, or ``None``."""
        validate_not_empty(agent_id, "agent_id")

        result = await (
            self.client.table("agents")
            .select("*")
            .eq("id", agent_id)
            .execute()
        )
        return Agent.from_row(result.data[0]) if result.data else None

    async def increment_post_count(self, agent_id: str, posted_at: datetime) -> int:
        """Add one to ``posts_today`` and stamp ``last_posted_at``.

        Returns:
            The new ``posts_today`` value.

        Raises:
            DatabaseError: If the agent does not exist.
        """
        validate_not_empty(agent_id, "agent_id")

        current = await (
            self.client.table("agents")
            .select("posts_today")
            .eq("id", agent_id)
            .execute()
        )
        if not current.data:
            raise DatabaseError(f"Agent {agent_id} not found")

        new_count = int(current.data[0].get("posts_today") or 0) + 1
        await (
            self.client.table("agents")
            .update({
                "posts_today": new_count,
                "last_posted_at": ensure_utc(posted_at).isoformat(),
            })
            .eq("id", agent_id)
            .execute()
        )
        return new_count

    async def reset_daily_counters(self) -> int:
        """Zero ``posts_today`` on every agent that posted.

        Returns:
            Number of agents reset.
        """
        result = await (
            self.client.table("agents")
            .update({"posts_today": 0})
            .gt("posts_today", 0)
            .execute()
        )
        return len(result.data) if result.data else 0

    # -----------------------------------------------------------------
    # PUBLISHED POSTS
    # -----------------------------------------------------------------

    async def save_published_post(self, post: PublishedPost) -> str:
        """Append a post to the history.

        Raises:
            ValidationError: If the post has no text.
            DatabaseError: When the insert returns no data.
        """
        if post is None:
            raise ValidationError("post cannot be None")
        validate_not_empty(post.text, "post.text")

        result = await self.client.table("published_posts").insert(post.to_row()).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]

    async def get_recent_posts(
        self,
        since: datetime,
        limit: int = 100,
        platform: Optional[str] = None,
    ) -> List[PublishedPost]:
        """Posts published at or after *since*, newest first.

        Args:
            since: Start of the lookback window.
            limit: Maximum rows (must be > 0).
            platform: Restrict to one platform.
        """
        validate_positive(limit, "limit")

        query = (
            self.client.table("published_posts")
            .select("*")
            .gte("published_at", ensure_utc(since).isoformat())
        )
        if platform:
            query = query.eq("platform", platform)

        result = await query.order("published_at", desc=True).limit(limit).execute()
        return [PublishedPost.from_row(row) for row in result.data or []]

    # -----------------------------------------------------------------
    # TREND USAGE
    # -----------------------------------------------------------------

    async def save_trend_usage(self, record: TrendUsageRecord) -> str:
        """Append one topic use.

        Raises:
            ValidationError: If the normalized topic is empty.
            DatabaseError: When the insert returns no data.
        """
        if record is None:
            raise ValidationError("record cannot be None")
        validate_not_empty(record.normalized_topic, "record.normalized_topic")

        result = await self.client.table("trend_usage").insert(record.to_row()).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]

    async def get_trend_usage_counts(self, platform: str, since: datetime) -> Dict[str, int]:
        """Uses per normalized topic on *platform* since *since*."""
        validate_not_empty(platform, "platform")

        result = await (
            self.client.table("trend_usage")
            .select("normalized_topic")
            .eq("platform", platform)
            .gte("used_at", ensure_utc(since).isoformat())
            .execute()
        )
        return dict(Counter(row["normalized_topic"] for row in result.data or []))

    async def prune_trend_usage(self, before: datetime) -> int:
        """Delete usage rows older than *before*.

        Returns:
            Number of rows deleted.
        """
        result = await (
            self.client.table("trend_usage")
            .delete()
            .lt("used_at", ensure_utc(before).isoformat())
            .execute()
        )
        return len(result.data) if result.data else 0

    # -----------------------------------------------------------------
    # AUDIT AND LOGS
    # -----------------------------------------------------------------

    async def record_agent_activity(self, entry: Dict[str, Any]) -> str:
        """Append a per-agent audit entry (a ``CycleResult.to_dict()``).

        Raises:
            ValidationError: On missing ``agent_id`` or ``outcome``.
            DatabaseError: When the insert returns no data.
        """
        if not entry:
            raise ValidationError("entry cannot be None or empty")
        if "agent_id" not in entry or "outcome" not in entry:
            raise ValidationError("entry must have 'agent_id' and 'outcome'")

        result = await self.client.table("agent_activity").insert(entry).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]

    async def save_log(self, log_entry: Dict[str, Any]) -> str:
        """Save a structured log entry.

        Raises:
            ValidationError: On missing ``timestamp`` or ``level``.
            DatabaseError: When the insert returns no data.
        """
        if not log_entry:
            raise ValidationError("log_entry cannot be None or empty")
        if "timestamp" not in log_entry or "level" not in log_entry:
            raise ValidationError("log_entry must have 'timestamp' and 'level'")

        result = await self.client.table("agent_logs").insert(log_entry).execute()
        if not result.data:
            raise DatabaseError("Insert succeeded but returned no data")
        return result.data[0]["id"]


# =============================================================================
# GLOBAL STORE INSTANCE (Singleton)
# =============================================================================

_db_instance: Optional[SupabaseStore] = None
_db_lock: Optional[asyncio.Lock] = None

# Guards creation of the async lock itself
_init_lock = threading.Lock()


async def get_db() -> SupabaseStore:
    """Get the global :class:`SupabaseStore`, creating it on first use."""
    global _db_instance, _db_lock

    if _db_lock is None:
        with _init_lock:
            if _db_lock is None:
                _db_lock = asyncio.Lock()

    if _db_instance is None:
        async with _db_lock:
            if _db_instance is None:
                _db_instance = await SupabaseStore.create()

    return _db_instance


def reset_db() -> None:
    """Forget the global store (tests)."""
    global _db_instance, _db_lock
    _db_instance = None
    _db_lock = None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "validate_not_empty",
    "validate_positive",
    "SupabaseConfig",
    "SupabaseStore",
    "get_db",
    "reset_db",
]
