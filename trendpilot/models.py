"""
Core data models for the TrendPilot agent scheduler.

Defines the entities the scheduler reads and writes:
- ``PostingSchedule`` / ``AgentSettings`` / ``Agent``: user-owned automation
  units. Read-only to the core apart from the daily post counter and
  ``last_posted_at``.
- ``TrendCandidate``: an ephemeral topic or article considered during one
  selection call. Never persisted on its own.
- ``TrendUsageRecord``: one use of a normalized topic, counted within a
  trailing window to penalise repetition.
- ``PublishedPost``: append-only history; analytics and duplicate corpus.
- ``RateLimitWindow``: count plus window start for one (user, platform).
- ``GeneratedContent`` / ``PublishResult``: collaborator return values.

All datetimes are timezone-aware UTC. Store rows are plain dicts; every
persisted model has ``from_row()`` and ``to_row()``.
"""

import re
from dataclasses import dataclass, field
from datetime import datetime, time, timedelta
from typing import Any, Dict, List, Optional

from trendpilot.exceptions import ValidationError
from trendpilot.utils import ensure_utc, generate_id, parse_datetime, utc_now


# =============================================================================
# TOPIC NORMALIZATION
# =============================================================================

_STRIP_MARKERS = re.compile(r"[#@]")
_NON_WORD = re.compile(r"[^\w\s]")
_WHITESPACE = re.compile(r"\s+")


def normalize_topic(topic: Optional[str]) -> str:
    """Canonical form used for usage counting and duplicate detection.

    Lowercases, drops ``#``/``@`` markers, turns punctuation into spaces
    and collapses whitespace::

        >>> normalize_topic("  #OpenAI's  GPT-5 launch! ")
        'openai s gpt 5 launch'
    """
    if not topic:
        return ""
    text = _STRIP_MARKERS.sub("", topic.lower())
    text = _NON_WORD.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


# =============================================================================
# POSTING SCHEDULE
# =============================================================================


def parse_clock(value: str) -> time:
    """Parse ``"HH:MM"`` into a :class:`datetime.time`.

    Raises:
        ValidationError: If the value is not a valid 24h clock time.
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (ValueError, AttributeError) as exc:
        raise ValidationError(f"Invalid clock time '{value}', expected HH:MM") from exc


@dataclass
class PostingSchedule:
    """Daily posting quota and UTC time window for one agent.

    Attributes:
        posts_per_day: Daily quota. Zero or negative disables posting.
        start_time: Window opening, ``"HH:MM"`` UTC (inclusive).
        end_time: Window closing, ``"HH:MM"`` UTC (exclusive). A window
            whose end is before its start wraps past midnight.
    """

    posts_per_day: int = 3
    start_time: str = "09:00"
    end_time: str = "21:00"

    def __post_init__(self) -> None:
        # Fail on bad clock strings at load time, not mid-cycle
        parse_clock(self.start_time)
        parse_clock(self.end_time)

    @property
    def window_length(self) -> timedelta:
        """Length of the daily window (24h when start equals end)."""
        start = parse_clock(self.start_time)
        end = parse_clock(self.end_time)
        start_min = start.hour * 60 + start.minute
        end_min = end.hour * 60 + end.minute
        minutes = (end_min - start_min) % (24 * 60)
        return timedelta(minutes=minutes or 24 * 60)

    @property
    def min_spacing(self) -> timedelta:
        """Minimum gap between two posts so the quota spreads over the window."""
        if self.posts_per_day <= 0:
            return self.window_length
        return self.window_length / self.posts_per_day

    def in_window(self, now: datetime) -> bool:
        """Whether the UTC wall-clock time of *now* falls inside the window."""
        current = ensure_utc(now).time().replace(second=0, microsecond=0)
        start = parse_clock(self.start_time)
        end = parse_clock(self.end_time)
        if start == end:
            return True
        if start < end:
            return start <= current < end
        return current >= start or current < end

    def is_due(
        self,
        now: datetime,
        posts_today: int,
        last_posted_at: Optional[datetime] = None,
    ) -> bool:
        """Whether an agent on this schedule should post at *now*."""
        if self.posts_per_day <= 0 or posts_today >= self.posts_per_day:
            return False
        if not self.in_window(now):
            return False
        if last_posted_at is not None:
            elapsed = ensure_utc(now) - ensure_utc(last_posted_at)
            if elapsed < self.min_spacing:
                return False
        return True

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "PostingSchedule":
        data = data or {}
        return cls(
            posts_per_day=int(data.get("posts_per_day", data.get("postsPerDay", 3))),
            start_time=data.get("start_time", data.get("startTime", "09:00")),
            end_time=data.get("end_time", data.get("endTime", "21:00")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "posts_per_day": self.posts_per_day,
            "start_time": self.start_time,
            "end_time": self.end_time,
        }


# =============================================================================
# AGENT
# =============================================================================


@dataclass
class AgentSettings:
    """Per-agent style and targeting settings.

    Attributes:
        topics: Topics to search for candidates. Empty means "use the
            platform's default category".
        keywords: Extra keywords passed to the content generator.
        tone: Writing tone, e.g. ``"professional"``.
        include_hashtags: Whether generated text may end with hashtags.
        platform_options: Opaque options forwarded to the publisher
            (e.g. Telegram ``chat_id``).
        schedule: Daily quota and time window.
        category: Optional preferred topic category for fallbacks.
    """

    topics: List[str] = field(default_factory=list)
    keywords: List[str] = field(default_factory=list)
    tone: str = "professional"
    include_hashtags: bool = True
    platform_options: Dict[str, Any] = field(default_factory=dict)
    schedule: PostingSchedule = field(default_factory=PostingSchedule)
    category: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "AgentSettings":
        data = data or {}
        return cls(
            topics=list(data.get("topics") or []),
            keywords=list(data.get("keywords") or []),
            tone=data.get("tone") or "professional",
            include_hashtags=bool(data.get("include_hashtags", True)),
            platform_options=dict(data.get("platform_options") or {}),
            schedule=PostingSchedule.from_dict(data.get("schedule")),
            category=data.get("category"),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "topics": list(self.topics),
            "keywords": list(self.keywords),
            "tone": self.tone,
            "include_hashtags": self.include_hashtags,
            "platform_options": dict(self.platform_options),
            "schedule": self.schedule.to_dict(),
            "category": self.category,
        }


@dataclass
class Agent:
    """A user-configured automation unit bound to one platform.

    Attributes:
        id: Agent UUID.
        user_id: Owning user; rate limits are keyed by (user_id, platform).
        platform: Destination platform, lowercase (``"linkedin"``...).
        name: Display name.
        settings: Targeting, style, and schedule.
        posts_today: Successful posts since the last daily reset.
        last_posted_at: Time of the last successful post.
        is_active: Inactive agents are never due.
    """

    id: str
    user_id: str
    platform: str
    name: str = ""
    settings: AgentSettings = field(default_factory=AgentSettings)
    posts_today: int = 0
    last_posted_at: Optional[datetime] = None
    is_active: bool = True

    def __post_init__(self) -> None:
        self.platform = self.platform.lower()

    def is_due(self, now: datetime) -> bool:
        """Whether this agent should post in the cycle running at *now*."""
        return self.is_active and self.settings.schedule.is_due(
            now, self.posts_today, self.last_posted_at
        )

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "Agent":
        """Build an :class:`Agent` from an ``agents`` table row."""
        return Agent(
            id=row["id"],
            user_id=row["user_id"],
            platform=row["platform"],
            name=row.get("name") or "",
            settings=AgentSettings.from_dict(row.get("settings")),
            posts_today=int(row.get("posts_today") or 0),
            last_posted_at=parse_datetime(row.get("last_posted_at")),
            is_active=row.get("is_active", True),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "platform": self.platform,
            "name": self.name,
            "settings": self.settings.to_dict(),
            "posts_today": self.posts_today,
            "last_posted_at": (
                self.last_posted_at.isoformat() if self.last_posted_at else None
            ),
            "is_active": self.is_active,
        }


# =============================================================================
# TREND CANDIDATE
# =============================================================================


@dataclass
class TrendCandidate:
    """A topic or article considered for one selection call.

    ``score`` and ``score_breakdown`` are filled in by the scorer;
    ``category`` may be set by the source or by category matching.
    """

    topic: str
    title: Optional[str] = None
    url: Optional[str] = None
    published_at: Optional[datetime] = None
    sources: List[str] = field(default_factory=list)
    confidence: Optional[float] = None
    volume: int = 0
    category: Optional[str] = None
    query: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    score: float = 0.0
    score_breakdown: Dict[str, float] = field(default_factory=dict)

    @property
    def normalized_topic(self) -> str:
        return normalize_topic(self.topic)

    @property
    def source_count(self) -> int:
        """Distinct sources; an unsourced candidate counts as one."""
        return len(set(self.sources)) or 1

    @property
    def word_count(self) -> int:
        return len(self.topic.split())

    @property
    def is_fallback(self) -> bool:
        return bool(self.metadata.get("is_fallback"))

    def snapshot(self) -> Dict[str, Any]:
        """JSON-safe copy stored alongside the published post."""
        return {
            "topic": self.topic,
            "normalized_topic": self.normalized_topic,
            "title": self.title,
            "url": self.url,
            "published_at": self.published_at.isoformat() if self.published_at else None,
            "sources": list(self.sources),
            "confidence": self.confidence,
            "volume": self.volume,
            "category": self.category,
            "score": self.score,
            "metadata": dict(self.metadata),
        }


# =============================================================================
# TREND USAGE RECORD
# =============================================================================


@dataclass
class TrendUsageRecord:
    """One use of a topic by an agent on a platform."""

    normalized_topic: str
    platform: str
    agent_id: str
    topic: str = ""
    sources: List[str] = field(default_factory=list)
    confidence: float = 0.5
    score: float = 0.0
    used_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=generate_id)

    @classmethod
    def from_candidate(
        cls, candidate: TrendCandidate, agent: Agent, used_at: datetime
    ) -> "TrendUsageRecord":
        return cls(
            normalized_topic=candidate.normalized_topic,
            platform=agent.platform,
            agent_id=agent.id,
            topic=candidate.topic,
            sources=list(candidate.sources),
            confidence=candidate.confidence if candidate.confidence is not None else 0.5,
            score=candidate.score,
            used_at=used_at,
        )

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "TrendUsageRecord":
        return TrendUsageRecord(
            id=row.get("id") or generate_id(),
            normalized_topic=row["normalized_topic"],
            platform=row["platform"],
            agent_id=row.get("agent_id") or "",
            topic=row.get("topic") or "",
            sources=list(row.get("sources") or []),
            confidence=float(row.get("confidence") or 0.5),
            score=float(row.get("score") or 0.0),
            used_at=parse_datetime(row["used_at"]) or utc_now(),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "normalized_topic": self.normalized_topic,
            "platform": self.platform,
            "agent_id": self.agent_id,
            "topic": self.topic,
            "sources": list(self.sources),
            "confidence": self.confidence,
            "score": self.score,
            "used_at": self.used_at.isoformat(),
        }


# =============================================================================
# PUBLISHED POST
# =============================================================================


@dataclass
class PublishedPost:
    """Append-only record of one published post."""

    agent_id: str
    user_id: str
    platform: str
    trend: Dict[str, Any]
    text: str
    success: bool = True
    post_id: Optional[str] = None
    url: Optional[str] = None
    published_at: datetime = field(default_factory=utc_now)
    id: str = field(default_factory=generate_id)

    @property
    def topic(self) -> str:
        return self.trend.get("topic") or ""

    @property
    def title(self) -> str:
        return self.trend.get("title") or ""

    @property
    def trend_url(self) -> str:
        return self.trend.get("url") or ""

    @staticmethod
    def from_row(row: Dict[str, Any]) -> "PublishedPost":
        return PublishedPost(
            id=row.get("id") or generate_id(),
            agent_id=row["agent_id"],
            user_id=row["user_id"],
            platform=row["platform"],
            trend=dict(row.get("trend") or {}),
            text=row.get("text") or "",
            success=row.get("success", True),
            post_id=row.get("post_id"),
            url=row.get("url"),
            published_at=parse_datetime(row.get("published_at")) or utc_now(),
        )

    def to_row(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "platform": self.platform,
            "trend": dict(self.trend),
            "text": self.text,
            "success": self.success,
            "post_id": self.post_id,
            "url": self.url,
            "published_at": self.published_at.isoformat(),
        }


# =============================================================================
# RATE LIMIT WINDOW
# =============================================================================


@dataclass
class RateLimitWindow:
    """Post count for one (user, platform) since ``window_start``.

    The count is only meaningful while ``now - window_start`` is shorter
    than the window length; an expired window reads as zero.
    """

    count: int
    window_start: datetime

    def is_expired(self, now: datetime, window: timedelta) -> bool:
        return now - self.window_start >= window

    def resets_at(self, window: timedelta) -> datetime:
        return self.window_start + window


# =============================================================================
# COLLABORATOR RESULTS
# =============================================================================


@dataclass
class GeneratedContent:
    """Text (and optional image) returned by the content generator."""

    text: str
    image_url: Optional[str] = None


@dataclass
class PublishResult:
    """Outcome of one publisher call."""

    success: bool
    platform: str
    post_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "normalize_topic",
    "parse_clock",
    "PostingSchedule",
    "AgentSettings",
    "Agent",
    "TrendCandidate",
    "TrendUsageRecord",
    "PublishedPost",
    "RateLimitWindow",
    "GeneratedContent",
    "PublishResult",
]
