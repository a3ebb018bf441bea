"""
Scheduling data models: CycleOutcome, CycleResult, ProcessingCycleGuard.

- ``CycleOutcome``: how one agent's pass through the cycle ended.
- ``CycleResult``: the typed result returned by the cycle runner.
- ``ProcessingCycleGuard``: the "is a cycle running" flag, owned by one
  scheduler instance.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from trendpilot.exceptions import CycleGuardError
from trendpilot.utils import utc_now


# =============================================================================
# CYCLE OUTCOME ENUM
# =============================================================================


class CycleOutcome(Enum):
    """How an agent's cycle ended.

    Transitions (each stage short-circuits on failure):
        RateCheck -> RATE_LIMITED
        TrendSelect -> NO_TREND
        Generate -> CONTENT_GENERATION_FAILED
        Publish -> PUBLISH_FAILED
        Record -> SUCCESS
        any stage raising -> UNEXPECTED
    """

    SUCCESS = "success"
    RATE_LIMITED = "rate_limited"
    NO_TREND = "no_trend"
    CONTENT_GENERATION_FAILED = "content_generation_failed"
    PUBLISH_FAILED = "publish_failed"
    UNEXPECTED = "unexpected"

    @property
    def is_failure(self) -> bool:
        return self is not CycleOutcome.SUCCESS


# =============================================================================
# CYCLE RESULT
# =============================================================================


@dataclass
class CycleResult:
    """Result of running one agent through the cycle.

    Attributes:
        agent_id: Agent processed.
        user_id: Owner of the agent.
        platform: Destination platform.
        outcome: Terminal outcome.
        error: Failure reason (publisher errors verbatim).
        trend_topic: Topic selected, if selection got that far.
        post_id: External post id on success.
        url: External post URL on success.
        finished_at: When the runner returned.
    """

    agent_id: str
    user_id: str
    platform: str
    outcome: CycleOutcome
    error: Optional[str] = None
    trend_topic: Optional[str] = None
    post_id: Optional[str] = None
    url: Optional[str] = None
    finished_at: datetime = field(default_factory=utc_now)

    @property
    def success(self) -> bool:
        return self.outcome is CycleOutcome.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "agent_id": self.agent_id,
            "user_id": self.user_id,
            "platform": self.platform,
            "success": self.success,
            "outcome": self.outcome.value,
            "error": self.error,
            "trend_topic": self.trend_topic,
            "post_id": self.post_id,
            "url": self.url,
            "finished_at": self.finished_at.isoformat(),
        }


# =============================================================================
# PROCESSING CYCLE GUARD
# =============================================================================


@dataclass
class ProcessingCycleGuard:
    """At most one cycle in flight per scheduler.

    ``try_acquire`` and ``release`` contain no ``await``, so on a single
    event loop the check-and-set is atomic with respect to other ticks.
    A tick that finds the guard held is skipped, not queued.
    """

    running: bool = False
    last_run_at: Optional[datetime] = None
    last_finished_at: Optional[datetime] = None

    def try_acquire(self, now: datetime) -> bool:
        if self.running:
            return False
        self.running = True
        self.last_run_at = now
        return True

    def release(self, now: datetime) -> None:
        """Release the guard.

        Raises:
            CycleGuardError: If the guard is not held.
        """
        if not self.running:
            raise CycleGuardError("processing cycle guard released while not held")
        self.running = False
        self.last_finished_at = now


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "CycleOutcome",
    "CycleResult",
    "ProcessingCycleGuard",
]
