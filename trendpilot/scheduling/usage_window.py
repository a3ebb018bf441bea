"""
Per-user, per-platform posting rate limiter.

``UsageWindowTracker`` keeps one fixed-length window per
``(user_id, platform)``: a count and the instant the window opened. A
window is created by the first recorded post and lazily reset when it is
read after expiry, so idle pairs cost nothing until cleanup removes them.

Single-writer assumption: the tracker is an in-memory dict mutated only
from the scheduler's own task. Every method is synchronous (no ``await``
between read and write), so interleaved coroutines on one event loop
cannot corrupt a window. Running several scheduler processes or threads
against the same users requires moving this state into a shared store.
"""

import logging
from datetime import datetime, timedelta
from typing import Dict, Optional

from trendpilot.config import RateLimitConfig
from trendpilot.models import RateLimitWindow
from trendpilot.utils import Clock, utc_now

logger = logging.getLogger(__name__)


class UsageWindowTracker:
    """In-memory sliding window counters keyed by user and platform.

    Args:
        config: Platform ceilings and window length.
        clock: Returns the current UTC time; injectable for tests.

    Usage::

        tracker = UsageWindowTracker(RateLimitConfig())
        if tracker.check_limit(agent.user_id, agent.platform):
            ...  # publish
            tracker.record_usage(agent.user_id, agent.platform)
    """

    def __init__(
        self,
        config: Optional[RateLimitConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.config = config or RateLimitConfig()
        self._clock = clock
        self._window = timedelta(seconds=self.config.window_seconds)
        # user_id -> platform -> window
        self._windows: Dict[str, Dict[str, RateLimitWindow]] = {}

    @property
    def window(self) -> timedelta:
        return self._window

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _live_window(self, user_id: str, platform: str, now: datetime) -> Optional[RateLimitWindow]:
        """Current window for the pair, resetting it first if it expired."""
        window = self._windows.get(user_id, {}).get(platform)
        if window is None:
            return None
        if window.is_expired(now, self._window):
            window.count = 0
            window.window_start = now
        return window

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def check_limit(self, user_id: str, platform: str) -> bool:
        """Return ``True`` when *user_id* may post once more on *platform*.

        Unknown platforms have no ceiling and are allowed with a warning.
        """
        platform = platform.lower()
        limit = self.config.get_limit(platform)
        if limit is None:
            logger.warning(
                "[RATE_LIMIT] No limit configured for platform '%s', allowing",
                platform,
            )
            return True

        window = self._live_window(user_id, platform, self._clock())
        if window is None:
            return True

        allowed = window.count < limit
        if not allowed:
            logger.info(
                "[RATE_LIMIT] user=%s platform=%s at ceiling (%d/%d)",
                user_id,
                platform,
                window.count,
                limit,
            )
        return allowed

    def record_usage(self, user_id: str, platform: str) -> None:
        """Count one post for the pair, opening a window if none is live."""
        platform = platform.lower()
        now = self._clock()
        window = self._live_window(user_id, platform, now)
        if window is None:
            self._windows.setdefault(user_id, {})[platform] = RateLimitWindow(
                count=1, window_start=now
            )
            return
        window.count += 1

    def get_remaining(self, user_id: str, platform: str) -> Optional[int]:
        """Posts left in the current window, or ``None`` for unknown platforms."""
        platform = platform.lower()
        limit = self.config.get_limit(platform)
        if limit is None:
            return None
        window = self._live_window(user_id, platform, self._clock())
        used = window.count if window else 0
        return max(0, limit - used)

    def get_usage_stats(self, user_id: str) -> Dict[str, Dict[str, object]]:
        """Per-platform usage for *user_id* across every configured platform.

        Returns:
            ``{platform: {"used", "limit", "remaining", "resets_at"}}``;
            ``resets_at`` is ``None`` when no window is open.
        """
        now = self._clock()
        stats: Dict[str, Dict[str, object]] = {}
        for platform, limit in self.config.platform_limits.items():
            window = self._live_window(user_id, platform, now)
            used = window.count if window else 0
            stats[platform] = {
                "used": used,
                "limit": limit,
                "remaining": max(0, limit - used),
                "resets_at": window.resets_at(self._window) if window else None,
            }
        return stats

    def reset(self, user_id: Optional[str] = None) -> None:
        """Drop all windows, or only those of *user_id*."""
        if user_id is None:
            self._windows.clear()
        else:
            self._windows.pop(user_id, None)

    def cleanup(self) -> int:
        """Remove windows untouched for more than twice the window length.

        Users left without any window are removed too.

        Returns:
            Number of windows removed.
        """
        now = self._clock()
        stale_after = self._window * 2
        removed = 0
        for user_id in list(self._windows):
            platforms = self._windows[user_id]
            for platform in list(platforms):
                if now - platforms[platform].window_start > stale_after:
                    del platforms[platform]
                    removed += 1
            if not platforms:
                del self._windows[user_id]
        if removed:
            logger.info("[RATE_LIMIT] Cleanup removed %d stale windows", removed)
        return removed

    def __len__(self) -> int:
        return sum(len(p) for p in self._windows.values())


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "UsageWindowTracker",
]
