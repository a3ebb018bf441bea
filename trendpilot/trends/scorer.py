"""
Trend scoring: ranks candidates and penalises recently used topics.

Score components, in the order they are applied:

1. ``confidence * 100`` (missing confidence counts as 0.5)
2. ``+ min(source_count * 15, 45)``
3. ``+ log10(volume + 1) * 10``, or ``+ 5`` when volume is unknown
4. ``+ max(0, 100 - age_hours) * 0.5`` when the publish time is known
5. ``+ category bonus``, then the running total ``* category weight``
6. ``+ 10`` when the topic has two to five words
7. ``* usage penalty`` for the normalized topic's uses in the usage window

Every component is kept in ``candidate.score_breakdown``.
"""

import logging
import math
from datetime import datetime
from typing import Dict, List, Mapping, Optional

from trendpilot.config import CategoryConfig, PenaltyConfig
from trendpilot.models import TrendCandidate
from trendpilot.utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)

# =========================================================================
# SCORE CONSTANTS
# =========================================================================

SOURCE_BONUS_PER_SOURCE = 15.0
SOURCE_BONUS_CAP = 45.0
UNKNOWN_VOLUME_BONUS = 5.0
FRESHNESS_HORIZON_HOURS = 100.0
FRESHNESS_WEIGHT = 0.5
LENGTH_BONUS = 10.0
LENGTH_BONUS_WORDS = (2, 5)
DEFAULT_CONFIDENCE = 0.5


def usage_penalty(use_count: int, volume: int, config: Optional[PenaltyConfig] = None) -> float:
    """Score multiplier for a topic used *use_count* times in the usage window.

    Viral and high-volume topics recover faster than ordinary ones; three
    or more uses collapse every topic to the saturated multiplier.

    >>> usage_penalty(1, 60000)
    0.7
    >>> usage_penalty(1, 500)
    0.3
    """
    config = config or PenaltyConfig()
    if use_count <= 0:
        return 1.0
    if use_count >= 3:
        return config.saturated

    if volume > config.viral_volume_threshold:
        curve = config.viral
    elif volume > config.high_volume_threshold:
        curve = config.high_volume
    else:
        curve = config.normal
    return curve[use_count - 1]


class TrendScorer:
    """Scores and ranks candidates.

    Args:
        categories: Topic categories (bonus and weight per category).
        penalties: Usage-penalty curve.
        clock: Current UTC time, used for freshness.
    """

    def __init__(
        self,
        categories: Optional[Dict[str, CategoryConfig]] = None,
        penalties: Optional[PenaltyConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.categories = categories or {}
        self.penalties = penalties or PenaltyConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Components
    # ------------------------------------------------------------------

    @staticmethod
    def _freshness(published_at: Optional[datetime], now: datetime) -> float:
        if published_at is None:
            return 0.0
        age_hours = (now - ensure_utc(published_at)).total_seconds() / 3600
        age_hours = max(0.0, age_hours)
        return max(0.0, FRESHNESS_HORIZON_HOURS - age_hours) * FRESHNESS_WEIGHT

    @staticmethod
    def _volume_bonus(volume: int) -> float:
        if volume and volume > 0:
            return math.log10(volume + 1) * 10
        return UNKNOWN_VOLUME_BONUS

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def score_candidate(
        self,
        candidate: TrendCandidate,
        use_count: int = 0,
        now: Optional[datetime] = None,
    ) -> float:
        """Compute, store and return the score of a single candidate."""
        now = now or self._clock()
        confidence = (
            candidate.confidence if candidate.confidence is not None else DEFAULT_CONFIDENCE
        )

        breakdown: Dict[str, float] = {
            "base": confidence * 100,
            "sources": min(candidate.source_count * SOURCE_BONUS_PER_SOURCE, SOURCE_BONUS_CAP),
            "volume": self._volume_bonus(candidate.volume),
            "freshness": self._freshness(candidate.published_at, now),
        }
        running = sum(breakdown.values())

        category = self.categories.get(candidate.category or "")
        if category is not None:
            breakdown["category_bonus"] = category.bonus
            breakdown["category_weight"] = category.weight
            running = (running + category.bonus) * category.weight

        low, high = LENGTH_BONUS_WORDS
        if low <= candidate.word_count <= high:
            breakdown["length"] = LENGTH_BONUS
            running += LENGTH_BONUS

        penalty = usage_penalty(use_count, candidate.volume, self.penalties)
        breakdown["usage_count"] = float(use_count)
        breakdown["usage_penalty"] = penalty

        candidate.score = running * penalty
        candidate.score_breakdown = breakdown
        return candidate.score

    def score(
        self,
        candidates: List[TrendCandidate],
        usage_counts: Optional[Mapping[str, int]] = None,
    ) -> List[TrendCandidate]:
        """Score every candidate and sort the list highest-score-first.

        Args:
            candidates: Candidates to rank (mutated in place).
            usage_counts: Uses per normalized topic within the usage window.

        Returns:
            The same list, sorted descending by score.
        """
        usage_counts = usage_counts or {}
        now = self._clock()
        for candidate in candidates:
            self.score_candidate(
                candidate, usage_counts.get(candidate.normalized_topic, 0), now
            )
        candidates.sort(key=lambda c: c.score, reverse=True)
        if candidates:
            logger.debug(
                "[SCORER] Ranked %d candidates, top '%s' (%.1f)",
                len(candidates),
                candidates[0].topic[:60],
                candidates[0].score,
            )
        return candidates


__all__ = [
    "TrendScorer",
    "usage_penalty",
]
