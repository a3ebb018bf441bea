"""
Safety and quality filters applied to raw candidates before scoring.

Two passes are available:

- **strict** (``TrendFilter.apply``): block-list, minimum confidence,
  minimum source count, low-engagement, generic single words,
  low-quality tokens, clickbait phrasing and disabled categories.
- **relaxed** (``TrendFilter.apply_relaxed``): block-list only, used when
  the strict pass leaves nothing to choose from.

Each rejection is recorded in ``exclusion_log`` with its reason so a
selection can be explained after the fact.
"""

import logging
import re
from typing import Dict, List, Optional, Pattern

from trendpilot.config import CategoryConfig, SelectionConfig
from trendpilot.models import TrendCandidate

logger = logging.getLogger(__name__)

# =========================================================================
# CONSTANTS
# =========================================================================

LOW_QUALITY_WORDS = frozenset({"failed", "error", "undefined", "null", "test", "example"})

CLICKBAIT_PATTERNS: List[str] = [
    r"you won'?t believe",
    r"this one trick",
    r"doctors hate",
    r"shocking",
    r"\d+ reasons why",
]
_CLICKBAIT_RE = re.compile("|".join(CLICKBAIT_PATTERNS), re.IGNORECASE)


# =========================================================================
# CATEGORY MATCHING
# =========================================================================


def _keyword_pattern(keyword: str) -> Pattern[str]:
    return re.compile(r"\b" + re.escape(keyword.lower()) + r"\b")


class CategoryMatcher:
    """Assigns a topic category by keyword match on topic and title.

    Categories are tried in configuration order; the first keyword hit
    wins. Patterns are compiled once per matcher.
    """

    def __init__(self, categories: Dict[str, CategoryConfig]) -> None:
        self.categories = categories
        self._patterns: Dict[str, List[Pattern[str]]] = {
            name: [_keyword_pattern(k) for k in cat.keywords]
            for name, cat in categories.items()
        }

    def match(self, candidate: TrendCandidate, include_disabled: bool = False) -> Optional[str]:
        """Name of the first matching category, or ``None``."""
        text = " ".join(filter(None, [candidate.topic, candidate.title])).lower()
        for name, patterns in self._patterns.items():
            if not include_disabled and not self.categories[name].enabled:
                continue
            if any(p.search(text) for p in patterns):
                return name
        return None

    def assign(self, candidate: TrendCandidate) -> Optional[str]:
        """Set ``candidate.category`` from keywords unless the source already did."""
        if candidate.category is None:
            candidate.category = self.match(candidate)
        return candidate.category


# =========================================================================
# FILTER
# =========================================================================


class TrendFilter:
    """Applies the strict and relaxed candidate filters.

    Args:
        config: Selection thresholds and block-lists.
        categories: Topic categories used to reject disabled ones.
    """

    def __init__(
        self,
        config: SelectionConfig,
        categories: Dict[str, CategoryConfig],
    ) -> None:
        self.config = config
        self.categories = categories
        self.matcher = CategoryMatcher(categories)
        self._blocklist_re = self._compile_blocklist(config.blocklist)
        self._relaxed_re = self._compile_blocklist(config.relaxed_blocklist)
        self.exclusion_log: List[Dict[str, str]] = []

    @staticmethod
    def _compile_blocklist(words: List[str]) -> Optional[Pattern[str]]:
        if not words:
            return None
        return re.compile(
            r"\b(?:" + "|".join(re.escape(w.lower()) for w in words) + r")\b",
            re.IGNORECASE,
        )

    def _exclude(self, candidate: TrendCandidate, reason: str) -> None:
        self.exclusion_log.append({"topic": candidate.topic[:80], "reason": reason})
        logger.debug("[FILTER] Excluded '%s': %s", candidate.topic[:60], reason)

    @staticmethod
    def _blocked(candidate: TrendCandidate, pattern: Optional[Pattern[str]]) -> bool:
        if pattern is None:
            return False
        text = " ".join(filter(None, [candidate.topic, candidate.title]))
        return bool(pattern.search(text))

    # ------------------------------------------------------------------
    # Strict pass
    # ------------------------------------------------------------------

    def check(self, candidate: TrendCandidate) -> Optional[str]:
        """Reason the strict pass rejects *candidate*, or ``None`` to keep it."""
        topic = candidate.topic.strip()
        if not topic:
            return "empty topic"
        if self._blocked(candidate, self._blocklist_re):
            return "blocked content"

        confidence = candidate.confidence
        if confidence is not None and confidence < self.config.min_confidence:
            return f"confidence {confidence:.2f} below {self.config.min_confidence:.2f}"

        if candidate.source_count < self.config.min_source_count:
            return f"only {candidate.source_count} source(s)"

        if 0 < candidate.volume < self.config.min_engagement:
            return f"low engagement: {candidate.volume}"

        words = topic.split()
        if len(words) == 1 and len(topic) < 4:
            return "too generic"
        if len(words) == 1 and topic.lower() in LOW_QUALITY_WORDS:
            return "low quality single word"
        if _CLICKBAIT_RE.search(topic):
            return "clickbait pattern"

        if self.matcher.assign(candidate) is None:
            disabled = self.matcher.match(candidate, include_disabled=True)
            if disabled is not None and not self.categories[disabled].enabled:
                return f"category '{disabled}' disabled"
        return None

    def apply(self, candidates: List[TrendCandidate]) -> List[TrendCandidate]:
        """Strict pass. Order of survivors is preserved."""
        kept: List[TrendCandidate] = []
        for candidate in candidates:
            reason = self.check(candidate)
            if reason:
                self._exclude(candidate, reason)
            else:
                kept.append(candidate)
        return kept

    # ------------------------------------------------------------------
    # Relaxed pass
    # ------------------------------------------------------------------

    def apply_relaxed(self, candidates: List[TrendCandidate]) -> List[TrendCandidate]:
        """Block-list only; no confidence, source or quality minimums."""
        kept: List[TrendCandidate] = []
        for candidate in candidates:
            if not candidate.topic.strip():
                continue
            if self._blocked(candidate, self._relaxed_re):
                self._exclude(candidate, "blocked content (relaxed)")
                continue
            self.matcher.assign(candidate)
            kept.append(candidate)
        return kept


__all__ = [
    "LOW_QUALITY_WORDS",
    "CLICKBAIT_PATTERNS",
    "CategoryMatcher",
    "TrendFilter",
]
