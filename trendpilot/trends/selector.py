"""
Trend selection: chooses the topic an agent posts about in this cycle.

Pipeline for one ``select()`` call:

1. Resolve topics (agent topics, or the platform's default category).
2. Fetch raw candidates from the trend source (cached per topic set).
3. Strict safety/quality filter, then the duplicate guard.
4. If nothing survives, the relaxed filter (block-list only), then the
   duplicate guard again.
5. Steps 2-4 are retried with growing backoff while the pool is empty or
   the source is down. A batch that filters down to nothing is evicted
   from the cache first, so each retry fetches again.
6. Score the pool against usage counts from the usage window.
7. Return the first of the top candidates with no use in the fresh
   window, else the best-scored one.
8. If every attempt came back empty, return the deterministic fallback.
"""

import dataclasses
import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Tuple

from trendpilot.config import CategoryConfig, PenaltyConfig, SelectionConfig
from trendpilot.exceptions import NoCandidatesError, RetryExhaustedError, TrendSourceError
from trendpilot.models import Agent, PublishedPost, TrendCandidate
from trendpilot.trends.duplicate_guard import DuplicateGuard
from trendpilot.trends.fallback import fallback_candidate
from trendpilot.trends.filters import TrendFilter
from trendpilot.trends.scorer import TrendScorer
from trendpilot.utils import Clock, utc_now, with_retry

logger = logging.getLogger("TrendSelector")

# Category searched for agents without configured topics
PLATFORM_DEFAULT_CATEGORY: Dict[str, str] = {
    "linkedin": "business",
    "twitter": "tech",
    "reddit": "news",
}
DEFAULT_CATEGORY = "news"


class TrendSelector:
    """Selects one trend per agent per cycle.

    Args:
        source: Trend source aggregator with
            ``async fetch(topics, options) -> List[TrendCandidate]``.
        store: Persistent store (recent posts, usage counts).
        config: Selection thresholds and windows.
        categories: Topic categories for filtering and scoring.
        penalties: Usage-penalty curve for the scorer.
        clock: Current UTC time; drives freshness, windows and fallback.
        use_fallback: When ``False``, ``select`` returns ``None`` instead of
            an evergreen candidate.

    The raw-candidate cache is owned by this instance.
    """

    def __init__(
        self,
        source: Any,
        store: Any,
        config: Optional[SelectionConfig] = None,
        categories: Optional[Dict[str, CategoryConfig]] = None,
        penalties: Optional[PenaltyConfig] = None,
        clock: Clock = utc_now,
        use_fallback: bool = True,
    ) -> None:
        self.source = source
        self.store = store
        self.config = config or SelectionConfig()
        self.categories = categories if categories is not None else {}
        self._clock = clock
        self.use_fallback = use_fallback

        self.filter = TrendFilter(self.config, self.categories)
        self.scorer = TrendScorer(self.categories, penalties, clock)
        self.duplicate_guard = DuplicateGuard(store, self.config, clock)

        self._cache: Dict[Tuple[str, ...], Tuple[datetime, List[TrendCandidate]]] = {}

    # ------------------------------------------------------------------
    # Topic resolution
    # ------------------------------------------------------------------

    @staticmethod
    def default_category(platform: str) -> str:
        return PLATFORM_DEFAULT_CATEGORY.get(platform.lower(), DEFAULT_CATEGORY)

    def _resolve(self, topics: Optional[List[str]], agent: Agent) -> Tuple[List[str], str]:
        """Topics to search and the category used for fallbacks."""
        topics = [t for t in (topics or agent.settings.topics or []) if t and t.strip()]
        category = agent.settings.category or self.default_category(agent.platform)
        if not topics:
            topics = [category]
        return topics, category

    # ------------------------------------------------------------------
    # Fetch with cache
    # ------------------------------------------------------------------

    @staticmethod
    def _cache_key(topics: List[str]) -> Tuple[str, ...]:
        return tuple(sorted(t.lower().strip() for t in topics))

    async def _fetch(self, topics: List[str], agent: Agent) -> List[TrendCandidate]:
        key = self._cache_key(topics)
        now = self._clock()
        ttl = self.config.cache_ttl_seconds

        cached = self._cache.get(key)
        if ttl > 0 and cached and now - cached[0] < timedelta(seconds=ttl):
            logger.debug("[SELECTOR] Cache hit for %s", list(key))
            candidates = cached[1]
        else:
            candidates = await self.source.fetch(
                topics, {"platform": agent.platform, "keywords": agent.settings.keywords}
            )
            candidates = list(candidates or [])
            if ttl > 0 and candidates:
                self._cache[key] = (now, candidates)

        # Scoring mutates candidates; hand out copies
        return [dataclasses.replace(c) for c in candidates]

    def clear_cache(self) -> None:
        self._cache.clear()

    # ------------------------------------------------------------------
    # Pool construction
    # ------------------------------------------------------------------

    async def _build_pool(
        self,
        topics: List[str],
        agent: Agent,
        corpus: List[PublishedPost],
    ) -> List[TrendCandidate]:
        """Fetch, filter and de-duplicate once.

        Raises:
            NoCandidatesError: When both filter passes leave nothing.
        """
        raw = await self._fetch(topics, agent)
        if not raw:
            raise NoCandidatesError(f"source returned no candidates for {topics}")

        pool = self.duplicate_guard.filter(self.filter.apply(raw), corpus)
        if pool:
            return pool

        logger.info(
            "[SELECTOR] Strict filter left nothing for agent %s, relaxing",
            agent.id,
        )
        pool = self.duplicate_guard.filter(self.filter.apply_relaxed(raw), corpus)
        if not pool:
            # A retry must see fresh source data, not the rejected batch
            self._cache.pop(self._cache_key(topics), None)
            raise NoCandidatesError(
                f"all {len(raw)} candidates filtered or duplicate for {topics}"
            )
        return pool

    async def _build_pool_with_retry(
        self,
        topics: List[str],
        agent: Agent,
        corpus: List[PublishedPost],
    ) -> List[TrendCandidate]:
        fetch = with_retry(
            max_attempts=self.config.fetch_attempts,
            base_delay=self.config.fetch_backoff_seconds,
            retryable_exceptions=(NoCandidatesError, TrendSourceError),
            operation_name=f"trend fetch for agent {agent.id}",
        )(self._build_pool)
        return await fetch(topics, agent, corpus)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def select(
        self,
        topics: Optional[List[str]],
        agent: Agent,
    ) -> Optional[TrendCandidate]:
        """Return the trend *agent* should post about now.

        Returns:
            A scored live candidate, the fallback candidate when no live
            candidate is available, or ``None`` only when fallbacks are
            disabled (or empty) and nothing else qualified.
        """
        topics, category = self._resolve(topics, agent)
        self.filter.exclusion_log.clear()

        corpus = await self.duplicate_guard.load_corpus(platform=agent.platform)

        try:
            pool = await self._build_pool_with_retry(topics, agent, corpus)
        except RetryExhaustedError as exc:
            logger.warning(
                "[SELECTOR] No live candidates for agent %s (%s)",
                agent.id,
                exc.last_error,
            )
            return self._fallback(category)

        now = self._clock()
        usage_counts = await self.store.get_trend_usage_counts(
            agent.platform, now - timedelta(hours=self.config.usage_window_hours)
        )
        fresh_counts = await self.store.get_trend_usage_counts(
            agent.platform, now - timedelta(hours=self.config.fresh_window_hours)
        )

        ranked = self.scorer.score(pool, usage_counts)
        for candidate in ranked[: self.config.top_candidates]:
            if fresh_counts.get(candidate.normalized_topic, 0) == 0:
                logger.info(
                    "[SELECTOR] Agent %s -> '%s' (score %.1f)",
                    agent.id,
                    candidate.topic[:80],
                    candidate.score,
                )
                return candidate

        best = ranked[0]
        logger.info(
            "[SELECTOR] Agent %s -> '%s' (score %.1f, all top candidates recently used)",
            agent.id,
            best.topic[:80],
            best.score,
        )
        return best

    def _fallback(self, category: Optional[str]) -> Optional[TrendCandidate]:
        if not self.use_fallback:
            return None
        candidate = fallback_candidate(
            self._clock(),
            category,
            category_period=timedelta(hours=self.config.category_fallback_rotation_hours),
            general_period=timedelta(hours=self.config.fallback_rotation_hours),
        )
        if candidate is not None:
            logger.warning("[SELECTOR] Using fallback trend '%s'", candidate.topic)
        return candidate


__all__ = [
    "TrendSelector",
    "PLATFORM_DEFAULT_CATEGORY",
]
