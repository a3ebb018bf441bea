"""
Duplicate guard: keeps recently published topics out of the selection pool.

A candidate is a duplicate of a post published inside the lookback window
when any of these hold:

- the normalized topics are equal,
- the titles are equal (case-insensitive, both non-empty),
- the article URLs are equal (both non-empty),
- the normalized topic is longer than ``similarity_min_topic_length`` and
  its word-overlap similarity with the post's topic exceeds the threshold.

Duplicates are removed before scoring; they are never merely penalised.
The recent-post corpus is fetched once per selection and reused for every
candidate.
"""

import logging
from datetime import datetime, timedelta
from typing import Any, List, Optional

from trendpilot.config import SelectionConfig
from trendpilot.models import PublishedPost, TrendCandidate, normalize_topic
from trendpilot.utils import Clock, ensure_utc, utc_now

logger = logging.getLogger(__name__)


def similarity(first: str, second: str) -> float:
    """Symmetric word-overlap similarity between two strings, 0.0 to 1.0.

    Exact (case-insensitive) equality scores 1.0 and containment of one
    string in the other scores 0.9. Otherwise the score is
    ``2 * shared_words / (words_in_first + words_in_second)``.
    """
    a = first.lower().strip()
    b = second.lower().strip()
    if not a or not b:
        return 0.0
    if a == b:
        return 1.0
    if a in b or b in a:
        return 0.9

    words_a = set(a.split())
    words_b = set(b.split())
    shared = len(words_a & words_b)
    return (2.0 * shared) / (len(words_a) + len(words_b))


class DuplicateGuard:
    """Checks candidates against the recent published-post corpus.

    Args:
        store: Persistent store exposing ``get_recent_posts``.
        config: Lookback, corpus cap and similarity settings.
        clock: Current UTC time.
    """

    def __init__(
        self,
        store: Any,
        config: Optional[SelectionConfig] = None,
        clock: Clock = utc_now,
    ) -> None:
        self.store = store
        self.config = config or SelectionConfig()
        self._clock = clock

    # ------------------------------------------------------------------
    # Corpus
    # ------------------------------------------------------------------

    async def load_corpus(
        self,
        platform: Optional[str] = None,
        lookback_hours: Optional[float] = None,
    ) -> List[PublishedPost]:
        """Fetch the posts a selection will be checked against."""
        hours = lookback_hours if lookback_hours is not None else self.config.duplicate_lookback_hours
        since = self._clock() - timedelta(hours=hours)
        posts = await self.store.get_recent_posts(
            since, limit=self.config.duplicate_corpus_limit, platform=platform
        )
        logger.debug(
            "[DUPLICATE] Loaded %d posts from the last %.1fh (platform=%s)",
            len(posts),
            hours,
            platform or "all",
        )
        return posts

    # ------------------------------------------------------------------
    # Matching
    # ------------------------------------------------------------------

    def match_reason(
        self,
        candidate: TrendCandidate,
        corpus: List[PublishedPost],
        lookback_hours: Optional[float] = None,
        now: Optional[datetime] = None,
    ) -> Optional[str]:
        """Why *candidate* duplicates a post in *corpus*, or ``None``."""
        hours = lookback_hours if lookback_hours is not None else self.config.duplicate_lookback_hours
        now = now or self._clock()
        cutoff = now - timedelta(hours=hours)

        topic = candidate.normalized_topic
        title = (candidate.title or "").lower().strip()
        url = (candidate.url or "").strip()
        check_similarity = len(topic) > self.config.similarity_min_topic_length

        for post in corpus:
            if ensure_utc(post.published_at) < cutoff:
                continue
            post_topic = normalize_topic(post.topic)
            if topic and topic == post_topic:
                return f"topic matches post {post.id}"
            if title and title == post.title.lower().strip():
                return f"title matches post {post.id}"
            if url and url == post.trend_url.strip():
                return f"url matches post {post.id}"
            if check_similarity and post_topic:
                score = similarity(topic, post_topic)
                if score > self.config.similarity_threshold:
                    return f"similar ({score:.2f}) to post {post.id}"
        return None

    async def is_duplicate(
        self,
        candidate: TrendCandidate,
        lookback_hours: Optional[float] = None,
        corpus: Optional[List[PublishedPost]] = None,
        platform: Optional[str] = None,
    ) -> bool:
        """Whether *candidate* repeats something posted within *lookback_hours*.

        Pass a prefetched *corpus* to avoid a store round trip per candidate.
        """
        if corpus is None:
            corpus = await self.load_corpus(platform, lookback_hours)
        reason = self.match_reason(candidate, corpus, lookback_hours)
        if reason:
            logger.debug("[DUPLICATE] '%s' rejected: %s", candidate.topic[:60], reason)
            return True
        return False

    def filter(
        self,
        candidates: List[TrendCandidate],
        corpus: List[PublishedPost],
        lookback_hours: Optional[float] = None,
    ) -> List[TrendCandidate]:
        """Drop every duplicate in *candidates*, preserving order."""
        now = self._clock()
        kept: List[TrendCandidate] = []
        for candidate in candidates:
            reason = self.match_reason(candidate, corpus, lookback_hours, now)
            if reason:
                logger.debug("[DUPLICATE] '%s' rejected: %s", candidate.topic[:60], reason)
            else:
                kept.append(candidate)
        if len(kept) < len(candidates):
            logger.info(
                "[DUPLICATE] Removed %d of %d candidates",
                len(candidates) - len(kept),
                len(candidates),
            )
        return kept


__all__ = [
    "DuplicateGuard",
    "similarity",
]
