"""
Async news-based trend source.

Uses ``httpx`` to query NewsAPI (``/v2/everything``) and GNews
(``/api/v4/search``) for each topic, then merges articles that share a
normalized title into one ``TrendCandidate`` whose ``sources`` are the
distinct outlets that carried it. Volume is estimated from the number of
articles merged into the story (``ARTICLE_VOLUME`` each), so widely
covered stories reach the high-volume and viral scoring tiers.

A provider failing for one topic is logged and skipped. Only when every
configured provider fails for every topic does ``fetch`` raise
``TrendSourceError``, which the selector retries.
"""

import logging
import os
from datetime import timedelta
from typing import Any, Dict, List, Optional, Tuple

import httpx

from trendpilot.exceptions import TrendSourceError
from trendpilot.models import TrendCandidate, normalize_topic
from trendpilot.utils import Clock, parse_datetime, utc_now

logger = logging.getLogger(__name__)

Article = Dict[str, Any]


# Estimated audience per article carrying a story
ARTICLE_VOLUME = 5000


def candidate_confidence(source_count: int, volume: int) -> float:
    """Confidence grows with independent coverage and measured volume."""
    score = 0.5 + 0.15 * (source_count - 1) + (0.2 if volume else 0.0)
    return min(score, 1.0)


class NewsTrendSource:
    """Trend source aggregator over news search APIs.

    Args:
        newsapi_key: NewsAPI key. Falls back to ``NEWSAPI_KEY``.
        gnews_key: GNews key. Falls back to ``GNEWS_API_KEY``.
        language: Article language.
        lookback_days: Only articles newer than this.
        page_size: Articles requested per provider per topic.
        timeout: HTTP timeout in seconds.
        clock: Current UTC time.
        transport: Optional httpx transport (tests).
    """

    NEWSAPI_URL: str = "https://newsapi.org/v2/everything"
    GNEWS_URL: str = "https://gnews.io/api/v4/search"

    def __init__(
        self,
        newsapi_key: Optional[str] = None,
        gnews_key: Optional[str] = None,
        language: str = "en",
        lookback_days: int = 7,
        page_size: int = 20,
        timeout: float = 30.0,
        clock: Clock = utc_now,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.newsapi_key: str = newsapi_key or os.environ.get("NEWSAPI_KEY", "")
        self.gnews_key: str = gnews_key or os.environ.get("GNEWS_API_KEY", "")
        self.language = language
        self.lookback_days = lookback_days
        self.page_size = page_size
        self.timeout = timeout
        self._clock = clock
        self._transport = transport

    @property
    def providers(self) -> List[str]:
        configured = []
        if self.newsapi_key:
            configured.append("newsapi")
        if self.gnews_key:
            configured.append("gnews")
        return configured

    # ------------------------------------------------------------------
    # Query building
    # ------------------------------------------------------------------

    @staticmethod
    def build_query(topic: str, keywords: Optional[List[str]] = None) -> str:
        parts = [topic.strip()]
        parts.extend(k.lstrip("#").strip() for k in keywords or [] if k and k.strip("# "))
        return " OR ".join(p for p in parts if p)

    # ------------------------------------------------------------------
    # Providers
    # ------------------------------------------------------------------

    async def _get(self, client: httpx.AsyncClient, url: str, params: Dict[str, Any]) -> Dict[str, Any]:
        response = await client.get(url, params=params)
        if response.status_code == 429:
            raise httpx.HTTPStatusError(
                "rate limit reached", request=response.request, response=response
            )
        response.raise_for_status()
        return response.json()

    async def _fetch_newsapi(self, client: httpx.AsyncClient, query: str) -> List[Article]:
        since = self._clock() - timedelta(days=self.lookback_days)
        data = await self._get(client, self.NEWSAPI_URL, {
            "q": query,
            "apiKey": self.newsapi_key,
            "language": self.language,
            "sortBy": "publishedAt",
            "from": since.date().isoformat(),
            "pageSize": self.page_size,
        })
        return [
            {
                "title": a.get("title"),
                "description": a.get("description"),
                "url": a.get("url"),
                "image_url": a.get("urlToImage"),
                "published_at": a.get("publishedAt"),
                "source": (a.get("source") or {}).get("name") or "newsapi",
                "provider": "newsapi",
            }
            for a in data.get("articles") or []
        ]

    async def _fetch_gnews(self, client: httpx.AsyncClient, query: str) -> List[Article]:
        now = self._clock()
        data = await self._get(client, self.GNEWS_URL, {
            "q": query,
            "token": self.gnews_key,
            "lang": self.language,
            "sortby": "publishedAt",
            "from": (now - timedelta(days=self.lookback_days)).strftime("%Y-%m-%dT%H:%M:%SZ"),
            "to": now.strftime("%Y-%m-%dT%H:%M:%SZ"),
            "max": self.page_size,
        })
        return [
            {
                "title": a.get("title"),
                "description": a.get("description"),
                "url": a.get("url"),
                "image_url": a.get("image"),
                "published_at": a.get("publishedAt"),
                "source": (a.get("source") or {}).get("name") or "gnews",
                "provider": "gnews",
            }
            for a in data.get("articles") or []
        ]

    # ------------------------------------------------------------------
    # Merge
    # ------------------------------------------------------------------

    @staticmethod
    def merge(articles: List[Tuple[str, Article]]) -> List[TrendCandidate]:
        """Fold ``(topic, article)`` pairs into candidates keyed by title."""
        merged: Dict[str, TrendCandidate] = {}
        for topic, article in articles:
            title = (article.get("title") or "").strip()
            key = normalize_topic(title)
            if not key:
                continue

            published_at = parse_datetime(article.get("published_at"))
            existing = merged.get(key)
            if existing is None:
                merged[key] = TrendCandidate(
                    topic=title,
                    title=title,
                    url=article.get("url"),
                    published_at=published_at,
                    sources=[article["source"]],
                    query=topic,
                    metadata={
                        "description": article.get("description"),
                        "image_url": article.get("image_url"),
                        "providers": [article["provider"]],
                        "article_count": 1,
                    },
                )
                continue

            existing.metadata["article_count"] += 1
            if article["source"] not in existing.sources:
                existing.sources.append(article["source"])
            if article["provider"] not in existing.metadata["providers"]:
                existing.metadata["providers"].append(article["provider"])
            if published_at and (existing.published_at is None or published_at > existing.published_at):
                existing.published_at = published_at
            if not existing.metadata.get("image_url"):
                existing.metadata["image_url"] = article.get("image_url")

        candidates = list(merged.values())
        for candidate in candidates:
            candidate.volume = candidate.metadata["article_count"] * ARTICLE_VOLUME
            candidate.confidence = candidate_confidence(candidate.source_count, candidate.volume)
        return candidates

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def fetch(
        self,
        topics: List[str],
        options: Optional[Dict[str, Any]] = None,
    ) -> List[TrendCandidate]:
        """Fetch raw candidates for *topics*.

        Args:
            topics: Topics to search; one query per topic.
            options: ``keywords`` are OR-ed into every query.

        Raises:
            TrendSourceError: No provider configured, or every call failed.
        """
        options = options or {}
        providers = self.providers
        if not providers:
            raise TrendSourceError("no news provider API keys configured")

        fetchers = {"newsapi": self._fetch_newsapi, "gnews": self._fetch_gnews}
        collected: List[Tuple[str, Article]] = []
        calls = failures = 0

        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for topic in topics:
                query = self.build_query(topic, options.get("keywords"))
                for provider in providers:
                    calls += 1
                    try:
                        articles = await fetchers[provider](client, query)
                    except (httpx.HTTPError, ValueError) as exc:
                        failures += 1
                        logger.error("[TRENDS] %s error for topic '%s': %s", provider, topic, exc)
                        continue
                    logger.info(
                        "[TRENDS] %s returned %d articles for '%s'", provider, len(articles), topic
                    )
                    collected.extend((topic, article) for article in articles)

        if calls and failures == calls:
            raise TrendSourceError(f"all {calls} news provider calls failed for {topics}")

        return self.merge(collected)


__all__ = [
    "NewsTrendSource",
    "candidate_confidence",
]
