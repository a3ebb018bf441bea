"""
Evergreen fallback topics used when no live candidate survives selection.

The choice is a pure function of the clock: ``floor(epoch / period) %
pool_size``. A category pool rotates every six hours by default, the
combined pool every four, so repeated fallbacks vary over a day without
randomness or stored state.
"""

from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from trendpilot.models import TrendCandidate
from trendpilot.utils import ensure_utc

FALLBACK_POOLS: Dict[str, List[Dict[str, Any]]] = {
    "tech": [
        {"topic": "artificial intelligence breakthroughs", "query": "AI breakthrough innovation", "confidence": 0.8, "volume": 10000},
        {"topic": "quantum computing advances", "query": "quantum computing progress", "confidence": 0.8, "volume": 9000},
        {"topic": "renewable energy technology", "query": "clean energy innovation", "confidence": 0.8, "volume": 8500},
        {"topic": "space exploration developments", "query": "space technology mission", "confidence": 0.8, "volume": 8000},
    ],
    "business": [
        {"topic": "startup funding rounds", "query": "startup investment funding", "confidence": 0.8, "volume": 8000},
        {"topic": "sustainable business practices", "query": "sustainable business innovation", "confidence": 0.8, "volume": 7500},
        {"topic": "digital transformation trends", "query": "digital business transformation", "confidence": 0.8, "volume": 7000},
        {"topic": "supply chain innovation", "query": "supply chain technology", "confidence": 0.8, "volume": 6500},
    ],
    "science": [
        {"topic": "medical research breakthroughs", "query": "medical research discovery", "confidence": 0.8, "volume": 9000},
        {"topic": "climate change solutions", "query": "climate technology solution", "confidence": 0.8, "volume": 8500},
        {"topic": "space discovery missions", "query": "space exploration discovery", "confidence": 0.8, "volume": 8000},
        {"topic": "biotechnology advances", "query": "biotech innovation research", "confidence": 0.8, "volume": 7500},
    ],
    "news": [
        {"topic": "global economic developments", "query": "global economy news", "confidence": 0.7, "volume": 7000},
        {"topic": "international climate summit", "query": "climate summit news", "confidence": 0.7, "volume": 6500},
        {"topic": "scientific research breakthroughs", "query": "science breakthrough news", "confidence": 0.7, "volume": 6000},
        {"topic": "global health initiatives", "query": "world health news", "confidence": 0.7, "volume": 5500},
        {"topic": "international space cooperation", "query": "space exploration news", "confidence": 0.7, "volume": 5000},
        {"topic": "sustainable development goals", "query": "sustainability news", "confidence": 0.7, "volume": 4500},
    ],
}


def rotation_index(now: datetime, period: timedelta, pool_size: int) -> int:
    """``floor(epoch_seconds / period_seconds) % pool_size``."""
    if pool_size <= 0:
        raise ValueError("pool_size must be positive")
    period_seconds = period.total_seconds()
    if period_seconds <= 0:
        raise ValueError("rotation period must be positive")
    epoch_seconds = ensure_utc(now).timestamp()
    return int(epoch_seconds // period_seconds) % pool_size


def fallback_candidate(
    now: datetime,
    category: Optional[str] = None,
    category_period: timedelta = timedelta(hours=6),
    general_period: timedelta = timedelta(hours=4),
    pools: Optional[Dict[str, List[Dict[str, Any]]]] = None,
) -> Optional[TrendCandidate]:
    """Pick the evergreen candidate for *now*.

    Args:
        now: Current time; the only input that varies the choice.
        category: Preferred pool. Unknown or empty pools fall back to
            the combined pool.
        category_period: Rotation period within a category pool.
        general_period: Rotation period across the combined pool.
        pools: Override of :data:`FALLBACK_POOLS`.

    Returns:
        A fresh candidate flagged ``metadata["is_fallback"]``, or ``None``
        if every pool is empty.
    """
    pools = FALLBACK_POOLS if pools is None else pools

    pool = pools.get(category or "") or []
    if pool:
        entry = pool[rotation_index(now, category_period, len(pool))]
        label = category
    else:
        pool = [item for items in pools.values() for item in items]
        if not pool:
            return None
        entry = pool[rotation_index(now, general_period, len(pool))]
        label = "general"

    return TrendCandidate(
        topic=entry["topic"],
        query=entry.get("query"),
        confidence=entry.get("confidence", 0.7),
        volume=entry.get("volume", 0),
        sources=["fallback"],
        category=category if label != "general" else None,
        metadata={"is_fallback": True, "category": label},
    )


__all__ = [
    "FALLBACK_POOLS",
    "rotation_index",
    "fallback_candidate",
]
