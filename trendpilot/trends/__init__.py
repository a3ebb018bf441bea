"""Trend selection: filtering, duplicate detection, scoring and fallbacks."""

from trendpilot.trends.duplicate_guard import DuplicateGuard, similarity
from trendpilot.trends.fallback import FALLBACK_POOLS, fallback_candidate
from trendpilot.trends.filters import CategoryMatcher, TrendFilter
from trendpilot.trends.scorer import TrendScorer, usage_penalty
from trendpilot.trends.selector import TrendSelector

__all__ = [
    "DuplicateGuard",
    "similarity",
    "FALLBACK_POOLS",
    "fallback_candidate",
    "CategoryMatcher",
    "TrendFilter",
    "TrendScorer",
    "usage_penalty",
    "TrendSelector",
]
