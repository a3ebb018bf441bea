"""
Tests for trendpilot.trends.filters.

Covers:
    - CategoryMatcher keyword matching and assignment
    - TrendFilter strict pass: block-list, thresholds, quality rules,
      disabled categories and the exclusion log
    - TrendFilter relaxed pass
"""

import pytest

from conftest import make_candidate
from trendpilot.config import SelectionConfig, Settings
from trendpilot.trends.filters import CategoryMatcher, TrendFilter


@pytest.fixture
def categories():
    return Settings().categories


@pytest.fixture
def trend_filter(categories):
    return TrendFilter(SelectionConfig(), categories)


# ===========================================================================
# CategoryMatcher
# ===========================================================================


class TestCategoryMatcher:
    """Keyword matching on topic and title."""

    def test_matches_first_category(self, categories):
        matcher = CategoryMatcher(categories)
        assert matcher.match(make_candidate(topic="OpenAI unveils AI assistant")) == "tech"

    def test_keywords_match_whole_words(self, categories):
        """'ai' must not match inside 'Thailand'."""
        matcher = CategoryMatcher(categories)
        assert matcher.match(make_candidate(topic="Thailand floods worsen")) is None

    def test_title_is_searched(self, categories):
        matcher = CategoryMatcher(categories)
        candidate = make_candidate(topic="Big week ahead", title="Senate passes budget")
        assert matcher.match(candidate) == "politics"

    def test_disabled_category_skipped_unless_requested(self, categories):
        matcher = CategoryMatcher(categories)
        candidate = make_candidate(topic="Netflix film premiere")
        assert matcher.match(candidate) is None
        assert matcher.match(candidate, include_disabled=True) == "entertainment"

    def test_assign_keeps_source_category(self, categories):
        matcher = CategoryMatcher(categories)
        candidate = make_candidate(topic="OpenAI unveils AI assistant", category="business")
        assert matcher.assign(candidate) == "business"


# ===========================================================================
# Strict pass
# ===========================================================================


class TestStrictFilter:
    """TrendFilter.check / apply."""

    def test_good_candidate_passes(self, trend_filter):
        assert trend_filter.check(make_candidate()) is None

    @pytest.mark.parametrize(
        "topic,reason",
        [
            ("Sex scandal rocks capital", "blocked content"),
            ("   ", "empty topic"),
            ("AI", "too generic"),
            ("test", "low quality single word"),
            ("Shocking new gadget revealed", "clickbait pattern"),
            ("5 reasons why remote work wins", "clickbait pattern"),
        ],
    )
    def test_rejections(self, trend_filter, topic, reason):
        assert trend_filter.check(make_candidate(topic=topic)) == reason

    def test_blocklist_uses_word_boundaries(self, trend_filter):
        """'Essex' contains 'sex' but is not blocked."""
        assert trend_filter.check(make_candidate(topic="Essex county fair opens")) is None

    def test_low_confidence_rejected(self, trend_filter):
        reason = trend_filter.check(make_candidate(confidence=0.3))
        assert reason.startswith("confidence 0.30")

    def test_low_engagement_rejected(self, trend_filter):
        assert trend_filter.check(make_candidate(volume=50)) == "low engagement: 50"

    def test_unknown_volume_is_not_low_engagement(self, trend_filter):
        assert trend_filter.check(make_candidate(volume=0)) is None

    def test_disabled_category_rejected(self, trend_filter):
        reason = trend_filter.check(make_candidate(topic="Netflix film premiere tonight"))
        assert reason == "category 'entertainment' disabled"

    def test_check_assigns_category(self, trend_filter):
        candidate = make_candidate(topic="Quantum computing startup raises round")
        trend_filter.check(candidate)
        assert candidate.category == "tech"

    def test_apply_preserves_order_and_logs_exclusions(self, trend_filter):
        candidates = [
            make_candidate(topic="Quantum chip sets record"),
            make_candidate(topic="Adult content ban debated"),
            make_candidate(topic="Startup funding hits high"),
        ]

        kept = trend_filter.apply(candidates)

        assert [c.topic for c in kept] == [
            "Quantum chip sets record",
            "Startup funding hits high",
        ]
        assert trend_filter.exclusion_log == [
            {"topic": "Adult content ban debated", "reason": "blocked content"}
        ]


# ===========================================================================
# Relaxed pass
# ===========================================================================


class TestRelaxedFilter:
    """TrendFilter.apply_relaxed keeps everything but block-listed content."""

    def test_quality_rules_are_skipped(self, trend_filter):
        candidates = [
            make_candidate(topic="AI", confidence=0.1),
            make_candidate(topic="Explicit lyrics label returns"),
        ]
        kept = trend_filter.apply_relaxed(candidates)
        assert len(kept) == 2

    def test_relaxed_blocklist_still_applies(self, trend_filter):
        kept = trend_filter.apply_relaxed([make_candidate(topic="NSFW leak spreads")])
        assert kept == []
        assert trend_filter.exclusion_log[0]["reason"] == "blocked content (relaxed)"

    def test_empty_topics_dropped(self, trend_filter):
        assert trend_filter.apply_relaxed([make_candidate(topic="")]) == []
