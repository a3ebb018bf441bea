"""
Tests for trendpilot.utils.

Covers:
    - utc_now(), generate_id(), ensure_utc(), parse_datetime()
    - seconds_until_next_midnight(): delay for daily maintenance jobs
    - chunked(): batch splitting used by the scheduler
    - with_retry(): exponential backoff, including the 5s/10s fetch schedule
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, patch
from uuid import UUID

import pytest

from trendpilot.exceptions import NoCandidatesError, RetryExhaustedError
from trendpilot.utils import (
    backoff_delay,
    chunked,
    ensure_utc,
    generate_id,
    parse_datetime,
    seconds_until_next_midnight,
    utc_now,
    with_retry,
)


# ===========================================================================
# Time helpers
# ===========================================================================


def test_utc_now_returns_timezone_aware_utc():
    """utc_now() must return a datetime whose tzinfo is UTC."""
    assert utc_now().tzinfo == timezone.utc


def test_generate_id_returns_unique_uuid4_strings():
    """generate_id() returns distinct UUID4 strings."""
    ids = {generate_id() for _ in range(50)}
    assert len(ids) == 50
    assert all(UUID(i).version == 4 for i in ids)


def test_ensure_utc_naive_datetime_is_treated_as_utc():
    """A naive datetime gets UTC attached without shifting the wall clock."""
    result = ensure_utc(datetime(2025, 6, 15, 12, 0, 0))
    assert result == datetime(2025, 6, 15, 12, 0, 0, tzinfo=timezone.utc)


def test_ensure_utc_converts_other_zones():
    """17:00 at UTC+5 is 12:00 UTC."""
    plus_five = timezone(timedelta(hours=5))
    result = ensure_utc(datetime(2025, 6, 15, 17, 0, tzinfo=plus_five))
    assert result.hour == 12
    assert result.tzinfo == timezone.utc


class TestParseDatetime:
    """Tests for parse_datetime()."""

    @pytest.mark.parametrize("value", [None, ""])
    def test_empty_values_return_none(self, value):
        """None and empty strings parse to None."""
        assert parse_datetime(value) is None

    def test_z_suffix_is_accepted(self):
        """Supabase-style 'Z' timestamps parse as UTC."""
        result = parse_datetime("2025-06-15T12:30:00Z")
        assert result == datetime(2025, 6, 15, 12, 30, tzinfo=timezone.utc)

    def test_offset_is_converted_to_utc(self):
        """Offsets are normalised to UTC."""
        result = parse_datetime("2025-06-15T14:30:00+02:00")
        assert result == datetime(2025, 6, 15, 12, 30, tzinfo=timezone.utc)

    def test_datetime_passes_through(self, sample_utc_now):
        """A datetime is returned as UTC unchanged."""
        assert parse_datetime(sample_utc_now) == sample_utc_now


class TestSecondsUntilNextMidnight:
    """Tests for seconds_until_next_midnight()."""

    def test_noon_is_twelve_hours_away(self, sample_utc_now):
        """From 12:00 UTC the next midnight is 43200 seconds away."""
        assert seconds_until_next_midnight(sample_utc_now) == 12 * 3600

    def test_exact_midnight_waits_a_full_day(self):
        """At exactly 00:00 the next run is tomorrow, never zero."""
        midnight = datetime(2025, 6, 15, tzinfo=timezone.utc)
        assert seconds_until_next_midnight(midnight) == 24 * 3600


class TestChunked:
    """Tests for chunked()."""

    def test_twelve_items_in_batches_of_ten(self):
        """12 items split into batches of 10 and 2, order preserved."""
        batches = chunked(list(range(12)), 10)
        assert batches == [list(range(10)), [10, 11]]

    def test_empty_input(self):
        """No items means no batches."""
        assert chunked([], 10) == []

    @pytest.mark.parametrize("size", [0, -1])
    def test_non_positive_size_raises(self, size):
        """Batch size must be at least one."""
        with pytest.raises(ValueError):
            chunked([1, 2], size)


# ===========================================================================
# with_retry()
# ===========================================================================


@pytest.mark.parametrize("attempt,expected", [(1, 5.0), (2, 10.0), (3, 20.0)])
def test_backoff_delay_doubles(attempt, expected):
    """Each retry waits twice as long as the previous one."""
    assert backoff_delay(5.0, attempt) == expected


@pytest.mark.asyncio
async def test_with_retry_retries_then_succeeds():
    """A coroutine failing once is retried after base_delay."""
    calls = []

    @with_retry(max_attempts=3, base_delay=2.0)
    async def flaky():
        calls.append(1)
        if len(calls) < 2:
            raise ValueError("transient")
        return "recovered"

    with patch("trendpilot.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:
        assert await flaky() == "recovered"
    mock_sleep.assert_awaited_once_with(2.0)


@pytest.mark.asyncio
async def test_with_retry_async_fetch_schedule_is_five_then_ten_seconds():
    """Three attempts with base 5s sleep 5s then 10s before giving up."""
    with patch("trendpilot.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(
            max_attempts=3,
            base_delay=5.0,
            retryable_exceptions=(NoCandidatesError,),
            operation_name="trend fetch",
        )
        async def empty_pool():
            raise NoCandidatesError("nothing")

        with pytest.raises(RetryExhaustedError) as exc_info:
            await empty_pool()

        assert exc_info.value.attempts == 3
        assert exc_info.value.operation == "trend fetch"
        assert isinstance(exc_info.value.last_error, NoCandidatesError)
        assert [c.args[0] for c in mock_sleep.call_args_list] == [5.0, 10.0]


@pytest.mark.asyncio
async def test_with_retry_non_retryable_exception_propagates():
    """Exceptions outside retryable_exceptions are raised immediately."""
    with patch("trendpilot.utils.asyncio.sleep", new_callable=AsyncMock) as mock_sleep:

        @with_retry(max_attempts=3, retryable_exceptions=(ValueError,))
        async def broken():
            raise TypeError("not retryable")

        with pytest.raises(TypeError, match="not retryable"):
            await broken()
        mock_sleep.assert_not_called()


def test_with_retry_preserves_async_function_name():
    """functools.wraps keeps the wrapped coroutine's name."""

    @with_retry(max_attempts=2)
    async def select_pool():
        pass

    assert select_pool.__name__ == "select_pool"
