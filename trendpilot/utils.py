"""
Time, id, batching and retry helpers shared by the scheduler and selector.

Every timestamp that reaches the store or a comparison goes through
``ensure_utc``; components that need "now" take an injectable ``Clock``
so tests can pin it.
"""

from datetime import datetime, timedelta, timezone
import uuid
import asyncio
import logging
from functools import wraps
from typing import (
    Any,
    Awaitable,
    Callable,
    List,
    Optional,
    Sequence,
    Tuple,
    Type,
    TypeVar,
    Union,
)

from trendpilot.exceptions import RetryExhaustedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], datetime]
SleepFunc = Callable[[float], Awaitable[None]]


# ===========================================================================
# TIME AND IDS
# ===========================================================================


def utc_now() -> datetime:
    """Default ``Clock``: the current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


def generate_id() -> str:
    """Random UUID4 string used as a row id."""
    return str(uuid.uuid4())


def ensure_utc(dt: datetime) -> datetime:
    """Return *dt* in UTC; naive values are taken to be UTC already."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_datetime(value: Union[str, datetime, None]) -> Optional[datetime]:
    """Read a timestamp column value.

    Accepts datetimes, ISO-8601 strings (including a trailing ``Z``) and
    empty values, which map to ``None``.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return ensure_utc(value)
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    return ensure_utc(datetime.fromisoformat(text))


def seconds_until_next_midnight(now: datetime) -> float:
    """Delay before the daily counter reset; never zero."""
    now = ensure_utc(now)
    midnight = datetime.combine(
        now.date() + timedelta(days=1), datetime.min.time(), tzinfo=timezone.utc
    )
    return (midnight - now).total_seconds()


def chunked(items: Sequence[T], size: int) -> List[List[T]]:
    """Cut *items* into scheduler batches of *size*, keeping order."""
    if size < 1:
        raise ValueError(f"chunk size must be positive, got {size}")
    return [list(items[start:start + size]) for start in range(0, len(items), size)]


# ===========================================================================
# RETRY
# ===========================================================================


def backoff_delay(base_delay: float, attempt: int) -> float:
    """Wait before retry number *attempt* (1-based): base, 2x base, 4x base..."""
    return base_delay * (2 ** (attempt - 1))


def with_retry(
    max_attempts: int = 3,
    base_delay: float = 2.0,
    retryable_exceptions: Tuple[Type[Exception], ...] = (Exception,),
    operation_name: Optional[str] = None,
) -> Callable:
    """Retry an async callable with exponential backoff.

    Exceptions outside *retryable_exceptions* propagate at once. When the
    last attempt fails a ``RetryExhaustedError`` carrying the final error
    is raised. The trend fetch uses ``max_attempts=3, base_delay=5.0``,
    which waits 5s then 10s.
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        name = operation_name or func.__name__

        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            error: Optional[Exception] = None
            for attempt in range(1, max_attempts + 1):
                try:
                    return await func(*args, **kwargs)
                except retryable_exceptions as exc:
                    error = exc
                    if attempt == max_attempts:
                        break
                    delay = backoff_delay(base_delay, attempt)
                    logger.warning(
                        "[RETRY] %s failed (%d/%d): %s; next try in %.1fs",
                        name, attempt, max_attempts, exc, delay,
                    )
                    await asyncio.sleep(delay)

            logger.error("[RETRY] %s gave up after %d attempts: %s", name, max_attempts, error)
            raise RetryExhaustedError(name, max_attempts, error)  # type: ignore[arg-type]

        return wrapper

    return decorator
