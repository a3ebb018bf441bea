"""``ComponentLogger``: an ``AgentLogger`` view pinned to one component.

The cycle runner gets one as its ``activity_log`` so unexpected failures
land in the structured log under ``cycle_runner`` without it knowing
about the global logger. The scheduler wraps each maintenance job in
``timed()`` under ``maintenance``.
"""

import time
from typing import Any, Optional

from trendpilot.logging.agent_logger import AgentLogger, get_logger
from trendpilot.logging.models import LogComponent


class ComponentLogger:
    """Forward log calls to an ``AgentLogger`` with *component* filled in.

    Without an explicit *logger* the global one is looked up on each call,
    so a ``ComponentLogger`` may be built before ``init_logger()`` runs.
    """

    def __init__(
        self, component: LogComponent, logger: Optional[AgentLogger] = None
    ) -> None:
        self.component = component
        self._logger = logger

    @property
    def logger(self) -> AgentLogger:
        if self._logger is None:
            return get_logger()
        return self._logger

    async def debug(self, message: str, **kwargs: Any) -> None:
        await self.logger.debug(self.component, message, **kwargs)

    async def info(self, message: str, **kwargs: Any) -> None:
        await self.logger.info(self.component, message, **kwargs)

    async def warning(self, message: str, **kwargs: Any) -> None:
        await self.logger.warning(self.component, message, **kwargs)

    async def error(
        self, message: str, error: Optional[Exception] = None, **kwargs: Any
    ) -> None:
        await self.logger.error(self.component, message, error=error, **kwargs)

    def timed(self, message: str) -> "TimedOperation":
        """``async with log.timed("batch 1/2"): ...`` logs the block's duration."""
        return TimedOperation(self, message)


class TimedOperation:
    """Logs ``Starting:`` on entry and ``Completed:``/``Failed:`` with ``duration_ms`` on exit.

    Exceptions from the block are logged and re-raised.
    """

    def __init__(self, logger: ComponentLogger, message: str) -> None:
        self.logger = logger
        self.message = message
        self.started: Optional[float] = None

    def _elapsed_ms(self) -> int:
        return int((time.monotonic() - (self.started or time.monotonic())) * 1000)

    async def __aenter__(self) -> "TimedOperation":
        self.started = time.monotonic()
        await self.logger.debug(f"Starting: {self.message}")
        return self

    async def __aexit__(self, exc_type: Optional[type], exc: Optional[BaseException], tb: Any) -> bool:
        elapsed = self._elapsed_ms()
        if exc_type is None:
            await self.logger.info(f"Completed: {self.message}", duration_ms=elapsed)
        else:
            await self.logger.error(
                f"Failed: {self.message}",
                error=exc if isinstance(exc, Exception) else None,
                duration_ms=elapsed,
            )
        return False
