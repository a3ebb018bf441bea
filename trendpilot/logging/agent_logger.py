"""
``AgentLogger``: structured log sink for scheduler cycles.

Every entry is appended as one JSON line to ``<log_dir>/agent.log`` with
``aiofiles``. Errors are also copied to ``errors.log`` and debug output
to ``debug.log``. When a store is attached, entries at or above
``min_level`` are written to its ``logs`` table in background tasks so a
slow database never holds up a cycle; ``flush()`` waits for them.

The current cycle, agent and user ids are kept on the logger and stamped
onto each entry, which lets one cycle's output be filtered out of a
shared file.
"""

import asyncio
import logging
import traceback
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple

import aiofiles

from trendpilot.logging.models import LogComponent, LogEntry, LogLevel
from trendpilot.utils import utc_now

_fallback = logging.getLogger(__name__)

LogHandler = Callable[[LogEntry], None]


class AgentLogger:
    """Structured logger shared by the scheduler, runner and selector.

    Args:
        log_dir: Directory for the JSON-lines files; created if missing.
        store: Anything with ``async save_log(row)``; ``None`` disables it.
        min_level: Lowest level forwarded to the store.
    """

    def __init__(
        self,
        log_dir: str = "logs",
        store: Any = None,
        min_level: LogLevel = LogLevel.INFO,
    ) -> None:
        self.log_dir = Path(log_dir)
        self.log_dir.mkdir(parents=True, exist_ok=True)
        self.store = store
        self.min_level = min_level

        self._cycle_id: Optional[str] = None
        self._agent_id: Optional[str] = None
        self._user_id: Optional[str] = None

        # (file, predicate) pairs; an entry goes to every file whose predicate holds
        self._routes: List[Tuple[Path, Callable[[LogEntry], bool]]] = [
            (self.log_dir / "agent.log", lambda entry: True),
            (self.log_dir / "errors.log", lambda entry: entry.level.value >= LogLevel.ERROR.value),
            (self.log_dir / "debug.log", lambda entry: entry.level is LogLevel.DEBUG),
        ]

        self._recent_logs: List[LogEntry] = []
        self._max_recent: int = 1000
        self._handlers: List[LogHandler] = []
        self._pending_tasks: Set["asyncio.Task[None]"] = set()

    # ------------------------------------------------------------------
    # Context
    # ------------------------------------------------------------------

    def set_context(
        self,
        cycle_id: Optional[str] = None,
        agent_id: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> None:
        """Update the ids stamped on later entries; ``None`` leaves a field as is."""
        if cycle_id is not None:
            self._cycle_id = cycle_id
        if agent_id is not None:
            self._agent_id = agent_id
        if user_id is not None:
            self._user_id = user_id

    def clear_agent_context(self) -> None:
        self._agent_id = self._user_id = None

    def clear_context(self) -> None:
        self._cycle_id = None
        self.clear_agent_context()

    def add_handler(self, handler: LogHandler) -> None:
        """Call *handler* synchronously with every entry (console echo, tests)."""
        self._handlers.append(handler)

    # ------------------------------------------------------------------
    # Logging
    # ------------------------------------------------------------------

    def _build_entry(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]],
        error: Optional[Exception],
        duration_ms: Optional[int],
    ) -> LogEntry:
        entry = LogEntry(
            timestamp=utc_now(),
            level=level,
            component=component,
            message=message,
            cycle_id=self._cycle_id,
            agent_id=self._agent_id,
            user_id=self._user_id,
            data=dict(data or {}),
            duration_ms=duration_ms,
        )
        if error is not None:
            entry.error_type = type(error).__name__
            entry.error_traceback = "".join(traceback.format_exception(
                type(error), error, error.__traceback__
            ))
        return entry

    async def log(
        self,
        level: LogLevel,
        component: LogComponent,
        message: str,
        data: Optional[Dict[str, Any]] = None,
        error: Optional[Exception] = None,
        duration_ms: Optional[int] = None,
    ) -> None:
        entry = self._build_entry(level, component, message, data, error, duration_ms)

        self._recent_logs.append(entry)
        overflow = len(self._recent_logs) - self._max_recent
        if overflow > 0:
            del self._recent_logs[:overflow]

        await self._write_to_file(entry)

        if self.store is not None and level.value >= self.min_level.value:
            task = asyncio.create_task(self._write_to_store(entry))
            self._pending_tasks.add(task)
            task.add_done_callback(self._pending_tasks.discard)

        for handler in self._handlers:
            try:
                handler(entry)
            except Exception:
                _fallback.exception("[LOGGING] log handler %r raised", handler)

    async def debug(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.DEBUG, component, message, **kwargs)

    async def info(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.INFO, component, message, **kwargs)

    async def warning(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.WARNING, component, message, **kwargs)

    async def error(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.ERROR, component, message, **kwargs)

    async def critical(self, component: LogComponent, message: str, **kwargs: Any) -> None:
        await self.log(LogLevel.CRITICAL, component, message, **kwargs)

    # ------------------------------------------------------------------
    # Queries and shutdown
    # ------------------------------------------------------------------

    def get_recent(
        self,
        limit: int = 20,
        level: Optional[LogLevel] = None,
        component: Optional[LogComponent] = None,
        agent_id: Optional[str] = None,
        cycle_id: Optional[str] = None,
    ) -> List[LogEntry]:
        """Last *limit* buffered entries matching every given filter, oldest first."""
        wanted = {
            "level": level,
            "component": component,
            "agent_id": agent_id,
            "cycle_id": cycle_id,
        }
        filters = {key: value for key, value in wanted.items() if value is not None}
        matches = [
            entry for entry in self._recent_logs
            if all(getattr(entry, key) == value for key, value in filters.items())
        ]
        return matches[-limit:]

    async def flush(self) -> None:
        """Wait for outstanding store writes (call before shutdown)."""
        if self._pending_tasks:
            await asyncio.gather(*list(self._pending_tasks), return_exceptions=True)
            self._pending_tasks.clear()

    # ------------------------------------------------------------------
    # Sinks
    # ------------------------------------------------------------------

    async def _write_to_file(self, entry: LogEntry) -> None:
        line = entry.to_json() + "\n"
        for path, accepts in self._routes:
            if accepts(entry):
                async with aiofiles.open(path, "a", encoding="utf-8") as fh:
                    await fh.write(line)

    async def _write_to_store(self, entry: LogEntry) -> None:
        try:
            await self.store.save_log(entry.to_dict())
        except Exception as exc:
            # The entry is already on disk; losing the row is not fatal
            _fallback.warning("[LOGGING] store write failed: %s", exc)


# ======================================================================
# PROCESS-WIDE LOGGER
# ======================================================================

_logger: Optional[AgentLogger] = None


def init_logger(
    log_dir: str = "logs",
    store: Any = None,
    min_level: LogLevel = LogLevel.INFO,
) -> AgentLogger:
    """Create the process-wide ``AgentLogger`` and return it."""
    global _logger
    _logger = AgentLogger(log_dir=log_dir, store=store, min_level=min_level)
    return _logger


def get_logger() -> AgentLogger:
    """Return the process-wide logger.

    Raises:
        RuntimeError: ``init_logger()`` has not been called.
    """
    if _logger is None:
        raise RuntimeError("Logger not initialized. Call init_logger() first.")
    return _logger


def reset_logger() -> None:
    global _logger
    _logger = None
