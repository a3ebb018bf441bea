"""Structured log records: severity, emitting component, and the entry itself."""

import json
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional


class LogLevel(Enum):
    """Severity. Numeric values match the stdlib ``logging`` levels."""

    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @property
    def name_str(self) -> str:
        return self.name.lower()


class LogComponent(Enum):
    """Subsystem that produced a log entry."""

    SCHEDULER = "scheduler"
    CYCLE_RUNNER = "cycle_runner"
    RATE_LIMITER = "rate_limiter"
    MAINTENANCE = "maintenance"
    TREND_SELECTOR = "trend_selector"
    TREND_SOURCE = "trend_source"
    CONTENT_GENERATOR = "content_generator"
    PUBLISHER = "publisher"
    DATABASE = "database"
    STARTUP = "startup"
    CONFIG = "config"


_CONSOLE_TAGS = {
    LogLevel.DEBUG: "[DEBUG]",
    LogLevel.INFO: "[INFO]",
    LogLevel.WARNING: "[WARN]",
    LogLevel.ERROR: "[ERROR]",
    LogLevel.CRITICAL: "[CRIT]",
}


@dataclass
class LogEntry:
    """One structured event, tagged with the cycle and agent it belongs to.

    ``to_dict`` is the row shape written to the ``logs`` table and, via
    ``to_json``, to the local JSON-lines files.
    """

    timestamp: datetime
    level: LogLevel
    component: LogComponent
    message: str

    cycle_id: Optional[str] = None
    agent_id: Optional[str] = None
    user_id: Optional[str] = None

    data: Dict[str, Any] = field(default_factory=dict)

    error_type: Optional[str] = None
    error_traceback: Optional[str] = None

    duration_ms: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        row: Dict[str, Any] = {
            "timestamp": self.timestamp.isoformat(),
            "level": self.level.value,
            "level_name": self.level.name_str,
            "component": self.component.value,
            "message": self.message,
        }
        for key in ("cycle_id", "agent_id", "user_id", "data",
                    "error_type", "error_traceback", "duration_ms"):
            row[key] = getattr(self, key)
        return row

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False, default=str)

    def to_readable(self) -> str:
        """Console form, e.g. ``[WARN] [12:00:00] [publisher] text (agent=a1) (120ms)``."""
        parts = [
            _CONSOLE_TAGS.get(self.level, "[???]"),
            f"[{self.timestamp:%H:%M:%S}]",
            f"[{self.component.value}]",
            self.message,
        ]
        if self.agent_id:
            parts.append(f"(agent={self.agent_id})")
        if self.duration_ms:
            parts.append(f"({self.duration_ms}ms)")
        return " ".join(parts)
