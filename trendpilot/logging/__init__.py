"""Structured logging for the TrendPilot scheduler."""
from trendpilot.logging.models import LogLevel, LogComponent, LogEntry
from trendpilot.logging.agent_logger import AgentLogger, init_logger, get_logger, reset_logger
from trendpilot.logging.component_logger import ComponentLogger, TimedOperation
from trendpilot.logging.cycle_logger import CycleRunLogger

__all__ = [
    "LogLevel", "LogComponent", "LogEntry",
    "AgentLogger", "init_logger", "get_logger", "reset_logger",
    "ComponentLogger", "TimedOperation",
    "CycleRunLogger",
]
