"""Scheduling subsystem: rate limiting, per-agent cycles and the periodic driver.

``AgentCycleRunner`` and ``AgentScheduler`` are imported from their own
modules (``trendpilot.scheduling.cycle_runner`` and
``trendpilot.scheduling.agent_scheduler``); they depend on the logging
package, which itself depends on the models re-exported here.
"""

from trendpilot.scheduling.models import CycleOutcome, CycleResult, ProcessingCycleGuard
from trendpilot.scheduling.usage_window import UsageWindowTracker

__all__ = [
    "CycleOutcome",
    "CycleResult",
    "ProcessingCycleGuard",
    "UsageWindowTracker",
]
