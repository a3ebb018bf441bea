"""
Periodic driver that posts for every due agent.

``AgentScheduler`` fires a tick every ``check_interval_seconds``. A tick
that finds a cycle already in flight is a no-op. Otherwise the cycle:

1. Acquires the processing-cycle guard.
2. Fetches the agents due now from the store.
3. Splits them into batches and runs each agent through the
   ``AgentCycleRunner`` sequentially, pausing between agents and,
   longer, between batches.
4. Aggregates outcomes and releases the guard, on every path.

Three maintenance jobs run on their own timers: the daily post-counter
reset and the rate-limit window cleanup (both at UTC midnight), and the
trend-usage pruning every few hours.

All mutable state (guard, counters, tasks) lives on the instance, so
separate schedulers never share it.

Single-writer assumption: ticks, maintenance jobs, and the rate limiter
share one event loop. Running several schedulers against the same store
needs an external lock around the due-agents query and a shared rate
limiter.
"""

import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

from trendpilot.config import SchedulerConfig
from trendpilot.logging.agent_logger import AgentLogger
from trendpilot.logging.component_logger import ComponentLogger
from trendpilot.logging.cycle_logger import CycleRunLogger
from trendpilot.logging.models import LogComponent
from trendpilot.models import Agent
from trendpilot.scheduling.cycle_runner import AgentCycleRunner
from trendpilot.scheduling.models import CycleOutcome, CycleResult, ProcessingCycleGuard
from trendpilot.scheduling.usage_window import UsageWindowTracker
from trendpilot.utils import (
    Clock,
    SleepFunc,
    chunked,
    generate_id,
    seconds_until_next_midnight,
    utc_now,
)

logger = logging.getLogger("AgentScheduler")


class AgentScheduler:
    """Discovers due agents and processes them in paced batches.

    Args:
        store: Persistent store (due agents, counters, usage, audit).
        runner: Per-agent pipeline.
        rate_limiter: Tracker cleaned up by the daily maintenance job.
        config: Interval, batch size, delays, retention.
        clock: Current UTC time.
        sleep: Awaitable sleep used for pacing and timers.
        agent_logger: Optional structured logger.
    """

    def __init__(
        self,
        store: Any,
        runner: AgentCycleRunner,
        rate_limiter: Optional[UsageWindowTracker] = None,
        config: Optional[SchedulerConfig] = None,
        clock: Clock = utc_now,
        sleep: SleepFunc = asyncio.sleep,
        agent_logger: Optional[AgentLogger] = None,
    ) -> None:
        self.store = store
        self.runner = runner
        self.rate_limiter = rate_limiter or runner.rate_limiter
        self.config = config or SchedulerConfig()
        self._clock = clock
        self._sleep = sleep
        self.agent_logger = agent_logger
        self.maintenance_log: Optional[ComponentLogger] = (
            ComponentLogger(LogComponent.MAINTENANCE, agent_logger) if agent_logger is not None else None
        )

        self.guard = ProcessingCycleGuard()
        self.last_summary: Optional[Dict[str, Any]] = None
        self.cycles_run: int = 0
        self.cycles_skipped: int = 0

        self._running: bool = False
        self._tick_tasks: Set["asyncio.Task[Any]"] = set()
        self._maintenance_tasks: List["asyncio.Task[None]"] = []

    # ================================================================
    # CYCLE
    # ================================================================

    async def run_cycle(self) -> Optional[Dict[str, Any]]:
        """Run one cycle over all due agents.

        Returns:
            The cycle summary, or ``None`` if another cycle was in flight.
        """
        if not self.guard.try_acquire(self._clock()):
            self.cycles_skipped += 1
            logger.info("[SCHEDULER] Cycle already running, skipping tick")
            return None

        try:
            summary = await self._execute_cycle(CycleRunLogger(generate_id(), self.agent_logger))
        finally:
            self.guard.release(self._clock())

        self.cycles_run += 1
        self.last_summary = summary
        return summary

    async def trigger_cycle(self) -> Optional[Dict[str, Any]]:
        """Run a cycle now, outside the timer (same exclusivity rules)."""
        return await self.run_cycle()

    async def _execute_cycle(self, cycle: CycleRunLogger) -> Dict[str, Any]:
        now = self._clock()
        try:
            agents: List[Agent] = await self.store.get_due_agents(now)
        except Exception:
            logger.exception("[SCHEDULER] Failed to fetch due agents, aborting cycle")
            return await cycle.finish("failed")

        cycle.agents_due = len(agents)
        if not agents:
            logger.debug("[SCHEDULER] No agents due")
            return await cycle.finish("idle")

        batches = chunked(agents, self.config.batch_size)
        logger.info(
            "[SCHEDULER] %d agents due, %d batch(es) of up to %d",
            len(agents),
            len(batches),
            self.config.batch_size,
        )

        for batch_index, batch in enumerate(batches, start=1):
            await cycle.start_batch(batch_index, len(batch))
            for position, agent in enumerate(batch):
                result = await self._process_agent(agent)
                await cycle.record(result)
                if position < len(batch) - 1:
                    await self._sleep(self.config.agent_delay_seconds)
            await cycle.end_batch()

            logger.info(
                "[SCHEDULER] Batch %d/%d complete: %d succeeded, %d failed so far",
                batch_index,
                len(batches),
                cycle.succeeded,
                cycle.failed,
            )
            if batch_index < len(batches):
                await self._sleep(self.config.batch_delay_seconds)

        return await cycle.finish("completed")

    async def _process_agent(self, agent: Agent) -> CycleResult:
        """Run one agent; failures are contained and audited."""
        try:
            result = await self.runner.run(agent)
        except Exception as exc:
            logger.exception(
                "[SCHEDULER] Agent %s (user %s) raised out of the runner",
                agent.id,
                agent.user_id,
            )
            result = CycleResult(
                agent_id=agent.id,
                user_id=agent.user_id,
                platform=agent.platform,
                outcome=CycleOutcome.UNEXPECTED,
                error=f"{type(exc).__name__}: {exc}",
            )

        if not result.success:
            await self._audit(result)
        return result

    async def _audit(self, result: CycleResult) -> None:
        try:
            await self.store.record_agent_activity(result.to_dict())
        except Exception as exc:
            logger.warning(
                "[SCHEDULER] Could not record activity for agent %s: %s",
                result.agent_id,
                exc,
            )

    # ================================================================
    # MAINTENANCE JOBS
    # ================================================================

    async def reset_daily_counters(self) -> int:
        """Set every agent's ``posts_today`` back to zero."""
        count = await self.store.reset_daily_counters()
        logger.info("[MAINTENANCE] Reset daily counters for %d agents", count)
        return count

    async def prune_rate_limits(self) -> int:
        """Drop stale rate-limit windows."""
        removed = self.rate_limiter.cleanup()
        logger.info("[MAINTENANCE] Pruned %d rate-limit windows", removed)
        return removed

    async def prune_trend_usage(self) -> int:
        """Delete usage records older than the retention horizon."""
        before = self._clock() - timedelta(hours=self.config.trend_usage_retention_hours)
        removed = await self.store.prune_trend_usage(before)
        logger.info(
            "[MAINTENANCE] Pruned %d trend usage records older than %s",
            removed,
            before.isoformat(),
        )
        return removed

    def _until_midnight(self) -> float:
        return seconds_until_next_midnight(self._clock())

    def _usage_prune_interval(self) -> float:
        return self.config.trend_usage_prune_interval_hours * 3600.0

    async def _periodic(
        self,
        name: str,
        job: Callable[[], Awaitable[int]],
        next_delay: Callable[[], float],
    ) -> None:
        """Run *job* after each *next_delay()* until the scheduler stops."""
        while self._running:
            try:
                await self._sleep(next_delay())
            except asyncio.CancelledError:
                break
            if not self._running:
                break
            try:
                await self._run_job(name, job)
            except asyncio.CancelledError:
                break
            except Exception:
                logger.exception("[MAINTENANCE] Job '%s' failed", name)

    async def _run_job(self, name: str, job: Callable[[], Awaitable[int]]) -> None:
        if self.maintenance_log is None:
            await job()
            return
        async with self.maintenance_log.timed(name):
            await job()

    # ================================================================
    # LIFECYCLE
    # ================================================================

    async def start(self) -> None:
        """Start the timer loop and maintenance jobs; returns after :meth:`stop`.

        Each tick is launched as its own task so the timer keeps a fixed
        cadence; a tick landing on an in-flight cycle is skipped by the
        guard.
        """
        self._running = True
        logger.info(
            "[SCHEDULER] Agent scheduler started (interval=%ds, batch=%d)",
            self.config.check_interval_seconds,
            self.config.batch_size,
        )

        self._maintenance_tasks = [
            asyncio.create_task(
                self._periodic("reset_daily_counters", self.reset_daily_counters, self._until_midnight)
            ),
            asyncio.create_task(
                self._periodic("prune_rate_limits", self.prune_rate_limits, self._until_midnight)
            ),
            asyncio.create_task(
                self._periodic("prune_trend_usage", self.prune_trend_usage, self._usage_prune_interval)
            ),
        ]

        try:
            while self._running:
                task = asyncio.create_task(self._tick())
                self._tick_tasks.add(task)
                task.add_done_callback(self._tick_tasks.discard)

                try:
                    await self._sleep(self.config.check_interval_seconds)
                except asyncio.CancelledError:
                    logger.info("[SCHEDULER] Agent scheduler sleep cancelled")
                    break
        finally:
            self._running = False
            for task in self._maintenance_tasks:
                task.cancel()
            await asyncio.gather(*self._maintenance_tasks, return_exceptions=True)
            self._maintenance_tasks = []
            # An in-flight cycle always runs to completion
            if self._tick_tasks:
                await asyncio.gather(*list(self._tick_tasks), return_exceptions=True)
            logger.info("[SCHEDULER] Agent scheduler stopped")

    async def _tick(self) -> None:
        try:
            await self.run_cycle()
        except Exception:
            logger.exception("[SCHEDULER] Unexpected error in scheduler cycle")

    async def stop(self) -> None:
        """Stop after the current sleep; an in-flight cycle still completes."""
        self._running = False
        logger.info("[SCHEDULER] Agent scheduler stop requested")

    def get_status(self) -> Dict[str, Any]:
        """Snapshot of scheduler state for health checks."""
        return {
            "running": self._running,
            "cycle_in_flight": self.guard.running,
            "last_run_at": self.guard.last_run_at.isoformat() if self.guard.last_run_at else None,
            "last_finished_at": (
                self.guard.last_finished_at.isoformat() if self.guard.last_finished_at else None
            ),
            "cycles_run": self.cycles_run,
            "cycles_skipped": self.cycles_skipped,
            "last_summary": self.last_summary,
        }


# =============================================================================
# PUBLIC API
# =============================================================================

__all__ = [
    "AgentScheduler",
]
