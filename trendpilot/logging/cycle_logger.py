"""Scheduler cycle tracking with per-agent outcomes and batch timing.

``CycleRunLogger`` follows one scheduler cycle:

1. Instantiate with a ``cycle_id`` -- this sets the structured logger context.
2. Call ``start_batch()`` / ``end_batch()`` around each batch.
3. Call ``record()`` with every agent's ``CycleResult``.
4. Call ``finish()`` when the cycle is done -- returns a summary dict.
5. Call ``get_summary_text()`` for a human-readable summary; ``finish()``
   also writes it to the standard library logger at debug level.

Without a structured ``AgentLogger`` the tracker still aggregates and
reports through the standard library logger. A failing structured sink
(full disk, closed store) is reported there too and never interrupts the
cycle.
"""

import logging
import time
from collections import Counter
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional

from trendpilot.logging.agent_logger import AgentLogger
from trendpilot.logging.models import LogComponent
from trendpilot.scheduling.models import CycleOutcome, CycleResult
from trendpilot.utils import utc_now

logger = logging.getLogger(__name__)


class CycleRunLogger:
    """Track an entire scheduler cycle.

    Parameters:
        cycle_id: Unique identifier for this cycle.
        agent_logger: Optional structured logger.
    """

    def __init__(self, cycle_id: str, agent_logger: Optional[AgentLogger] = None) -> None:
        self.cycle_id = cycle_id
        self.agent_logger = agent_logger
        if agent_logger is not None:
            agent_logger.set_context(cycle_id=cycle_id)

        self.started_at: datetime = utc_now()
        self._start = time.monotonic()
        self.results: List[CycleResult] = []
        self.batches: List[Dict[str, Any]] = []
        self.agents_due: int = 0

    # ------------------------------------------------------------------
    # Batches
    # ------------------------------------------------------------------

    async def start_batch(self, index: int, size: int) -> None:
        self.batches.append({
            "batch": index,
            "size": size,
            "start": time.monotonic(),
            "duration_ms": None,
        })
        logger.info("[CYCLE] %s batch %d started (%d agents)", self.cycle_id, index, size)

    async def end_batch(self) -> None:
        if not self.batches:
            return
        batch = self.batches[-1]
        batch["duration_ms"] = int((time.monotonic() - batch["start"]) * 1000)
        if self.agent_logger is not None:
            await self._emit(
                self.agent_logger.info,
                LogComponent.SCHEDULER,
                f"Batch {batch['batch']} completed",
                data={"size": batch["size"]},
                duration_ms=batch["duration_ms"],
            )

    # ------------------------------------------------------------------
    # Agent outcomes
    # ------------------------------------------------------------------

    async def record(self, result: CycleResult) -> None:
        """Record one agent's outcome and log it with agent/user context."""
        self.results.append(result)
        if self.agent_logger is None:
            return

        self.agent_logger.set_context(agent_id=result.agent_id, user_id=result.user_id)
        try:
            if result.success:
                await self._emit(
                    self.agent_logger.info,
                    LogComponent.CYCLE_RUNNER,
                    f"Posted to {result.platform}",
                    data=result.to_dict(),
                )
            else:
                await self._emit(
                    self.agent_logger.warning,
                    LogComponent.CYCLE_RUNNER,
                    f"Agent cycle ended: {result.outcome.value}",
                    data=result.to_dict(),
                )
        finally:
            self.agent_logger.clear_agent_context()

    async def _emit(
        self,
        method: Callable[..., Awaitable[None]],
        component: LogComponent,
        message: str,
        **kwargs: Any,
    ) -> None:
        """Write one structured entry; a sink failure is logged and dropped."""
        try:
            await method(component, message, **kwargs)
        except Exception as exc:
            logger.warning(
                "[CYCLE] %s structured log write failed for %r: %s",
                self.cycle_id,
                message,
                exc,
            )

    @property
    def counts(self) -> Dict[str, int]:
        counter = Counter(r.outcome.value for r in self.results)
        return {outcome.value: counter.get(outcome.value, 0) for outcome in CycleOutcome}

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return len(self.results) - self.succeeded

    # ------------------------------------------------------------------
    # Finish
    # ------------------------------------------------------------------

    async def finish(self, status: str = "completed") -> Dict[str, Any]:
        """Finish the cycle and return a summary dict.

        Args:
            status: ``"completed"``, ``"failed"`` (due-agent query raised),
                or ``"idle"`` (nothing due).
        """
        total_duration_ms = int((time.monotonic() - self._start) * 1000)
        summary: Dict[str, Any] = {
            "cycle_id": self.cycle_id,
            "status": status,
            "started_at": self.started_at.isoformat(),
            "finished_at": utc_now().isoformat(),
            "total_duration_ms": total_duration_ms,
            "agents_due": self.agents_due,
            "processed": len(self.results),
            "succeeded": self.succeeded,
            "failed": self.failed,
            "outcomes": self.counts,
            "batches": [
                {"batch": b["batch"], "size": b["size"], "duration_ms": b["duration_ms"]}
                for b in self.batches
            ],
        }

        logger.info(
            "[CYCLE] %s %s: %d processed, %d succeeded, %d failed",
            self.cycle_id,
            status,
            len(self.results),
            self.succeeded,
            self.failed,
        )
        logger.debug("[CYCLE] Summary\n%s", self.get_summary_text())
        if self.agent_logger is not None:
            await self._emit(
                self.agent_logger.info,
                LogComponent.SCHEDULER,
                f"Cycle {status}",
                data=summary,
                duration_ms=total_duration_ms,
            )
            self.agent_logger.clear_context()

        return summary

    def get_summary_text(self) -> str:
        """Return a human-readable summary of the cycle."""
        lines: List[str] = [f"Cycle: {self.cycle_id}", ""]
        for outcome, count in self.counts.items():
            if count:
                lines.append(f"{outcome}: {count}")
        for batch in self.batches:
            lines.append(
                f"[batch {batch['batch']}] {batch['size']} agents: "
                f"{batch['duration_ms'] or 0}ms"
            )
        lines.append(f"\nProcessed: {len(self.results)} "
                     f"(ok {self.succeeded}, failed {self.failed})")
        return "\n".join(lines)
