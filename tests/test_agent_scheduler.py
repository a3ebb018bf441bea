"""
Tests for trendpilot.scheduling.agent_scheduler.AgentScheduler.

Pacing is checked through an injected AsyncMock ``sleep``; the runner is
mocked so each test decides the outcome of every agent.
"""

import asyncio
from datetime import timedelta
from unittest.mock import AsyncMock, MagicMock

import pytest

from conftest import make_agent
from trendpilot.config import SchedulerConfig
from trendpilot.exceptions import DatabaseError
from trendpilot.logging.models import LogComponent
from trendpilot.memory_store import InMemoryStore
from trendpilot.models import TrendUsageRecord
from trendpilot.scheduling.agent_scheduler import AgentScheduler
from trendpilot.scheduling.models import CycleOutcome, CycleResult
from trendpilot.scheduling.usage_window import UsageWindowTracker


def _result(agent, outcome=CycleOutcome.SUCCESS, error=None):
    return CycleResult(agent.id, agent.user_id, agent.platform, outcome, error=error)


def _agents(count):
    return [make_agent(agent_id=f"agent-{i}", user_id=f"user-{i}") for i in range(count)]


def _failing_agent_logger(exc):
    mock = MagicMock()
    for method in ("debug", "info", "warning", "error"):
        setattr(mock, method, AsyncMock(side_effect=exc))
    return mock


def _recording_agent_logger():
    mock = MagicMock()
    for method in ("debug", "info", "warning", "error"):
        setattr(mock, method, AsyncMock())
    return mock


@pytest.fixture
def runner(clock):
    mock = MagicMock()
    mock.rate_limiter = UsageWindowTracker(clock=clock)
    mock.run = AsyncMock(side_effect=lambda agent: _result(agent))
    return mock


@pytest.fixture
def sleep():
    return AsyncMock()


def _scheduler(store, runner, clock, sleep, **config):
    return AgentScheduler(
        store, runner, config=SchedulerConfig(**config), clock=clock, sleep=sleep
    )


# ===========================================================================
# Cycle
# ===========================================================================


class TestRunCycle:
    """Batching, pacing and summaries."""

    @pytest.mark.asyncio
    async def test_twelve_agents_two_batches(self, runner, clock, sleep):
        store = InMemoryStore(_agents(12))
        scheduler = _scheduler(store, runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert runner.run.await_count == 12
        assert [c.args[0] for c in sleep.call_args_list] == [3.0] * 9 + [10.0] + [3.0]
        assert summary["status"] == "completed"
        assert summary["agents_due"] == 12
        assert summary["processed"] == 12
        assert summary["succeeded"] == 12
        assert [b["size"] for b in summary["batches"]] == [10, 2]

    @pytest.mark.asyncio
    async def test_agents_processed_in_store_order(self, runner, clock, sleep):
        agents = _agents(3)
        scheduler = _scheduler(InMemoryStore(agents), runner, clock, sleep)

        await scheduler.run_cycle()

        assert [c.args[0].id for c in runner.run.call_args_list] == [a.id for a in agents]

    @pytest.mark.asyncio
    async def test_single_agent_never_sleeps(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(_agents(1)), runner, clock, sleep)
        await scheduler.run_cycle()
        sleep.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_no_due_agents_is_idle(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(), runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["status"] == "idle"
        assert summary["processed"] == 0
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_agents_not_due_are_skipped(self, runner, clock, sleep):
        exhausted = make_agent(agent_id="done", posts_today=5)
        scheduler = _scheduler(InMemoryStore([exhausted] + _agents(1)), runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["processed"] == 1
        assert runner.run.call_args.args[0].id == "agent-0"

    @pytest.mark.asyncio
    async def test_failed_due_query_releases_guard(self, runner, clock, sleep):
        store = InMemoryStore()
        store.get_due_agents = AsyncMock(side_effect=DatabaseError("connection refused"))
        scheduler = _scheduler(store, runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["status"] == "failed"
        assert scheduler.guard.running is False
        assert scheduler.guard.last_finished_at == clock()

    @pytest.mark.asyncio
    async def test_outcomes_are_counted(self, runner, clock, sleep):
        outcomes = {
            "agent-0": CycleOutcome.SUCCESS,
            "agent-1": CycleOutcome.RATE_LIMITED,
            "agent-2": CycleOutcome.NO_TREND,
        }
        runner.run.side_effect = lambda agent: _result(agent, outcomes[agent.id])
        scheduler = _scheduler(InMemoryStore(_agents(3)), runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["succeeded"] == 1
        assert summary["failed"] == 2
        assert summary["outcomes"]["rate_limited"] == 1
        assert summary["outcomes"]["no_trend"] == 1


# ===========================================================================
# Guard
# ===========================================================================


class TestCycleGuard:
    """At most one cycle in flight."""

    @pytest.mark.asyncio
    async def test_tick_skipped_while_guard_held(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(_agents(1)), runner, clock, sleep)
        scheduler.guard.try_acquire(clock())

        assert await scheduler.run_cycle() is None
        assert scheduler.cycles_skipped == 1
        runner.run.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_concurrent_trigger_is_skipped(self, runner, clock, sleep):
        gate = asyncio.Event()

        async def blocked_run(agent):
            await gate.wait()
            return _result(agent)

        runner.run.side_effect = blocked_run
        scheduler = _scheduler(InMemoryStore(_agents(1)), runner, clock, sleep)

        first = asyncio.create_task(scheduler.run_cycle())
        for _ in range(5):
            await asyncio.sleep(0)
        assert scheduler.get_status()["cycle_in_flight"] is True

        assert await scheduler.trigger_cycle() is None

        gate.set()
        summary = await first
        assert summary["processed"] == 1
        assert scheduler.cycles_run == 1
        assert scheduler.cycles_skipped == 1
        assert scheduler.guard.running is False

    @pytest.mark.asyncio
    async def test_guard_released_after_success(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(_agents(1)), runner, clock, sleep)
        await scheduler.run_cycle()
        assert await scheduler.run_cycle() is not None
        assert scheduler.cycles_run == 2


# ===========================================================================
# Failure containment and audit
# ===========================================================================


class TestAudit:
    """Failed agents are written to the activity audit."""

    @pytest.mark.asyncio
    async def test_failures_are_audited(self, runner, clock, sleep):
        runner.run.side_effect = lambda agent: (
            _result(agent, CycleOutcome.PUBLISH_FAILED, "Bad Request")
            if agent.id == "agent-1"
            else _result(agent)
        )
        store = InMemoryStore(_agents(2))
        scheduler = _scheduler(store, runner, clock, sleep)

        await scheduler.run_cycle()

        assert len(store.activity) == 1
        assert store.activity[0]["agent_id"] == "agent-1"
        assert store.activity[0]["outcome"] == "publish_failed"
        assert store.activity[0]["error"] == "Bad Request"

    @pytest.mark.asyncio
    async def test_runner_exception_contained(self, runner, clock, sleep):
        runner.run.side_effect = RuntimeError("boom")
        store = InMemoryStore(_agents(2))
        scheduler = _scheduler(store, runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["processed"] == 2
        assert summary["outcomes"]["unexpected"] == 2
        assert store.activity[0]["error"] == "RuntimeError: boom"

    @pytest.mark.asyncio
    async def test_audit_write_failure_does_not_abort(self, runner, clock, sleep):
        runner.run.side_effect = lambda agent: _result(agent, CycleOutcome.NO_TREND)
        store = InMemoryStore(_agents(2))
        store.record_agent_activity = AsyncMock(side_effect=DatabaseError("down"))
        scheduler = _scheduler(store, runner, clock, sleep)

        summary = await scheduler.run_cycle()

        assert summary["status"] == "completed"
        assert summary["processed"] == 2

    @pytest.mark.asyncio
    async def test_structured_log_failure_does_not_abort(self, runner, clock, sleep):
        agent_logger = _failing_agent_logger(OSError("No space left on device"))
        scheduler = AgentScheduler(
            InMemoryStore(_agents(3)),
            runner,
            config=SchedulerConfig(),
            clock=clock,
            sleep=sleep,
            agent_logger=agent_logger,
        )

        summary = await scheduler.run_cycle()

        assert runner.run.await_count == 3
        assert summary["status"] == "completed"
        assert summary["processed"] == 3
        assert agent_logger.info.await_count >= 3
        assert scheduler.guard.running is False


# ===========================================================================
# Maintenance
# ===========================================================================


class TestMaintenance:
    """Daily reset and pruning jobs."""

    @pytest.mark.asyncio
    async def test_reset_daily_counters(self, runner, clock, sleep):
        store = InMemoryStore([make_agent(agent_id="a", posts_today=3), make_agent(agent_id="b")])
        scheduler = _scheduler(store, runner, clock, sleep)

        assert await scheduler.reset_daily_counters() == 1
        assert store.agents["a"].posts_today == 0

    @pytest.mark.asyncio
    async def test_prune_rate_limits(self, runner, clock, sleep):
        runner.rate_limiter.record_usage("user-1", "linkedin")
        clock.advance(hours=3)
        scheduler = _scheduler(InMemoryStore(), runner, clock, sleep)

        assert await scheduler.prune_rate_limits() == 1
        assert len(runner.rate_limiter) == 0

    @pytest.mark.asyncio
    async def test_prune_trend_usage_uses_retention(self, runner, clock, sleep):
        store = InMemoryStore()
        for hours_ago in (1, 47, 49):
            await store.save_trend_usage(
                TrendUsageRecord(
                    normalized_topic=f"topic {hours_ago}",
                    platform="linkedin",
                    agent_id="a",
                    used_at=clock() - timedelta(hours=hours_ago),
                )
            )
        scheduler = _scheduler(store, runner, clock, sleep)

        assert await scheduler.prune_trend_usage() == 1
        assert {r.normalized_topic for r in store.trend_usage} == {"topic 1", "topic 47"}

    @pytest.mark.asyncio
    async def test_periodic_job_waits_until_midnight(self, runner, clock):
        delays = []
        job = AsyncMock(return_value=0)
        scheduler = _scheduler(InMemoryStore(), runner, clock, AsyncMock())

        async def fake_sleep(seconds):
            delays.append(seconds)
            if len(delays) == 2:
                scheduler._running = False

        scheduler._sleep = fake_sleep
        scheduler._running = True
        await scheduler._periodic("job", job, scheduler._until_midnight)

        assert delays == [12 * 3600, 12 * 3600]
        job.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_periodic_job_failure_is_contained(self, runner, clock):
        job = AsyncMock(side_effect=RuntimeError("job broke"))
        scheduler = _scheduler(InMemoryStore(), runner, clock, AsyncMock())
        calls = []

        async def fake_sleep(seconds):
            calls.append(seconds)
            if len(calls) == 3:
                scheduler._running = False

        scheduler._sleep = fake_sleep
        scheduler._running = True
        await scheduler._periodic("job", job, scheduler._usage_prune_interval)

        assert job.await_count == 2
        assert calls[0] == 6 * 3600

    @pytest.mark.asyncio
    async def test_periodic_job_is_timed_in_structured_log(self, runner, clock):
        agent_logger = _recording_agent_logger()
        job = AsyncMock(return_value=4)
        scheduler = AgentScheduler(
            InMemoryStore(), runner, clock=clock, sleep=AsyncMock(), agent_logger=agent_logger
        )

        async def fake_sleep(seconds):
            if job.await_count:
                scheduler._running = False

        scheduler._sleep = fake_sleep
        scheduler._running = True
        await scheduler._periodic("prune_trend_usage", job, scheduler._usage_prune_interval)

        job.assert_awaited_once()
        agent_logger.debug.assert_awaited_once_with(
            LogComponent.MAINTENANCE, "Starting: prune_trend_usage"
        )
        call = agent_logger.info.call_args
        assert call.args == (LogComponent.MAINTENANCE, "Completed: prune_trend_usage")
        assert call.kwargs["duration_ms"] >= 0

    @pytest.mark.asyncio
    async def test_failed_job_is_logged_as_failed(self, runner, clock):
        agent_logger = _recording_agent_logger()
        job = AsyncMock(side_effect=RuntimeError("job broke"))
        scheduler = AgentScheduler(
            InMemoryStore(), runner, clock=clock, sleep=AsyncMock(), agent_logger=agent_logger
        )

        async def fake_sleep(seconds):
            if job.await_count:
                scheduler._running = False

        scheduler._sleep = fake_sleep
        scheduler._running = True
        await scheduler._periodic("reset_daily_counters", job, scheduler._until_midnight)

        call = agent_logger.error.call_args
        assert call.args == (LogComponent.MAINTENANCE, "Failed: reset_daily_counters")
        assert isinstance(call.kwargs["error"], RuntimeError)


# ===========================================================================
# Lifecycle
# ===========================================================================


class TestLifecycle:
    """start / stop / get_status."""

    @pytest.mark.asyncio
    async def test_start_runs_a_cycle_then_stops(self, runner, clock):
        store = InMemoryStore(_agents(1))
        scheduler = _scheduler(store, runner, clock, AsyncMock())

        async def fake_sleep(seconds):
            if seconds == scheduler.config.check_interval_seconds:
                await scheduler.stop()
            await asyncio.sleep(0)

        scheduler._sleep = fake_sleep
        await scheduler.start()

        status = scheduler.get_status()
        assert status["running"] is False
        assert status["cycle_in_flight"] is False
        assert status["cycles_run"] == 1
        assert status["last_summary"]["processed"] == 1
        runner.run.assert_awaited_once()

    def test_initial_status(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(), runner, clock, sleep)
        assert scheduler.get_status() == {
            "running": False,
            "cycle_in_flight": False,
            "last_run_at": None,
            "last_finished_at": None,
            "cycles_run": 0,
            "cycles_skipped": 0,
            "last_summary": None,
        }

    def test_rate_limiter_defaults_to_runner(self, runner, clock, sleep):
        scheduler = _scheduler(InMemoryStore(), runner, clock, sleep)
        assert scheduler.rate_limiter is runner.rate_limiter
