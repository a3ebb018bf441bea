"""
Per-agent posting pipeline.

``AgentCycleRunner.run(agent)`` walks one agent through
``RateCheck -> TrendSelect -> Generate -> Publish -> Record``. Each stage
is a gate: the first failing stage ends the run with a typed
``CycleResult`` and nothing later runs. Quota, usage and history are only
written after the publisher reports success, so a failed attempt costs
nothing and the agent is simply retried on a later tick.

No exception escapes ``run``; anything unforeseen becomes an
``UNEXPECTED`` result so one agent can never abort its batch.
"""

import asyncio
import logging
from typing import Any, Awaitable, Optional, TypeVar

from trendpilot.logging.component_logger import ComponentLogger
from trendpilot.models import (
    Agent,
    GeneratedContent,
    PublishedPost,
    PublishResult,
    TrendCandidate,
    TrendUsageRecord,
)
from trendpilot.scheduling.models import CycleOutcome, CycleResult
from trendpilot.scheduling.usage_window import UsageWindowTracker
from trendpilot.utils import Clock, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AgentCycleRunner:
    """Runs the posting pipeline for a single agent.

    Args:
        rate_limiter: Per-user, per-platform window tracker.
        selector: ``TrendSelector`` (or anything with the same ``select``).
        content_generator: ``async generate(candidate, settings, platform)``
            returning :class:`GeneratedContent`.
        publishers: ``PublisherRegistry`` (``get(platform)``).
        store: Persistent store for counters, usage and history.
        call_timeout_seconds: Timeout for each generation and publish call;
            ``None`` or ``0`` disables it.
        clock: Current UTC time.
        activity_log: Optional structured logger for per-agent events.
    """

    def __init__(
        self,
        rate_limiter: UsageWindowTracker,
        selector: Any,
        content_generator: Any,
        publishers: Any,
        store: Any,
        call_timeout_seconds: Optional[float] = 60.0,
        clock: Clock = utc_now,
        activity_log: Optional[ComponentLogger] = None,
    ) -> None:
        self.rate_limiter = rate_limiter
        self.selector = selector
        self.content_generator = content_generator
        self.publishers = publishers
        self.store = store
        self.call_timeout_seconds = call_timeout_seconds or None
        self._clock = clock
        self.activity_log = activity_log

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _with_timeout(self, awaitable: Awaitable[T]) -> T:
        return await asyncio.wait_for(awaitable, timeout=self.call_timeout_seconds)

    @staticmethod
    def _result(
        agent: Agent,
        outcome: CycleOutcome,
        error: Optional[str] = None,
        trend: Optional[TrendCandidate] = None,
        publish: Optional[PublishResult] = None,
    ) -> CycleResult:
        return CycleResult(
            agent_id=agent.id,
            user_id=agent.user_id,
            platform=agent.platform,
            outcome=outcome,
            error=error,
            trend_topic=trend.topic if trend else None,
            post_id=publish.post_id if publish else None,
            url=publish.url if publish else None,
        )

    def _timeout_reason(self, stage: str) -> str:
        return f"{stage} timed out after {self.call_timeout_seconds:g}s"

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def _generate(self, agent: Agent, trend: TrendCandidate) -> GeneratedContent:
        return await self._with_timeout(
            self.content_generator.generate(trend, agent.settings, agent.platform)
        )

    async def _publish(self, agent: Agent, content: GeneratedContent) -> PublishResult:
        publisher = self.publishers.get(agent.platform)
        if publisher is None:
            return PublishResult(
                success=False,
                platform=agent.platform,
                error=f"no publisher configured for platform '{agent.platform}'",
            )
        return await self._with_timeout(
            publisher.publish(
                content.text,
                content.image_url,
                agent.settings.platform_options,
            )
        )

    async def _record_success(
        self,
        agent: Agent,
        trend: TrendCandidate,
        content: GeneratedContent,
        publish: PublishResult,
    ) -> None:
        now = self._clock()
        self.rate_limiter.record_usage(agent.user_id, agent.platform)
        await self.store.increment_post_count(agent.id, now)
        await self.store.save_trend_usage(TrendUsageRecord.from_candidate(trend, agent, now))
        await self.store.save_published_post(
            PublishedPost(
                agent_id=agent.id,
                user_id=agent.user_id,
                platform=agent.platform,
                trend=trend.snapshot(),
                text=content.text,
                success=True,
                post_id=publish.post_id,
                url=publish.url,
                published_at=now,
            )
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run(self, agent: Agent) -> CycleResult:
        """Run the full pipeline for *agent*; never raises."""
        try:
            result = await self._run(agent)
        except Exception as exc:
            logger.exception(
                "[CYCLE] Unexpected error for agent=%s user=%s",
                agent.id,
                agent.user_id,
            )
            result = self._result(agent, CycleOutcome.UNEXPECTED, f"{type(exc).__name__}: {exc}")

        if self.activity_log is not None and result.outcome is CycleOutcome.UNEXPECTED:
            await self.activity_log.error(
                f"Unexpected failure for agent {agent.id}",
                data=result.to_dict(),
            )
        return result

    async def _run(self, agent: Agent) -> CycleResult:
        # 1. Rate check
        if not self.rate_limiter.check_limit(agent.user_id, agent.platform):
            logger.info(
                "[CYCLE] agent=%s user=%s rate limited on %s",
                agent.id,
                agent.user_id,
                agent.platform,
            )
            return self._result(agent, CycleOutcome.RATE_LIMITED)

        # 2. Trend selection
        trend = await self.selector.select(agent.settings.topics, agent)
        if trend is None:
            logger.warning("[CYCLE] agent=%s no trend available", agent.id)
            return self._result(agent, CycleOutcome.NO_TREND)

        # 3. Content generation
        try:
            content = await self._generate(agent, trend)
        except asyncio.TimeoutError:
            reason = self._timeout_reason("content generation")
            logger.warning("[CYCLE] agent=%s %s", agent.id, reason)
            return self._result(agent, CycleOutcome.CONTENT_GENERATION_FAILED, reason, trend)
        except Exception as exc:
            logger.warning("[CYCLE] agent=%s content generation failed: %s", agent.id, exc)
            return self._result(agent, CycleOutcome.CONTENT_GENERATION_FAILED, str(exc), trend)

        if content is None or not (content.text or "").strip():
            logger.warning("[CYCLE] agent=%s content generator returned empty text", agent.id)
            return self._result(
                agent, CycleOutcome.CONTENT_GENERATION_FAILED, "empty content", trend
            )

        # 4. Publish
        try:
            publish = await self._publish(agent, content)
        except asyncio.TimeoutError:
            reason = self._timeout_reason("publish")
            logger.error("[PUBLISH] agent=%s user=%s %s", agent.id, agent.user_id, reason)
            return self._result(agent, CycleOutcome.PUBLISH_FAILED, reason, trend)
        except Exception as exc:
            logger.error(
                "[PUBLISH] agent=%s user=%s publisher raised: %s",
                agent.id,
                agent.user_id,
                exc,
            )
            return self._result(agent, CycleOutcome.PUBLISH_FAILED, str(exc), trend)

        if not publish.success:
            reason = publish.error or "publisher reported failure"
            logger.error(
                "[PUBLISH] agent=%s user=%s platform=%s failed: %s",
                agent.id,
                agent.user_id,
                agent.platform,
                reason,
            )
            return self._result(agent, CycleOutcome.PUBLISH_FAILED, reason, trend, publish)

        # 5. Record
        await self._record_success(agent, trend, content, publish)
        logger.info(
            "[CYCLE] agent=%s posted '%s' to %s (%s)",
            agent.id,
            trend.topic[:60],
            agent.platform,
            publish.post_id,
        )
        return self._result(agent, CycleOutcome.SUCCESS, trend=trend, publish=publish)


__all__ = [
    "AgentCycleRunner",
]
