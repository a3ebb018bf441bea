"""
Entry point: run the multi-tenant agent scheduler.

Usage::

    python run.py              # run until interrupted
    python run.py --once       # run a single cycle and exit
    python run.py --dry-run    # in-memory store, mock publishers, sample agents
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger("run")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="TrendPilot agent scheduler")
    parser.add_argument("--once", action="store_true", help="run one cycle and exit")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="use an in-memory store with sample agents and mock publishers",
    )
    return parser.parse_args(argv)


def sample_agents():
    from trendpilot.models import Agent, AgentSettings, PostingSchedule

    always = PostingSchedule(posts_per_day=5, start_time="00:00", end_time="00:00")
    return [
        Agent(
            id="demo-linkedin",
            user_id="demo-user",
            platform="linkedin",
            name="Demo LinkedIn",
            settings=AgentSettings(topics=["artificial intelligence"], schedule=always),
        ),
        Agent(
            id="demo-telegram",
            user_id="demo-user",
            platform="telegram",
            name="Demo Telegram",
            settings=AgentSettings(schedule=always, category="tech"),
        ),
    ]


def build_publishers(dry_run: bool):
    """Publisher registry for the run mode.

    Dry runs route every platform to a mock. Production registers only real
    publishers; an agent on any other platform ends its cycle with
    ``publish_failed`` and records nothing.
    """
    from trendpilot.tools import MockPublisher, PublisherRegistry, TelegramPublisher

    if dry_run:
        return PublisherRegistry(default=MockPublisher())
    publishers = PublisherRegistry()
    publishers.register("telegram", TelegramPublisher())
    return publishers


async def main(args: argparse.Namespace) -> None:
    from trendpilot.config import get_settings, validate_env
    from trendpilot.logging import ComponentLogger, LogComponent, init_logger
    from trendpilot.memory_store import InMemoryStore
    from trendpilot.scheduling import UsageWindowTracker
    from trendpilot.scheduling.agent_scheduler import AgentScheduler
    from trendpilot.scheduling.cycle_runner import AgentCycleRunner
    from trendpilot.tools import ClaudeClient, ContentGenerator, NewsTrendSource
    from trendpilot.trends import TrendSelector

    settings = get_settings()
    logging.getLogger().setLevel(settings.log_level.upper())

    # ---- Store and publishers ---------------------------------------------
    if args.dry_run:
        store = InMemoryStore(sample_agents())
    else:
        from trendpilot.database import get_db

        validate_env(strict=True)
        store = await get_db()
    publishers = build_publishers(args.dry_run)

    agent_logger = init_logger(log_dir=settings.log_dir, store=None if args.dry_run else store)

    # ---- Collaborators -----------------------------------------------------
    claude = ClaudeClient(model=settings.llm_model) if os.environ.get("ANTHROPIC_API_KEY") else None
    rate_limiter = UsageWindowTracker(settings.rate_limits)
    selector = TrendSelector(
        NewsTrendSource(),
        store,
        config=settings.selection,
        categories=settings.categories,
        penalties=settings.penalties,
    )
    runner = AgentCycleRunner(
        rate_limiter,
        selector,
        ContentGenerator(claude),
        publishers,
        store,
        call_timeout_seconds=settings.scheduler.call_timeout_seconds,
        activity_log=ComponentLogger(LogComponent.CYCLE_RUNNER, agent_logger),
    )
    scheduler = AgentScheduler(
        store,
        runner,
        rate_limiter=rate_limiter,
        config=settings.scheduler,
        agent_logger=agent_logger,
    )

    try:
        if args.once:
            summary = await scheduler.trigger_cycle()
            print(json.dumps(summary, indent=2, default=str))
        else:
            await scheduler.start()
    finally:
        await scheduler.stop()
        await agent_logger.flush()


if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s | %(message)s",
        datefmt="%H:%M:%S",
    )
    try:
        asyncio.run(main(parse_args()))
    except KeyboardInterrupt:
        logger.info("Interrupted")
        sys.exit(0)
