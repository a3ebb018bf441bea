"""
External collaborators for the agent scheduler.

- ClaudeClient: Anthropic Claude API for LLM calls
- ContentGenerator: platform-specific post text for a trend
- MockPublisher / TelegramPublisher / PublisherRegistry: post delivery
- NewsTrendSource: NewsAPI + GNews candidate aggregation
"""

from trendpilot.tools.claude_client import ClaudeClient
from trendpilot.tools.content_generator import ContentGenerator
from trendpilot.tools.publishers import (
    MockPublisher,
    Publisher,
    PublisherRegistry,
    TelegramPublisher,
)
from trendpilot.tools.trend_source import NewsTrendSource, candidate_confidence

__all__ = [
    "ClaudeClient",
    "ContentGenerator",
    "Publisher",
    "MockPublisher",
    "TelegramPublisher",
    "PublisherRegistry",
    "NewsTrendSource",
    "candidate_confidence",
]
