"""
Thin ``AsyncAnthropic`` wrapper used to write post bodies.

Only transient API failures (connection drops, 429s, 5xx) are retried;
a bad request or an auth error surfaces on the first attempt. Token
counts are kept per client so a long-running scheduler can report spend.
"""

import logging
import os
from typing import Any, Dict, Optional

import anthropic
from anthropic import AsyncAnthropic

from trendpilot.utils import with_retry

logger = logging.getLogger(__name__)

DEFAULT_MODEL = "claude-sonnet-4-5"

TRANSIENT_API_ERRORS = (
    anthropic.APIConnectionError,
    anthropic.RateLimitError,
    anthropic.InternalServerError,
)


class ClaudeClient:
    """Post-writing model client.

    Args:
        api_key: Anthropic key; ``ANTHROPIC_API_KEY`` when omitted.
        model: Model id sent with every request.
        client: Ready-made SDK client, mainly for tests.

    Raises:
        KeyError: No key given and ``ANTHROPIC_API_KEY`` unset.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = DEFAULT_MODEL,
        client: Optional[AsyncAnthropic] = None,
    ) -> None:
        if client is None:
            client = AsyncAnthropic(api_key=api_key or os.environ["ANTHROPIC_API_KEY"])
        self.client = client
        self.model = model
        self._usage: Dict[str, int] = {"input_tokens": 0, "output_tokens": 0}

    @with_retry(
        max_attempts=3,
        retryable_exceptions=TRANSIENT_API_ERRORS,
        operation_name="claude post generation",
    )
    async def generate(
        self,
        prompt: str,
        system: Optional[str] = None,
        max_tokens: int = 1024,
        temperature: float = 0.7,
    ) -> str:
        """Send one user turn and return the text of the reply."""
        request: Dict[str, Any] = {
            "model": self.model,
            "max_tokens": max_tokens,
            "temperature": temperature,
            "messages": [{"role": "user", "content": prompt}],
        }
        if system:
            request["system"] = system

        response = await self.client.messages.create(**request)

        usage = response.usage
        self._usage["input_tokens"] += usage.input_tokens
        self._usage["output_tokens"] += usage.output_tokens
        logger.debug(
            "[CLAUDE] %s used %d in / %d out tokens",
            self.model, usage.input_tokens, usage.output_tokens,
        )

        return "".join(getattr(block, "text", "") for block in response.content)

    @property
    def usage_stats(self) -> Dict[str, int]:
        return dict(self._usage)

    def reset_usage(self) -> None:
        for key in self._usage:
            self._usage[key] = 0
