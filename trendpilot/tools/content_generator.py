"""
Platform-specific post text for a selected trend.

``ContentGenerator.generate(candidate, settings, platform)`` builds a
system prompt from the platform style and the agent's tone, asks Claude
for the post, and post-processes the result (hashtag stripping when the
agent disabled them, the Twitter length cap).

Without a ``ClaudeClient`` the generator renders a fixed template per
platform, which keeps ``run.py --dry-run`` usable without API keys.
"""

import logging
import re
from typing import Dict, Optional

import anthropic

from trendpilot.exceptions import ContentGenerationError, RetryExhaustedError
from trendpilot.models import AgentSettings, GeneratedContent, TrendCandidate
from trendpilot.tools.claude_client import ClaudeClient

logger = logging.getLogger(__name__)

TWITTER_MAX_CHARS = 280

TONE_DESCRIPTIONS: Dict[str, str] = {
    "professional": "professional, authoritative, and insightful",
    "casual": "friendly, conversational, and engaging",
    "humorous": "witty, entertaining, and light-hearted",
    "educational": "informative, clear, and educational",
}

PLATFORM_STYLES: Dict[str, str] = {
    "twitter": "concise and punchy, one news point, the link, two or three hashtags",
    "linkedin": "professional and business-focused, three short paragraphs ending with a question",
    "reddit": "community-oriented and authentic, inviting discussion, no hashtags",
    "facebook": "friendly, shareable, and relatable",
    "instagram": "visual-focused, trendy, and hashtag-rich",
    "telegram": "news-focused, 300-500 characters, using <b> and <i> HTML tags only",
}

TEMPLATES: Dict[str, str] = {
    "twitter": "Breaking: {title} {url} #News",
    "linkedin": (
        "{title}\n\n{summary}\n\nThis is worth watching for anyone in the field. "
        "What implications do you see for your organization?\n\n#Innovation #Business"
    ),
    "reddit": "{title}\n\n{summary}\n\nWhat does everyone think about this?",
    "telegram": "<b>{title}</b>\n\n{summary}\n\n{url}\n\n#News",
}

_HASHTAG = re.compile(r"(?:^|\s)#\w+")


class ContentGenerator:
    """Generates one post per trend and platform.

    Args:
        claude: LLM client; ``None`` switches to template rendering.
        max_tokens: Response budget per post.
    """

    def __init__(self, claude: Optional[ClaudeClient] = None, max_tokens: int = 800) -> None:
        self.claude = claude
        self.max_tokens = max_tokens
        if claude is None:
            logger.warning("[CONTENT] No Claude client configured, using template generation")

    # ------------------------------------------------------------------
    # Prompts
    # ------------------------------------------------------------------

    @staticmethod
    def system_prompt(platform: str, settings: AgentSettings) -> str:
        tone = TONE_DESCRIPTIONS.get(settings.tone, TONE_DESCRIPTIONS["professional"])
        style = PLATFORM_STYLES.get(platform, PLATFORM_STYLES["linkedin"])
        lines = [
            f"You are a {tone} social media writer creating {platform} posts.",
            f"Your writing style should be {style}.",
            "Write only the post itself, with no preamble or explanation.",
        ]
        if platform == "twitter":
            lines.append(
                f"CRITICAL: the whole post including URL and hashtags must be under "
                f"{TWITTER_MAX_CHARS} characters."
            )
        if not settings.include_hashtags:
            lines.append("Do not use hashtags.")
        return "\n".join(lines)

    @staticmethod
    def user_prompt(candidate: TrendCandidate, settings: AgentSettings) -> str:
        parts = [f"Write a post about: {candidate.title or candidate.topic}"]
        summary = candidate.metadata.get("description")
        if summary:
            parts.append(f"Summary: {summary}")
        if candidate.url:
            parts.append(f"URL: {candidate.url}")
        if candidate.sources:
            parts.append(f"Sources: {', '.join(candidate.sources)}")
        if settings.keywords:
            parts.append(f"Work in these keywords where natural: {', '.join(settings.keywords)}")
        return "\n".join(parts)

    # ------------------------------------------------------------------
    # Post-processing
    # ------------------------------------------------------------------

    @staticmethod
    def finalize(text: str, platform: str, settings: AgentSettings) -> str:
        text = text.strip()
        if not settings.include_hashtags:
            text = _HASHTAG.sub("", text).strip()
        if platform == "twitter" and len(text) > TWITTER_MAX_CHARS:
            text = text[: TWITTER_MAX_CHARS - 3].rstrip() + "..."
        return text

    def render_template(self, candidate: TrendCandidate, platform: str) -> str:
        template = TEMPLATES.get(platform, TEMPLATES["linkedin"])
        return template.format(
            title=candidate.title or candidate.topic,
            summary=candidate.metadata.get("description") or candidate.topic,
            url=candidate.url or "",
        )

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def generate(
        self,
        candidate: TrendCandidate,
        settings: AgentSettings,
        platform: str,
    ) -> GeneratedContent:
        """Generate post text for *candidate* on *platform*.

        Raises:
            ContentGenerationError: When the model call fails after retries
                or returns nothing.
        """
        platform = platform.lower()
        logger.info("[CONTENT] Generating %s post for '%s'", platform, candidate.topic[:60])

        if self.claude is None:
            raw = self.render_template(candidate, platform)
        else:
            try:
                raw = await self.claude.generate(
                    self.user_prompt(candidate, settings),
                    system=self.system_prompt(platform, settings),
                    max_tokens=self.max_tokens,
                )
            except RetryExhaustedError as exc:
                raise ContentGenerationError(
                    f"LLM call failed after {exc.attempts} attempts: {exc.last_error}"
                ) from exc
            except anthropic.APIStatusError as exc:
                raise ContentGenerationError(f"LLM request rejected: {exc}") from exc

        text = self.finalize(raw or "", platform, settings)
        if not text:
            raise ContentGenerationError(f"empty {platform} post for '{candidate.topic}'")

        image_url = candidate.metadata.get("image_url")
        return GeneratedContent(text=text, image_url=image_url)


__all__ = [
    "ContentGenerator",
    "TWITTER_MAX_CHARS",
]
