"""
Publishers: deliver generated text to a destination platform.

Every publisher exposes one coroutine::

    publish(text, media_url=None, options=None) -> PublishResult

Failures the platform reports come back as ``PublishResult(success=False,
error=...)``; the cycle runner also treats a raised exception or a
timeout as a publish failure.

- ``MockPublisher``: records posts in memory (dry runs, tests).
- ``TelegramPublisher``: Telegram Bot API ``sendMessage``/``sendPhoto``.
- ``PublisherRegistry``: platform -> publisher lookup for the runner.
"""

import logging
import os
import time
from typing import Any, Dict, List, Optional

import httpx

from trendpilot.exceptions import PublishError
from trendpilot.models import PublishResult

logger = logging.getLogger(__name__)


class Publisher:
    """Base class; subclasses set ``platform`` and implement ``publish``."""

    platform: str = ""

    async def publish(
        self,
        text: str,
        media_url: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> PublishResult:
        raise NotImplementedError


# =============================================================================
# MOCK
# =============================================================================


class MockPublisher(Publisher):
    """Pretends to publish and remembers what it was given.

    Args:
        platform: Platform reported in results.
        fail_with: When set, every publish fails with this error.
    """

    def __init__(self, platform: str = "mock", fail_with: Optional[str] = None) -> None:
        self.platform = platform
        self.fail_with = fail_with
        self.published: List[Dict[str, Any]] = []

    async def publish(
        self,
        text: str,
        media_url: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> PublishResult:
        if self.fail_with:
            logger.info("[PUBLISH] Mock %s failure: %s", self.platform, self.fail_with)
            return PublishResult(success=False, platform=self.platform, error=self.fail_with)

        post_id = f"mock_{int(time.time() * 1000)}"
        self.published.append({
            "post_id": post_id,
            "text": text,
            "media_url": media_url,
            "options": dict(options or {}),
        })
        logger.info("[PUBLISH] Mock %s post %s (%d chars)", self.platform, post_id, len(text))
        return PublishResult(
            success=True,
            platform=self.platform,
            post_id=post_id,
            url=f"https://example.com/mock/{self.platform}",
        )


# =============================================================================
# TELEGRAM
# =============================================================================


class TelegramPublisher(Publisher):
    """Posts to a Telegram channel through the Bot API.

    Args:
        bot_token: Bot token. Falls back to ``TELEGRAM_BOT_TOKEN``.
        default_chat_id: Chat used when the agent's options carry no
            ``chat_id``. Falls back to ``TELEGRAM_CHAT_ID``.
        timeout: HTTP timeout in seconds.
        transport: Optional httpx transport (tests).
    """

    BASE_URL: str = "https://api.telegram.org"
    CAPTION_LIMIT: int = 1024
    IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png", ".gif", ".webp")

    platform = "telegram"

    def __init__(
        self,
        bot_token: Optional[str] = None,
        default_chat_id: Optional[str] = None,
        timeout: float = 30.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.bot_token: str = bot_token or os.environ.get("TELEGRAM_BOT_TOKEN", "")
        self.default_chat_id: str = default_chat_id or os.environ.get("TELEGRAM_CHAT_ID", "")
        self.timeout = timeout
        self._transport = transport

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _url(self, method: str) -> str:
        return f"{self.BASE_URL}/bot{self.bot_token}/{method}"

    @classmethod
    def _is_image(cls, url: str) -> bool:
        return url.lower().split("?")[0].endswith(cls.IMAGE_EXTENSIONS)

    @staticmethod
    def message_url(chat: Dict[str, Any], message_id: int) -> Optional[str]:
        username = chat.get("username")
        if username:
            return f"https://t.me/{username}/{message_id}"
        return None

    async def _call(self, method: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            response = await client.post(self._url(method), json=payload)
        data = response.json()
        if not data.get("ok"):
            raise PublishError(
                self.platform,
                data.get("description") or f"Telegram API error ({response.status_code})",
            )
        return data["result"]

    # ------------------------------------------------------------------
    # Publish
    # ------------------------------------------------------------------

    async def publish(
        self,
        text: str,
        media_url: Optional[str] = None,
        options: Optional[Dict[str, Any]] = None,
    ) -> PublishResult:
        options = options or {}
        chat_id = options.get("chat_id") or self.default_chat_id

        if not self.bot_token:
            return PublishResult(False, self.platform, error="Telegram bot token not configured")
        if not chat_id:
            return PublishResult(False, self.platform, error="Telegram chat ID not configured")

        try:
            if media_url and self._is_image(media_url):
                caption = text
                if len(caption) > self.CAPTION_LIMIT:
                    caption = caption[: self.CAPTION_LIMIT - 4] + "..."
                result = await self._call("sendPhoto", {
                    "chat_id": chat_id,
                    "photo": media_url,
                    "caption": caption,
                    "parse_mode": "HTML",
                })
            else:
                result = await self._call("sendMessage", {
                    "chat_id": chat_id,
                    "text": text,
                    "parse_mode": "HTML",
                    "disable_web_page_preview": False,
                })
        except PublishError as exc:
            logger.error("[PUBLISH] Telegram publish to %s rejected: %s", chat_id, exc.reason)
            return PublishResult(False, self.platform, error=exc.reason)
        except (httpx.HTTPError, ValueError) as exc:
            logger.error("[PUBLISH] Telegram publish to %s failed: %s", chat_id, exc)
            return PublishResult(False, self.platform, error=str(exc))

        message_id = result["message_id"]
        logger.info("[PUBLISH] Telegram message %s sent to %s", message_id, chat_id)
        return PublishResult(
            success=True,
            platform=self.platform,
            post_id=str(message_id),
            url=self.message_url(result.get("chat") or {}, message_id),
        )


# =============================================================================
# REGISTRY
# =============================================================================


class PublisherRegistry:
    """Maps platform names to publishers.

    Args:
        default: Publisher returned for platforms with no explicit entry.
    """

    def __init__(self, default: Optional[Publisher] = None) -> None:
        self._publishers: Dict[str, Publisher] = {}
        self.default = default

    def register(self, platform: str, publisher: Publisher) -> None:
        self._publishers[platform.lower()] = publisher

    def get(self, platform: str) -> Optional[Publisher]:
        return self._publishers.get(platform.lower(), self.default)

    @property
    def platforms(self) -> List[str]:
        return sorted(self._publishers)


__all__ = [
    "Publisher",
    "MockPublisher",
    "TelegramPublisher",
    "PublisherRegistry",
]
