"""Best-effort status notifications.

Posting never raises; a failed post returns ``None`` and the loop moves on.
"""

from __future__ import annotations

import logging
import os
from typing import Protocol

import httpx

from specloop.config import NotifierConfig

logger = logging.getLogger(__name__)

DISCORD_MESSAGE_MAX_LENGTH = 2000


class Notifier(Protocol):
    async def post(self, text: str) -> str | None: ...


class NullNotifier:
    async def post(self, text: str) -> str | None:
        logger.debug("notification (not sent): %s", text)
        return None


class DiscordWebhookNotifier:
    def __init__(
        self,
        webhook_url: str,
        *,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.webhook_url = webhook_url
        self.timeout_seconds = timeout_seconds
        self.transport = transport

    async def post(self, text: str) -> str | None:
        content = text[:DISCORD_MESSAGE_MAX_LENGTH]
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout_seconds, transport=self.transport
            ) as client:
                response = await client.post(
                    self.webhook_url,
                    params={"wait": "true"},
                    json={"content": content},
                )
            if response.status_code >= 400:
                logger.debug("Webhook post failed (HTTP %s)", response.status_code)
                return None
            payload = response.json()
        except Exception:
            logger.debug("Webhook post failed", exc_info=True)
            return None
        if not isinstance(payload, dict) or payload.get("id") is None:
            return None
        return str(payload["id"])


def build_notifier(config: NotifierConfig) -> Notifier:
    url = config.webhook_url or os.environ.get(config.webhook_url_env, "")
    if not url:
        return NullNotifier()
    return DiscordWebhookNotifier(url, timeout_seconds=float(config.timeout_seconds))
