import asyncio
import json

import httpx
import pytest

from specloop.config import NotifierConfig
from specloop.notifier import (
    DISCORD_MESSAGE_MAX_LENGTH,
    DiscordWebhookNotifier,
    NullNotifier,
    build_notifier,
)

WEBHOOK_URL = "https://discord.example/api/webhooks/1/token"


def test_webhook_post_returns_message_id() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"id": "1234567890"})

    notifier = DiscordWebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    message_id = asyncio.run(notifier.post("completed: Task one"))

    assert message_id == "1234567890"
    (request,) = seen
    assert request.method == "POST"
    assert request.url.params["wait"] == "true"
    assert json.loads(request.content) == {"content": "completed: Task one"}


def test_webhook_post_truncates_long_messages() -> None:
    bodies: list[dict] = []

    def handler(request: httpx.Request) -> httpx.Response:
        bodies.append(json.loads(request.content))
        return httpx.Response(200, json={"id": "1"})

    notifier = DiscordWebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    asyncio.run(notifier.post("x" * 5000))

    assert len(bodies[0]["content"]) == DISCORD_MESSAGE_MAX_LENGTH


def test_webhook_http_error_returns_none() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(429, json={"retry_after": 1}))
    notifier = DiscordWebhookNotifier(WEBHOOK_URL, transport=transport)

    assert asyncio.run(notifier.post("heartbeat")) is None


def test_webhook_transport_failure_never_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    notifier = DiscordWebhookNotifier(WEBHOOK_URL, transport=httpx.MockTransport(handler))

    assert asyncio.run(notifier.post("heartbeat")) is None


def test_webhook_non_json_body_returns_none() -> None:
    transport = httpx.MockTransport(lambda request: httpx.Response(204))
    notifier = DiscordWebhookNotifier(WEBHOOK_URL, transport=transport)

    assert asyncio.run(notifier.post("heartbeat")) is None


def test_build_notifier_falls_back_to_null(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SPECLOOP_WEBHOOK_URL", raising=False)

    notifier = build_notifier(NotifierConfig())

    assert isinstance(notifier, NullNotifier)
    assert asyncio.run(notifier.post("anything")) is None


def test_build_notifier_reads_url_from_environment(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("SPECLOOP_WEBHOOK_URL", WEBHOOK_URL)

    notifier = build_notifier(NotifierConfig(timeout_seconds=3.0))

    assert isinstance(notifier, DiscordWebhookNotifier)
    assert notifier.webhook_url == WEBHOOK_URL
    assert notifier.timeout_seconds == 3.0
