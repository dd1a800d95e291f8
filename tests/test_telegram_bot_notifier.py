from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from typing import Any, Optional

import aiohttp
import pytest

from adapters.telegram_bot_notifier import TelegramBotNotifier
from core.config import FormatOptions
from core.errors import ConfigurationError, DeliveryError, ErrorChannel
from core.models import EnrichedMessage, Event

TOKEN = "123456:ABCDEFGHIJKLMNOP"


class FakeResponse:
    def __init__(self, status: int, body: str) -> None:
        self.status = status
        self._body = body

    async def text(self) -> str:
        return self._body

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        return None


class FakeSession:
    def __init__(self, status: int = 200, body: str = '{"ok":true}', error: Optional[Exception] = None) -> None:
        self.status = status
        self.body = body
        self.error = error
        self.requests: list[dict[str, Any]] = []

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requests.append({"url": url, **kwargs})
        if self.error is not None:
            raise self.error
        return FakeResponse(self.status, self.body)


def _message() -> EnrichedMessage:
    event = Event(
        id=10,
        app_id=1,
        title="Disk_full",
        message="Only 5% left.",
        priority=8,
        date=datetime(2024, 1, 1, tzinfo=timezone.utc),
    )
    return EnrichedMessage(event=event, app_name="Backups", app_description="nightly")


OPTIONS = FormatOptions(include_app_name=True, include_priority=True)


def test_deliver_posts_markdown_payload() -> None:
    session = FakeSession()
    notifier = TelegramBotNotifier(session, ErrorChannel())

    asyncio.run(notifier.deliver(_message(), TOKEN, "-100123", OPTIONS))

    request = session.requests[0]
    assert request["url"] == f"https://api.telegram.org/bot{TOKEN}/sendMessage"
    assert request["headers"] == {"Content-Type": "application/json"}
    payload = json.loads(request["data"].decode("utf-8"))
    assert payload == {
        "chat_id": "-100123",
        "text": "*\\[Backups\\] Disk\\_full*\n\nOnly 5% left\\.\n\n🔴 Critical Priority",
        "parse_mode": "MarkdownV2",
    }


def test_custom_api_base() -> None:
    notifier = TelegramBotNotifier(FakeSession(), ErrorChannel(), api_base="http://bot-api.local/")
    assert notifier.endpoint("abc") == "http://bot-api.local/botabc/sendMessage"


def test_non_200_raises_delivery_error_with_status_and_body() -> None:
    body = '{"ok":false,"error_code":400,"description":"Bad Request: chat not found"}'
    notifier = TelegramBotNotifier(FakeSession(status=400, body=body), ErrorChannel())

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(notifier.deliver(_message(), TOKEN, "42", OPTIONS))

    assert exc_info.value.status == 400
    assert exc_info.value.body == body
    assert "status 400" in str(exc_info.value)


def test_transport_error_raises_delivery_error() -> None:
    session = FakeSession(error=aiohttp.ClientConnectionError("connection reset"))
    notifier = TelegramBotNotifier(session, ErrorChannel())

    with pytest.raises(DeliveryError) as exc_info:
        asyncio.run(notifier.deliver(_message(), TOKEN, "42", OPTIONS))

    assert exc_info.value.status is None


@pytest.mark.parametrize(("token", "chat_id"), [("", "42"), (TOKEN, "")])
def test_missing_token_or_chat_fails_without_request(token: str, chat_id: str) -> None:
    session = FakeSession()
    notifier = TelegramBotNotifier(session, ErrorChannel())

    with pytest.raises(ConfigurationError):
        asyncio.run(notifier.deliver(_message(), token, chat_id, OPTIONS))
    assert session.requests == []


def test_send_reports_failures_instead_of_raising() -> None:
    errors = ErrorChannel()
    notifier = TelegramBotNotifier(FakeSession(status=429, body="Too Many Requests"), errors)

    async def scenario() -> list[BaseException]:
        await notifier.send(_message(), TOKEN, "42", OPTIONS)
        return errors.drain()

    reported = asyncio.run(scenario())
    assert len(reported) == 1
    assert isinstance(reported[0], DeliveryError)
    assert reported[0].status == 429


def test_timestamp_uses_injected_clock() -> None:
    session = FakeSession()
    clock = lambda: datetime(2024, 5, 1, 12, 30, tzinfo=timezone.utc)
    notifier = TelegramBotNotifier(session, ErrorChannel(), clock=clock)

    asyncio.run(notifier.deliver(_message(), TOKEN, "42", FormatOptions(include_timestamp=True)))

    text = json.loads(session.requests[0]["data"])["text"]
    assert text.splitlines()[-1].startswith("timestamp: 2024")
