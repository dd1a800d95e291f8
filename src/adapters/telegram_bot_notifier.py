"""Telegram Bot API notification adapter.

Renders an enriched message and posts it to one chat through the Bot API.
Every failure is reported on the error channel; ``send`` itself never raises,
because deliveries run as independent fire-and-forget tasks.
"""

from __future__ import annotations

import asyncio
import json
import logging
from datetime import datetime
from typing import Callable, Optional

import aiohttp

from adapters.notification_formatting import format_message
from core.config import FormatOptions
from core.errors import ConfigurationError, DeliveryError, ErrorChannel, RelayError, SerializationError
from core.masking import mask_token
from core.models import EnrichedMessage

LOGGER = logging.getLogger(__name__)

BOT_API_BASE = "https://api.telegram.org"
DEFAULT_REQUEST_TIMEOUT = 10.0


class TelegramBotNotifier:
    """Notifier adapter that sends messages via the Telegram Bot API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        errors: ErrorChannel,
        api_base: str = BOT_API_BASE,
        request_timeout: float = DEFAULT_REQUEST_TIMEOUT,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._session = session
        self._errors = errors
        self._api_base = api_base.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)
        self._clock = clock or datetime.now

    def endpoint(self, token: str) -> str:
        # The Bot API endpoint is deterministic and derived from the token.
        return f"{self._api_base}/bot{token}/sendMessage"

    async def send(
        self,
        message: EnrichedMessage,
        token: str,
        chat_id: str,
        options: FormatOptions,
    ) -> None:
        """Send the formatted message to ``chat_id``; report any failure."""

        try:
            await self.deliver(message, token, chat_id, options)
        except RelayError as exc:
            self._errors.report(exc)

    async def deliver(
        self,
        message: EnrichedMessage,
        token: str,
        chat_id: str,
        options: FormatOptions,
    ) -> None:
        """Like ``send`` but raises instead of reporting."""

        if not token:
            raise ConfigurationError("telegram bot token is empty")
        if not chat_id:
            raise ConfigurationError("telegram chat ID is empty")

        LOGGER.debug(
            "Preparing message for chat %s (app_id=%s, app_name=%s)",
            chat_id,
            message.app_id,
            message.app_name,
        )
        text = format_message(message, options, now=self._clock())
        payload = {
            "chat_id": chat_id,
            "text": text,
            "parse_mode": options.parse_mode,
        }
        try:
            body = json.dumps(payload, ensure_ascii=False)
        except (TypeError, ValueError) as exc:
            raise SerializationError(f"failed to marshal payload: {exc}") from exc

        endpoint = self.endpoint(token)
        LOGGER.debug("Sending request to %s", endpoint.replace(token, mask_token(token), 1))
        await self._post(endpoint, body)
        LOGGER.info("Message %s delivered to chat %s", message.event.id, chat_id)

    async def _post(self, endpoint: str, body: str) -> None:
        try:
            async with self._session.post(
                endpoint,
                data=body.encode("utf-8"),
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            ) as resp:
                response_body = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise DeliveryError(f"failed to execute request: {exc!r}") from exc

        if status != 200:
            raise DeliveryError(
                f"telegram API error (status {status}): {response_body}",
                status=status,
                body=response_body,
            )
        LOGGER.debug("Received response from Telegram API: %s", response_body)
