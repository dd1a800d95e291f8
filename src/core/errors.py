"""Error kinds raised by the relay and the channel used to report them.

Delivery runs in fire-and-forget tasks, so most failures cannot be returned to
the caller. They are pushed onto an ErrorChannel instead and the dispatcher
drains and logs them. The channel is unordered and best effort: it is a
notification stream, not a result type.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_CHANNEL_SIZE = 100


class RelayError(Exception):
    """Base class for every error the relay produces on purpose."""


class SourceConnectionError(RelayError):
    """Dial, handshake, HTTP or unexpected-close failure against the source server."""


class ApplicationNotFoundError(RelayError, LookupError):
    """The source server does not know the requested application id."""

    def __init__(self, app_id: int) -> None:
        super().__init__(f"application with id {app_id} not found")
        self.app_id = app_id


class ConfigurationError(RelayError, ValueError):
    """A required setting is missing or invalid."""


class SerializationError(RelayError):
    """Malformed JSON on the way in, or a payload that cannot be encoded."""


class DeliveryError(RelayError):
    """The bot API rejected the message or could not be reached."""

    def __init__(self, message: str, status: Optional[int] = None, body: str = "") -> None:
        super().__init__(message)
        self.status = status
        self.body = body


class ErrorChannel:
    """Bounded, non-blocking error stream consumed by the dispatcher."""

    def __init__(self, maxsize: int = DEFAULT_CHANNEL_SIZE) -> None:
        self._queue: asyncio.Queue[BaseException] = asyncio.Queue(maxsize=maxsize)

    def report(self, error: BaseException) -> None:
        try:
            self._queue.put_nowait(error)
        except asyncio.QueueFull:
            LOGGER.warning("Error channel full, dropping error: %s", error)

    async def get(self) -> BaseException:
        return await self._queue.get()

    def drain(self) -> list[BaseException]:
        """Return and remove every error currently queued."""

        errors: list[BaseException] = []
        while True:
            try:
                errors.append(self._queue.get_nowait())
            except asyncio.QueueEmpty:
                return errors

    def qsize(self) -> int:
        return self._queue.qsize()
