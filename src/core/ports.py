"""Ports (interfaces) used by the core pipeline.

Ports define the minimal contracts for the source server and the delivery
adapters so that the core can be exercised with fakes and reused with other
backends.
"""

from __future__ import annotations

from typing import Protocol

from core.config import FormatOptions
from core.models import ApplicationInfo, EnrichedMessage


class ApplicationSource(Protocol):
    """Lists the applications known to the source server."""

    async def list_applications(self) -> list[ApplicationInfo]:
        ...


class ApplicationResolver(Protocol):
    """Resolves one application id to its metadata."""

    async def resolve(self, app_id: int) -> ApplicationInfo:
        ...


class NotifierPort(Protocol):
    """Delivers one rendered message to one chat.

    Implementations report failures on the error channel instead of raising.
    """

    async def send(
        self,
        message: EnrichedMessage,
        token: str,
        chat_id: str,
        options: FormatOptions,
    ) -> None:
        ...
