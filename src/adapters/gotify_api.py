"""Gotify REST adapter.

Implements the core ApplicationSource port on top of a shared
aiohttp.ClientSession.
"""

from __future__ import annotations

import asyncio
import json
import logging
from urllib.parse import urlsplit

import aiohttp

from core.errors import ConfigurationError, SerializationError, SourceConnectionError
from core.masking import mask_token
from core.models import ApplicationInfo

LOGGER = logging.getLogger(__name__)


def base_url(server_url: str) -> str:
    """Normalize the configured server URL to ``scheme://host[/path]``."""

    parts = urlsplit(server_url)
    if parts.scheme not in ("http", "https") or not parts.netloc:
        raise ConfigurationError(f"invalid gotify url: {server_url!r}")
    return f"{parts.scheme}://{parts.netloc}{parts.path.rstrip('/')}"


def stream_url(server_url: str) -> str:
    """Return the websocket endpoint matching the server's scheme."""

    parts = urlsplit(base_url(server_url))
    protocol = "wss" if parts.scheme == "https" else "ws"
    return f"{protocol}://{parts.netloc}{parts.path}/stream"


class GotifyClient:
    """Thin wrapper around the Gotify REST API."""

    def __init__(
        self,
        session: aiohttp.ClientSession,
        server_url: str,
        client_token: str,
        request_timeout: float = 10.0,
    ) -> None:
        self._session = session
        self._base_url = base_url(server_url)
        self._client_token = client_token
        self._timeout = aiohttp.ClientTimeout(total=request_timeout)

    async def list_applications(self) -> list[ApplicationInfo]:
        """Fetch every application visible to the client token."""

        if not self._client_token:
            raise ConfigurationError("gotify client token is not set")

        endpoint = f"{self._base_url}/application"
        LOGGER.debug("Requesting %s (token=%s)", endpoint, mask_token(self._client_token))
        try:
            async with self._session.get(
                endpoint,
                params={"token": self._client_token},
                headers={"Content-Type": "application/json"},
                timeout=self._timeout,
            ) as resp:
                body = await resp.text()
                if resp.status != 200:
                    raise SourceConnectionError(
                        f"gotify API error (status {resp.status}): {body}"
                    )
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise SourceConnectionError(f"failed to fetch applications: {exc}") from exc

        try:
            payload = json.loads(body)
        except ValueError as exc:
            raise SerializationError(f"invalid application list: {exc}") from exc

        if not isinstance(payload, list):
            raise SerializationError("application list is not a JSON array")
        return [ApplicationInfo.from_payload(item) for item in payload]
