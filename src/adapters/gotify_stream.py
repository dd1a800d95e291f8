"""Gotify websocket stream adapter.

Owns the single persistent connection to the Gotify server and feeds decoded
events into the dispatcher queue. The connection moves through

    DISCONNECTED -> CONNECTING -> CONNECTED -> DISCONNECTED -> CONNECTING ...

until ``close()`` is called (state CLOSED) or the task running ``run()`` is
cancelled. A failed dial waits ``retry_delay`` seconds before the next
attempt; a session that ends after connecting is redialed straight away.
Connection errors never escape ``run()``.
"""

from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Awaitable, Callable, Optional
from urllib.parse import quote

import aiohttp

from adapters.gotify_api import stream_url
from core.config import ServerConfig
from core.errors import ConfigurationError, ErrorChannel, RelayError, SerializationError, SourceConnectionError
from core.models import Event

LOGGER = logging.getLogger(__name__)

DEFAULT_RETRY_DELAY = 5.0
DEFAULT_READ_TIMEOUT = 60.0
CLOSE_TIMEOUT = 2.0
NORMAL_CLOSE_CODES = (aiohttp.WSCloseCode.OK, aiohttp.WSCloseCode.GOING_AWAY)

WebSocketConnector = Callable[[str], Awaitable[Any]]


class StreamState(enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    CLOSED = "closed"


class GotifyStream:
    """Resilient websocket client for the Gotify ``/stream`` endpoint."""

    def __init__(
        self,
        server: ServerConfig,
        events: "asyncio.Queue[Event]",
        errors: ErrorChannel,
        session: Optional[aiohttp.ClientSession] = None,
        connect: Optional[WebSocketConnector] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
        read_timeout: float = DEFAULT_READ_TIMEOUT,
    ) -> None:
        self._url = stream_url(server.url)
        self._token = server.client_token
        self._handshake_timeout = server.handshake_timeout
        self._events = events
        self._errors = errors
        self._session = session
        self._connect_ws = connect or self._dial
        self._retry_delay = retry_delay
        self._read_timeout = read_timeout

        # Guards _ws and _state; close() may run in another task than run().
        self._lock = asyncio.Lock()
        self._ws: Any = None
        self._state = StreamState.DISCONNECTED
        self._closed = asyncio.Event()
        self.attempts = 0

    @property
    def state(self) -> StreamState:
        return self._state

    @property
    def connected(self) -> bool:
        return self._state is StreamState.CONNECTED

    def _set_state(self, state: StreamState) -> None:
        if state is not self._state:
            LOGGER.debug("Stream state %s -> %s", self._state.value, state.value)
        self._state = state

    async def _dial(self, url: str) -> Any:
        if self._session is None:
            raise ConfigurationError("no HTTP session available for the websocket dial")
        # Pings are answered in the read loop so they also reset the read deadline.
        return await self._session.ws_connect(url, autoping=False)

    async def run(self) -> None:
        """Keep a session open until closed or cancelled."""

        LOGGER.debug("Starting gotify stream client for %s", self._url)
        try:
            while not self._closed.is_set():
                try:
                    await self._connect()
                except RelayError as exc:
                    LOGGER.error("Failed to connect: %s", exc)
                    if await self._wait_closed(self._retry_delay):
                        break
                    continue

                try:
                    await self._read_messages()
                except SourceConnectionError as exc:
                    LOGGER.error("Error reading messages: %s", exc)
                finally:
                    await self._drop_connection()
        finally:
            await self._drop_connection()
            LOGGER.info("Gotify stream client stopped")

    async def _wait_closed(self, delay: float) -> bool:
        """Sleep for ``delay`` seconds; return True early if closed meanwhile."""

        try:
            await asyncio.wait_for(self._closed.wait(), timeout=delay)
        except asyncio.TimeoutError:
            return False
        return True

    async def _connect(self) -> None:
        async with self._lock:
            if self._state is StreamState.CONNECTED:
                LOGGER.debug("Already connected to gotify server")
                return
            if not self._token:
                raise ConfigurationError("gotify client token is not set")
            self._set_state(StreamState.CONNECTING)
            self.attempts += 1

        endpoint = f"{self._url}?token={quote(self._token, safe='')}"
        try:
            ws = await asyncio.wait_for(self._connect_ws(endpoint), timeout=self._handshake_timeout)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            await self._abort_connecting()
            raise SourceConnectionError(f"failed to connect to {self._url}: {exc!r}") from exc
        except RelayError:
            await self._abort_connecting()
            raise

        async with self._lock:
            if self._closed.is_set():
                await self._close_socket(ws)
                return
            self._ws = ws
            self._set_state(StreamState.CONNECTED)
        LOGGER.info("Connected to gotify server %s", self._url)

    async def _abort_connecting(self) -> None:
        async with self._lock:
            if self._state is StreamState.CONNECTING:
                self._set_state(StreamState.DISCONNECTED)

    async def _read_messages(self) -> None:
        ws = self._ws
        if ws is None:
            return
        while True:
            try:
                msg = await asyncio.wait_for(ws.receive(), timeout=self._read_timeout)
            except asyncio.TimeoutError as exc:
                raise SourceConnectionError(f"no frame received within {self._read_timeout}s") from exc

            if msg.type in (aiohttp.WSMsgType.TEXT, aiohttp.WSMsgType.BINARY):
                await self._process_frame(msg.data)
            elif msg.type == aiohttp.WSMsgType.PING:
                await ws.pong(msg.data)
            elif msg.type == aiohttp.WSMsgType.PONG:
                continue
            elif msg.type == aiohttp.WSMsgType.ERROR:
                raise SourceConnectionError(f"websocket error: {ws.exception()!r}")
            else:
                code = msg.data if msg.type == aiohttp.WSMsgType.CLOSE else getattr(ws, "close_code", None)
                if self._closed.is_set() or code in NORMAL_CLOSE_CODES:
                    LOGGER.info("Gotify stream closed (code=%s)", code)
                    return
                raise SourceConnectionError(f"websocket closed unexpectedly (code={code})")

    async def _process_frame(self, data: Any) -> None:
        try:
            event = Event.from_json(data)
        except SerializationError as exc:
            self._errors.report(exc)
            return
        # Blocks when the dispatcher falls behind, pushing back on the socket.
        await self._events.put(event)
        LOGGER.debug("Queued event %s from app %s", event.id, event.app_id)

    async def _drop_connection(self) -> None:
        async with self._lock:
            ws, self._ws = self._ws, None
            if self._state is not StreamState.CLOSED:
                self._set_state(StreamState.DISCONNECTED)
        if ws is not None:
            await self._close_socket(ws)

    @staticmethod
    async def _close_socket(ws: Any) -> None:
        if getattr(ws, "closed", False):
            return
        try:
            await asyncio.wait_for(ws.close(code=aiohttp.WSCloseCode.OK), timeout=CLOSE_TIMEOUT)
        except (aiohttp.ClientError, asyncio.TimeoutError, OSError) as exc:
            LOGGER.warning("Error sending close message: %s", exc)

    async def close(self) -> None:
        """Send a close frame, close the socket and stop ``run()``. Idempotent."""

        self._closed.set()
        async with self._lock:
            ws, self._ws = self._ws, None
            self._set_state(StreamState.CLOSED)
        if ws is not None:
            await self._close_socket(ws)
            LOGGER.debug("Websocket connection closed")
