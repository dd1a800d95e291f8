"""Relay lifecycle.

RelayService wires the pipeline together and owns every task it starts:

    GotifyStream -> event queue -> Dispatcher -> Enricher (ApplicationCache)
                                              -> router -> TelegramBotNotifier

Those tasks are the relay's single cancellation scope. ``disable()`` closes
the stream gracefully, cancels and awaits the rest and closes the HTTP
session. ``configure()`` swaps the configuration snapshot and, when the relay
is running, restarts it so the stream follows the new server settings.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Optional

import aiohttp

from adapters.gotify_api import GotifyClient
from adapters.gotify_stream import DEFAULT_RETRY_DELAY, GotifyStream, WebSocketConnector
from adapters.telegram_bot_notifier import TelegramBotNotifier
from client import build_http_session
from core.app_cache import ApplicationCache
from core.config import ConfigStore, PluginConfig
from core.dispatcher import Dispatcher
from core.enricher import Enricher
from core.errors import DEFAULT_CHANNEL_SIZE, ErrorChannel
from core.models import Event
from settings import validate_config

LOGGER = logging.getLogger(__name__)

MESSAGE_QUEUE_SIZE = 100


class RelayService:
    """Starts, stops and reconfigures the relay pipeline."""

    def __init__(
        self,
        config: PluginConfig,
        session_factory: Callable[[], aiohttp.ClientSession] = build_http_session,
        ws_connect: Optional[WebSocketConnector] = None,
        retry_delay: float = DEFAULT_RETRY_DELAY,
    ) -> None:
        self._store = ConfigStore(config)
        self._session_factory = session_factory
        self._ws_connect = ws_connect
        self._retry_delay = retry_delay
        self._lock = asyncio.Lock()
        self._enabled = False
        self._session: Optional[aiohttp.ClientSession] = None
        self._stream: Optional[GotifyStream] = None
        self._tasks: list[asyncio.Task] = []
        self.cache: Optional[ApplicationCache] = None

    @property
    def enabled(self) -> bool:
        return self._enabled

    @property
    def config(self) -> PluginConfig:
        return self._store.current

    async def enable(self) -> None:
        async with self._lock:
            if self._enabled:
                return
            LOGGER.info("Enabling relay and starting services")
            self._start()
            self._enabled = True

    async def disable(self) -> None:
        async with self._lock:
            if not self._enabled:
                return
            LOGGER.info("Disabling relay")
            await self._stop()
            self._enabled = False

    async def configure(self, config: PluginConfig) -> None:
        """Validate and install ``config``; restart the pipeline if running."""

        validate_config(config)
        async with self._lock:
            self._store.replace(config)
            LOGGER.debug("Installed new configuration")
            if self._enabled:
                LOGGER.info("Relay is enabled, restarting services with the new config")
                await self._stop()
                self._start()

    def _start(self) -> None:
        config = self._store.current
        self._session = self._session_factory()
        events: asyncio.Queue[Event] = asyncio.Queue(maxsize=MESSAGE_QUEUE_SIZE)
        errors = ErrorChannel(maxsize=DEFAULT_CHANNEL_SIZE)

        api = GotifyClient(self._session, config.server.url, config.server.client_token)
        self.cache = ApplicationCache(api)
        notifier = TelegramBotNotifier(self._session, errors)
        dispatcher = Dispatcher(events, errors, Enricher(self.cache), notifier, self._store)
        self._stream = GotifyStream(
            config.server,
            events,
            errors,
            session=self._session,
            connect=self._ws_connect,
            retry_delay=self._retry_delay,
        )
        self._tasks = [
            asyncio.create_task(self._stream.run(), name="gotify-stream"),
            asyncio.create_task(dispatcher.run(), name="dispatcher"),
            asyncio.create_task(self.cache.run_sweeper(), name="cache-sweeper"),
        ]
        for task in self._tasks:
            task.add_done_callback(self._log_task_exit)

    async def _stop(self) -> None:
        if self._stream is not None:
            await self._stream.close()
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        self._stream = None
        if self._session is not None:
            await self._session.close()
            self._session = None
        LOGGER.info("Relay services stopped")

    async def wait(self) -> None:
        """Block until every running task has finished."""

        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)

    @staticmethod
    def _log_task_exit(task: "asyncio.Task[Any]") -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            LOGGER.error("Task %s failed", task.get_name(), exc_info=exc)
