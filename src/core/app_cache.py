"""Application metadata cache.

Entries live for ``ttl`` seconds. Expiry is checked lazily on every read by
cachetools.TTLCache; a background sweeper calls ``prune`` every
``sweep_interval`` seconds to reclaim memory held by entries nobody reads.

A miss fetches the full application list from the source server once and
caches every application in it. Misses fail fast: an unknown id raises
ApplicationNotFoundError and nothing is retried here.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Callable

from cachetools import TTLCache  # type: ignore[import-untyped]

from core.errors import ApplicationNotFoundError
from core.models import ApplicationInfo
from core.ports import ApplicationSource

LOGGER = logging.getLogger(__name__)

DEFAULT_TTL = 60 * 60
DEFAULT_SWEEP_INTERVAL = 2 * DEFAULT_TTL
DEFAULT_MAXSIZE = 1024


class ApplicationCache:
    """Async-safe, TTL-bounded map from application id to ApplicationInfo."""

    def __init__(
        self,
        source: ApplicationSource,
        ttl: float = DEFAULT_TTL,
        sweep_interval: float = DEFAULT_SWEEP_INTERVAL,
        maxsize: int = DEFAULT_MAXSIZE,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self._source = source
        self._sweep_interval = sweep_interval
        self._entries: TTLCache = TTLCache(maxsize=maxsize, ttl=ttl, timer=timer)
        # Serializes misses so concurrent lookups share a single fetch.
        self._fetch_lock = asyncio.Lock()

    def get(self, app_id: int) -> ApplicationInfo | None:
        return self._entries.get(app_id)

    def put(self, app: ApplicationInfo) -> None:
        self._entries[app.app_id] = app

    async def resolve(self, app_id: int) -> ApplicationInfo:
        """Return metadata for ``app_id``, fetching from the source on a miss."""

        cached = self._entries.get(app_id)
        if cached is not None:
            return cached

        async with self._fetch_lock:
            cached = self._entries.get(app_id)
            if cached is not None:
                return cached

            LOGGER.debug("Application cache miss for app_id=%s, fetching list", app_id)
            applications = await self._source.list_applications()
            found: ApplicationInfo | None = None
            for app in applications:
                self.put(app)
                if app.app_id == app_id:
                    found = app

        if found is None:
            raise ApplicationNotFoundError(app_id)
        return found

    def prune(self) -> int:
        """Drop expired entries and return how many were removed."""

        return len(self._entries.expire())

    async def run_sweeper(self) -> None:
        """Prune periodically until cancelled."""

        while True:
            await asyncio.sleep(self._sweep_interval)
            removed = self.prune()
            if removed:
                LOGGER.debug("Application cache sweep removed %s entries", removed)

    def __len__(self) -> int:
        return len(self._entries)
