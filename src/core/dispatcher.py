"""Core dispatch loop.

This module is integration-agnostic. It reads raw events from a queue,
enriches and routes them, and fans delivery out to one task per destination
chat. Errors reported by any stage arrive on the error channel and are
logged; none of them stops the loop.
"""

from __future__ import annotations

import asyncio
import logging

from core.config import ConfigStore
from core.enricher import Enricher
from core.errors import ConfigurationError, DeliveryError, ErrorChannel, RelayError
from core.masking import mask_token
from core.models import Event
from core.ports import NotifierPort
from core.router import effective_format_options, select_target

LOGGER = logging.getLogger(__name__)


class Dispatcher:
    """Orchestrates enrichment, routing and delivery for streamed events."""

    def __init__(
        self,
        events: "asyncio.Queue[Event]",
        errors: ErrorChannel,
        enricher: Enricher,
        notifier: NotifierPort,
        config: ConfigStore,
    ) -> None:
        self._events = events
        self._errors = errors
        self._enricher = enricher
        self._notifier = notifier
        self._config = config
        self._deliveries: set[asyncio.Task] = set()

    @property
    def pending_deliveries(self) -> int:
        return len(self._deliveries)

    async def run(self) -> None:
        """Consume events and errors until cancelled."""

        LOGGER.info("Dispatcher started")
        consumers = [
            asyncio.create_task(self._consume_events()),
            asyncio.create_task(self._consume_errors()),
        ]
        try:
            await asyncio.gather(*consumers)
        finally:
            outstanding = consumers + list(self._deliveries)
            for task in outstanding:
                task.cancel()
            await asyncio.gather(*outstanding, return_exceptions=True)
            self._deliveries.clear()
            LOGGER.info("Dispatcher stopped")

    async def _consume_events(self) -> None:
        while True:
            event = await self._events.get()
            try:
                await self.handle(event)
            except Exception:
                LOGGER.exception("Error while processing event %s", event.id)

    async def _consume_errors(self) -> None:
        while True:
            error = await self._errors.get()
            self._log_error(error)

    @staticmethod
    def _log_error(error: BaseException) -> None:
        if isinstance(error, DeliveryError) and error.status is not None:
            LOGGER.error("Error received: %s (status=%s)", error, error.status)
            return
        LOGGER.error("Error received: %s", error)

    async def handle(self, event: Event) -> list[asyncio.Task]:
        """Enrich and route one event and start its deliveries.

        Returns the delivery tasks that were started; the loop itself never
        waits for them.
        """

        try:
            message = await self._enricher.enrich(event)
        except RelayError as exc:
            LOGGER.warning("Dropping event %s from app %s", event.id, event.app_id)
            self._errors.report(exc)
            return []

        # One snapshot per message so a reconfiguration never splits it.
        config = self._config.current
        telegram = config.telegram
        default = telegram.default_target
        target = select_target(message.app_id, telegram.bots, default)
        if target is default:
            LOGGER.warning("No rule found for app_id %s. Using default config", message.app_id)
        options = effective_format_options(target, telegram.format_options)

        LOGGER.debug(
            "Routing app %s (%s) to %s: token=%s chat_ids=%s",
            message.app_id,
            message.app_name,
            target.name,
            mask_token(target.token),
            ",".join(target.chat_ids),
        )

        if not target.chat_ids:
            self._errors.report(ConfigurationError(f"no chat ids configured for target {target.name}"))
            return []

        started: list[asyncio.Task] = []
        for chat_id in target.chat_ids:
            task = asyncio.create_task(self._notifier.send(message, target.token, chat_id, options))
            self._deliveries.add(task)
            task.add_done_callback(self._deliveries.discard)
            started.append(task)
        return started
