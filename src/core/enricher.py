"""Event enrichment (core domain)."""

from __future__ import annotations

import logging

from core.models import EnrichedMessage, Event
from core.ports import ApplicationResolver

LOGGER = logging.getLogger(__name__)


class Enricher:
    """Joins raw events with the metadata of their application."""

    def __init__(self, resolver: ApplicationResolver) -> None:
        self._resolver = resolver

    async def enrich(self, event: Event) -> EnrichedMessage:
        """Return the enriched message or raise the resolver's error.

        Lookup failures propagate so the caller can drop the event; nothing
        is forwarded half-enriched.
        """

        app = await self._resolver.resolve(event.app_id)
        LOGGER.debug("Enriched event %s with app %s (%s)", event.id, app.app_id, app.name)
        return EnrichedMessage(
            event=event,
            app_name=app.name,
            app_description=app.description,
        )
