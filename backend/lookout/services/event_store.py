"""Read access to normalized events stored in Elasticsearch.

Events are returned most recent first. A window bounded by a count is a
single ``search`` capped at ``event_window_max_size``. A window bounded only
by a start time (or not at all) is read completely by scrolling through it
``event_page_size`` hits at a time.
"""

import logging
from datetime import datetime
from typing import Any

from elasticsearch import ApiError, AsyncElasticsearch, TransportError
from elasticsearch.helpers import ScanError, async_scan
from pydantic import ValidationError

from lookout.config import get_settings
from lookout.database import get_elasticsearch
from lookout.exceptions import StoreUnavailableError
from lookout.schemas.events import NormalizedEvent

logger = logging.getLogger(__name__)
settings = get_settings()

TIMESTAMP_SORT = [{"@timestamp": "desc"}]


class EventStore:
    """Elasticsearch backed event window queries."""

    def __init__(self, es: AsyncElasticsearch, index_pattern: str | None = None):
        """Initialize event store.

        Args:
            es: Elasticsearch client
            index_pattern: Index pattern holding events
        """
        self.es = es
        self.index_pattern = index_pattern or settings.events_index_pattern
        self.max_size = settings.event_window_max_size
        self.page_size = settings.event_page_size

    async def fetch_recent_events(self, since: datetime) -> list[NormalizedEvent]:
        """All events with ``timestamp >= since``, most recent first."""
        return await self.list_events(since=since)

    async def fetch_sample_events(self, limit: int) -> list[NormalizedEvent]:
        """The ``limit`` most recent events, most recent first."""
        return await self.list_events(limit=limit)

    async def list_events(
        self,
        since: datetime | None = None,
        limit: int | None = None,
    ) -> list[NormalizedEvent]:
        """Query a window of events.

        Args:
            since: Inclusive lower bound on the event timestamp
            limit: Maximum number of events

        Returns:
            Events ordered by timestamp descending

        Raises:
            StoreUnavailableError: If Elasticsearch cannot be queried
        """
        if limit is not None and limit <= 0:
            return []

        query: dict[str, Any] = {"match_all": {}}
        if since is not None:
            query = {"range": {"@timestamp": {"gte": since.isoformat()}}}

        try:
            if limit is None:
                hits = await self._scroll(query)
            else:
                response = await self.es.search(
                    index=self.index_pattern,
                    query=query,
                    size=min(limit, self.max_size),
                    sort=TIMESTAMP_SORT,
                    ignore_unavailable=True,
                    allow_no_indices=True,
                )
                hits = response["hits"]["hits"]
        except (ApiError, TransportError, ScanError) as e:
            logger.error("Event query failed: %s", str(e))
            raise StoreUnavailableError("events", f"Event store query failed: {e}") from e

        events = []
        for hit in hits:
            try:
                events.append(NormalizedEvent.from_document({"_id": hit["_id"], **hit["_source"]}))
            except ValidationError as e:
                logger.warning("Skipping malformed event %s: %s", hit.get("_id"), e)
        return events

    async def _scroll(self, query: dict[str, Any]) -> list[dict[str, Any]]:
        hits = [
            hit
            async for hit in async_scan(
                self.es,
                query={"query": query, "sort": TIMESTAMP_SORT},
                preserve_order=True,
                size=self.page_size,
                index=self.index_pattern,
                ignore_unavailable=True,
                allow_no_indices=True,
            )
        ]
        logger.debug("Scrolled %d events from %s", len(hits), self.index_pattern)
        return hits


# Global event store instance
_event_store: EventStore | None = None


async def get_event_store() -> EventStore:
    """Get the event store instance."""
    global _event_store
    if _event_store is None:
        es = await get_elasticsearch()
        _event_store = EventStore(es)
    return _event_store
