"""Feed lifecycle and document serving on top of the store and orchestrator."""

from __future__ import annotations

import hmac
import logging
import uuid
from typing import Callable

from memcal.calendar.exceptions import (
    EventNotFoundError,
    FeedNotFoundError,
    InvalidFeedURLError,
    NotAuthorizedError,
    SyncError,
)
from memcal.calendar.fetcher import is_valid_source_url
from memcal.calendar.generator import CONTENT_TYPE, generate_document
from memcal.calendar.models import CalendarMetadata, Event, Feed
from memcal.storage.database import DatabaseManager
from memcal.sync.orchestrator import SyncOrchestrator

logger = logging.getLogger(__name__)


class FeedService:
    """Operations the HTTP layer performs on feeds."""

    def __init__(
        self,
        store: DatabaseManager,
        orchestrator: SyncOrchestrator,
        id_generator: Callable[[], int],
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.id_generator = id_generator

    async def create_feed(self, source_url: str) -> Feed:
        """Register a new upstream URL.

        Raises:
            InvalidFeedURLError: URL is not absolute http(s)
        """
        source_url = (source_url or "").strip()
        if not is_valid_source_url(source_url):
            raise InvalidFeedURLError(f"Not an http(s) URL: {source_url!r}")

        feed = Feed(id=self.id_generator(), source_url=source_url, manage_secret=str(uuid.uuid4()))
        await self.store.create_feed(feed)
        return feed

    async def get_feed(self, feed_id: int) -> Feed:
        feed = await self.store.get_feed(feed_id)
        if feed is None:
            raise FeedNotFoundError(feed_id)
        return feed

    async def authorize(self, feed_id: int, token: str) -> Feed:
        """Return the feed if ``token`` is its management secret.

        Raises:
            FeedNotFoundError: Unknown feed
            NotAuthorizedError: Token mismatch
        """
        feed = await self.get_feed(feed_id)
        if not hmac.compare_digest(feed.manage_secret.encode(), (token or "").encode()):
            logger.warning("Rejected management token for feed %d", feed_id)
            raise NotAuthorizedError(f"Invalid token for feed {feed_id}")
        return feed

    async def delete_feed(self, feed_id: int, token: str) -> None:
        await self.authorize(feed_id, token)
        await self.store.delete_feed(feed_id)
        await self.orchestrator.forget(feed_id)

    async def delete_event(self, feed_id: int, event_id: int, token: str) -> None:
        await self.authorize(feed_id, token)
        if not await self.store.delete_event(feed_id, event_id):
            raise EventNotFoundError(f"Event {event_id} not found in feed {feed_id}")

    async def feed_events(self, feed_id: int) -> list[Event]:
        return await self.store.get_events_for_feed(feed_id)

    async def calendar_metadata(self, feed: Feed) -> CalendarMetadata:
        """Stored metadata, syncing first if the feed was never synchronized.

        Raises:
            SyncError: The on-demand sync failed
        """
        metadata = await self.store.get_calendar_metadata(feed.id)
        if metadata is None:
            await self.orchestrator.ensure_synchronized(feed.id, feed.source_url)
            metadata = await self.store.get_calendar_metadata(feed.id)
        if metadata is None:
            raise SyncError(f"Feed {feed.id} has no calendar after sync")
        return metadata

    async def generate_document(self, feed_id: int) -> tuple[str, bytes]:
        """Render the feed's accumulated calendar.

        Returns:
            (content type, ICS body)

        Raises:
            FeedNotFoundError: Unknown feed
            SyncError: The feed never synchronized and the on-demand sync failed
        """
        feed = await self.get_feed(feed_id)
        metadata = await self.calendar_metadata(feed)
        events = await self.store.get_events_for_feed(feed_id)
        return CONTENT_TYPE, generate_document(metadata, events)
