"""Single-feed synchronization: fetch, parse, normalize, merge."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Optional, Protocol

from memcal.calendar.exceptions import SyncError
from memcal.calendar.parser import parse_calendar
from memcal.core.health_tracker import HealthTracker
from memcal.storage.database import DatabaseManager

logger = logging.getLogger(__name__)


class TextFetcher(Protocol):
    async def fetch_text(self, url: str) -> str: ...


@dataclass(frozen=True)
class SyncResult:
    feed_id: int
    event_count: int
    duration_seconds: float


class SyncOrchestrator:
    """Runs feed syncs, at most one at a time per feed.

    Parsing and normalization complete for the whole document before
    anything is written, and the merge itself is one transaction, so a
    failing sync never leaves a partially merged feed behind.
    """

    def __init__(
        self,
        store: DatabaseManager,
        fetcher: TextFetcher,
        health_tracker: Optional[HealthTracker] = None,
    ) -> None:
        self.store = store
        self.fetcher = fetcher
        self.health_tracker = health_tracker
        self._locks: dict[int, asyncio.Lock] = {}

    def _lock_for(self, feed_id: int) -> asyncio.Lock:
        lock = self._locks.get(feed_id)
        if lock is None:
            lock = self._locks[feed_id] = asyncio.Lock()
        return lock

    async def forget(self, feed_id: int) -> None:
        """Drop per-feed state after the feed is deleted.

        Waits for an in-flight sync of the feed to finish first, so its
        outcome cannot re-register the deleted feed.
        """
        async with self._lock_for(feed_id):
            self._locks.pop(feed_id, None)
            if self.health_tracker is not None:
                self.health_tracker.forget_feed(feed_id)

    async def synchronize(self, feed_id: int, source_url: str) -> SyncResult:
        """Refresh one feed from its upstream document.

        Args:
            feed_id: Feed to refresh
            source_url: Upstream ICS URL

        Returns:
            SyncResult with the number of events merged

        Raises:
            FetchError: Upstream unreachable or non-success status
            ParseError: Document has no valid calendar root
            MissingRequiredField: An event lacks DTSTART, DTEND or DTSTAMP
            InvalidTemporalValue: An event date-time is unparseable
            StorageError: The merge could not be written
        """
        async with self._lock_for(feed_id):
            return await self._run(feed_id, source_url)

    async def ensure_synchronized(self, feed_id: int, source_url: str) -> Optional[SyncResult]:
        """Sync a feed only if it has never been synchronized.

        A caller that waited on another in-flight sync of the same feed finds
        the metadata present and returns without fetching again.

        Returns:
            SyncResult if a sync ran, None if metadata already existed
        """
        async with self._lock_for(feed_id):
            if await self.store.get_calendar_metadata(feed_id) is not None:
                return None
            logger.info("Feed %d has no calendar yet; syncing on demand", feed_id)
            return await self._run(feed_id, source_url)

    async def _run(self, feed_id: int, source_url: str) -> SyncResult:
        started = time.monotonic()
        stage = "fetch"
        try:
            text = await self.fetcher.fetch_text(source_url)
            stage = "parse"
            parsed = parse_calendar(text)
            stage = "merge"
            count = await self.store.merge_calendar(feed_id, parsed.metadata, parsed.events)
        except SyncError as e:
            logger.warning(
                "Sync of feed %d failed during %s: %s: %s", feed_id, stage, type(e).__name__, e
            )
            if self.health_tracker is not None:
                self.health_tracker.record_feed_failure(feed_id, e)
            raise

        duration = time.monotonic() - started
        if self.health_tracker is not None:
            self.health_tracker.record_feed_success(feed_id, count)
        logger.info("Synced feed %d: %d events in %.2fs", feed_id, count, duration)
        return SyncResult(feed_id=feed_id, event_count=count, duration_seconds=duration)
