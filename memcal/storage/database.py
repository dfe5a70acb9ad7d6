"""SQLite storage for feeds, calendar metadata and accumulated events.

Events are keyed by ``(feed_id, start_instant, start_zone, end_instant,
end_zone)``. Merging a feed only inserts or updates rows; nothing in the
sync path removes an event.
"""

import asyncio
import logging
import sqlite3
from collections.abc import AsyncIterator, Iterable
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Optional, Union

import aiosqlite

from memcal.calendar.exceptions import StorageError
from memcal.calendar.models import (
    CalendarMetadata,
    Event,
    EventRecord,
    Feed,
    TimezoneTransitionRule,
    ZonedTimestamp,
)
from memcal.calendar.temporal import resolve_zone

logger = logging.getLogger(__name__)

_SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS feeds (
        id INTEGER PRIMARY KEY,
        source_url TEXT NOT NULL,
        manage_secret TEXT NOT NULL,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS calendars (
        feed_id INTEGER PRIMARY KEY REFERENCES feeds(id) ON DELETE CASCADE,
        version TEXT NOT NULL,
        product_id TEXT NOT NULL,
        scale TEXT NOT NULL,
        name TEXT,
        tz_id TEXT NOT NULL,
        has_daylight INTEGER NOT NULL DEFAULT 0,
        daylight_start TEXT,
        daylight_offset_from TEXT,
        daylight_offset_to TEXT,
        daylight_rrule TEXT,
        daylight_name TEXT,
        has_standard INTEGER NOT NULL DEFAULT 0,
        standard_start TEXT,
        standard_offset_from TEXT,
        standard_offset_to TEXT,
        standard_rrule TEXT,
        standard_name TEXT,
        synced_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS events (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        feed_id INTEGER NOT NULL REFERENCES feeds(id) ON DELETE CASCADE,
        summary TEXT NOT NULL,
        description TEXT,
        start_instant TEXT NOT NULL,
        start_zone TEXT NOT NULL,
        end_instant TEXT NOT NULL,
        end_zone TEXT NOT NULL,
        location TEXT,
        uid TEXT NOT NULL,
        last_modified_instant TEXT NOT NULL,
        last_modified_zone TEXT NOT NULL,
        organizer TEXT,
        organizer_name TEXT,
        sequence INTEGER,
        status TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
        updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE UNIQUE INDEX IF NOT EXISTS idx_events_natural_key
    ON events(feed_id, start_instant, start_zone, end_instant, end_zone)
    """,
)

_RULE_COLUMNS = ("start", "offset_from", "offset_to", "rrule", "name")

_UPSERT_EVENT = """
    INSERT INTO events (
        feed_id, summary, description, start_instant, start_zone, end_instant, end_zone,
        location, uid, last_modified_instant, last_modified_zone,
        organizer, organizer_name, sequence, status
    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
    ON CONFLICT(feed_id, start_instant, start_zone, end_instant, end_zone) DO UPDATE SET
        summary = excluded.summary,
        description = excluded.description,
        location = excluded.location,
        uid = excluded.uid,
        last_modified_instant = excluded.last_modified_instant,
        last_modified_zone = excluded.last_modified_zone,
        organizer = excluded.organizer,
        organizer_name = excluded.organizer_name,
        sequence = excluded.sequence,
        status = excluded.status,
        updated_at = CURRENT_TIMESTAMP
"""

_EVENT_COLUMNS = (
    "id, feed_id, summary, description, start_instant, start_zone, end_instant, end_zone, "
    "location, uid, last_modified_instant, last_modified_zone, "
    "organizer, organizer_name, sequence, status"
)


def _zoned(instant: str, zone: str) -> ZonedTimestamp:
    tz = resolve_zone(zone)
    return ZonedTimestamp(instant=datetime.fromisoformat(instant).astimezone(tz), zone=tz.key)


def _rule_values(rule: Optional[TimezoneTransitionRule]) -> tuple[Any, ...]:
    if rule is None:
        return (0, None, None, None, None, None)
    return (
        1,
        rule.start,
        rule.offset_from,
        rule.offset_to,
        rule.recurrence_rule,
        rule.zone_name,
    )


def _rule_from_row(row: aiosqlite.Row, prefix: str) -> Optional[TimezoneTransitionRule]:
    if not row[f"has_{prefix}"]:
        return None
    start, offset_from, offset_to, rrule, name = (row[f"{prefix}_{c}"] for c in _RULE_COLUMNS)
    return TimezoneTransitionRule(
        start=start,
        offset_from=offset_from,
        offset_to=offset_to,
        recurrence_rule=rrule,
        zone_name=name,
    )


def _event_params(feed_id: int, event: EventRecord) -> tuple[Any, ...]:
    return (
        feed_id,
        event.summary,
        event.description,
        event.start.storage_instant(),
        event.start.zone,
        event.end.storage_instant(),
        event.end.zone,
        event.location,
        event.uid,
        event.last_modified.storage_instant(),
        event.last_modified.zone,
        event.organizer,
        event.organizer_name,
        event.sequence,
        event.status,
    )


def _event_from_row(row: aiosqlite.Row) -> Event:
    return Event(
        id=row["id"],
        feed_id=row["feed_id"],
        summary=row["summary"],
        description=row["description"],
        start=_zoned(row["start_instant"], row["start_zone"]),
        end=_zoned(row["end_instant"], row["end_zone"]),
        location=row["location"],
        uid=row["uid"],
        last_modified=_zoned(row["last_modified_instant"], row["last_modified_zone"]),
        organizer=row["organizer"],
        organizer_name=row["organizer_name"],
        sequence=row["sequence"],
        status=row["status"],
    )


class DatabaseManager:
    """Merge store and feed registry backed by a SQLite file."""

    def __init__(self, database_path: Union[Path, str]):
        """Initialize database manager.

        Args:
            database_path: Path to SQLite database file; parent directories
                are created if missing
        """
        self.database_path = Path(database_path)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)
        self._initialized = False
        self._initialization_lock: Optional[asyncio.Lock] = None

        logger.info("Database manager initialized (lazy): %s", self.database_path)

    async def _ensure_initialized(self) -> None:
        if self._initialized:
            return

        if self._initialization_lock is None:
            self._initialization_lock = asyncio.Lock()

        async with self._initialization_lock:
            if self._initialized:
                return
            try:
                async with aiosqlite.connect(str(self.database_path)) as db:
                    # WAL lets the HTTP read path proceed while a sync writes
                    await db.execute("PRAGMA journal_mode=WAL")
                    await db.execute("PRAGMA synchronous=NORMAL")
                    for statement in _SCHEMA:
                        await db.execute(statement)
                    await db.commit()
            except sqlite3.Error as e:
                logger.exception("Failed to initialize database %s", self.database_path)
                raise StorageError(f"Database initialization failed: {e}") from e

            self._initialized = True
            logger.debug("Database schema ready at %s", self.database_path)

    async def initialize(self) -> None:
        """Create the schema now instead of on first use."""
        await self._ensure_initialized()

    @asynccontextmanager
    async def _connect(self) -> AsyncIterator[aiosqlite.Connection]:
        """Open a connection with foreign keys enforced and row access by name.

        Any sqlite error inside the block is rolled back and re-raised as
        StorageError.
        """
        await self._ensure_initialized()
        try:
            async with aiosqlite.connect(str(self.database_path)) as db:
                db.row_factory = aiosqlite.Row
                await db.execute("PRAGMA foreign_keys=ON")
                try:
                    yield db
                except sqlite3.Error:
                    await db.rollback()
                    raise
        except sqlite3.Error as e:
            logger.exception("Database operation failed")
            raise StorageError(f"Database operation failed: {e}") from e

    # Feeds

    async def create_feed(self, feed: Feed) -> None:
        async with self._connect() as db:
            await db.execute(
                "INSERT INTO feeds (id, source_url, manage_secret) VALUES (?, ?, ?)",
                (feed.id, feed.source_url, feed.manage_secret),
            )
            await db.commit()
        logger.info("Created feed %d for %s", feed.id, feed.source_url)

    async def get_feed(self, feed_id: int) -> Optional[Feed]:
        async with self._connect() as db, db.execute(
            "SELECT id, source_url, manage_secret FROM feeds WHERE id = ?", (feed_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return Feed(id=row["id"], source_url=row["source_url"], manage_secret=row["manage_secret"])

    async def list_feeds(self) -> list[Feed]:
        """All feeds in creation order (ids are time ordered)."""
        async with self._connect() as db, db.execute(
            "SELECT id, source_url, manage_secret FROM feeds ORDER BY id"
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            Feed(id=row["id"], source_url=row["source_url"], manage_secret=row["manage_secret"])
            for row in rows
        ]

    # Calendar metadata

    async def _write_calendar_metadata(
        self, db: aiosqlite.Connection, feed_id: int, metadata: CalendarMetadata
    ) -> None:
        await db.execute(
            """
            INSERT OR REPLACE INTO calendars (
                feed_id, version, product_id, scale, name, tz_id,
                has_daylight, daylight_start, daylight_offset_from, daylight_offset_to,
                daylight_rrule, daylight_name,
                has_standard, standard_start, standard_offset_from, standard_offset_to,
                standard_rrule, standard_name
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                feed_id,
                metadata.version,
                metadata.product_id,
                metadata.scale,
                metadata.display_name,
                metadata.timezone_id,
                *_rule_values(metadata.daylight),
                *_rule_values(metadata.standard),
            ),
        )

    async def upsert_calendar_metadata(self, feed_id: int, metadata: CalendarMetadata) -> None:
        """Replace the feed's calendar metadata in full."""
        async with self._connect() as db:
            await self._write_calendar_metadata(db, feed_id, metadata)
            await db.commit()

    async def get_calendar_metadata(self, feed_id: int) -> Optional[CalendarMetadata]:
        async with self._connect() as db, db.execute(
            "SELECT * FROM calendars WHERE feed_id = ?", (feed_id,)
        ) as cursor:
            row = await cursor.fetchone()
        if row is None:
            return None
        return CalendarMetadata(
            version=row["version"],
            product_id=row["product_id"],
            scale=row["scale"],
            display_name=row["name"],
            timezone_id=row["tz_id"],
            daylight=_rule_from_row(row, "daylight"),
            standard=_rule_from_row(row, "standard"),
        )

    # Events

    async def _write_event(self, db: aiosqlite.Connection, feed_id: int, event: EventRecord) -> int:
        await db.execute(_UPSERT_EVENT, _event_params(feed_id, event))
        async with db.execute(
            """
            SELECT id FROM events
            WHERE feed_id = ? AND start_instant = ? AND start_zone = ?
              AND end_instant = ? AND end_zone = ?
            """,
            (feed_id, *event.natural_key),
        ) as cursor:
            row = await cursor.fetchone()
        return int(row["id"])

    async def upsert_event(self, feed_id: int, event: EventRecord) -> int:
        """Insert or update one event by natural key.

        Returns:
            Stored event id, unchanged when an existing row was updated
        """
        async with self._connect() as db:
            event_id = await self._write_event(db, feed_id, event)
            await db.commit()
        return event_id

    async def merge_calendar(
        self, feed_id: int, metadata: CalendarMetadata, events: Iterable[EventRecord]
    ) -> int:
        """Apply one successful sync: replace metadata, upsert every event.

        Writes happen in the given order inside a single transaction, so a
        failure leaves the previously stored state untouched.

        Returns:
            Number of events written
        """
        count = 0
        async with self._connect() as db:
            await self._write_calendar_metadata(db, feed_id, metadata)
            for event in events:
                await self._write_event(db, feed_id, event)
                count += 1
            await db.commit()
        logger.debug("Merged %d events into feed %d", count, feed_id)
        return count

    async def get_events_for_feed(self, feed_id: int) -> list[Event]:
        """Events of a feed, most recent start first."""
        async with self._connect() as db, db.execute(
            f"SELECT {_EVENT_COLUMNS} FROM events WHERE feed_id = ? "  # nosec B608
            "ORDER BY start_instant DESC, id DESC",
            (feed_id,),
        ) as cursor:
            rows = await cursor.fetchall()
        return [_event_from_row(row) for row in rows]

    async def count_events(self, feed_id: int) -> int:
        async with self._connect() as db, db.execute(
            "SELECT COUNT(*) FROM events WHERE feed_id = ?", (feed_id,)
        ) as cursor:
            row = await cursor.fetchone()
        return int(row[0])

    # Explicit deletion path

    async def delete_event(self, feed_id: int, event_id: int) -> bool:
        """Remove one event; returns False if it does not belong to the feed."""
        async with self._connect() as db:
            cursor = await db.execute(
                "DELETE FROM events WHERE id = ? AND feed_id = ?", (event_id, feed_id)
            )
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted event %d from feed %d", event_id, feed_id)
        return deleted

    async def delete_all_events_for_feed(self, feed_id: int) -> int:
        async with self._connect() as db:
            cursor = await db.execute("DELETE FROM events WHERE feed_id = ?", (feed_id,))
            await db.commit()
            return cursor.rowcount

    async def delete_calendar_metadata(self, feed_id: int) -> None:
        async with self._connect() as db:
            await db.execute("DELETE FROM calendars WHERE feed_id = ?", (feed_id,))
            await db.commit()

    async def delete_feed(self, feed_id: int) -> bool:
        """Remove a feed together with its events and calendar metadata."""
        async with self._connect() as db:
            await db.execute("DELETE FROM events WHERE feed_id = ?", (feed_id,))
            await db.execute("DELETE FROM calendars WHERE feed_id = ?", (feed_id,))
            cursor = await db.execute("DELETE FROM feeds WHERE id = ?", (feed_id,))
            await db.commit()
            deleted = cursor.rowcount > 0
        if deleted:
            logger.info("Deleted feed %d", feed_id)
        return deleted
