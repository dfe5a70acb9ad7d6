"""Data models for feeds, calendar metadata and events."""

from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

from pydantic import BaseModel, ConfigDict, Field

# Zone used whenever a source value carries no usable zone identifier
UTC_ZONE = "Etc/UTC"


class Feed(BaseModel):
    """A subscribed upstream calendar."""

    id: int = Field(..., description="Generated unique feed identifier")
    source_url: str = Field(..., description="Upstream ICS URL")
    manage_secret: str = Field(..., description="Token required for management actions")

    model_config = ConfigDict(frozen=True)


class ZonedTimestamp(BaseModel):
    """An instant paired with the IANA zone it was expressed in."""

    instant: datetime
    zone: str = UTC_ZONE

    model_config = ConfigDict(frozen=True)

    @property
    def local(self) -> datetime:
        """Wall-clock datetime in the stored zone."""
        return self.instant.astimezone(ZoneInfo(self.zone))

    @property
    def utc(self) -> datetime:
        return self.instant.astimezone(timezone.utc)

    def storage_instant(self) -> str:
        """ISO text of the UTC instant; sorts chronologically as text."""
        return self.utc.isoformat()


class TimezoneTransitionRule(BaseModel):
    """DAYLIGHT or STANDARD sub-component, kept as opaque source text."""

    start: Optional[str] = None
    offset_from: Optional[str] = None
    offset_to: Optional[str] = None
    recurrence_rule: Optional[str] = None
    zone_name: Optional[str] = None


class CalendarMetadata(BaseModel):
    """Document-level envelope stored once per feed."""

    version: str = "2.0"
    product_id: str = ""
    scale: str = "GREGORIAN"
    display_name: Optional[str] = None
    timezone_id: str = UTC_ZONE
    daylight: Optional[TimezoneTransitionRule] = None
    standard: Optional[TimezoneTransitionRule] = None


class EventRecord(BaseModel):
    """Normalized event as extracted from an upstream document."""

    summary: str = ""
    description: Optional[str] = None
    start: ZonedTimestamp
    end: ZonedTimestamp
    location: Optional[str] = None
    uid: str = ""
    last_modified: ZonedTimestamp
    organizer: Optional[str] = None
    organizer_name: Optional[str] = None
    sequence: Optional[int] = None
    status: Optional[str] = None

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        """Identity within a feed: start and end instants with their zones."""
        return (
            self.start.storage_instant(),
            self.start.zone,
            self.end.storage_instant(),
            self.end.zone,
        )


class Event(EventRecord):
    """Stored event owned by a feed."""

    id: int
    feed_id: int


class ParsedCalendar(BaseModel):
    """Result of parsing one upstream document."""

    metadata: CalendarMetadata
    events: list[EventRecord] = Field(default_factory=list)
