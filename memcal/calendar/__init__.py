"""Calendar document handling: models, parsing, normalization, generation, fetch."""

from .exceptions import (
    FetchError,
    InvalidTemporalValue,
    MissingRequiredField,
    ParseError,
    StorageError,
    SyncError,
)
from .generator import CONTENT_TYPE, generate_document
from .models import CalendarMetadata, Event, EventRecord, Feed, TimezoneTransitionRule, ZonedTimestamp
from .parser import parse_calendar
from .temporal import normalize_datetime, resolve_zone

__all__ = [
    "CONTENT_TYPE",
    "CalendarMetadata",
    "Event",
    "EventRecord",
    "Feed",
    "FetchError",
    "InvalidTemporalValue",
    "MissingRequiredField",
    "ParseError",
    "StorageError",
    "SyncError",
    "TimezoneTransitionRule",
    "ZonedTimestamp",
    "generate_document",
    "normalize_datetime",
    "parse_calendar",
    "resolve_zone",
]
