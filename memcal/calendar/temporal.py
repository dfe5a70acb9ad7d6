"""Date-time normalization for iCalendar property values.

Upstream feeds express DTSTART/DTEND/DTSTAMP as compact local wall-clock text
(``YYYYMMDDTHHMMSS``) plus a zone identifier carried in the property
parameters. This module turns that pair into a :class:`ZonedTimestamp`:

- the zone identifier is resolved against the IANA database (zoneinfo);
  Windows zone names emitted by Outlook/Exchange are mapped to IANA first;
- a missing or unknown zone resolves to UTC rather than failing;
- text that does not match the compact format raises
  :class:`InvalidTemporalValue`.

Ambiguous or non-existent wall times (DST transitions) are resolved with
``fold=0`` as defined by PEP 495.
"""

from __future__ import annotations

import datetime
import logging
from functools import lru_cache
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .exceptions import InvalidTemporalValue
from .models import UTC_ZONE, ZonedTimestamp

logger = logging.getLogger(__name__)

COMPACT_FORMAT = "%Y%m%dT%H%M%S"

# Windows zone names seen in Outlook/Exchange feeds
WINDOWS_TZ_MAP: dict[str, str] = {
    "Pacific Standard Time": "America/Los_Angeles",
    "Mountain Standard Time": "America/Denver",
    "US Mountain Standard Time": "America/Phoenix",
    "Central Standard Time": "America/Chicago",
    "Eastern Standard Time": "America/New_York",
    "Alaskan Standard Time": "America/Anchorage",
    "Hawaiian Standard Time": "Pacific/Honolulu",
    "Atlantic Standard Time": "America/Halifax",
    "GMT Standard Time": "Europe/London",
    "W. Europe Standard Time": "Europe/Berlin",
    "Romance Standard Time": "Europe/Paris",
    "Central Europe Standard Time": "Europe/Budapest",
    "E. Europe Standard Time": "Europe/Bucharest",
    "FLE Standard Time": "Europe/Helsinki",
    "GTB Standard Time": "Europe/Athens",
    "Russian Standard Time": "Europe/Moscow",
    "India Standard Time": "Asia/Kolkata",
    "China Standard Time": "Asia/Shanghai",
    "Tokyo Standard Time": "Asia/Tokyo",
    "AUS Eastern Standard Time": "Australia/Sydney",
    "UTC": UTC_ZONE,
}


@lru_cache(maxsize=128)
def resolve_zone(zone_id: Optional[str]) -> ZoneInfo:
    """Resolve a zone identifier, falling back to UTC.

    Args:
        zone_id: IANA or Windows zone name, possibly empty

    Returns:
        ZoneInfo for the identifier, or for ``Etc/UTC`` when it is missing
        or unknown
    """
    if not zone_id:
        return ZoneInfo(UTC_ZONE)

    candidate = WINDOWS_TZ_MAP.get(zone_id, zone_id)
    try:
        return ZoneInfo(candidate)
    except (ZoneInfoNotFoundError, ValueError):
        logger.debug("Unknown zone %r, using %s", zone_id, UTC_ZONE)
        return ZoneInfo(UTC_ZONE)


def normalize_datetime(
    text: str, zone_id: Optional[str] = None, field_name: Optional[str] = None
) -> ZonedTimestamp:
    """Interpret compact date-time text as wall-clock time in a zone.

    Args:
        text: Value such as ``20240101T100000``; a trailing ``Z`` marks UTC
        zone_id: Zone identifier from the property parameters
        field_name: Property name, used in error messages

    Returns:
        ZonedTimestamp carrying the resolved zone key

    Raises:
        InvalidTemporalValue: If the text is not in the compact format
    """
    raw = (text or "").strip()
    if raw.endswith(("Z", "z")):
        raw = raw[:-1]
        zone_id = UTC_ZONE

    try:
        wall = datetime.datetime.strptime(raw, COMPACT_FORMAT)
    except ValueError as e:
        raise InvalidTemporalValue(text, field_name) from e

    zone = resolve_zone(zone_id)
    return ZonedTimestamp(instant=wall.replace(tzinfo=zone), zone=zone.key)


def format_compact(timestamp: ZonedTimestamp) -> str:
    """Format a timestamp as compact wall-clock text in its own zone."""
    return timestamp.local.strftime(COMPACT_FORMAT)
