"""ICS document parsing into calendar metadata and normalized events."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from icalendar.parser import Contentlines
from icalendar.prop import vText

from .exceptions import MissingRequiredField, ParseError
from .models import (
    UTC_ZONE,
    CalendarMetadata,
    EventRecord,
    ParsedCalendar,
    TimezoneTransitionRule,
)
from .temporal import normalize_datetime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ContentProperty:
    """One content line: name, parameters in source order, raw value."""

    name: str
    params: dict[str, str]
    value: str

    @property
    def zone_id(self) -> Optional[str]:
        """Zone identifier: TZID if present, else the first parameter value."""
        if "TZID" in self.params:
            return self.params["TZID"]
        for value in self.params.values():
            return value
        return None

    @property
    def text(self) -> str:
        """Value with TEXT escapes (``\\,`` ``\\;`` ``\\n``) resolved."""
        return str(vText.from_ical(self.value))


@dataclass
class ContentComponent:
    """A BEGIN/END block with its properties and nested blocks."""

    name: str
    properties: list[ContentProperty] = field(default_factory=list)
    children: list[ContentComponent] = field(default_factory=list)

    def first(self, name: str) -> Optional[ContentProperty]:
        for prop in self.properties:
            if prop.name == name:
                return prop
        return None

    def value(self, name: str, default: Optional[str] = None) -> Optional[str]:
        prop = self.first(name)
        return prop.value if prop is not None else default

    def components(self, name: str) -> list[ContentComponent]:
        return [child for child in self.children if child.name == name]


def _param_text(value: object) -> str:
    # Comma separated parameter values arrive as lists
    if isinstance(value, (list, tuple)):
        return str(value[0]) if value else ""
    return str(value)


def read_components(text: str) -> list[ContentComponent]:
    """Split raw ICS text into top-level component trees.

    Args:
        text: Raw document text, folded or unfolded

    Returns:
        Top-level components in document order

    Raises:
        ParseError: If BEGIN/END blocks are unbalanced
    """
    try:
        lines = Contentlines.from_ical(text.lstrip("\ufeff"))
    except ValueError as e:
        raise ParseError(f"Unreadable calendar text: {e}") from e

    roots: list[ContentComponent] = []
    stack: list[ContentComponent] = []

    for line in lines:
        if not line:
            continue
        try:
            name, params, value = line.parts()
        except ValueError:
            logger.warning("Skipping malformed content line: %.80s", line)
            continue

        name = name.upper()
        if name == "BEGIN":
            component = ContentComponent(name=value.strip().upper())
            if stack:
                stack[-1].children.append(component)
            else:
                roots.append(component)
            stack.append(component)
        elif name == "END":
            closing = value.strip().upper()
            if not stack or stack[-1].name != closing:
                raise ParseError(f"Unexpected END:{closing}")
            stack.pop()
        elif stack:
            stack[-1].properties.append(
                ContentProperty(
                    name=name,
                    params={key.upper(): _param_text(val) for key, val in params.items()},
                    value=value,
                )
            )
        else:
            logger.debug("Ignoring property %s outside any component", name)

    if stack:
        raise ParseError(f"Unterminated component {stack[-1].name}")
    return roots


def _transition_rule(component: Optional[ContentComponent]) -> Optional[TimezoneTransitionRule]:
    if component is None:
        return None
    return TimezoneTransitionRule(
        start=component.value("DTSTART"),
        offset_from=component.value("TZOFFSETFROM"),
        offset_to=component.value("TZOFFSETTO"),
        recurrence_rule=component.value("RRULE"),
        zone_name=component.value("TZNAME"),
    )


def extract_metadata(calendar: ContentComponent) -> CalendarMetadata:
    """Read the calendar envelope and the first VTIMEZONE block."""
    name_prop = calendar.first("X-WR-CALNAME")
    metadata = CalendarMetadata(
        version=calendar.value("VERSION", "2.0"),
        product_id=calendar.value("PRODID", ""),
        scale=calendar.value("CALSCALE", "GREGORIAN"),
        display_name=name_prop.text if name_prop is not None else None,
    )

    timezones = calendar.components("VTIMEZONE")
    if not timezones:
        return metadata
    if len(timezones) > 1:
        logger.debug("Calendar has %d VTIMEZONE blocks; keeping the first", len(timezones))

    vtimezone = timezones[0]
    daylight = vtimezone.components("DAYLIGHT")
    standard = vtimezone.components("STANDARD")
    metadata.timezone_id = vtimezone.value("TZID", UTC_ZONE)
    metadata.daylight = _transition_rule(daylight[0] if daylight else None)
    metadata.standard = _transition_rule(standard[0] if standard else None)
    return metadata


def _required(component: ContentComponent, name: str) -> ContentProperty:
    prop = component.first(name)
    if prop is None:
        raise MissingRequiredField(name)
    return prop


def extract_event(component: ContentComponent) -> EventRecord:
    """Build a normalized event from a VEVENT block.

    Raises:
        MissingRequiredField: DTSTART, DTEND or DTSTAMP is absent
        InvalidTemporalValue: One of those values cannot be parsed
    """
    start = _required(component, "DTSTART")
    end = _required(component, "DTEND")
    stamp = _required(component, "DTSTAMP")

    summary = component.first("SUMMARY")
    description = component.first("DESCRIPTION")
    location = component.first("LOCATION")
    organizer = component.first("ORGANIZER")

    sequence: Optional[int] = None
    raw_sequence = component.value("SEQUENCE")
    if raw_sequence is not None:
        try:
            sequence = int(raw_sequence.strip())
        except ValueError:
            logger.debug("Ignoring non-integer SEQUENCE %r", raw_sequence)

    return EventRecord(
        summary=summary.text if summary is not None else "",
        description=description.text if description is not None else "",
        start=normalize_datetime(start.value, start.zone_id, "DTSTART"),
        end=normalize_datetime(end.value, end.zone_id, "DTEND"),
        location=location.text if location is not None else None,
        uid=component.value("UID", ""),
        last_modified=normalize_datetime(stamp.value, stamp.zone_id, "DTSTAMP"),
        organizer=organizer.value if organizer is not None else None,
        organizer_name=organizer.params.get("CN") if organizer is not None else None,
        sequence=sequence,
        status=component.value("STATUS"),
    )


def parse_calendar(text: str) -> ParsedCalendar:
    """Parse an upstream document into metadata and normalized events.

    Only the first VCALENDAR is read. Any event failure aborts the whole
    parse so callers never see a partial batch.

    Args:
        text: Raw ICS document

    Returns:
        ParsedCalendar with events in document order

    Raises:
        ParseError: No calendar root or broken structure
        MissingRequiredField: An event lacks DTSTART, DTEND or DTSTAMP
        InvalidTemporalValue: An event date-time is unparseable
    """
    calendars = [c for c in read_components(text) if c.name == "VCALENDAR"]
    if not calendars:
        raise ParseError("Document does not contain a VCALENDAR")

    calendar = calendars[0]
    metadata = extract_metadata(calendar)
    events = [extract_event(vevent) for vevent in calendar.components("VEVENT")]

    logger.debug(
        "Parsed calendar %r: %d events, tz=%s",
        metadata.display_name,
        len(events),
        metadata.timezone_id,
    )
    return ParsedCalendar(metadata=metadata, events=events)
