"""Rebuild an ICS document from stored calendar metadata and events."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import Optional

from icalendar import Calendar, Component, Timezone, TimezoneDaylight, TimezoneStandard
from icalendar import Event as ICalEvent
from icalendar.prop import vCalAddress, vInline, vText

from .models import UTC_ZONE, CalendarMetadata, EventRecord, TimezoneTransitionRule, ZonedTimestamp
from .temporal import format_compact

logger = logging.getLogger(__name__)

CONTENT_TYPE = "text/calendar"


def _set(component: Component, name: str, value: object, **params: str) -> None:
    """Add an already typed property value, attaching parameters verbatim."""
    for key, param in params.items():
        value.params[key] = param  # type: ignore[attr-defined]
    component.add(name, value, encode=False)


def _set_timestamp(component: Component, name: str, timestamp: ZonedTimestamp) -> None:
    wall = format_compact(timestamp)
    if timestamp.zone == UTC_ZONE:
        _set(component, name, vInline(wall + "Z"))
    else:
        _set(component, name, vInline(wall), TZID=timestamp.zone)


def _transition(
    component: Component, rule: Optional[TimezoneTransitionRule]
) -> Optional[Component]:
    if rule is None:
        return None
    for name, value in (
        ("DTSTART", rule.start),
        ("TZOFFSETFROM", rule.offset_from),
        ("TZOFFSETTO", rule.offset_to),
        ("RRULE", rule.recurrence_rule),
        ("TZNAME", rule.zone_name),
    ):
        if value is not None:
            _set(component, name, vInline(value))
    return component


def build_timezone(metadata: CalendarMetadata) -> Timezone:
    """VTIMEZONE with TZID and whichever transition rules are stored."""
    vtimezone = Timezone()
    _set(vtimezone, "TZID", vInline(metadata.timezone_id))
    for sub in (
        _transition(TimezoneDaylight(), metadata.daylight),
        _transition(TimezoneStandard(), metadata.standard),
    ):
        if sub is not None:
            vtimezone.add_component(sub)
    return vtimezone


def build_event(event: EventRecord) -> ICalEvent:
    vevent = ICalEvent()
    _set(vevent, "UID", vInline(event.uid))
    _set_timestamp(vevent, "DTSTAMP", event.last_modified)
    _set_timestamp(vevent, "DTSTART", event.start)
    _set_timestamp(vevent, "DTEND", event.end)
    _set(vevent, "SUMMARY", vText(event.summary))
    _set(vevent, "DESCRIPTION", vText(event.description or ""))

    if event.location is not None:
        _set(vevent, "LOCATION", vText(event.location))
    if event.organizer is not None:
        if event.organizer_name is not None:
            _set(vevent, "ORGANIZER", vCalAddress(event.organizer), CN=event.organizer_name)
        else:
            _set(vevent, "ORGANIZER", vCalAddress(event.organizer))
    if event.sequence is not None:
        _set(vevent, "SEQUENCE", vInline(str(event.sequence)))
    if event.status is not None:
        _set(vevent, "STATUS", vInline(event.status))
    return vevent


def generate_document(metadata: CalendarMetadata, events: Iterable[EventRecord]) -> bytes:
    """Serialize stored state as an ICS document.

    Args:
        metadata: Calendar envelope and timezone rules for the feed
        events: Events in the order they should appear

    Returns:
        CRLF delimited ICS bytes
    """
    calendar = Calendar()
    _set(calendar, "VERSION", vInline(metadata.version))
    _set(calendar, "CALSCALE", vInline(metadata.scale))
    _set(calendar, "PRODID", vInline(metadata.product_id))
    if metadata.display_name is not None:
        _set(calendar, "X-WR-CALNAME", vText(metadata.display_name))

    calendar.add_component(build_timezone(metadata))
    count = 0
    for event in events:
        calendar.add_component(build_event(event))
        count += 1

    logger.debug("Generated calendar %r with %d events", metadata.display_name, count)
    return calendar.to_ical()
