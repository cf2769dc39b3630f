"""Raw ICS parsing.

A thin adapter over `icalendar`: each VEVENT is mapped onto a `RawVevent`
record. No dates are interpreted here beyond what `icalendar` decodes; the
time strategies in `ical_feeds.processing.dates` take it from there.

## Property Mapping

| iCalendar | RawVevent | Notes |
|-----------|-----------|-------|
| UID | uid | |
| SUMMARY | summary | |
| DTSTART / DTEND | start / end | RawDate keeps the TZID parameter |
| DURATION | duration | only used when DTEND is missing |
| RRULE | rrule | first rule, as iCalendar text |
| EXDATE | exdates | every listed value, TZID per property |
| RECURRENCE-ID | recurrence_id | override of one occurrence |
| LOCATION / DESCRIPTION / CLASS | location / description / event_class | |
| GEO | geo | (latitude, longitude) |
| X-MICROSOFT-CDO-ALLDAYEVENT | all_day_flag | TRUE/FALSE, else None |

## Overridden Occurrences

A VEVENT with RECURRENCE-ID replaces one occurrence of the recurring event
with the same UID. The override is kept as its own record and the slot it
replaces is appended to the master's exception dates, so the expander never
emits both.
"""

from __future__ import annotations

import dataclasses
import logging
from datetime import timedelta
from typing import Any

from icalendar import Calendar

from ical_feeds.errors import FeedParseError
from ical_feeds.models.event import RawDate, RawVevent

logger = logging.getLogger(__name__)

ALL_DAY_PROPERTY = "X-MICROSOFT-CDO-ALLDAYEVENT"


def _text(component: Any, name: str) -> str | None:
    value = component.get(name)
    if value is None:
        return None
    if isinstance(value, list):
        value = value[0] if value else None
        if value is None:
            return None
    return str(value)


def _raw_date(prop: Any) -> RawDate | None:
    """Wrap a decoded date property, keeping its TZID parameter."""
    if prop is None:
        return None
    params = getattr(prop, "params", {}) or {}
    tzid = params.get("TZID")
    value = getattr(prop, "dt", prop)
    if isinstance(value, bytes):
        value = value.decode("utf-8", errors="replace")
    return RawDate(value=value, tzid=str(tzid) if tzid else None)


def _exdates(component: Any) -> tuple[RawDate, ...]:
    props = component.get("EXDATE")
    if props is None:
        return ()
    if not isinstance(props, list):
        props = [props]

    dates: list[RawDate] = []
    for prop in props:
        params = getattr(prop, "params", {}) or {}
        tzid = params.get("TZID")
        for item in getattr(prop, "dts", []):
            dates.append(RawDate(value=item.dt, tzid=str(tzid) if tzid else None))
    return tuple(dates)


def _rrule(component: Any) -> str | None:
    prop = component.get("RRULE")
    if prop is None:
        return None
    if isinstance(prop, list):
        if not prop:
            return None
        if len(prop) > 1:
            logger.debug(
                f"Event {component.get('UID')} has {len(prop)} RRULEs, using the first"
            )
        prop = prop[0]
    if hasattr(prop, "to_ical"):
        return prop.to_ical().decode("utf-8")
    return str(prop)


def _all_day_flag(component: Any) -> bool | None:
    value = _text(component, ALL_DAY_PROPERTY)
    if value is None:
        return None
    value = value.strip().upper()
    if value == "TRUE":
        return True
    if value == "FALSE":
        return False
    return None


def _geo(component: Any) -> tuple[float, float] | None:
    prop = component.get("GEO")
    if prop is None:
        return None
    try:
        return (float(prop.latitude), float(prop.longitude))
    except (AttributeError, TypeError, ValueError):
        return None


def _duration(component: Any) -> timedelta | None:
    prop = component.get("DURATION")
    value = getattr(prop, "dt", None)
    return value if isinstance(value, timedelta) else None


def component_to_record(component: Any) -> RawVevent:
    """Map one icalendar VEVENT component onto a RawVevent."""
    return RawVevent(
        uid=_text(component, "UID"),
        summary=_text(component, "SUMMARY"),
        start=_raw_date(component.get("DTSTART")),
        end=_raw_date(component.get("DTEND")),
        duration=_duration(component),
        rrule=_rrule(component),
        exdates=_exdates(component),
        recurrence_id=_raw_date(component.get("RECURRENCE-ID")),
        location=_text(component, "LOCATION"),
        description=_text(component, "DESCRIPTION"),
        event_class=_text(component, "CLASS"),
        geo=_geo(component),
        all_day_flag=_all_day_flag(component),
    )


def _attach_overrides(records: list[RawVevent]) -> list[RawVevent]:
    """Add each override's RECURRENCE-ID to its master's exception dates."""
    overridden: dict[str, list[RawDate]] = {}
    for record in records:
        if record.recurrence_id is not None and record.uid:
            overridden.setdefault(record.uid, []).append(record.recurrence_id)
    if not overridden:
        return records

    result = []
    for record in records:
        slots = overridden.get(record.uid or "")
        if slots and record.is_recurring and record.recurrence_id is None:
            record = dataclasses.replace(
                record, exdates=record.exdates + tuple(slots)
            )
        result.append(record)
    return result


def parse_feed(raw_text: str) -> list[RawVevent]:
    """Parse feed text into raw VEVENT records.

    Args:
        raw_text: ICS document text

    Returns:
        One record per VEVENT, in document order

    Raises:
        FeedParseError: If the text is not an iCalendar document
    """
    try:
        calendar = Calendar.from_ical(raw_text)
    except Exception as e:
        raise FeedParseError(f"Failed to parse calendar data: {e}")

    if getattr(calendar, "name", None) != "VCALENDAR":
        raise FeedParseError(
            f"Expected VCALENDAR, got {getattr(calendar, 'name', None)!r}"
        )

    records = [component_to_record(c) for c in calendar.walk("VEVENT")]
    return _attach_overrides(records)
