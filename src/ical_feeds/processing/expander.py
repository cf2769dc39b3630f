"""Recurrence expansion.

Turns one raw record into the occurrences that fall inside the fetch window.

## Single Records

Start/end go through the time strategies; a missing DTEND falls back to
DTSTART + DURATION, then to DTSTART. A full-day event whose end lands on the
same local day as its start is stretched to the next day. Records ending
before the window or starting after it are dropped.

## Recurring Records

- The literal first occurrence is emitted when it lies inside the window and
  is not an exception date.
- The RRULE is expanded over the window (inclusive bounds).
- Each candidate contributes only its calendar date. The start is rebuilt
  from that date plus the original occurrence's time of day and timezone.
  Using the candidate's own time fields shifts the displayed day whenever a
  DST or provider-timezone boundary lies between the two.
- Candidates equal to the original start, or matching an exception date,
  are skipped (minute resolution).
- End = start + original duration. Full-day records add whole calendar days
  instead, so a DST change does not move the end off midnight.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone

from dateutil.rrule import rrulestr

from ical_feeds.errors import CalendarFeedError, RecurrenceExpansionError
from ical_feeds.models.event import CanonicalEvent, RawVevent
from ical_feeds.processing.dates import TimeParser, minute_key
from ical_feeds.processing.normalizer import EventNormalizer

logger = logging.getLogger(__name__)

_UNTIL_PATTERN = re.compile(r"UNTIL=(\d{8})(T\d{6})?(Z?)", re.IGNORECASE)


@dataclass(frozen=True)
class TimeWindow:
    """Inclusive [past, future] range occurrences must intersect."""

    past: datetime
    future: datetime

    @classmethod
    def around(cls, now: datetime, past_days: int, future_days: int) -> TimeWindow:
        return cls(
            past=now - timedelta(days=past_days),
            future=now + timedelta(days=future_days),
        )

    def contains(self, value: datetime) -> bool:
        return self.past <= value <= self.future


def _same_local_day(start: datetime, end: datetime, time_parser: TimeParser) -> bool:
    return time_parser.to_local(start).date() == time_parser.to_local(end).date()


def _coerce_until(rule_text: str, dtstart: datetime) -> str:
    """Rewrite a floating or date-only UNTIL as UTC.

    dateutil refuses to mix an aware DTSTART with a naive UNTIL; RFC 5545
    says such an UNTIL is in the DTSTART's zone.
    """

    def replace(match: re.Match[str]) -> str:
        if match.group(3):
            return match.group(0)
        clock = match.group(2) or "T235959"
        naive = datetime.strptime(match.group(1) + clock.upper(), "%Y%m%dT%H%M%S")
        until = naive.replace(tzinfo=dtstart.tzinfo).astimezone(timezone.utc)
        return "UNTIL=" + until.strftime("%Y%m%dT%H%M%SZ")

    return _UNTIL_PATTERN.sub(replace, rule_text)


def reconstruct_start(candidate: datetime | date, original_start: datetime) -> datetime:
    """Combine a candidate's calendar date with the original time and zone."""
    candidate_date = candidate.date() if isinstance(candidate, datetime) else candidate
    return datetime.combine(candidate_date, original_start.timetz())


class RecurrenceExpander:
    """Expands raw records into canonical occurrences for one source."""

    def __init__(self, normalizer: EventNormalizer):
        self.normalizer = normalizer
        self.time_parser = normalizer.time_parser

    def expand(self, record: RawVevent, window: TimeWindow) -> list[CanonicalEvent]:
        """Produce the occurrences of a record inside the window.

        Raises:
            RecurrenceExpansionError: If a recurring record cannot be expanded
            DateParseError: If the record's dates cannot be interpreted
        """
        if self.normalizer.is_excluded(record):
            logger.debug(f"Excluding event {record.summary!r}")
            return []
        if record.is_recurring:
            return self._expand_recurring(record, window)
        event = self._expand_single(record, window)
        return [event] if event is not None else []

    def _resolve_span(self, record: RawVevent) -> tuple[datetime, datetime, bool]:
        """Parse a record's stated start/end and apply the full-day fix."""
        start = self.time_parser.parse(record.start)
        if record.end is not None:
            end = self.time_parser.parse(record.end)
        elif record.duration is not None:
            end = start + record.duration
        else:
            end = start

        full_day = self.normalizer.is_full_day(record, start, end)
        if full_day and _same_local_day(start, end, self.time_parser):
            end = self.time_parser.to_local(start) + timedelta(days=1)
        return start, end, full_day

    def _expand_single(
        self,
        record: RawVevent,
        window: TimeWindow,
    ) -> CanonicalEvent | None:
        start, end, full_day = self._resolve_span(record)

        if end < window.past or start > window.future:
            return None
        if end <= start:
            logger.debug(f"Dropping zero-length event {record.summary!r}")
            return None

        recurring = record.recurrence_id is not None
        return self.normalizer.build(
            record, start, end, recurring=recurring, full_day=full_day
        )

    def _exception_minutes(self, record: RawVevent) -> set[int]:
        excluded = set()
        for raw in record.exdates:
            try:
                excluded.add(minute_key(self.time_parser.parse(raw)))
            except CalendarFeedError as e:
                logger.warning(f"Ignoring unreadable EXDATE on {record.summary!r}: {e}")
        return excluded

    def _expand_recurring(
        self,
        record: RawVevent,
        window: TimeWindow,
    ) -> list[CanonicalEvent]:
        original_start, original_end, full_day = self._resolve_span(record)
        if original_end <= original_start:
            raise RecurrenceExpansionError(
                f"Recurring event {record.summary!r} has no positive duration",
                source=record.uid,
            )
        duration = timedelta(
            seconds=original_end.timestamp() - original_start.timestamp()
        )
        day_span = (
            self.time_parser.to_local(original_end).date()
            - self.time_parser.to_local(original_start).date()
        )
        excluded = self._exception_minutes(record)
        original_minute = minute_key(original_start)

        events: list[CanonicalEvent] = []
        if original_minute not in excluded and window.contains(original_start):
            events.append(
                self.normalizer.build(record, original_start, original_end, recurring=True)
            )

        try:
            rule = rrulestr(
                _coerce_until(record.rrule or "", original_start),
                dtstart=original_start,
            )
            candidates = rule.between(window.past, window.future, inc=True)
        except (ValueError, TypeError, OverflowError) as e:
            raise RecurrenceExpansionError(
                f"Cannot expand RRULE {record.rrule!r} of {record.summary!r}: {e}",
                source=record.uid,
            )

        seen = {original_minute}
        for candidate in candidates:
            start = reconstruct_start(candidate, original_start)
            start_minute = minute_key(start)
            if start_minute in seen or start_minute in excluded:
                continue
            seen.add(start_minute)

            if full_day:
                end = start + day_span
            else:
                end = (start.astimezone(timezone.utc) + duration).astimezone(start.tzinfo)

            events.append(self.normalizer.build(record, start, end, recurring=True))

        return events
