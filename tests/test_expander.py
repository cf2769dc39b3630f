"""Tests for recurrence expansion."""

from datetime import date, datetime, timedelta, timezone

import pytest

from conftest import OSLO
from ical_feeds.errors import RecurrenceExpansionError
from ical_feeds.models.event import RawDate, RawVevent
from ical_feeds.processing.expander import (
    RecurrenceExpander,
    TimeWindow,
    _coerce_until,
    reconstruct_start,
)
from ical_feeds.processing.normalizer import EventNormalizer


@pytest.fixture
def expander(normalizer: EventNormalizer) -> RecurrenceExpander:
    return RecurrenceExpander(normalizer)


@pytest.fixture
def window_2024() -> TimeWindow:
    now = datetime(2023, 12, 31, 12, tzinfo=OSLO)
    return TimeWindow.around(now, past_days=0, future_days=365)


def _local(event_time: datetime) -> datetime:
    return event_time.astimezone(OSLO)


class TestTimeWindow:
    """Tests for window bounds."""

    def test_bounds_are_inclusive(self):
        now = datetime(2024, 1, 1, tzinfo=timezone.utc)
        window = TimeWindow.around(now, past_days=1, future_days=2)
        assert window.contains(now - timedelta(days=1))
        assert window.contains(now + timedelta(days=2))
        assert not window.contains(now + timedelta(days=2, seconds=1))


class TestSingleEvents:
    """Tests for non-recurring records."""

    def test_full_day_same_day_end_is_stretched(self, expander, window_2024):
        record = RawVevent(
            summary="Holiday at home",
            start=RawDate(date(2024, 3, 1)),
            end=RawDate(date(2024, 3, 1)),
        )
        [event] = expander.expand(record, window_2024)

        assert event.full_day is True
        assert _local(event.start) == datetime(2024, 3, 1, tzinfo=OSLO)
        assert _local(event.end) == datetime(2024, 3, 2, tzinfo=OSLO)

    def test_duration_fallback(self, expander, window_2024):
        start = datetime(2024, 3, 1, 9, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Call",
            start=RawDate(start),
            duration=timedelta(minutes=30),
        )
        [event] = expander.expand(record, window_2024)
        assert event.duration == timedelta(minutes=30)

    def test_zero_length_event_dropped(self, expander, window_2024):
        start = datetime(2024, 3, 1, 9, tzinfo=timezone.utc)
        record = RawVevent(summary="Reminder", start=RawDate(start))
        assert expander.expand(record, window_2024) == []

    def test_outside_window_dropped(self, expander, window_2024):
        start = datetime(2026, 3, 1, 9, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Far away",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
        )
        assert expander.expand(record, window_2024) == []

    def test_event_overlapping_window_start_is_kept(self, expander):
        now = datetime(2024, 3, 1, 12, tzinfo=timezone.utc)
        window = TimeWindow.around(now, past_days=0, future_days=10)
        record = RawVevent(
            summary="Conference",
            start=RawDate(now - timedelta(days=1)),
            end=RawDate(now + timedelta(days=1)),
        )
        assert len(expander.expand(record, window)) == 1

    def test_excluded_title(self, time_parser, window_2024):
        from ical_feeds.models.source import SourceConfig

        config = SourceConfig(url="https://example.com/a.ics", excluded_events=["holiday"])
        expander = RecurrenceExpander(EventNormalizer(config, time_parser))
        record = RawVevent(
            summary="Public Holiday",
            start=RawDate(date(2024, 5, 17)),
            end=RawDate(date(2024, 5, 18)),
        )
        assert expander.expand(record, window_2024) == []

    def test_override_is_flagged_recurring(self, expander, window_2024):
        start = datetime(2024, 1, 3, 13, tzinfo=timezone.utc)
        record = RawVevent(
            uid="series-1",
            summary="Standup (moved)",
            start=RawDate(start),
            end=RawDate(start + timedelta(minutes=15)),
            recurrence_id=RawDate(datetime(2024, 1, 3, 9, tzinfo=timezone.utc)),
        )
        [event] = expander.expand(record, window_2024)
        assert event.recurring is True


class TestRecurringEvents:
    """Tests for RRULE expansion."""

    def test_weekly_with_exdate(self, expander, window_2024):
        start = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Weekly review",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
            rrule="FREQ=WEEKLY;COUNT=3",
            exdates=(RawDate(datetime(2024, 1, 8, 10, tzinfo=timezone.utc)),),
        )

        events = expander.expand(record, window_2024)

        assert [e.start.date() for e in events] == [date(2024, 1, 1), date(2024, 1, 15)]
        assert all(e.recurring for e in events)
        assert all(e.duration == timedelta(hours=1) for e in events)

    def test_original_not_duplicated(self, expander, window_2024):
        start = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Daily",
            start=RawDate(start),
            end=RawDate(start + timedelta(minutes=30)),
            rrule="FREQ=DAILY;COUNT=3",
        )
        events = expander.expand(record, window_2024)
        starts = [e.start_ms for e in events]
        assert len(starts) == len(set(starts)) == 3

    def test_wall_clock_kept_across_dst(self, expander):
        """A 09:00 Oslo meeting stays at 09:00 after the March DST switch."""
        now = datetime(2024, 3, 20, tzinfo=OSLO)
        window = TimeWindow.around(now, past_days=0, future_days=30)
        start = datetime(2024, 3, 25, 9, tzinfo=OSLO)
        record = RawVevent(
            summary="Weekly sync",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
            rrule="FREQ=WEEKLY;COUNT=2",
        )

        events = expander.expand(record, window)

        local_starts = [_local(e.start) for e in events]
        assert [(s.month, s.day, s.hour) for s in local_starts] == [(3, 25, 9), (4, 1, 9)]
        assert all(e.duration == timedelta(hours=1) for e in events)

    def test_full_day_recurrence_ends_at_midnight(self, expander, window_2024):
        record = RawVevent(
            summary="Sprint start",
            start=RawDate(date(2024, 3, 25)),
            end=RawDate(date(2024, 3, 26)),
            rrule="FREQ=WEEKLY;COUNT=2",
        )

        events = expander.expand(record, window_2024)

        assert len(events) == 2
        second = events[1]
        assert second.full_day is True
        assert _local(second.start) == datetime(2024, 4, 1, tzinfo=OSLO)
        assert _local(second.end) == datetime(2024, 4, 2, tzinfo=OSLO)

    def test_date_only_exdate(self, expander, window_2024):
        record = RawVevent(
            summary="Trash day",
            start=RawDate(date(2024, 1, 1)),
            end=RawDate(date(2024, 1, 2)),
            rrule="FREQ=DAILY;COUNT=3",
            exdates=(RawDate(date(2024, 1, 2)),),
        )
        events = expander.expand(record, window_2024)
        assert [_local(e.start).day for e in events] == [1, 3]

    def test_original_outside_window_not_emitted(self, expander):
        now = datetime(2024, 1, 10, tzinfo=timezone.utc)
        window = TimeWindow.around(now, past_days=0, future_days=14)
        start = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Weekly review",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
            rrule="FREQ=WEEKLY;COUNT=4",
        )
        events = expander.expand(record, window)
        assert [e.start.day for e in events] == [15, 22]

    def test_floating_until(self, expander, window_2024):
        start = datetime(2024, 1, 1, 10, tzinfo=OSLO)
        record = RawVevent(
            summary="Bounded",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
            rrule="FREQ=DAILY;UNTIL=20240103",
        )
        events = expander.expand(record, window_2024)
        assert len(events) == 3

    def test_invalid_rrule_raises(self, expander, window_2024):
        start = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Broken",
            start=RawDate(start),
            end=RawDate(start + timedelta(hours=1)),
            rrule="FREQ=SOMETIMES",
        )
        with pytest.raises(RecurrenceExpansionError):
            expander.expand(record, window_2024)

    def test_non_positive_duration_raises(self, expander, window_2024):
        start = datetime(2024, 1, 1, 10, tzinfo=timezone.utc)
        record = RawVevent(
            summary="Instant",
            start=RawDate(start),
            rrule="FREQ=DAILY;COUNT=2",
        )
        with pytest.raises(RecurrenceExpansionError):
            expander.expand(record, window_2024)


def test_reconstruct_start_uses_original_time():
    original = datetime(2024, 3, 25, 9, 0, tzinfo=OSLO)
    candidate = datetime(2024, 4, 1, 10, 0, tzinfo=OSLO)
    assert reconstruct_start(candidate, original) == datetime(2024, 4, 1, 9, 0, tzinfo=OSLO)


def test_coerce_until_leaves_utc_alone():
    start = datetime(2024, 1, 1, tzinfo=OSLO)
    rule = "FREQ=DAILY;UNTIL=20240105T000000Z"
    assert _coerce_until(rule, start) == rule


def test_coerce_until_converts_floating():
    start = datetime(2024, 1, 1, tzinfo=OSLO)
    assert _coerce_until("FREQ=DAILY;UNTIL=20240105T100000", start) == (
        "FREQ=DAILY;UNTIL=20240105T090000Z"
    )
