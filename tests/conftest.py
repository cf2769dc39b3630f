"""Pytest fixtures for iCal feed ingestion tests.

This module provides test fixtures that ensure:
1. No real calendar providers are contacted (retrievers are faked or use
   httpx.MockTransport)
2. Timers never fire on their own (the scheduler gets a manual clock)
3. Local wall-clock logic runs in a fixed timezone
"""

import os
from datetime import datetime, timedelta, timezone

import pytest

# Set test environment BEFORE importing application modules
os.environ.setdefault("TIMEZONE", "Europe/Oslo")
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from dateutil import tz

from ical_feeds.config import Settings
from ical_feeds.models.source import CustomEventRule, SourceConfig
from ical_feeds.processing.dates import TimeParser
from ical_feeds.processing.normalizer import EventNormalizer
from ical_feeds.processing.pipeline import FeedPipeline

OSLO = tz.gettz("Europe/Oslo")


def make_ics(*vevents: str) -> str:
    """Wrap VEVENT bodies into a complete VCALENDAR document."""
    lines = ["BEGIN:VCALENDAR", "VERSION:2.0", "PRODID:-//ical-feeds//tests//EN"]
    for body in vevents:
        lines.append("BEGIN:VEVENT")
        lines.extend(line.strip() for line in body.strip().splitlines())
        lines.append("END:VEVENT")
    lines.append("END:VCALENDAR")
    return "\r\n".join(lines) + "\r\n"


def ics_stamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).strftime("%Y%m%dT%H%M%SZ")


# =============================================================================
# Test Isolation Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reset settings cache before each test to ensure clean state."""
    from ical_feeds.config import get_settings
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def settings() -> Settings:
    """Settings with a fixed timezone and the default retry policy."""
    return Settings(timezone="Europe/Oslo", max_retries=5)


class FakeTimer:
    """Timer handle recorded by FakeClock."""

    def __init__(self, delay, callback):
        self.delay = delay
        self.callback = callback
        self.cancelled = False
        self.fired = False

    def cancel(self):
        self.cancelled = True


class FakeClock:
    """Manual replacement for loop.call_later."""

    def __init__(self):
        self.timers: list[FakeTimer] = []

    def call_later(self, delay, callback):
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer

    @property
    def pending(self) -> list[FakeTimer]:
        return [t for t in self.timers if not t.cancelled and not t.fired]

    def fire_next(self):
        timer = self.pending[0]
        timer.fired = True
        timer.callback()
        return timer


class FakeRetriever:
    """Retriever double returning queued results in order.

    The last result is repeated once the queue runs dry. Exceptions are
    raised instead of returned.
    """

    def __init__(self, *results):
        self.results = list(results)
        self.calls: list[str] = []
        self.closed = False

    async def fetch(self, url, auth=None, self_signed_cert=False, timeout=None):
        self.calls.append(url)
        result = self.results.pop(0) if len(self.results) > 1 else self.results[0]
        if isinstance(result, Exception):
            raise result
        return result

    async def aclose(self):
        self.closed = True


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# =============================================================================
# Sample Data Fixtures
# =============================================================================


@pytest.fixture
def local_tz():
    return OSLO


@pytest.fixture
def time_parser() -> TimeParser:
    return TimeParser(OSLO)


@pytest.fixture
def pipeline() -> FeedPipeline:
    return FeedPipeline(OSLO)


@pytest.fixture
def sample_config() -> SourceConfig:
    """A plain source with default settings."""
    return SourceConfig(url="https://calendar.example.com/team.ics")


@pytest.fixture
def symbol_config() -> SourceConfig:
    """A source with keyword rules and an exclusion filter."""
    return SourceConfig(
        url="https://calendar.example.com/team.ics",
        excluded_events=["holiday"],
        custom_events=[
            CustomEventRule(keyword="meeting", symbol="users"),
            CustomEventRule(keyword="standup", symbol="clock"),
        ],
    )


@pytest.fixture
def normalizer(sample_config: SourceConfig, time_parser: TimeParser) -> EventNormalizer:
    return EventNormalizer(sample_config, time_parser)


@pytest.fixture
def upcoming_ics() -> str:
    """A feed with one event tomorrow, so it lands in any default window."""
    start = (datetime.now(timezone.utc) + timedelta(days=1)).replace(
        minute=0, second=0, microsecond=0
    )
    return make_ics(
        f"""
        UID:upcoming-1
        SUMMARY:Team sync
        DTSTART:{ics_stamp(start)}
        DTEND:{ics_stamp(start + timedelta(hours=1))}
        """
    )
