"""Event models: raw parser records and the canonical output event."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True)
class RawDate:
    """A date property value as read from the feed.

    `value` is whatever the parser produced (datetime, date, string or a
    component mapping); `tzid` is the TZID parameter when one was present.
    """

    value: Any
    tzid: str | None = None

    @property
    def date_only(self) -> bool:
        """True when the value carries no time-of-day (VALUE=DATE)."""
        return isinstance(self.value, date) and not isinstance(self.value, datetime)


@dataclass(frozen=True)
class RawVevent:
    """One VEVENT as handed over by the raw parser. Read-only."""

    uid: str | None = None
    summary: str | None = None
    start: RawDate | None = None
    end: RawDate | None = None
    duration: timedelta | None = None
    rrule: str | None = None
    exdates: tuple[RawDate, ...] = ()
    recurrence_id: RawDate | None = None
    location: str | None = None
    description: str | None = None
    event_class: str | None = None
    geo: tuple[float, float] | None = None
    all_day_flag: bool | None = None  # X-MICROSOFT-CDO-ALLDAYEVENT

    @property
    def is_recurring(self) -> bool:
        return bool(self.rrule)


class CanonicalEvent(BaseModel):
    """A normalized occurrence, ready for the display layer.

    Serialize with `model_dump(by_alias=True)` to get the wire names
    (`startDate`, `fullDayEvent`, `symbol`, ...).
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    title: str = Field(..., description="Event title")
    start_ms: int = Field(..., alias="startDate", description="Start, epoch ms")
    end_ms: int = Field(..., alias="endDate", description="End, epoch ms")
    full_day: bool = Field(default=False, alias="fullDayEvent")
    recurring: bool = Field(default=False, alias="recurringEvent")
    symbols: list[str] = Field(default_factory=list, alias="symbol")
    color: str | None = None
    location: str | None = None
    description: str | None = None
    url: str = Field(..., description="Feed URL the event came from")
    calendar_name: str = Field(..., alias="calendarName")
    event_class: str = Field(default="PUBLIC", alias="class")
    first_year: int | None = Field(default=None, alias="firstYear")
    geo: tuple[float, float] | None = None

    @property
    def start(self) -> datetime:
        """Start as an aware UTC datetime."""
        return _from_ms(self.start_ms)

    @property
    def end(self) -> datetime:
        """End as an aware UTC datetime."""
        return _from_ms(self.end_ms)

    @property
    def duration(self) -> timedelta:
        return timedelta(milliseconds=self.end_ms - self.start_ms)


def _from_ms(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def to_epoch_ms(value: datetime) -> int:
    """Convert an aware datetime to integer epoch milliseconds."""
    return int(round(value.timestamp() * 1000))
