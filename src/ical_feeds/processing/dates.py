"""Time parsing strategies.

Feeds disagree wildly on how they express time. A `RawDate` is turned into
an aware datetime by the first strategy in an ordered list whose
precondition holds:

1. `ProviderTimezoneStrategy`: TZID is a provider-specific marker that no
   tz database knows (`tzone://Microsoft/Custom`). The wall-clock fields are
   kept and reinterpreted in local time.
2. `StandardStrategy`: `datetime`, `date` or ISO-8601 strings. Aware values
   keep their zone, floating times and dates become local.
3. `ComponentStrategy`: objects or mappings with year/month/day (and
   optional hour/minute/second) fields, rebuilt as local time.
4. `BestEffortStrategy`: any other string, via `dateutil.parser`.

Each strategy only runs when `applies()` is true and then always produces a
value, so they can be tested in isolation.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Any, Protocol

from dateutil import parser as date_parser

from ical_feeds.errors import DateParseError
from ical_feeds.models.event import RawDate

logger = logging.getLogger(__name__)

PROVIDER_TIMEZONE_MARKERS = ("tzone://microsoft/",)

_COMPONENT_FIELDS = ("year", "month", "day")


def _attach_local(value: datetime, local_tz: tzinfo) -> datetime:
    return value.replace(tzinfo=local_tz)


class TimeStrategy(Protocol):
    name: str

    def applies(self, raw: RawDate) -> bool: ...

    def parse(self, raw: RawDate, local_tz: tzinfo) -> datetime: ...


class ProviderTimezoneStrategy:
    """Provider-specific TZID marker: keep the wall-clock time, use local zone."""

    name = "provider_timezone"

    def applies(self, raw: RawDate) -> bool:
        if not raw.tzid:
            return False
        if not isinstance(raw.value, datetime):
            return False
        tzid = raw.tzid.lower()
        return any(tzid.startswith(marker) for marker in PROVIDER_TIMEZONE_MARKERS)

    def parse(self, raw: RawDate, local_tz: tzinfo) -> datetime:
        logger.debug(f"Provider timezone {raw.tzid} detected, using local time")
        return _attach_local(raw.value.replace(tzinfo=None), local_tz)


class StandardStrategy:
    """Plain datetime/date values and ISO-8601 strings."""

    name = "standard"

    def applies(self, raw: RawDate) -> bool:
        if isinstance(raw.value, date):
            return True
        if isinstance(raw.value, str):
            try:
                datetime.fromisoformat(raw.value.strip().replace("Z", "+00:00"))
            except ValueError:
                return False
            return True
        return False

    def parse(self, raw: RawDate, local_tz: tzinfo) -> datetime:
        value = raw.value
        if isinstance(value, str):
            value = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
        if not isinstance(value, datetime):
            return datetime.combine(value, time(0, 0), tzinfo=local_tz)
        if value.tzinfo is None or value.utcoffset() is None:
            return _attach_local(value, local_tz)
        return value


class ComponentStrategy:
    """Rebuild a local datetime from individual date/time component fields."""

    name = "components"

    def _get(self, value: Any, key: str) -> Any:
        if isinstance(value, Mapping):
            return value.get(key)
        return getattr(value, key, None)

    def applies(self, raw: RawDate) -> bool:
        value = raw.value
        if value is None or isinstance(value, (date, str)):
            return False
        try:
            return all(int(self._get(value, key)) > 0 for key in _COMPONENT_FIELDS) and (
                1 <= int(self._get(value, "month")) <= 12
            )
        except (TypeError, ValueError):
            return False

    def parse(self, raw: RawDate, local_tz: tzinfo) -> datetime:
        value = raw.value
        year = int(self._get(value, "year"))
        month = int(self._get(value, "month"))
        day = int(self._get(value, "day"))
        base = datetime(year, month, 1, tzinfo=local_tz)
        # Overflowing day counts roll into the next month instead of failing.
        result = base + timedelta(days=day - 1)
        return result.replace(
            hour=int(self._get(value, "hour") or 0) % 24,
            minute=int(self._get(value, "minute") or 0) % 60,
            second=int(self._get(value, "second") or 0) % 60,
        )


class BestEffortStrategy:
    """Last resort: let dateutil make sense of any string."""

    name = "best_effort"

    def applies(self, raw: RawDate) -> bool:
        if not isinstance(raw.value, str) or not raw.value.strip():
            return False
        try:
            date_parser.parse(raw.value)
        except (ValueError, OverflowError):
            return False
        return True

    def parse(self, raw: RawDate, local_tz: tzinfo) -> datetime:
        value = date_parser.parse(raw.value)
        if value.tzinfo is None:
            return _attach_local(value, local_tz)
        return value


DEFAULT_STRATEGIES: tuple[TimeStrategy, ...] = (
    ProviderTimezoneStrategy(),
    StandardStrategy(),
    ComponentStrategy(),
    BestEffortStrategy(),
)


class TimeParser:
    """Applies the ordered strategy list to raw date values."""

    def __init__(
        self,
        local_tz: tzinfo,
        strategies: Sequence[TimeStrategy] = DEFAULT_STRATEGIES,
    ):
        self.local_tz = local_tz
        self.strategies = tuple(strategies)

    def parse(self, raw: RawDate | None) -> datetime:
        """Interpret a raw date value.

        Raises:
            DateParseError: If no strategy applies
        """
        if raw is None:
            raise DateParseError("Missing date value")
        for strategy in self.strategies:
            if strategy.applies(raw):
                return strategy.parse(raw, self.local_tz)
        raise DateParseError(f"Unparseable date value: {raw.value!r}")

    def to_local(self, value: datetime) -> datetime:
        """Express an aware datetime in the local zone."""
        return value.astimezone(self.local_tz)


def minute_key(value: datetime) -> int:
    """Minute-resolution identity of an instant, for dedupe/exception checks."""
    return int(value.timestamp() // 60)
