"""Event normalization.

Builds the canonical representation of one occurrence: full-day flag,
symbols, epoch timestamps, source metadata. Also owns the exclusion filter,
which the expander consults before doing any work on a record.

## Full-Day Detection (first match wins)

1. Provider all-day flag (X-MICROSOFT-CDO-ALLDAYEVENT) TRUE/FALSE
2. Date-only DTSTART
3. Start and end both at local midnight and exactly 24 hours apart

## Symbols

Start from the source symbol (a string gets the class-name prefix, a list
is used verbatim, nothing means the default symbol). Recurring instances get
the recurring symbol prepended, full-day events the full-day symbol, each
skipped when already present. Finally the first custom keyword rule whose
pattern matches the title (case-insensitive) replaces the primary symbol.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, time

from ical_feeds.models.event import CanonicalEvent, RawVevent, to_epoch_ms
from ical_feeds.models.source import ExclusionRule, SourceConfig, SymbolSetting
from ical_feeds.processing.dates import TimeParser

logger = logging.getLogger(__name__)

DEFAULT_TITLE = "No Title"
DEFAULT_EVENT_CLASS = "PUBLIC"

_MIDNIGHT = time(0, 0)


def is_excluded(title: str | None, filters: list[str | ExclusionRule]) -> bool:
    """Check a title against exclusion filters (case-insensitive substring)."""
    if not title or not filters:
        return False
    test_title = title.lower()
    for exclude_filter in filters:
        if isinstance(exclude_filter, ExclusionRule):
            needle = exclude_filter.filter_by
        else:
            needle = exclude_filter
        if needle and needle.lower() in test_title:
            return True
    return False


def merge_unique_symbols(first: list[str], second: list[str]) -> list[str]:
    """Concatenate two symbol lists, dropping exact duplicates from the second."""
    merged = list(first)
    for item in second:
        if item not in merged:
            merged.append(item)
    return merged


class EventNormalizer:
    """Builds CanonicalEvent instances for one source.

    Example:
        ```python
        normalizer = EventNormalizer(config, TimeParser(local_tz))
        event = normalizer.build(record, start, end, recurring=True)
        ```
    """

    def __init__(self, config: SourceConfig, time_parser: TimeParser):
        self.config = config
        self.time_parser = time_parser
        self._custom_patterns = self._compile_custom_events()

    def _compile_custom_events(self) -> list[tuple[re.Pattern[str], str]]:
        patterns = []
        for rule in self.config.custom_events:
            if not rule.symbol:
                continue
            try:
                patterns.append((re.compile(rule.keyword, re.IGNORECASE), rule.symbol))
            except re.error as e:
                logger.warning(
                    f"Ignoring custom event keyword {rule.keyword!r} "
                    f"for {self.config.calendar_name}: {e}"
                )
        return patterns

    def is_excluded(self, record: RawVevent) -> bool:
        return is_excluded(record.summary, self.config.excluded_events)

    def is_full_day(self, record: RawVevent, start: datetime, end: datetime) -> bool:
        """Decide whether an occurrence is a full-day event."""
        if record.all_day_flag is not None:
            return record.all_day_flag

        if record.start is not None and record.start.date_only:
            return True

        local_start = self.time_parser.to_local(start)
        local_end = self.time_parser.to_local(end)
        start_is_midnight = local_start.time().replace(microsecond=0) == _MIDNIGHT
        end_is_midnight = local_end.time().replace(microsecond=0) == _MIDNIGHT
        span_hours = int((end.timestamp() - start.timestamp()) // 3600)
        return start_is_midnight and end_is_midnight and span_hours == 24

    def _symbol_array(self, setting: SymbolSetting) -> list[str]:
        if isinstance(setting, list):
            return list(setting)
        prefix = self.config.symbol_class_name
        if isinstance(setting, str) and setting:
            return [prefix + setting]
        return [prefix + self.config.default_symbol]

    def symbols_for(self, title: str, recurring: bool, full_day: bool) -> list[str]:
        """Compute the ordered symbol list for an occurrence."""
        symbols = self._symbol_array(self.config.symbol)

        if recurring and self.config.recurring_symbol:
            symbols = merge_unique_symbols(
                self._symbol_array(self.config.recurring_symbol), symbols
            )

        if full_day and self.config.full_day_symbol:
            symbols = merge_unique_symbols(
                self._symbol_array(self.config.full_day_symbol), symbols
            )

        for pattern, symbol in self._custom_patterns:
            if pattern.search(title):
                primary = self.config.symbol_class_name + symbol
                if symbols:
                    symbols[0] = primary
                else:
                    symbols.append(primary)
                break

        return symbols

    def build(
        self,
        record: RawVevent,
        start: datetime,
        end: datetime,
        recurring: bool = False,
        full_day: bool | None = None,
    ) -> CanonicalEvent:
        """Build the canonical event for one occurrence.

        Args:
            record: Source record
            start: Occurrence start (aware)
            end: Occurrence end (aware)
            recurring: Whether this is an instance of a recurring event
            full_day: Precomputed full-day flag, detected when omitted

        Returns:
            The canonical event, after the source's transformer if any
        """
        if full_day is None:
            full_day = self.is_full_day(record, start, end)
        title = record.summary or DEFAULT_TITLE

        event = CanonicalEvent(
            title=title,
            start_ms=to_epoch_ms(start),
            end_ms=to_epoch_ms(end),
            full_day=full_day,
            recurring=recurring,
            symbols=self.symbols_for(title, recurring, full_day),
            color=self.config.color,
            location=record.location,
            description=record.description,
            url=self.config.url,
            calendar_name=self.config.calendar_name,
            event_class=record.event_class or DEFAULT_EVENT_CLASS,
            first_year=self.time_parser.to_local(start).year,
            geo=record.geo,
        )

        if self.config.event_transformer is not None:
            event = self.config.event_transformer(event)
        return event
