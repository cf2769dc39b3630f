"""Batch assembly for one feed: parse, expand, sort, cap."""

from __future__ import annotations

import logging
from collections.abc import Callable
from datetime import datetime, tzinfo

from ical_feeds.errors import CalendarFeedError, FeedParseError
from ical_feeds.feeds.parser import parse_feed
from ical_feeds.models.event import CanonicalEvent, RawVevent
from ical_feeds.models.source import SourceConfig
from ical_feeds.processing.dates import TimeParser
from ical_feeds.processing.expander import RecurrenceExpander, TimeWindow
from ical_feeds.processing.normalizer import EventNormalizer

logger = logging.getLogger(__name__)

FeedParser = Callable[[str], list[RawVevent]]


def assemble_batch(events: list[CanonicalEvent], maximum_entries: int) -> list[CanonicalEvent]:
    """Sort ascending by start and keep the earliest `maximum_entries`."""
    ordered = sorted(events, key=lambda event: event.start_ms)
    return ordered[:maximum_entries]


class FeedPipeline:
    """Turns raw feed text into the batch delivered for one source.

    Example:
        ```python
        pipeline = FeedPipeline(local_tz=tz.gettz("Europe/Oslo"))
        events = pipeline.process(raw_text, config)
        ```
    """

    def __init__(self, local_tz: tzinfo, parser: FeedParser = parse_feed):
        self.time_parser = TimeParser(local_tz)
        self.parser = parser

    def window_for(self, config: SourceConfig, now: datetime | None = None) -> TimeWindow:
        now = now or datetime.now(self.time_parser.local_tz)
        return TimeWindow.around(
            now,
            past_days=config.past_days_count,
            future_days=config.maximum_number_of_days,
        )

    def expand_records(
        self,
        records: list[RawVevent],
        config: SourceConfig,
        now: datetime | None = None,
    ) -> list[CanonicalEvent]:
        """Expand and normalize records into a sorted, capped batch.

        A record that fails to expand is logged and skipped; the rest of
        the batch is unaffected.
        """
        expander = RecurrenceExpander(EventNormalizer(config, self.time_parser))
        window = self.window_for(config, now)

        events: list[CanonicalEvent] = []
        for record in records:
            try:
                events.extend(expander.expand(record, window))
            except CalendarFeedError as e:
                logger.warning(
                    f"Error processing event {record.uid or record.summary!r} "
                    f"from {config.calendar_name}: {e}"
                )
            except Exception:
                logger.exception(
                    f"Unexpected error processing event {record.uid or record.summary!r} "
                    f"from {config.calendar_name}"
                )

        return assemble_batch(events, config.maximum_entries)

    def process(
        self,
        raw_text: str,
        config: SourceConfig,
        now: datetime | None = None,
    ) -> list[CanonicalEvent]:
        """Parse feed text and build the batch.

        Raises:
            FeedParseError: If the feed text cannot be parsed
        """
        try:
            records = self.parser(raw_text)
        except FeedParseError:
            logger.error(f"Error parsing iCal data for {config.calendar_name}")
            raise
        return self.expand_records(records, config, now)
