"""Recurrence expansion, normalization and batch assembly."""

from ical_feeds.processing.dates import TimeParser, minute_key
from ical_feeds.processing.expander import RecurrenceExpander, TimeWindow
from ical_feeds.processing.normalizer import EventNormalizer, is_excluded
from ical_feeds.processing.pipeline import FeedPipeline, assemble_batch

__all__ = [
    "EventNormalizer",
    "FeedPipeline",
    "RecurrenceExpander",
    "TimeParser",
    "TimeWindow",
    "assemble_batch",
    "is_excluded",
    "minute_key",
]
