"""Fetch scheduling and batch delivery."""

from ical_feeds.scheduling.dispatcher import (
    Dispatcher,
    EventConsumer,
    EventsReady,
    FetchFailed,
    QueueConsumer,
)
from ical_feeds.scheduling.scheduler import (
    BackoffPolicy,
    FetchScheduler,
    FetchState,
    SourceState,
)

__all__ = [
    "BackoffPolicy",
    "Dispatcher",
    "EventConsumer",
    "EventsReady",
    "FetchFailed",
    "FetchScheduler",
    "FetchState",
    "QueueConsumer",
    "SourceState",
]
