"""Delivery of finished batches and fetch errors to the consumer."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from ical_feeds.models.event import CanonicalEvent
from ical_feeds.models.source import SourceConfig

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EventsReady:
    """A sorted, capped batch for one source."""

    source_id: str
    source_name: str
    url: str
    events: list[CanonicalEvent] = field(default_factory=list)
    fetched_at_ms: int = 0


@dataclass(frozen=True)
class FetchFailed:
    """A failed fetch cycle for one source."""

    source_id: str
    source_name: str
    kind: str
    message: str


class EventConsumer(Protocol):
    """Receiver of dispatcher notifications (the display layer)."""

    def on_events_ready(self, notification: EventsReady) -> None: ...

    def on_fetch_error(self, notification: FetchFailed) -> None: ...


class QueueConsumer:
    """Collects notifications in an asyncio queue.

    `put_nowait` on an unbounded queue never blocks, so any number of
    sources can deliver into the same consumer from the event loop.
    """

    def __init__(self, queue: asyncio.Queue[EventsReady | FetchFailed] | None = None):
        self.queue: asyncio.Queue[EventsReady | FetchFailed] = queue or asyncio.Queue()

    def on_events_ready(self, notification: EventsReady) -> None:
        self.queue.put_nowait(notification)

    def on_fetch_error(self, notification: FetchFailed) -> None:
        self.queue.put_nowait(notification)


class Dispatcher:
    """Hands batches and errors to the consumer. Holds no state of its own."""

    def __init__(self, consumer: EventConsumer):
        self.consumer = consumer

    def emit(
        self,
        config: SourceConfig,
        events: list[CanonicalEvent],
        fetched_at_ms: int | None = None,
    ) -> None:
        """Deliver a batch for a source."""
        logger.info(f"Broadcasting {len(events)} events from {config.calendar_name}")
        notification = EventsReady(
            source_id=config.identity,
            source_name=config.calendar_name,
            url=config.url,
            events=list(events),
            fetched_at_ms=fetched_at_ms if fetched_at_ms is not None else _now_ms(),
        )
        try:
            self.consumer.on_events_ready(notification)
        except Exception:
            logger.exception(f"Consumer failed to accept events for {config.identity}")

    def emit_error(self, config: SourceConfig, kind: str, message: str) -> None:
        """Report a failure for a source without a batch."""
        notification = FetchFailed(
            source_id=config.identity,
            source_name=config.calendar_name,
            kind=kind,
            message=message,
        )
        try:
            self.consumer.on_fetch_error(notification)
        except Exception:
            logger.exception(f"Consumer failed to accept error for {config.identity}")


def _now_ms() -> int:
    return int(time.time() * 1000)
