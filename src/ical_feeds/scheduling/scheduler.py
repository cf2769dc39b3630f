"""Per-source fetch scheduling.

Each registered source runs its own cycle on the event loop:

```
Idle -> Fetching -> ScheduledWait -> Fetching ...     (success)
                 -> Backoff       -> Fetching ...     (failure)
                 -> Stopped                           (stop / retries exhausted)
```

## Retry Policy

On failure the error is reported, then either the source stops (the retry
ceiling has been reached) or a backoff timer is armed:

| Consecutive failure | Delay |
|---------------------|-------|
| 1 | 60 s |
| 2 | 120 s |
| 3 | 240 s |
| 4 | 480 s |
| 5 | 960 s |
| 6 | stopped, reported once |

A success resets the counter. A stopped source stays registered until
`stop()` or `restart()`.

## Known Limits

- Timers are only armed after a cycle completes, which is the only thing
  keeping two fetches for one source from overlapping.
- `stop()` cancels the timer but not a fetch already in flight; that
  fetch's result is dropped when it resolves.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Protocol

from tenacity import RetryCallState, wait_exponential

from ical_feeds.config import Settings, get_settings
from ical_feeds.errors import (
    CalendarFeedError,
    DuplicateSourceError,
    MalformedUrlError,
)
from ical_feeds.feeds.retriever import FeedRetriever, validate_feed_url
from ical_feeds.models.event import to_epoch_ms
from ical_feeds.models.source import SourceConfig
from ical_feeds.processing.pipeline import FeedPipeline
from ical_feeds.scheduling.dispatcher import Dispatcher

logger = logging.getLogger(__name__)


class SourceState(str, Enum):
    """Lifecycle state of one source."""

    IDLE = "idle"
    FETCHING = "fetching"
    SCHEDULED_WAIT = "scheduled_wait"
    BACKOFF = "backoff"
    STOPPED = "stopped"


class TimerHandle(Protocol):
    def cancel(self) -> None: ...


CallLater = Callable[[float, Callable[[], None]], TimerHandle]


@dataclass
class FetchState:
    """Mutable per-source state. Owned by the scheduler's registry entry."""

    config: SourceConfig
    state: SourceState = SourceState.IDLE
    retry_count: int = 0
    timer: TimerHandle | None = None
    last_fetch: datetime | None = None

    def clear_timer(self) -> None:
        if self.timer is not None:
            self.timer.cancel()
            self.timer = None


class BackoffPolicy:
    """Exponential backoff with a cap, expressed as a tenacity wait strategy."""

    def __init__(self, base_seconds: float = 60.0, max_seconds: float = 960.0):
        self._wait = wait_exponential(multiplier=base_seconds, max=max_seconds)

    def delay(self, retry_count: int) -> float:
        """Delay before the retry following `retry_count` earlier retries."""
        retry_state = RetryCallState(retry_object=None, fn=None, args=(), kwargs={})
        retry_state.attempt_number = retry_count + 1
        return float(self._wait(retry_state))


class FetchScheduler:
    """Owns the registry of active sources and drives their fetch cycles.

    `start`, `stop` and `restart` must be called from a running event loop.

    Example:
        ```python
        consumer = QueueConsumer()
        scheduler = FetchScheduler(Dispatcher(consumer))
        scheduler.start(SourceConfig(url="https://example.com/team.ics"))
        notification = await consumer.queue.get()
        await scheduler.aclose()
        ```
    """

    def __init__(
        self,
        dispatcher: Dispatcher,
        retriever: FeedRetriever | None = None,
        pipeline: FeedPipeline | None = None,
        settings: Settings | None = None,
        call_later: CallLater | None = None,
    ):
        """Initialize the scheduler.

        Args:
            dispatcher: Receives batches and error reports
            retriever: Feed retriever (created from settings when omitted)
            pipeline: Batch builder (created from settings when omitted)
            settings: Application settings
            call_later: Timer factory, defaults to the running loop's
        """
        settings = settings or get_settings()
        self._dispatcher = dispatcher
        self._retriever = retriever or FeedRetriever(
            user_agent=settings.user_agent,
            timeout=settings.request_timeout_seconds,
        )
        self._pipeline = pipeline or FeedPipeline(settings.local_timezone)
        self._timeout = settings.request_timeout_seconds
        self._backoff = BackoffPolicy(
            settings.backoff_base_seconds, settings.backoff_max_seconds
        )
        self.max_retries = settings.max_retries
        self._call_later = call_later
        self._sources: dict[str, FetchState] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    async def __aenter__(self) -> FetchScheduler:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    @property
    def source_ids(self) -> list[str]:
        return list(self._sources)

    def status(self, source_id: str) -> SourceState | None:
        source = self._sources.get(source_id)
        return source.state if source else None

    def get_state(self, source_id: str) -> FetchState | None:
        return self._sources.get(source_id)

    def backoff_delay(self, retry_count: int) -> float:
        return self._backoff.delay(retry_count)

    def start(self, config: SourceConfig) -> None:
        """Register a source and begin its first fetch immediately.

        A malformed URL is reported once; the source stays registered but
        stopped.

        Raises:
            DuplicateSourceError: If the identity is already registered
        """
        source_id = config.identity
        if source_id in self._sources:
            logger.warning(f"Fetcher already exists for: {config.url}")
            raise DuplicateSourceError(source_id)

        source = FetchState(config=config)
        self._sources[source_id] = source

        try:
            validate_feed_url(config.url)
        except MalformedUrlError as e:
            logger.error(f"Malformed calendar URL: {config.url}")
            source.state = SourceState.STOPPED
            self._dispatcher.emit_error(config, e.kind, "Malformed URL")
            return

        logger.info(f"Creating fetcher for: {config.calendar_name} ({config.url})")
        self._begin_cycle(source)

    def stop(self, source_id: str) -> None:
        """Unregister a source and cancel its pending timer. Idempotent."""
        source = self._sources.pop(source_id, None)
        if source is None:
            return
        source.clear_timer()
        source.state = SourceState.STOPPED
        logger.info(f"Stopped fetcher: {source_id}")

    def restart(self, source_id: str) -> None:
        """Start a new cycle for a registered source that has stopped.

        Raises:
            KeyError: If the source is not registered
        """
        source = self._sources[source_id]
        if source.state != SourceState.STOPPED:
            logger.debug(f"Source {source_id} is {source.state.value}, not restarting")
            return
        try:
            validate_feed_url(source.config.url)
        except MalformedUrlError as e:
            self._dispatcher.emit_error(source.config, e.kind, "Malformed URL")
            return
        source.retry_count = 0
        self._begin_cycle(source)

    async def join(self) -> None:
        """Wait until no fetch cycle is in flight."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        """Stop every source, wait for in-flight cycles and close the retriever."""
        for source_id in list(self._sources):
            self.stop(source_id)
        await self.join()
        await self._retriever.aclose()

    def _is_current(self, source: FetchState) -> bool:
        return self._sources.get(source.config.identity) is source

    def _schedule(self, delay: float, callback: Callable[[], None]) -> TimerHandle:
        if self._call_later is not None:
            return self._call_later(delay, callback)
        return asyncio.get_running_loop().call_later(delay, callback)

    def _arm(self, source: FetchState, delay: float, state: SourceState) -> None:
        source.clear_timer()
        source.state = state
        logger.debug(
            f"Scheduling next fetch for {source.config.calendar_name} in {delay}s"
        )
        source.timer = self._schedule(delay, lambda: self._on_timer(source))

    def _on_timer(self, source: FetchState) -> None:
        source.timer = None
        if not self._is_current(source):
            return
        if source.state not in (SourceState.SCHEDULED_WAIT, SourceState.BACKOFF):
            return
        self._begin_cycle(source)

    def _begin_cycle(self, source: FetchState) -> None:
        source.clear_timer()
        source.state = SourceState.FETCHING
        task = asyncio.get_running_loop().create_task(
            self._run_cycle(source),
            name=f"fetch:{source.config.identity}",
        )
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run_cycle(self, source: FetchState) -> None:
        config = source.config
        logger.info(f"Fetching calendar: {config.calendar_name}")

        error: CalendarFeedError | None = None
        kind = message = ""
        try:
            raw_text = await self._retriever.fetch(
                config.url,
                auth=config.auth,
                self_signed_cert=config.self_signed_cert,
                timeout=self._timeout,
            )
            events = self._pipeline.process(raw_text, config)
        except CalendarFeedError as e:
            error = e
            kind, message = e.kind, e.message
        except Exception as e:
            logger.exception(f"Unexpected error fetching {config.calendar_name}")
            error = CalendarFeedError(str(e), source=config.identity)
            kind, message = "unexpected", str(e) or type(e).__name__

        if not self._is_current(source):
            logger.debug(f"Discarding result for stopped source {config.identity}")
            return

        if error is not None:
            self._handle_failure(source, error, kind, message)
            return

        source.retry_count = 0
        source.last_fetch = datetime.now(timezone.utc)
        logger.info(
            f"Successfully fetched {len(events)} events from {config.calendar_name}"
        )
        self._dispatcher.emit(config, events, fetched_at_ms=to_epoch_ms(source.last_fetch))
        self._arm(source, config.fetch_interval_seconds, SourceState.SCHEDULED_WAIT)

    def _handle_failure(
        self,
        source: FetchState,
        error: CalendarFeedError,
        kind: str,
        message: str,
    ) -> None:
        config = source.config
        logger.error(f"Error fetching {config.calendar_name}: {message}")

        if not error.retryable:
            source.clear_timer()
            source.state = SourceState.STOPPED
            self._dispatcher.emit_error(config, kind, message)
            return

        if source.retry_count >= self.max_retries:
            source.clear_timer()
            source.state = SourceState.STOPPED
            logger.error(f"Max retries reached for {config.calendar_name}")
            self._dispatcher.emit_error(
                config,
                kind,
                f"{message} (giving up after {self.max_retries} retries)",
            )
            return

        self._dispatcher.emit_error(config, kind, message)
        delay = self.backoff_delay(source.retry_count)
        source.retry_count += 1
        logger.warning(
            f"Retrying {config.calendar_name} in {delay}s "
            f"(attempt {source.retry_count}/{self.max_retries})"
        )
        self._arm(source, delay, SourceState.BACKOFF)
