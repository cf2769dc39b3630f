"""Command-line interface for iCal feed ingestion."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from ical_feeds import __version__
from ical_feeds.config import Settings, get_settings
from ical_feeds.errors import CalendarFeedError
from ical_feeds.feeds.retriever import FeedRetriever
from ical_feeds.models.event import CanonicalEvent
from ical_feeds.models.source import SourceConfig
from ical_feeds.processing.pipeline import FeedPipeline
from ical_feeds.scheduling.dispatcher import (
    Dispatcher,
    EventsReady,
    QueueConsumer,
)
from ical_feeds.scheduling.scheduler import FetchScheduler

logger = logging.getLogger(__name__)


def _events_json(events: list[CanonicalEvent]) -> str:
    return json.dumps(
        [event.model_dump(mode="json", by_alias=True) for event in events],
        indent=2,
    )


def _source_config(url: str, args: argparse.Namespace, settings: Settings) -> SourceConfig:
    return SourceConfig(
        url=url,
        maximum_entries=args.maximum_entries or settings.default_maximum_entries,
        maximum_number_of_days=(
            args.days if args.days is not None else settings.default_maximum_number_of_days
        ),
        past_days_count=(
            args.past_days if args.past_days is not None else settings.default_past_days_count
        ),
        fetch_interval=getattr(args, "interval", None) or settings.default_fetch_interval_ms,
        excluded_events=args.exclude or [],
        self_signed_cert=args.insecure,
    )


async def run_fetch(url: str, args: argparse.Namespace, settings: Settings) -> int:
    """Fetch one feed once and print its batch as JSON."""
    config = _source_config(url, args, settings)
    pipeline = FeedPipeline(settings.local_timezone)
    async with FeedRetriever(
        user_agent=settings.user_agent,
        timeout=settings.request_timeout_seconds,
    ) as retriever:
        try:
            raw_text = await retriever.fetch(
                config.url, self_signed_cert=config.self_signed_cert
            )
            events = pipeline.process(raw_text, config)
        except CalendarFeedError as e:
            print(f"Error [{e.kind}]: {e.message}", file=sys.stderr)
            return 1
    print(_events_json(events))
    return 0


async def run_watch(urls: list[str], args: argparse.Namespace, settings: Settings) -> int:
    """Schedule every feed and print notifications until interrupted."""
    consumer = QueueConsumer()
    async with FetchScheduler(Dispatcher(consumer), settings=settings) as scheduler:
        for url in urls:
            scheduler.start(_source_config(url, args, settings))

        while True:
            notification = await consumer.queue.get()
            if isinstance(notification, EventsReady):
                print(f"# {notification.source_name}: {len(notification.events)} events")
                print(_events_json(notification.events))
            else:
                print(
                    f"# {notification.source_name}: error [{notification.kind}] "
                    f"{notification.message}",
                    file=sys.stderr,
                )
            sys.stdout.flush()


def _add_source_options(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--maximum-entries",
        type=int,
        default=None,
        help="Maximum events per batch",
    )
    parser.add_argument(
        "--days",
        type=int,
        default=None,
        help="Days ahead to include",
    )
    parser.add_argument(
        "--past-days",
        type=int,
        default=None,
        help="Days back to include",
    )
    parser.add_argument(
        "--exclude",
        action="append",
        metavar="TEXT",
        help="Drop events whose title contains TEXT (repeatable)",
    )
    parser.add_argument(
        "--insecure",
        action="store_true",
        help="Accept self-signed certificates",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="iCal Feed Ingestion - Fetch, expand and normalize calendar feeds"
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        help="Logging level (default: LOG_LEVEL or INFO)",
    )

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # Fetch command
    fetch_parser = subparsers.add_parser(
        "fetch", help="Fetch a feed once and print its events as JSON"
    )
    fetch_parser.add_argument("url", help="Feed URL (http, https or webcal)")
    _add_source_options(fetch_parser)

    # Watch command
    watch_parser = subparsers.add_parser(
        "watch", help="Fetch feeds on their interval and print every batch"
    )
    watch_parser.add_argument("urls", nargs="+", help="Feed URLs")
    watch_parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Fetch interval in milliseconds",
    )
    _add_source_options(watch_parser)

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point for the CLI."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0

    settings = get_settings()
    logging.basicConfig(
        level=(args.log_level or settings.log_level).upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    try:
        if args.command == "fetch":
            return asyncio.run(run_fetch(args.url, args, settings))
        return asyncio.run(run_watch(args.urls, args, settings))
    except KeyboardInterrupt:
        logger.info("Interrupted, shutting down")
        return 130


if __name__ == "__main__":
    sys.exit(main())
