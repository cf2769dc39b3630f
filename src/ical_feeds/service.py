"""Instance-level calendar registration.

A display instance configures several calendars at once and shares defaults
between them. The service expands one `InstanceConfig` into per-calendar
`SourceConfig`s and registers them with the scheduler.

## Default Resolution

Each field resolves to the first set value of:

1. The calendar entry
2. The instance
3. `Settings.default_*`

Source ids are `<instance_id>_<index>`, so stopping an instance stops every
source whose id carries that prefix.
"""

from __future__ import annotations

import logging
from typing import Any

from ical_feeds.config import Settings, get_settings
from ical_feeds.errors import DuplicateSourceError
from ical_feeds.models.source import CalendarEntry, InstanceConfig, SourceConfig
from ical_feeds.scheduling.dispatcher import Dispatcher
from ical_feeds.scheduling.scheduler import FetchScheduler

logger = logging.getLogger(__name__)

NO_CALENDARS_ID = "no-calendars"
NO_CALENDARS_NAME = "No Calendars"


def _first(*values: Any) -> Any:
    for value in values:
        if value:
            return value
    return values[-1]


class CalendarService:
    """Registers and stops the calendars of display instances."""

    def __init__(
        self,
        scheduler: FetchScheduler,
        dispatcher: Dispatcher,
        settings: Settings | None = None,
    ):
        self.scheduler = scheduler
        self.dispatcher = dispatcher
        self.settings = settings or get_settings()

    def source_config_for(
        self,
        instance: InstanceConfig,
        index: int,
        entry: CalendarEntry,
    ) -> SourceConfig:
        """Build the effective config of one calendar of an instance."""
        s = self.settings
        return SourceConfig(
            url=entry.url,
            source_id=f"{instance.instance_id}_{index}",
            name=entry.name,
            auth=entry.auth,
            self_signed_cert=entry.self_signed_cert,
            fetch_interval=_first(
                entry.fetch_interval, instance.fetch_interval, s.default_fetch_interval_ms
            ),
            maximum_entries=_first(
                entry.maximum_entries, instance.maximum_entries, s.default_maximum_entries
            ),
            maximum_number_of_days=_first(
                entry.maximum_number_of_days,
                instance.maximum_number_of_days,
                s.default_maximum_number_of_days,
            ),
            past_days_count=_first(
                entry.past_days_count, instance.past_days_count, s.default_past_days_count
            ),
            excluded_events=_first(entry.excluded_events, instance.excluded_events, []),
            symbol=entry.symbol,
            default_symbol=_first(instance.default_symbol, s.default_symbol),
            symbol_class_name=_first(
                entry.symbol_class_name,
                instance.default_symbol_class_name,
                s.default_symbol_class_name,
            ),
            recurring_symbol=_first(
                entry.recurring_symbol, instance.recurring_symbol, s.default_recurring_symbol
            ),
            full_day_symbol=_first(
                entry.full_day_symbol, instance.full_day_symbol, s.default_full_day_symbol
            ),
            custom_events=_first(entry.custom_events, instance.custom_events, []),
            color=entry.color,
            event_transformer=instance.event_transformer,
        )

    def build_source_configs(self, instance: InstanceConfig) -> list[SourceConfig]:
        return [
            self.source_config_for(instance, index, entry)
            for index, entry in enumerate(instance.calendars)
        ]

    def start_instance(self, instance: InstanceConfig) -> list[str]:
        """Register every calendar of an instance.

        Calendars that are already registered are skipped with a warning.
        An instance without calendars gets one empty batch so the display
        can render its empty state.

        Returns:
            Ids of the sources started by this call
        """
        logger.info(f"Adding calendars for instance: {instance.instance_id}")

        if not instance.calendars:
            logger.info(f"No calendars configured for instance {instance.instance_id}")
            placeholder = SourceConfig(
                url="",
                source_id=NO_CALENDARS_ID,
                name=NO_CALENDARS_NAME,
            )
            self.dispatcher.emit(placeholder, [])
            return []

        started: list[str] = []
        for config in self.build_source_configs(instance):
            try:
                self.scheduler.start(config)
            except DuplicateSourceError as e:
                logger.warning(f"Skipping calendar {config.url}: {e}")
                continue
            started.append(config.identity)
        return started

    def stop_instance(self, instance_id: str) -> list[str]:
        """Stop every source registered for an instance.

        Returns:
            Ids of the sources that were stopped
        """
        prefix = f"{instance_id}_"
        stopped = [
            source_id
            for source_id in self.scheduler.source_ids
            if source_id.startswith(prefix)
        ]
        for source_id in stopped:
            self.scheduler.stop(source_id)
        logger.info(f"Stopped {len(stopped)} calendar(s) for instance {instance_id}")
        return stopped
