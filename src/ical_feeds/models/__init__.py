"""Domain models for calendar feed ingestion."""

from ical_feeds.models.event import (
    CanonicalEvent,
    RawDate,
    RawVevent,
    to_epoch_ms,
)
from ical_feeds.models.source import (
    AuthConfig,
    CalendarEntry,
    CustomEventRule,
    ExclusionRule,
    InstanceConfig,
    SourceConfig,
    calendar_name_from_url,
)

__all__ = [
    # Events
    "CanonicalEvent",
    "RawDate",
    "RawVevent",
    "to_epoch_ms",
    # Sources
    "AuthConfig",
    "CalendarEntry",
    "CustomEventRule",
    "ExclusionRule",
    "InstanceConfig",
    "SourceConfig",
    "calendar_name_from_url",
]
