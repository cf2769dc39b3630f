"""Source configuration models.

Field names are snake_case; the camelCase keys used by the host module's
configuration (`fetchInterval`, `excludedEvents`, `customEvents`, ...) are
accepted as aliases, so a config dict can be validated directly:

```python
config = SourceConfig.model_validate({
    "url": "https://example.com/team.ics",
    "maximumEntries": 20,
    "excludedEvents": ["holiday", {"filterBy": "birthday"}],
})
```
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from ical_feeds.models.event import CanonicalEvent

EventTransformer = Callable[[CanonicalEvent], CanonicalEvent]
SymbolSetting = str | list[str] | None


class _ConfigModel(BaseModel):
    model_config = ConfigDict(
        frozen=True,
        populate_by_name=True,
        alias_generator=to_camel,
        arbitrary_types_allowed=True,
    )


class AuthConfig(_ConfigModel):
    """Feed authentication.

    `bearer` sends `pass` as the bearer token; any other method sends HTTP
    basic auth when both user and pass are set.
    """

    method: Literal["basic", "bearer"] | None = None
    user: str | None = None
    password: str | None = Field(default=None, alias="pass")


class ExclusionRule(_ConfigModel):
    """Object form of an exclusion filter: `{"filterBy": "text"}`."""

    filter_by: str


class CustomEventRule(_ConfigModel):
    """Keyword rule that overrides the primary symbol of matching titles."""

    keyword: str
    symbol: str = ""


ExclusionFilter = str | ExclusionRule


def calendar_name_from_url(url: str) -> str:
    """Derive a display name from the last path segment of a feed URL."""
    try:
        path = urlsplit(url).path
    except ValueError:
        return "Calendar"
    name = path.rstrip("/").split("/")[-1].replace(".ics", "") if path else ""
    return name or "Calendar"


class SourceConfig(_ConfigModel):
    """Immutable settings for one calendar source."""

    url: str = Field(..., description="Feed URL (http, https or webcal)")
    source_id: str | None = Field(
        default=None, description="Identity; defaults to the URL"
    )
    name: str | None = Field(default=None, description="Display name")

    auth: AuthConfig | None = None
    self_signed_cert: bool = False

    fetch_interval: int = Field(default=60_000, ge=1, description="Milliseconds")
    maximum_entries: int = Field(default=10, ge=1)
    maximum_number_of_days: int = Field(default=365, ge=0)
    past_days_count: int = Field(default=0, ge=0)

    excluded_events: list[ExclusionFilter] = Field(default_factory=list)

    symbol: SymbolSetting = None
    default_symbol: str = "calendar-alt"
    symbol_class_name: str = "fas fa-"
    recurring_symbol: SymbolSetting = "repeat"
    full_day_symbol: SymbolSetting = "clock"
    custom_events: list[CustomEventRule] = Field(default_factory=list)
    color: str | None = None

    event_transformer: EventTransformer | None = Field(default=None, exclude=True)

    @property
    def identity(self) -> str:
        """Registry key for this source."""
        return self.source_id or self.url

    @property
    def calendar_name(self) -> str:
        return self.name or calendar_name_from_url(self.url)

    @property
    def fetch_interval_seconds(self) -> float:
        return self.fetch_interval / 1000


class CalendarEntry(_ConfigModel):
    """One calendar inside an instance configuration.

    Unset fields inherit the instance-level value.
    """

    url: str
    name: str | None = None
    auth: AuthConfig | None = None
    self_signed_cert: bool = False
    color: str | None = None
    fetch_interval: int | None = Field(default=None, ge=1)
    maximum_entries: int | None = Field(default=None, ge=1)
    maximum_number_of_days: int | None = Field(default=None, ge=0)
    past_days_count: int | None = Field(default=None, ge=0)
    excluded_events: list[ExclusionFilter] | None = None
    symbol: SymbolSetting = None
    symbol_class_name: str | None = None
    recurring_symbol: SymbolSetting = None
    full_day_symbol: SymbolSetting = None
    custom_events: list[CustomEventRule] | None = None


class InstanceConfig(_ConfigModel):
    """A display instance with its calendars and shared defaults."""

    instance_id: str
    calendars: list[CalendarEntry] = Field(default_factory=list)
    fetch_interval: int | None = Field(default=None, ge=1)
    maximum_entries: int | None = Field(default=None, ge=1)
    maximum_number_of_days: int | None = Field(default=None, ge=0)
    past_days_count: int | None = Field(default=None, ge=0)
    excluded_events: list[ExclusionFilter] | None = None
    default_symbol: str | None = None
    default_symbol_class_name: str | None = None
    recurring_symbol: SymbolSetting = None
    full_day_symbol: SymbolSetting = None
    custom_events: list[CustomEventRule] | None = None
    event_transformer: EventTransformer | None = Field(default=None, exclude=True)
