"""Application configuration.

Configuration is loaded from environment variables using pydantic-settings.
Per-source settings (URL, auth, symbols, ...) live on `SourceConfig`; this
module only holds process-wide knobs and the defaults new sources inherit.

## Optional Environment Variables

- TIMEZONE: IANA timezone used for local wall-clock logic (default: system)
- LOG_LEVEL: Logging level for the CLI (default: INFO)
- REQUEST_TIMEOUT_SECONDS: Hard limit for one feed request (default: 30)
- MAX_RETRIES: Consecutive failed retries before a source stops (default: 5)
- BACKOFF_BASE_SECONDS / BACKOFF_MAX_SECONDS: Retry backoff (default: 60/960)

## Example .env file

```
TIMEZONE=Europe/Oslo
LOG_LEVEL=DEBUG
DEFAULT_MAXIMUM_ENTRIES=25
```
"""

from __future__ import annotations

from datetime import tzinfo
from functools import lru_cache

from dateutil import tz
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Logging
    log_level: str = "INFO"

    # Local wall-clock interpretation (full-day detection, floating times)
    timezone: str | None = Field(
        default=None,
        description="IANA timezone identifier; system local time when unset",
    )

    # Retrieval
    user_agent: str = Field(
        default=(
            "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
            "(KHTML, like Gecko) Chrome/91.0.4472.124 Safari/537.36"
        ),
        description="User-Agent sent to calendar providers",
    )
    request_timeout_seconds: float = Field(default=30.0, gt=0, le=300)

    # Retry policy
    max_retries: int = Field(default=5, ge=0, le=50)
    backoff_base_seconds: float = Field(default=60.0, gt=0)
    backoff_max_seconds: float = Field(default=16 * 60.0, gt=0)

    # Defaults inherited by sources that do not set their own
    default_fetch_interval_ms: int = Field(default=60_000, ge=1)
    default_maximum_entries: int = Field(default=10, ge=1)
    default_maximum_number_of_days: int = Field(default=365, ge=0)
    default_past_days_count: int = Field(default=0, ge=0)
    default_symbol: str = "calendar-alt"
    default_symbol_class_name: str = "fas fa-"
    default_recurring_symbol: str = "repeat"
    default_full_day_symbol: str = "clock"

    @field_validator("log_level", mode="before")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        """Accept log levels in any case."""
        return str(v).upper()

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str | None) -> str | None:
        """Reject timezone names the tz database does not know."""
        if v and tz.gettz(v) is None:
            raise ValueError(f"Unknown timezone: '{v}'")
        return v or None

    @property
    def local_timezone(self) -> tzinfo:
        """Timezone used for local wall-clock interpretation."""
        if self.timezone:
            return tz.gettz(self.timezone)
        return tz.tzlocal()


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Settings are loaded once and cached. To reload, clear the cache:
    ```python
    get_settings.cache_clear()
    ```
    """
    return Settings()

