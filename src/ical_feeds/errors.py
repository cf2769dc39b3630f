"""Error taxonomy for feed ingestion.

Fetch-level errors are caught by the scheduler and turned into an error
report plus a backoff decision; they never escape a fetch cycle. Per-record
errors are caught during batch assembly and only drop the offending record.

| Exception | kind | retried by scheduler |
|-----------|------|----------------------|
| MalformedUrlError | malformed_url | no |
| NetworkError | network | yes |
| FetchTimeoutError | timeout | yes |
| HttpStatusError | http_status | yes |
| EmptyResponseError | empty_response | yes |
| FeedParseError | parse | yes |
| RecurrenceExpansionError | recurrence | per record |
| DateParseError | date_parse | per record |
| DuplicateSourceError | duplicate_source | raised from start() |
"""

from __future__ import annotations


class CalendarFeedError(Exception):
    """Base exception for calendar feed errors."""

    kind: str = "error"
    retryable: bool = True

    def __init__(self, message: str, source: str | None = None):
        super().__init__(message)
        self.message = message
        self.source = source


class MalformedUrlError(CalendarFeedError):
    """Raised when a feed URL cannot be parsed or uses an unsupported scheme."""

    kind = "malformed_url"
    retryable = False


class NetworkError(CalendarFeedError):
    """Raised on connection-level failures."""

    kind = "network"


class FetchTimeoutError(CalendarFeedError):
    """Raised when the provider does not answer within the request timeout."""

    kind = "timeout"


class HttpStatusError(CalendarFeedError):
    """Raised for any final response other than 200."""

    kind = "http_status"

    def __init__(
        self,
        status_code: int,
        reason: str = "",
        source: str | None = None,
    ):
        super().__init__(f"HTTP {status_code}: {reason}".rstrip(": "), source=source)
        self.status_code = status_code
        self.reason = reason


class EmptyResponseError(CalendarFeedError):
    """Raised when the provider answers 200 with an empty body."""

    kind = "empty_response"

    def __init__(self, source: str | None = None):
        super().__init__("Empty response received", source=source)


class FeedParseError(CalendarFeedError):
    """Raised when the feed text is not a readable iCalendar document."""

    kind = "parse"


class RecurrenceExpansionError(CalendarFeedError):
    """Raised when a single recurring record cannot be expanded."""

    kind = "recurrence"


class DateParseError(CalendarFeedError):
    """Raised when no time strategy can interpret a date value."""

    kind = "date_parse"


class DuplicateSourceError(CalendarFeedError):
    """Raised when a source with the same identity is already registered."""

    kind = "duplicate_source"
    retryable = False

    def __init__(self, source_id: str):
        super().__init__(f"Source already registered: {source_id}", source=source_id)
