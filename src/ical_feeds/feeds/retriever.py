"""Feed retrieval over HTTP(S).

## Request Headers

Calendar providers (Outlook/Office 365 in particular) are picky about what
they serve to unknown clients. Every request carries a fixed header set:

| Header | Value |
|--------|-------|
| User-Agent | browser-like string (Settings.user_agent) |
| Accept | text/calendar,application/calendar+xml,text/plain,*/* |
| Accept-Language | en-US,en;q=0.9 |
| Accept-Encoding | identity (compressed bodies confuse some providers) |
| Cache-Control / Pragma | no-cache |

## Authentication
- `bearer`: `Authorization: Bearer <pass>`
- anything else with user and pass: HTTP basic auth
- no auth config: nothing is sent

## Redirects
301, 302, 307 and 308 with a `Location` header are followed by re-issuing
the request against the new URL. There is no hop limit, but the whole
fetch, redirects included, runs under one deadline (the request timeout),
so a redirect loop or a slow-dripping body ends in FetchTimeoutError.

## Failure Classification
- MalformedUrlError: URL cannot be parsed or is not http/https/webcal
- FetchTimeoutError: fetch not finished within the request timeout
- NetworkError: any other transport failure
- HttpStatusError: final status other than 200
- EmptyResponseError: 200 with an empty body
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

import httpx

from ical_feeds.errors import (
    EmptyResponseError,
    FetchTimeoutError,
    HttpStatusError,
    MalformedUrlError,
    NetworkError,
)
from ical_feeds.models.source import AuthConfig

logger = logging.getLogger(__name__)

REDIRECT_STATUS_CODES = frozenset({301, 302, 307, 308})

CALENDAR_HEADERS: dict[str, str] = {
    "Accept": "text/calendar,application/calendar+xml,text/plain,*/*",
    "Accept-Language": "en-US,en;q=0.9",
    "Accept-Encoding": "identity",
    "Cache-Control": "no-cache",
    "Pragma": "no-cache",
}


def validate_feed_url(url: str) -> httpx.URL:
    """Parse a feed URL, mapping `webcal://` onto `https://`.

    Raises:
        MalformedUrlError: If the URL is unusable
    """
    if not url or not isinstance(url, str):
        raise MalformedUrlError("Malformed URL: empty", source=url or None)
    try:
        parsed = httpx.URL(url.strip())
    except (httpx.InvalidURL, TypeError, ValueError) as e:
        raise MalformedUrlError(f"Malformed URL: {url} ({e})", source=url)

    if parsed.scheme == "webcal":
        parsed = parsed.copy_with(scheme="https")
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise MalformedUrlError(f"Malformed URL: {url}", source=url)
    return parsed


def build_auth(auth: AuthConfig | None) -> tuple[dict[str, str], httpx.Auth | None]:
    """Translate an auth config into extra headers and an httpx auth object."""
    if auth is None:
        return {}, None
    if auth.method == "bearer":
        return {"Authorization": f"Bearer {auth.password or ''}"}, None
    if auth.user and auth.password:
        return {}, httpx.BasicAuth(auth.user, auth.password)
    return {}, None


class FeedRetriever:
    """Fetches raw ICS text for a source.

    One client is kept per TLS-verification mode, so sources with
    `selfSignedCert` share an unverified client and everything else shares a
    verified one.

    Example:
        ```python
        async with FeedRetriever() as retriever:
            text = await retriever.fetch("https://example.com/team.ics")
        ```
    """

    def __init__(
        self,
        user_agent: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the retriever.

        Args:
            user_agent: User-Agent string for requests
            timeout: Default request timeout in seconds
            transport: Optional httpx transport (used by tests)
        """
        self.user_agent = user_agent or "ical-feeds/0.1.0"
        self.timeout = timeout
        self._transport = transport
        self._clients: dict[bool, httpx.AsyncClient] = {}

    async def __aenter__(self) -> FeedRetriever:
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close every open HTTP client."""
        clients = list(self._clients.values())
        self._clients.clear()
        for client in clients:
            await client.aclose()

    def _get_client(self, verify: bool) -> httpx.AsyncClient:
        """Get or create the HTTP client for a TLS-verification mode."""
        client = self._clients.get(verify)
        if client is None:
            client = httpx.AsyncClient(
                verify=verify,
                follow_redirects=False,
                transport=self._transport,
            )
            self._clients[verify] = client
        return client

    def _get_default_headers(self) -> dict[str, str]:
        return {"User-Agent": self.user_agent, **CALENDAR_HEADERS}

    async def fetch(
        self,
        url: str,
        auth: AuthConfig | None = None,
        self_signed_cert: bool = False,
        timeout: float | None = None,
    ) -> str:
        """Fetch the raw feed text.

        Args:
            url: Feed URL
            auth: Optional authentication settings
            self_signed_cert: Skip TLS certificate verification
            timeout: Request timeout in seconds (defaults to the retriever's)

        Returns:
            The response body as text

        Raises:
            MalformedUrlError: If the URL is unusable
            FetchTimeoutError: If the fetch, redirects included, does not finish in time
            NetworkError: On other transport failures
            HttpStatusError: If the final status is not 200
            EmptyResponseError: If the body is empty
        """
        current = validate_feed_url(url)
        limit = timeout if timeout is not None else self.timeout
        try:
            async with asyncio.timeout(limit):
                return await self._get_following_redirects(
                    current, url, auth, self_signed_cert, httpx.Timeout(limit)
                )
        except TimeoutError:
            raise FetchTimeoutError(f"Request timeout after {limit}s", source=url)

    async def _get_following_redirects(
        self,
        current: httpx.URL,
        url: str,
        auth: AuthConfig | None,
        self_signed_cert: bool,
        request_timeout: httpx.Timeout,
    ) -> str:
        client = self._get_client(verify=not self_signed_cert)
        auth_headers, basic_auth = build_auth(auth)
        headers = {**self._get_default_headers(), **auth_headers}

        while True:
            try:
                response = await client.get(
                    current,
                    headers=headers,
                    auth=basic_auth,
                    timeout=request_timeout,
                )
            except httpx.TimeoutException as e:
                raise FetchTimeoutError(f"Request timeout: {e}", source=url)
            except httpx.TransportError as e:
                raise NetworkError(f"Network error: {e}", source=url)

            location = response.headers.get("Location")
            if response.status_code in REDIRECT_STATUS_CODES and location:
                current = current.join(location)
                logger.info(f"Following redirect to: {current}")
                continue

            if response.status_code != 200:
                raise HttpStatusError(
                    response.status_code,
                    response.reason_phrase,
                    source=url,
                )

            if not response.content:
                raise EmptyResponseError(source=url)

            return response.text
