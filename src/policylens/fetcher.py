"""HTTP policy fetcher with SSRF protection.

All network I/O for fetching policy pages goes through a single Fetcher
instance shared across requests. The Fetcher receives an httpx.AsyncClient
via constructor injection; the lifespan owns the client lifecycle.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING
from urllib.parse import urljoin

import httpx
import structlog

from policylens.errors import ErrorCode, PolicyLensError
from policylens.extractor import extract_text_from_html
from policylens.models.analysis import ExtractedDocument
from policylens.validation import validate_policy_url

if TYPE_CHECKING:
    from policylens.config import FetcherSettings

log = structlog.get_logger()

_ACCEPT_HEADERS = {
    "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8",
    "Accept-Language": "en-US,en;q=0.5",
}


def build_http_client(settings: FetcherSettings) -> httpx.AsyncClient:
    """Create the shared httpx client. Called once at startup."""
    return httpx.AsyncClient(
        follow_redirects=False,
        timeout=httpx.Timeout(settings.timeout_seconds),
        headers={"User-Agent": settings.user_agent, **_ACCEPT_HEADERS},
        limits=httpx.Limits(
            max_connections=20,
            max_keepalive_connections=10,
        ),
    )


@dataclass(frozen=True)
class FetchedPage:
    url: str  # Final URL after redirects
    status_code: int
    content_type: str
    html: str

    @property
    def is_html(self) -> bool:
        return "text/html" in self.content_type.lower()


def _fetch_failed(
    message: str,
    *,
    suggestion: str = "The policy page may be temporarily unavailable.",
    recoverable: bool = True,
    upstream_status: int | None = None,
) -> PolicyLensError:
    return PolicyLensError(
        code=ErrorCode.FETCH_FAILED,
        message=message,
        suggestion=suggestion,
        recoverable=recoverable,
        upstream_status=upstream_status,
    )


class Fetcher:
    """HTTP policy fetcher with SSRF-safe redirect handling."""

    def __init__(self, client: httpx.AsyncClient, settings: FetcherSettings) -> None:
        self._client = client
        self._settings = settings

    async def fetch(self, url: str) -> ExtractedDocument:
        """Fetch an HTML page and return its extracted plain text.

        Raises PolicyLensError(FETCH_FAILED) on non-2xx responses, non-HTML
        content, timeouts and network errors.
        """
        page = await self.fetch_page(url)
        if not page.is_html:
            raise _fetch_failed(
                f"URL does not appear to contain HTML content ({page.content_type or 'unknown'})",
                suggestion="Point the analyzer at the HTML policy page itself.",
                recoverable=False,
            )
        text = extract_text_from_html(page.html)
        log.info("extract_complete", url=url, raw_length=len(page.html), text_length=len(text))
        return ExtractedDocument(raw_length=len(page.html), plain_text=text)

    async def fetch_page(self, url: str) -> FetchedPage:
        """Fetch a URL with per-hop SSRF validation, bounded by the configured timeout."""
        try:
            async with asyncio.timeout(self._settings.timeout_seconds):
                return await self._follow(url)
        except TimeoutError as exc:
            raise _fetch_failed(
                f"Timed out after {self._settings.timeout_seconds:g}s fetching {url}"
            ) from exc

    async def _follow(self, url: str) -> FetchedPage:
        max_redirects = self._settings.max_redirects
        current_url = url

        try:
            for hop in range(max_redirects + 1):
                # Raises INVALID_URL when a redirect points at a private host
                current_url = validate_policy_url(current_url)
                response = await self._client.get(current_url)

                if response.is_redirect and "location" in response.headers:
                    if hop == max_redirects:
                        raise _fetch_failed(
                            f"Too many redirects fetching {url}",
                            suggestion="The policy URL has an unusually long redirect chain.",
                            recoverable=False,
                        )
                    current_url = urljoin(current_url, response.headers["location"])
                    continue

                if not response.is_success:
                    raise _fetch_failed(
                        f"Failed to fetch policy: HTTP {response.status_code}",
                        recoverable=response.status_code >= 500,
                        upstream_status=response.status_code,
                    )

                log.info(
                    "fetch_complete",
                    url=url,
                    final_url=current_url,
                    status_code=response.status_code,
                    content_length=len(response.text),
                )
                return FetchedPage(
                    url=current_url,
                    status_code=response.status_code,
                    content_type=response.headers.get("content-type", ""),
                    html=response.text,
                )

        except PolicyLensError:
            raise
        except httpx.TimeoutException as exc:
            raise _fetch_failed(f"Timed out fetching {url}") from exc
        except httpx.HTTPError as exc:
            raise _fetch_failed(f"Network error fetching {url}: {exc}") from exc

        # Unreachable but satisfies the type checker
        raise _fetch_failed("Redirect loop", recoverable=False)
