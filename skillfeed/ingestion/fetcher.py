"""
Page Fetch Layer
================

HTTP fetching with aiohttp and delegation to a headless browser for pages
that need JavaScript. Every URL passes the private-network guard first, and
HTTP failures are mapped onto the job error taxonomy:

- 401/403 -> AccessDeniedError (permanent)
- 404/410 -> SourceGoneError (permanent)
- 429     -> RateLimitedError
- 5xx, timeouts, connection errors -> FetchError (transient)
"""

import asyncio
import ssl
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import aiohttp
import certifi

from ..config.settings import SkillFeedSettings, get_settings
from ..utils.logging import get_logger_for_component
from ..utils.exceptions import (
    AccessDeniedError,
    ErrorCode,
    FetchError,
    RateLimitedError,
    RenderError,
    SourceGoneError,
)
from ..utils.validators import URLValidator
from .browser import Renderer


@dataclass
class FetchedPage:
    """Raw page body returned by the fetch layer."""

    url: str
    final_url: str
    html: str
    status: int = 200
    rendered: bool = False
    fetched_at: Optional[datetime] = None

    def __post_init__(self):
        if not self.fetched_at:
            self.fetched_at = datetime.now(timezone.utc)


def raise_for_status(status: int, url: str, retry_after: Optional[str] = None) -> None:
    """Raise the taxonomy exception matching an HTTP status, if any."""
    if status < 400:
        return

    if status in (401, 403):
        raise AccessDeniedError(f"HTTP {status} for {url}", url=url, status=status)
    if status in (404, 410):
        raise SourceGoneError(f"HTTP {status} for {url}", url=url, status=status)
    if status == 429:
        raise RateLimitedError(
            f"HTTP 429 for {url}",
            url=url,
            status=status,
            retry_after=_parse_retry_after(retry_after),
        )

    raise FetchError(
        f"HTTP {status} for {url}",
        url=url,
        status=status,
        error_code=ErrorCode.FETCH_SERVER_ERROR if status >= 500 else ErrorCode.FETCH_NETWORK_ERROR,
    )


def _parse_retry_after(value: Optional[str]) -> Optional[float]:
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


class FetchLayer:
    """Stateless page fetcher with a shared session and a render cap."""

    def __init__(
        self,
        settings: Optional[SkillFeedSettings] = None,
        renderer: Optional[Renderer] = None,
    ):
        """Initialize fetch layer.

        Args:
            settings: Application settings (default: global settings)
            renderer: Browser collaborator for pages that need rendering
        """
        self.settings = settings or get_settings()
        self.fetch_settings = self.settings.fetch
        self.renderer = renderer
        self.logger = get_logger_for_component("fetcher")

        self.ssl_context = ssl.create_default_context(cafile=certifi.where())
        self._render_semaphore = asyncio.Semaphore(self.fetch_settings.max_concurrent_renders)
        self._session: Optional[aiohttp.ClientSession] = None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(
                ssl=self.ssl_context,
                limit=self.fetch_settings.max_connections,
                limit_per_host=5,
                enable_cleanup_closed=True,
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=aiohttp.ClientTimeout(total=self.fetch_settings.request_timeout),
                headers={
                    "User-Agent": self.fetch_settings.user_agent,
                    "Accept": "text/html,application/xhtml+xml,application/rss+xml,application/xml;q=0.9,*/*;q=0.8",
                    "Accept-Encoding": "gzip, deflate",
                },
            )
        return self._session

    async def fetch(self, url: str, render: bool = False) -> FetchedPage:
        """Fetch a page, rendering it in a browser when asked to.

        Args:
            url: Page URL
            render: Whether the page needs JavaScript rendering

        Returns:
            FetchedPage with the raw body

        Raises:
            AccessDeniedError: Blocked URL, 401/403
            SourceGoneError: 404/410
            RateLimitedError: 429
            FetchError: Any transient failure
        """
        target = URLValidator.ensure_fetchable(url)

        if render:
            return await self._render(target)
        return await self._get(target)

    async def _get(self, url: str) -> FetchedPage:
        self.logger.debug(f"Fetching {url}")
        session = self._get_session()

        try:
            async with session.get(url, allow_redirects=True) as response:
                raise_for_status(
                    response.status, url, response.headers.get("Retry-After")
                )
                body = await response.text(errors="replace")
                final_url = str(response.url)

        except asyncio.TimeoutError as e:
            raise FetchError(
                f"Request timeout after {self.fetch_settings.request_timeout}s",
                url=url,
                error_code=ErrorCode.FETCH_TIMEOUT,
            ) from e
        except aiohttp.ClientError as e:
            raise FetchError(f"Fetch error: {e}", url=url) from e

        # Redirects may land on a private host
        if final_url != url:
            URLValidator.ensure_fetchable(final_url)

        return FetchedPage(url=url, final_url=final_url, html=body, status=response.status)

    async def _render(self, url: str) -> FetchedPage:
        if self.renderer is None:
            raise RenderError("No renderer configured for a render source", url=url)

        timeout = self.fetch_settings.render_timeout
        async with self._render_semaphore:
            self.logger.debug(f"Rendering {url}")
            try:
                rendered = await asyncio.wait_for(
                    self.renderer.render(url, timeout), timeout=timeout + 5
                )
            except asyncio.TimeoutError as e:
                raise RenderError(f"Render timed out after {timeout}s", url=url) from e

        if rendered.status is not None:
            raise_for_status(rendered.status, url)
        URLValidator.ensure_fetchable(rendered.final_url)

        return FetchedPage(
            url=url,
            final_url=rendered.final_url,
            html=rendered.html,
            status=rendered.status or 200,
            rendered=True,
        )

    async def close(self) -> None:
        """Close the HTTP session and the browser."""
        if self._session is not None and not self._session.closed:
            await self._session.close()
        if self.renderer is not None:
            await self.renderer.close()

    async def __aenter__(self) -> "FetchLayer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
