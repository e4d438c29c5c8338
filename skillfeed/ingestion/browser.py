"""
Headless Browser Rendering
==========================

Renderer interface for JavaScript-heavy pages and a Playwright Chromium
implementation. One browser process is launched lazily and shared; each
render gets its own context so cookies never leak between sources.
"""

import asyncio
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from playwright.async_api import async_playwright, Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from ..utils.logging import get_logger_for_component
from ..utils.exceptions import RenderError


@dataclass
class RenderedPage:
    """Result of rendering a page in a browser."""

    html: str
    final_url: str
    status: Optional[int] = None


class Renderer(ABC):
    """Browser collaborator used for pages that need JavaScript."""

    @abstractmethod
    async def render(self, url: str, timeout: float) -> RenderedPage:
        """Render a page and return the resulting DOM.

        Raises:
            RenderError: If the browser fails or the timeout expires
        """

    async def close(self) -> None:
        """Release browser resources."""


class PlaywrightRenderer(Renderer):
    """Chromium renderer backed by Playwright."""

    LAUNCH_ARGS = [
        "--no-sandbox",
        "--disable-dev-shm-usage",
        "--disable-gpu",
        "--no-zygote",
    ]

    def __init__(self, user_agent: str = "Mozilla/5.0", headless: bool = True):
        self.user_agent = user_agent
        self.headless = headless
        self.logger = get_logger_for_component("renderer")
        self._playwright = None
        self._browser = None
        self._launch_lock = asyncio.Lock()

    async def _get_browser(self):
        async with self._launch_lock:
            if self._browser is None:
                self._playwright = await async_playwright().start()
                self._browser = await self._playwright.chromium.launch(
                    headless=self.headless, args=self.LAUNCH_ARGS
                )
                self.logger.info("Launched headless Chromium")
            return self._browser

    async def render(self, url: str, timeout: float) -> RenderedPage:
        browser = await self._get_browser()
        context = await browser.new_context(
            user_agent=self.user_agent,
            locale="en-US",
            extra_http_headers={"Accept-Language": "en-US,en;q=0.9"},
        )
        timeout_ms = int(timeout * 1000)

        try:
            page = await context.new_page()
            response = await page.goto(
                url, wait_until="networkidle", timeout=timeout_ms
            )
            html = await page.content()
            return RenderedPage(
                html=html,
                final_url=page.url,
                status=response.status if response else None,
            )

        except PlaywrightTimeoutError as e:
            raise RenderError(f"Render timed out after {timeout}s", url=url) from e
        except PlaywrightError as e:
            raise RenderError(f"Render failed: {e}", url=url) from e
        finally:
            await context.close()

    async def close(self) -> None:
        if self._browser is not None:
            await self._browser.close()
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
