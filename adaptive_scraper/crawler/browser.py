"""
Playwright browser provider for the session pool.

Owns the Playwright driver, one Chromium instance and one stealth context.
The session pool only needs ``new_page()``; everything else stays here.
"""

import asyncio
from typing import TYPE_CHECKING

from adaptive_scraper.crawler.stealth import (
    apply_stealth_to_context,
    get_stealth_args,
    jitter_viewport,
)
from adaptive_scraper.utils.config import get_settings
from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Browser, BrowserContext, Page, Playwright

logger = get_logger(__name__)


class PlaywrightBrowser:
    """Lazily launched Chromium with a stealth context."""

    def __init__(self, *, headless: bool | None = None) -> None:
        self._settings = get_settings()
        self._headless = self._settings.browser.headless if headless is None else headless
        self._playwright: Playwright | None = None
        self._browser: Browser | None = None
        self._context: BrowserContext | None = None
        self._lock = asyncio.Lock()

    async def _ensure_context(self) -> "BrowserContext":
        async with self._lock:
            if self._context is not None:
                return self._context

            if self._playwright is None:
                try:
                    from playwright.async_api import async_playwright
                except ImportError as e:
                    raise RuntimeError("Playwright not installed") from e
                self._playwright = await async_playwright().start()
                logger.info("Playwright initialized")

            browser_settings = self._settings.browser
            self._browser = await self._playwright.chromium.launch(
                headless=self._headless,
                args=get_stealth_args(
                    browser_settings.viewport_width,
                    browser_settings.viewport_height,
                ),
            )
            self._context = await self._browser.new_context(
                viewport=jitter_viewport(
                    browser_settings.viewport_width,
                    browser_settings.viewport_height,
                ),
                user_agent=self._settings.crawler.user_agent,
                locale="en-US",
                java_script_enabled=True,
            )
            await apply_stealth_to_context(self._context)
            logger.info("Browser context created", headless=self._headless)
            return self._context

    async def new_page(self) -> "Page":
        """Open a new page with navigation and action timeouts applied."""
        context = await self._ensure_context()
        page = await context.new_page()
        timeout_ms = self._settings.browser.navigation_timeout * 1000
        page.set_default_navigation_timeout(timeout_ms)
        page.set_default_timeout(timeout_ms)
        return page

    async def close(self) -> None:
        """Close context, browser and driver."""
        if self._context is not None:
            try:
                await self._context.close()
            except Exception as e:
                logger.warning("Error closing browser context", error=str(e))
            self._context = None
        if self._browser is not None:
            try:
                await self._browser.close()
            except Exception as e:
                logger.warning("Error closing browser", error=str(e))
            self._browser = None
        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
        logger.info("Browser closed")
