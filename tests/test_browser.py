"""
Tests for the Playwright browser provider and stealth helpers.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | Stealth launch args | Equivalence – normal | AutomationControlled disabled, window size | - |
| TC-B-01 | Viewport jitter | Boundary – range | Within ±max_jitter | - |
| TC-N-02 | Context stealth | Equivalence – normal | Init script registered | - |
| TC-A-01 | add_init_script fails | Equivalence – abnormal | Swallowed | - |
| TC-N-03 | First new_page() | Equivalence – normal | Chromium launched once, timeouts set | - |
| TC-N-04 | close() | Equivalence – normal | Context, browser, driver closed | - |
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from adaptive_scraper.crawler.browser import PlaywrightBrowser
from adaptive_scraper.crawler.stealth import (
    STEALTH_JS,
    apply_stealth_to_context,
    get_stealth_args,
    jitter_viewport,
)


@pytest.fixture
def fake_playwright():
    """Playwright driver whose browser hands out mock pages."""
    page = MagicMock()
    context = MagicMock()
    context.new_page = AsyncMock(return_value=page)
    context.add_init_script = AsyncMock()
    context.close = AsyncMock()
    browser = MagicMock()
    browser.new_context = AsyncMock(return_value=context)
    browser.close = AsyncMock()
    driver = MagicMock()
    driver.chromium.launch = AsyncMock(return_value=browser)
    driver.stop = AsyncMock()
    starter = MagicMock()
    starter.start = AsyncMock(return_value=driver)

    with patch("playwright.async_api.async_playwright", return_value=starter):
        yield MagicMock(driver=driver, browser=browser, context=context, page=page)


class TestStealth:
    """Tests for stealth helpers."""

    def test_stealth_args(self) -> None:
        """
        Given: A window size
        When: get_stealth_args() is called
        Then: Automation flags are disabled and the size is applied
        """
        args = get_stealth_args(1280, 720)

        assert "--disable-blink-features=AutomationControlled" in args
        assert "--window-size=1280,720" in args

    def test_viewport_jitter(self) -> None:
        """
        Given: A base viewport
        When: jitter_viewport() is called repeatedly
        Then: Dimensions stay within the jitter range
        """
        for _ in range(50):
            viewport = jitter_viewport(1920, 1080, max_jitter=10)
            assert 1910 <= viewport["width"] <= 1930
            assert 1070 <= viewport["height"] <= 1090

    @pytest.mark.asyncio
    async def test_apply_stealth(self) -> None:
        """
        Given: A browser context
        When: apply_stealth_to_context() is called
        Then: The stealth script is registered
        """
        context = MagicMock()
        context.add_init_script = AsyncMock()

        await apply_stealth_to_context(context)

        context.add_init_script.assert_awaited_once_with(STEALTH_JS)

    @pytest.mark.asyncio
    async def test_apply_stealth_failure(self) -> None:
        """
        Given: A context that rejects init scripts
        When: apply_stealth_to_context() is called
        Then: No exception escapes
        """
        context = MagicMock()
        context.add_init_script = AsyncMock(side_effect=RuntimeError("context closed"))

        await apply_stealth_to_context(context)


class TestPlaywrightBrowser:
    """Tests for PlaywrightBrowser."""

    @pytest.mark.asyncio
    async def test_new_page_launches_once(self, fake_playwright, mock_settings) -> None:
        """
        Given: A fresh provider
        When: new_page() is called twice
        Then: Chromium launches once with stealth and pages get timeouts
        """
        with patch("adaptive_scraper.crawler.browser.get_settings", return_value=mock_settings):
            provider = PlaywrightBrowser(headless=True)

        page = await provider.new_page()
        await provider.new_page()

        fake_playwright.driver.chromium.launch.assert_awaited_once()
        launch_kwargs = fake_playwright.driver.chromium.launch.await_args.kwargs
        assert launch_kwargs["headless"] is True
        assert "--disable-blink-features=AutomationControlled" in launch_kwargs["args"]
        fake_playwright.context.add_init_script.assert_awaited_once_with(STEALTH_JS)
        context_kwargs = fake_playwright.browser.new_context.await_args.kwargs
        assert context_kwargs["user_agent"] == mock_settings.crawler.user_agent
        timeout_ms = mock_settings.browser.navigation_timeout * 1000
        page.set_default_navigation_timeout.assert_called_with(timeout_ms)
        page.set_default_timeout.assert_called_with(timeout_ms)

    @pytest.mark.asyncio
    async def test_close(self, fake_playwright, mock_settings) -> None:
        """
        Given: A launched provider
        When: close() is called
        Then: Context, browser and driver are closed
        """
        with patch("adaptive_scraper.crawler.browser.get_settings", return_value=mock_settings):
            provider = PlaywrightBrowser(headless=True)
        await provider.new_page()

        await provider.close()

        fake_playwright.context.close.assert_awaited_once()
        fake_playwright.browser.close.assert_awaited_once()
        fake_playwright.driver.stop.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_without_launch(self, mock_settings) -> None:
        """
        Given: A provider that never opened a page
        When: close() is called
        Then: Nothing fails
        """
        with patch("adaptive_scraper.crawler.browser.get_settings", return_value=mock_settings):
            provider = PlaywrightBrowser()

        await provider.close()
