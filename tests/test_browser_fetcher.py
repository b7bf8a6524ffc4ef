"""
Tests for the automation fetcher.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | Navigation clears | Equivalence – normal | ok, method automation, released | - |
| TC-N-02 | Page hook | Equivalence – normal | page_data set | - |
| TC-N-03 | First attempt crashes | Equivalence – retry | Second lease succeeds | - |
| TC-A-01 | Challenge never clears twice | Equivalence – abnormal | ok=False, challenge_timeout | - |
| TC-A-02 | Denied domain | Equivalence – abnormal | ScrapeError propagates | - |
| TC-A-03 | Pool exhausted | Equivalence – abnormal | ok=False, timeout kind | - |
| TC-A-04 | Hook raises | Equivalence – abnormal | page_data None, still ok | - |
| TC-B-01 | Empty document | Boundary – empty | ok=False | - |
| TC-N-04 | Cleared navigation | Equivalence – normal | Pre-capture actions before content read | - |
| TC-A-05 | Navigation slower than timeout | Equivalence – abnormal | ok=False, fetch_budget_exceeded | no retry |
| TC-B-02 | Hook slower than timeout | Boundary – budget | Hook completes, page_data set | hook not counted |
"""

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock

import pytest
from playwright.async_api import Error as PlaywrightError

from adaptive_scraper.crawler.browser_fetcher import MAX_ATTEMPTS, BrowserFetcher
from adaptive_scraper.crawler.challenge_detector import ProtectionSignature
from adaptive_scraper.crawler.fetch_result import FetchMethod
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError

ARTICLE_HTML = "<html><body><article><h1>Title</h1><p>Body text</p></article></body></html>"


def _setup(make_mock_page, html: str = ARTICLE_HTML, url: str = "https://example.com/a"):
    pages = [make_mock_page(html, url), make_mock_page(html, url)]
    pool = MagicMock()
    pool.acquire = AsyncMock(side_effect=[SimpleNamespace(page=p) for p in pages])
    pool.release = AsyncMock()
    pool.destroy = AsyncMock()
    pool.close = AsyncMock()
    bypass = MagicMock()
    bypass.navigate = AsyncMock(return_value=True)
    bypass.settle_before_capture = AsyncMock()
    fetcher = BrowserFetcher(pool=pool, bypass=bypass, human=MagicMock())
    return fetcher, pool, bypass, pages


class TestBrowserFetcher:
    """Tests for BrowserFetcher.fetch()."""

    # =========================================================================
    # TC-N-01: Success
    # =========================================================================
    @pytest.mark.asyncio
    async def test_success(self, make_mock_page) -> None:
        """
        Given: A navigation that clears immediately
        When: fetch() is called
        Then: The rendered HTML is returned and the lease released
        """
        fetcher, pool, bypass, pages = _setup(make_mock_page)

        result = await fetcher.fetch("https://example.com/a", referrer="https://ref.example/")

        assert result.ok is True
        assert result.method == FetchMethod.AUTOMATION
        assert result.status is None
        assert result.html == ARTICLE_HTML
        assert result.protection_signature is ProtectionSignature.NONE
        bypass.navigate.assert_awaited_once_with(
            pages[0], "https://example.com/a", referrer="https://ref.example/"
        )
        pool.release.assert_awaited_once()
        pool.destroy.assert_not_awaited()

    # =========================================================================
    # TC-N-02: Page hook
    # =========================================================================
    @pytest.mark.asyncio
    async def test_page_hook(self, make_mock_page) -> None:
        """
        Given: A page hook
        When: fetch() is called
        Then: The hook runs on the live page before release
        """
        fetcher, pool, _, pages = _setup(make_mock_page)
        hook = AsyncMock(return_value=["https://other.org/x"])

        result = await fetcher.fetch("https://example.com/a", page_hook=hook)

        hook.assert_awaited_once_with(pages[0], ARTICLE_HTML)
        assert result.page_data == ["https://other.org/x"]

    # =========================================================================
    # TC-A-04: Hook failure
    # =========================================================================
    @pytest.mark.asyncio
    async def test_page_hook_failure(self, make_mock_page) -> None:
        """
        Given: A page hook that raises
        When: fetch() is called
        Then: The document is still returned without page data
        """
        fetcher, _, _, _ = _setup(make_mock_page)
        hook = AsyncMock(side_effect=RuntimeError("script failed"))

        result = await fetcher.fetch("https://example.com/a", page_hook=hook)

        assert result.ok is True
        assert result.page_data is None

    # =========================================================================
    # TC-N-03: Retry with fresh lease
    # =========================================================================
    @pytest.mark.asyncio
    async def test_retry_after_crash(self, make_mock_page) -> None:
        """
        Given: The first navigation crashes the page
        When: fetch() is called
        Then: The first lease is destroyed and a second one succeeds
        """
        fetcher, pool, bypass, pages = _setup(make_mock_page)
        bypass.navigate = AsyncMock(side_effect=[PlaywrightError("Page crashed"), True])

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is True
        assert pool.acquire.await_count == 2
        pool.destroy.assert_awaited_once()
        assert pool.destroy.await_args.args[0].page is pages[0]
        pool.release.assert_awaited_once()

    # =========================================================================
    # TC-A-01: Challenge never clears
    # =========================================================================
    @pytest.mark.asyncio
    async def test_challenge_timeout(self, make_mock_page) -> None:
        """
        Given: A challenge that never clears
        When: fetch() is called
        Then: Both attempts are used and a failed challenge result returned
        """
        fetcher, pool, bypass, _ = _setup(make_mock_page)
        bypass.navigate = AsyncMock(return_value=False)

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.reason == "challenge_timeout"
        assert result.error_kind == ErrorKind.AUTOMATION.value
        assert result.protection_signature is ProtectionSignature.CHALLENGE
        assert pool.destroy.await_count == MAX_ATTEMPTS

    # =========================================================================
    # TC-A-02: Denied domain
    # =========================================================================
    @pytest.mark.asyncio
    async def test_auth_error_propagates(self, make_mock_page) -> None:
        """
        Given: The bypass refuses the domain
        When: fetch() is called
        Then: The ScrapeError propagates and the lease is released, not retried
        """
        fetcher, pool, bypass, _ = _setup(make_mock_page)
        bypass.navigate = AsyncMock(side_effect=ScrapeError(ErrorKind.AUTH, "denied"))

        with pytest.raises(ScrapeError):
            await fetcher.fetch("https://blocked.example/a")

        assert pool.acquire.await_count == 1
        pool.release.assert_awaited_once()

    # =========================================================================
    # TC-A-03: Pool exhausted
    # =========================================================================
    @pytest.mark.asyncio
    async def test_pool_timeout(self, make_mock_page) -> None:
        """
        Given: The pool cannot hand out a lease in time
        When: fetch() is called
        Then: A failed result with a timeout kind is returned
        """
        fetcher, pool, _, _ = _setup(make_mock_page)
        pool.acquire = AsyncMock(side_effect=TimeoutError("no slot"))

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.reason == "pool_acquire_timeout"
        assert result.error_kind == ErrorKind.TIMEOUT.value

    # =========================================================================
    # TC-B-01: Empty document
    # =========================================================================
    @pytest.mark.asyncio
    async def test_empty_document(self, make_mock_page) -> None:
        """
        Given: The page renders nothing
        When: fetch() is called
        Then: The result is not ok
        """
        fetcher, _, _, _ = _setup(make_mock_page, html="")

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.reason == "empty_document"

    @pytest.mark.asyncio
    async def test_close_injected_pool(self, make_mock_page) -> None:
        """
        Given: A fetcher with an injected pool
        When: close() is called
        Then: That pool is closed
        """
        fetcher, pool, _, _ = _setup(make_mock_page)

        await fetcher.close()

        pool.close.assert_awaited_once()

    # =========================================================================
    # TC-N-04: Human-like actions before capture
    # =========================================================================
    @pytest.mark.asyncio
    async def test_settles_before_capture(self, make_mock_page) -> None:
        """
        Given: A navigation that clears
        When: fetch() is called
        Then: The bypass runs its pre-capture actions on the page before the
              content is read
        """
        fetcher, _, bypass, pages = _setup(make_mock_page)
        order: list[str] = []
        bypass.settle_before_capture = AsyncMock(side_effect=lambda page: order.append("settle"))
        async def read_content():
            order.append("content")
            return ARTICLE_HTML

        pages[0].content = AsyncMock(side_effect=read_content)

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is True
        bypass.settle_before_capture.assert_awaited_once_with(pages[0])
        assert order == ["settle", "content"]

    # =========================================================================
    # TC-A-05: Navigation outlasts the timeout
    # =========================================================================
    @pytest.mark.asyncio
    async def test_navigation_timeout(self, make_mock_page) -> None:
        """
        Given: A navigation slower than the timeout
        When: fetch() is called with timeout=0.05
        Then: The lease is destroyed, no second attempt starts, and a failed
              result of kind timeout is returned
        """
        fetcher, pool, bypass, _ = _setup(make_mock_page)

        async def slow_navigate(page, url, referrer=None) -> bool:
            await asyncio.sleep(1)
            return True

        bypass.navigate = AsyncMock(side_effect=slow_navigate)

        result = await fetcher.fetch("https://example.com/a", timeout=0.05)

        assert result.ok is False
        assert result.reason == "fetch_budget_exceeded"
        assert result.error_kind == ErrorKind.TIMEOUT.value
        assert pool.acquire.await_count == 1
        pool.destroy.assert_awaited_once()

    # =========================================================================
    # TC-B-02: Hook time is not counted
    # =========================================================================
    @pytest.mark.asyncio
    async def test_slow_hook_not_counted(self, make_mock_page) -> None:
        """
        Given: A fast navigation and a page hook slower than the timeout
        When: fetch() is called with timeout=0.05
        Then: The hook completes and its data is returned
        """
        fetcher, pool, _, _ = _setup(make_mock_page)

        async def slow_hook(page, html) -> list[str]:
            await asyncio.sleep(0.2)
            return ["https://other.org/x"]

        result = await fetcher.fetch("https://example.com/a", page_hook=slow_hook, timeout=0.05)

        assert result.ok is True
        assert result.page_data == ["https://other.org/x"]
        pool.release.assert_awaited_once()
        pool.destroy.assert_not_awaited()
