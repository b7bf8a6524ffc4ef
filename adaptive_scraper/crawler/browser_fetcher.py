"""Automation fetcher: pooled browser page + protection bypass."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any

from adaptive_scraper.crawler.challenge_detector import ProtectionSignature, detect_protection
from adaptive_scraper.crawler.fetch_result import FetchMethod, FetchResult
from adaptive_scraper.crawler.human_behavior import (
    HumanBehaviorSimulator,
    get_human_behavior_simulator,
)
from adaptive_scraper.crawler.protection_bypass import ProtectionBypass
from adaptive_scraper.crawler.session_pool import (
    BrowserSessionPool,
    get_session_pool,
    reset_session_pool,
)
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError, classify_exception
from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

# Called with the live page and its rendered HTML while the lease is held.
PageHook = Callable[["Page", str], Awaitable[Any]]

MAX_ATTEMPTS = 2


class BrowserFetcher:
    """Fetches documents through a leased automation page.

    A failed navigation (challenge timeout, crashed page, navigation error)
    destroys the lease and is retried exactly once with a fresh lease.
    """

    def __init__(
        self,
        pool: BrowserSessionPool | None = None,
        bypass: ProtectionBypass | None = None,
        human: HumanBehaviorSimulator | None = None,
    ) -> None:
        self._pool = pool
        self._owns_global_pool = pool is None
        self._bypass = bypass or ProtectionBypass(human=human or get_human_behavior_simulator())

    @property
    def pool(self) -> BrowserSessionPool:
        if self._pool is None:
            self._pool = get_session_pool()
        return self._pool

    async def fetch(
        self,
        url: str,
        *,
        referrer: str | None = None,
        page_hook: PageHook | None = None,
        timeout: float | None = None,
    ) -> FetchResult:
        """Render ``url`` in the browser.

        Args:
            url: Target URL.
            referrer: Referer to present.
            page_hook: Optional coroutine run on the live page before the
                lease is released; its return value lands in ``page_data``.
            timeout: Seconds allowed for navigation and capture over all
                attempts. The hook is not counted.

        Returns:
            FetchResult with ``method="automation"``.

        Raises:
            ScrapeError: kind ``auth`` when the domain is deny-listed.
        """
        started = time.monotonic()
        deadline = None if timeout is None else started + timeout
        reason = "automation_failed"
        error_kind = ErrorKind.AUTOMATION

        for attempt in range(1, MAX_ATTEMPTS + 1):
            if deadline is not None and time.monotonic() >= deadline:
                reason = "fetch_budget_exceeded"
                error_kind = ErrorKind.TIMEOUT
                break
            try:
                lease = await self.pool.acquire()
            except TimeoutError as e:
                logger.error("Session pool exhausted", url=url[:80], error=str(e))
                return FetchResult(
                    ok=False,
                    url=url,
                    method=FetchMethod.AUTOMATION,
                    reason="pool_acquire_timeout",
                    error_kind=ErrorKind.TIMEOUT.value,
                    elapsed_ms=(time.monotonic() - started) * 1000,
                )

            page = lease.page
            try:
                remaining = None if deadline is None else max(0.0, deadline - time.monotonic())
                loaded = await asyncio.wait_for(self._load(page, url, referrer), timeout=remaining)
                if loaded is None:
                    reason = "challenge_timeout"
                    error_kind = ErrorKind.AUTOMATION
                    logger.warning(
                        "Challenge not cleared, discarding lease",
                        url=url[:80],
                        attempt=attempt,
                    )
                    await self.pool.destroy(lease)
                    continue

                html, final_url = loaded
                page_data = await self._run_hook(page_hook, page, html, url)
            except ScrapeError:
                await self.pool.release(lease)
                raise
            except asyncio.CancelledError:
                await self.pool.destroy(lease)
                raise
            except Exception as e:
                error_kind = classify_exception(e)
                if error_kind not in (ErrorKind.TIMEOUT, ErrorKind.NETWORK):
                    error_kind = ErrorKind.AUTOMATION
                reason = str(e) or type(e).__name__
                logger.warning(
                    "Automation fetch failed, discarding lease",
                    url=url[:80],
                    attempt=attempt,
                    error=reason[:200],
                )
                await self.pool.destroy(lease)
                continue

            await self.pool.release(lease)

            protection = detect_protection(html)
            signature = (
                ProtectionSignature.CHALLENGE
                if protection.has_protection
                else ProtectionSignature.NONE
            )
            elapsed_ms = (time.monotonic() - started) * 1000
            logger.info(
                "Automation fetch success",
                url=url[:80],
                content_length=len(html),
                attempt=attempt,
                signature=signature.value,
                elapsed_ms=round(elapsed_ms),
            )
            return FetchResult(
                ok=bool(html),
                url=url,
                html=html,
                final_url=final_url,
                method=FetchMethod.AUTOMATION,
                protection_signature=signature,
                protection_type=protection.type,
                reason=None if html else "empty_document",
                elapsed_ms=elapsed_ms,
                page_data=page_data,
            )

        return FetchResult(
            ok=False,
            url=url,
            method=FetchMethod.AUTOMATION,
            protection_signature=(
                ProtectionSignature.CHALLENGE
                if reason == "challenge_timeout"
                else ProtectionSignature.NONE
            ),
            reason=reason,
            error_kind=error_kind.value,
            elapsed_ms=(time.monotonic() - started) * 1000,
        )

    async def _load(self, page: Page, url: str, referrer: str | None) -> tuple[str, str] | None:
        """Navigate and read the document; None when a challenge did not clear."""
        if not await self._bypass.navigate(page, url, referrer=referrer):
            return None
        await self._bypass.settle_before_capture(page)
        return await page.content(), page.url

    async def _run_hook(
        self,
        page_hook: PageHook | None,
        page: Page,
        html: str,
        url: str,
    ) -> Any:
        if page_hook is None:
            return None
        try:
            return await page_hook(page, html)
        except Exception as e:
            logger.warning("Page hook failed", url=url[:80], error=str(e))
            return None

    async def close(self) -> None:
        """Close the session pool if one was created."""
        if self._pool is None:
            return
        if self._owns_global_pool:
            await reset_session_pool()
        else:
            await self._pool.close()
        self._pool = None
