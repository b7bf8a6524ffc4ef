"""
Bounded pool of automation browser pages.

Design:
- A PageLease is exclusively owned by one in-flight operation
- idle + active pages never exceed max_size
- acquire() waits while all slots are active (bounded by acquire_timeout)
- Idle pages are health-checked before reuse; unhealthy pages are destroyed
- release() resets the page to about:blank before it becomes idle again;
  a page that cannot be reset is destroyed instead
- lease() is the scoped form: release (or destroy) runs on every exit path
"""

from __future__ import annotations

import asyncio
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Protocol

from adaptive_scraper.utils.config import get_settings
from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

BLANK_URL = "about:blank"


class PageSource(Protocol):
    """Anything that can open a fresh browser page."""

    async def new_page(self) -> Page: ...


@dataclass
class PageLease:
    """A pooled browser page handed out to one operation."""

    page: Any
    lease_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    created_at: float = field(default_factory=time.monotonic)
    uses: int = 0


class BrowserSessionPool:
    """Manages a bounded set of browser pages.

    Example:
        pool = BrowserSessionPool(browser, max_size=5)
        async with pool.lease() as lease:
            await lease.page.goto(url)

    Args:
        page_source: Object providing ``async new_page()``.
        max_size: Upper bound for idle + active pages.
        acquire_timeout: Seconds to wait for a free slot.
        health_check_timeout: Seconds allowed for the health check and reset.
    """

    def __init__(
        self,
        page_source: PageSource | None = None,
        *,
        max_size: int | None = None,
        acquire_timeout: float | None = None,
        health_check_timeout: float | None = None,
    ) -> None:
        browser_settings = get_settings().browser
        max_size = browser_settings.max_pool_size if max_size is None else max_size
        if max_size < 1:
            raise ValueError("max_size must be at least 1")

        if page_source is None:
            from adaptive_scraper.crawler.browser import PlaywrightBrowser

            page_source = PlaywrightBrowser()
            self._owns_source = True
        else:
            self._owns_source = False

        self._source = page_source
        self._max_size = max_size
        self._acquire_timeout = (
            browser_settings.acquire_timeout if acquire_timeout is None else acquire_timeout
        )
        self._health_check_timeout = (
            browser_settings.health_check_timeout
            if health_check_timeout is None
            else health_check_timeout
        )

        self._idle: list[PageLease] = []
        self._leased: dict[str, PageLease] = {}
        # Slots held by leased pages plus acquisitions still creating a page
        self._active_count = 0
        self._slot_available = asyncio.Event()
        self._slot_available.set()
        self._closed = False

        self._created_total = 0
        self._destroyed_total = 0
        self._reused_total = 0

        logger.debug("Session pool initialized", max_size=max_size)

    # =========================================================================
    # Slot accounting
    # =========================================================================

    async def _wait_for_slot(self) -> None:
        loop = asyncio.get_running_loop()
        deadline = loop.time() + self._acquire_timeout

        while self._active_count >= self._max_size:
            remaining = deadline - loop.time()
            if remaining <= 0:
                raise TimeoutError(
                    f"Failed to acquire page within {self._acquire_timeout}s "
                    f"(active={self._active_count}, max_size={self._max_size})"
                )
            logger.debug(
                "Pool at capacity: waiting for page slot",
                active=self._active_count,
                max_size=self._max_size,
            )
            self._slot_available.clear()
            try:
                await asyncio.wait_for(self._slot_available.wait(), timeout=remaining)
            except TimeoutError:
                pass

        self._active_count += 1

    def _free_slot(self) -> None:
        if self._active_count > 0:
            self._active_count -= 1
        self._slot_available.set()

    # =========================================================================
    # Page lifecycle
    # =========================================================================

    async def _is_healthy(self, lease: PageLease) -> bool:
        page = lease.page
        try:
            if page.is_closed():
                return False
            result = await asyncio.wait_for(
                page.evaluate("() => 1"),
                timeout=self._health_check_timeout,
            )
            if result != 1:
                return False
            return page.url in (BLANK_URL, "")
        except Exception as e:
            logger.debug("Page health check failed", lease_id=lease.lease_id, error=str(e))
            return False

    async def _close_page(self, lease: PageLease) -> None:
        self._destroyed_total += 1
        try:
            if not lease.page.is_closed():
                await asyncio.wait_for(lease.page.close(), timeout=self._health_check_timeout)
        except Exception as e:
            logger.debug("Error closing page", lease_id=lease.lease_id, error=str(e))

    async def _take_healthy_idle(self) -> PageLease | None:
        while self._idle:
            lease = self._idle.pop()
            if await self._is_healthy(lease):
                self._reused_total += 1
                return lease
            logger.info("Discarding unhealthy pooled page", lease_id=lease.lease_id)
            await self._close_page(lease)
        return None

    async def _create_lease(self) -> PageLease:
        page = await self._source.new_page()
        self._created_total += 1
        lease = PageLease(page=page)
        logger.debug("Created new page", lease_id=lease.lease_id, total=self.total_count + 1)
        return lease

    # =========================================================================
    # Public API
    # =========================================================================

    async def acquire(self) -> PageLease:
        """Acquire a page lease for exclusive use.

        Returns:
            A healthy PageLease.

        Raises:
            RuntimeError: If the pool is closed.
            TimeoutError: If no slot frees up within acquire_timeout.
        """
        if self._closed:
            raise RuntimeError("Session pool is closed")

        await self._wait_for_slot()
        try:
            lease = await self._take_healthy_idle()
            if lease is None:
                lease = await self._create_lease()
        except BaseException:
            self._free_slot()
            raise

        lease.uses += 1
        self._leased[lease.lease_id] = lease
        return lease

    async def release(self, lease: PageLease) -> None:
        """Return a lease to the pool.

        The page is reset to about:blank first. If the reset fails, or the
        idle list is already full, the page is closed instead.
        """
        if self._leased.pop(lease.lease_id, None) is None:
            logger.warning("Release of unknown lease ignored", lease_id=lease.lease_id)
            return

        try:
            if self._closed:
                await self._close_page(lease)
                return

            try:
                await asyncio.wait_for(
                    lease.page.set_extra_http_headers({}),
                    timeout=self._health_check_timeout,
                )
                await asyncio.wait_for(
                    lease.page.goto(BLANK_URL),
                    timeout=self._health_check_timeout,
                )
            except Exception as e:
                logger.warning(
                    "Page reset failed, destroying lease",
                    lease_id=lease.lease_id,
                    error=str(e),
                )
                await self._close_page(lease)
                return

            if len(self._idle) + self._active_count > self._max_size:
                await self._close_page(lease)
                return

            self._idle.append(lease)
            logger.debug("Page released", lease_id=lease.lease_id, idle=len(self._idle))
        finally:
            self._free_slot()

    async def destroy(self, lease: PageLease) -> None:
        """Close a leased page and free its slot (used after automation errors)."""
        if self._leased.pop(lease.lease_id, None) is None:
            logger.warning("Destroy of unknown lease ignored", lease_id=lease.lease_id)
            return
        self._free_slot()
        logger.info("Destroying page lease", lease_id=lease.lease_id, uses=lease.uses)
        await self._close_page(lease)

    @asynccontextmanager
    async def lease(self, *, discard_on_error: bool = False) -> AsyncIterator[PageLease]:
        """Scoped acquisition.

        Args:
            discard_on_error: Destroy the page instead of pooling it when the
                body raises.

        Yields:
            PageLease for exclusive use inside the block.
        """
        lease = await self.acquire()
        try:
            yield lease
        except asyncio.CancelledError:
            await self.destroy(lease)
            raise
        except BaseException:
            if discard_on_error:
                await self.destroy(lease)
            else:
                await self.release(lease)
            raise
        else:
            await self.release(lease)

    async def close(self) -> None:
        """Close every page and the owned browser."""
        self._closed = True

        for lease in [*self._idle, *self._leased.values()]:
            await self._close_page(lease)
        self._idle.clear()
        self._leased.clear()
        self._active_count = 0
        self._slot_available.set()

        if self._owns_source:
            close = getattr(self._source, "close", None)
            if close is not None:
                await close()

        logger.debug("Session pool closed")

    @property
    def max_size(self) -> int:
        return self._max_size

    @property
    def active_count(self) -> int:
        """Number of leases currently handed out."""
        return len(self._leased)

    @property
    def idle_count(self) -> int:
        return len(self._idle)

    @property
    def total_count(self) -> int:
        """Idle plus active pages."""
        return len(self._idle) + len(self._leased)

    def get_stats(self) -> dict[str, Any]:
        """Get pool statistics."""
        return {
            "max_size": self._max_size,
            "active": self.active_count,
            "idle": self.idle_count,
            "created_total": self._created_total,
            "reused_total": self._reused_total,
            "destroyed_total": self._destroyed_total,
            "closed": self._closed,
        }


# =============================================================================
# Global Instance
# =============================================================================

_session_pool: BrowserSessionPool | None = None


def get_session_pool() -> BrowserSessionPool:
    """Get or create the process-wide session pool."""
    global _session_pool
    if _session_pool is None:
        _session_pool = BrowserSessionPool()
    return _session_pool


async def reset_session_pool() -> None:
    """Close and drop the global session pool (for testing and shutdown)."""
    global _session_pool
    if _session_pool is not None:
        await _session_pool.close()
        _session_pool = None
