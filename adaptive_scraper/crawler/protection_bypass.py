"""
Challenge-aware navigation for automation pages.

Sequence per navigation:
1. Refuse deny-listed domains (auth error, never retried)
2. Set a plausible Referer and wait a human-like delay
3. Navigate
4. Skip polling for trusted domains
5. Poll until interstitial markers disappear (bounded), running a few
   human-like actions between polls
6. Wait for the page to stabilize

Before the content is read, ``settle_before_capture`` runs a few more actions.
"""

from __future__ import annotations

import asyncio
import random
from typing import TYPE_CHECKING, Any

from adaptive_scraper.crawler.challenge_detector import ProtectionType, is_challenge_text
from adaptive_scraper.crawler.human_behavior import (
    HumanBehaviorSimulator,
    get_human_behavior_simulator,
)
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError
from adaptive_scraper.utils.config import BypassConfig, get_settings
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import domain_matches, get_domain

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

_PAGE_STATE_JS = """
() => {
    const html = document.documentElement ? document.documentElement.innerHTML : '';
    return {
        title: document.title || '',
        text: document.body ? (document.body.innerText || '').slice(0, 5000) : '',
        datadome: !!document.querySelector('script[src*="captcha-delivery.com"]')
            || html.includes('geo.captcha-delivery.com'),
    };
}
"""


class ProtectionBypass:
    """Navigates a leased page and waits out anti-bot interstitials.

    Args:
        config: Bypass settings (timeouts, domain lists).
        human: Simulator used for light interaction while polling.
        navigation_timeout: Seconds allowed for ``page.goto``.
    """

    def __init__(
        self,
        config: BypassConfig | None = None,
        human: HumanBehaviorSimulator | None = None,
        *,
        navigation_timeout: float | None = None,
    ) -> None:
        settings = get_settings()
        self._config = config or settings.bypass
        self._human = human or get_human_behavior_simulator()
        self._navigation_timeout = navigation_timeout or settings.browser.navigation_timeout

    def is_denied(self, url: str) -> bool:
        return domain_matches(get_domain(url), self._config.denied_domains)

    def is_trusted(self, url: str) -> bool:
        return domain_matches(get_domain(url), self._config.trusted_domains)

    async def _page_state(self, page: Page) -> dict[str, Any] | None:
        try:
            state = await page.evaluate(_PAGE_STATE_JS)
        except Exception as e:
            # Context is usually destroyed by the challenge redirecting itself
            logger.debug("Page state check failed", error=str(e))
            return None
        return state if isinstance(state, dict) else None

    def _challenge_type(self, state: dict[str, Any] | None) -> ProtectionType | None:
        if not state:
            return None
        if state.get("datadome"):
            return ProtectionType.DATADOME
        if is_challenge_text(f"{state.get('title', '')} {state.get('text', '')}"):
            return ProtectionType.CLOUDFLARE
        return None

    async def wait_for_clearance(self, page: Page, challenge: ProtectionType) -> bool:
        """Poll until the challenge markers are gone.

        Returns:
            True once the page no longer shows a challenge, False on timeout.
        """
        if challenge is ProtectionType.DATADOME:
            timeout, interval = self._config.datadome_timeout, self._config.datadome_poll_interval
        else:
            timeout, interval = self._config.challenge_timeout, self._config.poll_interval

        max_polls = max(1, int(timeout / interval))
        logger.info(
            "Challenge detected, waiting for clearance",
            url=page.url[:80],
            challenge=challenge.value,
            timeout=timeout,
        )

        for attempt in range(1, max_polls + 1):
            await asyncio.sleep(interval)
            await self._human.perform_random_actions(page, count=self._config.poll_actions)
            if self._challenge_type(await self._page_state(page)) is None:
                logger.info(
                    "Challenge cleared",
                    url=page.url[:80],
                    waited=round(attempt * interval, 1),
                )
                await asyncio.sleep(self._config.stabilize_delay)
                return True

        logger.warning(
            "Challenge did not clear",
            url=page.url[:80],
            challenge=challenge.value,
            timeout=timeout,
        )
        return False

    async def navigate(self, page: Page, url: str, *, referrer: str | None = None) -> bool:
        """Navigate ``page`` to ``url`` and get past interstitial checks.

        Args:
            page: Leased page.
            url: Target URL.
            referrer: Referer to present (defaults to a search engine).

        Returns:
            True when the target content is reachable, False when a challenge
            did not clear in time.

        Raises:
            ScrapeError: kind ``auth`` for deny-listed domains.
            playwright Error/TimeoutError: navigation failures propagate.
        """
        if self.is_denied(url):
            logger.warning("Navigation refused for denied domain", url=url[:80])
            raise ScrapeError(
                ErrorKind.AUTH,
                f"Domain is deny-listed: {get_domain(url)}",
                step="bypass",
                retryable=False,
                context={"url": url},
            )

        referrer = referrer or self._config.default_referrer
        await page.set_extra_http_headers({"Referer": referrer})
        await asyncio.sleep(
            random.uniform(
                self._config.pre_navigation_delay_min,
                self._config.pre_navigation_delay_max,
            )
        )

        await page.goto(
            url,
            referer=referrer,
            wait_until="domcontentloaded",
            timeout=self._navigation_timeout * 1000,
        )

        if self.is_trusted(url):
            logger.debug("Trusted domain, skipping challenge polling", url=url[:80])
            return True

        challenge = self._challenge_type(await self._page_state(page))
        if challenge is None:
            return True
        return await self.wait_for_clearance(page, challenge)

    async def settle_before_capture(self, page: Page) -> None:
        """Interact briefly with a cleared page before its content is read."""
        if self._config.capture_actions > 0:
            await self._human.perform_random_actions(page, count=self._config.capture_actions)
