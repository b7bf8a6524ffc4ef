"""
Fetch-method selection with a single escalation step.

HTTP is tried first unless the domain is known to be protected. The
automation route is taken at most once per target, when the HTTP result:

- failed outright
- carries a protection signature (challenge markup, suspicious redirect)
- is too short to be a real page
- is a source page that loads its listing client-side
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

from adaptive_scraper.crawler.browser_fetcher import BrowserFetcher, PageHook
from adaptive_scraper.crawler.challenge_detector import needs_dynamic_content
from adaptive_scraper.crawler.fetch_result import FetchMethod, FetchResult
from adaptive_scraper.crawler.http_fetcher import HTTPFetcher
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError
from adaptive_scraper.utils.config import CrawlerConfig, get_settings
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import domain_matches, get_domain, normalize_url

logger = get_logger(__name__)


class TargetRole(str, Enum):
    """What the fetched document is used for."""

    SOURCE = "source"
    ARTICLE = "article"


@dataclass(frozen=True)
class FetchTarget:
    """A URL to fetch, consumed once by the selector."""

    url: str
    role: TargetRole = TargetRole.ARTICLE
    context_hint: str = ""


TRANSPORT_KINDS = (ErrorKind.NETWORK.value, ErrorKind.TIMEOUT.value)


class MethodSelector:
    """Chooses between the HTTP and automation fetchers.

    Args:
        http_fetcher: Plain HTTP fetcher.
        browser_fetcher: Automation fetcher (pool-backed).
        config: Crawler settings (protected domains, thresholds, budget).
    """

    def __init__(
        self,
        http_fetcher: HTTPFetcher | None = None,
        browser_fetcher: BrowserFetcher | None = None,
        config: CrawlerConfig | None = None,
    ) -> None:
        self._http = http_fetcher or HTTPFetcher()
        self._browser = browser_fetcher or BrowserFetcher()
        self._config = config or get_settings().crawler

    def is_protected(self, url: str, protected_domains: list[str] | None = None) -> bool:
        patterns = list(self._config.protected_domains) + list(protected_domains or [])
        return domain_matches(get_domain(url), patterns)

    def escalation_reason(self, target: FetchTarget, result: FetchResult) -> str | None:
        """Why an HTTP result should be retried with automation (None: keep it)."""
        if not result.ok and not result.has_protection:
            return result.reason or "http_failed"
        if result.has_protection:
            return f"protection_{result.protection_signature.value}"
        if result.content_length < self._config.min_content_length:
            return "content_too_short"
        if target.role is TargetRole.SOURCE and needs_dynamic_content(result.html or ""):
            return "dynamic_content"
        return None

    async def fetch(
        self,
        target: FetchTarget,
        *,
        protected_domains: list[str] | None = None,
        page_hook: PageHook | None = None,
    ) -> FetchResult:
        """Fetch a target, escalating to automation at most once.

        ``crawler.max_fetch_time`` bounds the HTTP request and the automation
        navigation together. Time spent in ``page_hook`` is not counted; the
        hook bounds itself.

        Args:
            target: URL and role.
            protected_domains: Extra protected-domain patterns for this call.
            page_hook: Hook run on the live page when automation is used.

        Returns:
            The accepted FetchResult; ``escalation_path`` lists the routes taken.

        Raises:
            ScrapeError: When every route failed, or the fetch budget ran out.
        """
        url = normalize_url(target.url)
        started = time.monotonic()
        deadline = started + self._config.max_fetch_time

        if self.is_protected(url, protected_domains):
            logger.info("Protected domain, using automation directly", url=url[:80])
            result = await self._browser.fetch(
                url, page_hook=page_hook, timeout=self._remaining(deadline)
            )
            result.escalation_path = [FetchMethod.AUTOMATION]
            if not result.ok:
                raise self._failure(target, None, result)
            return result

        try:
            http_result = await asyncio.wait_for(
                self._http.fetch(url), timeout=self._remaining(deadline)
            )
        except TimeoutError as e:
            raise self._budget_exceeded(target) from e

        reason = self.escalation_reason(target, http_result)
        if reason is None:
            http_result.escalation_path = [FetchMethod.HTTP]
            return http_result

        if self._remaining(deadline) <= 0:
            raise self._budget_exceeded(target)

        logger.info(
            "Escalating to automation",
            url=url[:80],
            reason=reason,
            http_status=http_result.status,
        )
        result = await self._browser.fetch(
            url, page_hook=page_hook, timeout=self._remaining(deadline)
        )
        result.escalation_path = [FetchMethod.HTTP, FetchMethod.AUTOMATION]
        result.elapsed_ms = (time.monotonic() - started) * 1000
        if not result.ok:
            raise self._failure(target, http_result, result)

        if result.has_protection:
            logger.warning(
                "Automation result still shows protection",
                url=url[:80],
                protection=result.protection_type.value,
            )
        return result

    @staticmethod
    def _remaining(deadline: float) -> float:
        return max(0.0, deadline - time.monotonic())

    def _budget_exceeded(self, target: FetchTarget) -> ScrapeError:
        return ScrapeError(
            ErrorKind.TIMEOUT,
            f"Fetch exceeded {self._config.max_fetch_time}s",
            step="fetch",
            context={"url": target.url, "role": target.role.value},
        )

    def _failure(
        self,
        target: FetchTarget,
        http_result: FetchResult | None,
        automation_result: FetchResult,
    ) -> ScrapeError:
        if http_result is not None and http_result.error_kind in TRANSPORT_KINDS:
            kind = ErrorKind(http_result.error_kind)
        elif automation_result.error_kind:
            kind = ErrorKind(automation_result.error_kind)
        else:
            kind = ErrorKind.AUTOMATION

        reasons = [r.reason for r in (http_result, automation_result) if r is not None and r.reason]
        return ScrapeError(
            kind,
            f"All fetch methods failed: {'; '.join(reasons) or 'unknown'}",
            step="fetch",
            context={
                "url": target.url,
                "role": target.role.value,
                "escalation_path": ",".join(automation_result.escalation_path),
            },
        )

    async def close(self) -> None:
        await self._http.close()
        await self._browser.close()
