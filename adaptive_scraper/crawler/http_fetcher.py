"""Lightweight HTTP fetcher with browser impersonation."""

import asyncio
import random
import time
from collections import OrderedDict
from typing import Any

from adaptive_scraper.crawler.challenge_detector import (
    ProtectionSignature,
    detect_protection,
)
from adaptive_scraper.crawler.fetch_result import FetchMethod, FetchResult
from adaptive_scraper.pipeline.errors import ErrorKind, classify_exception
from adaptive_scraper.utils.config import get_settings
from adaptive_scraper.utils.encoding import decode_html
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import get_domain, get_registrable_domain, is_suspicious_redirect

logger = get_logger(__name__)

MAX_REDIRECTS = 10


def build_default_headers(referer: str | None = None) -> dict[str, str]:
    """Browser-like request headers for a top-level document navigation."""
    settings = get_settings()
    headers = {
        "User-Agent": settings.crawler.user_agent,
        "Accept": (
            "text/html,application/xhtml+xml,application/xml;q=0.9,"
            "image/avif,image/webp,*/*;q=0.8"
        ),
        "Accept-Language": settings.crawler.accept_language,
        "Accept-Encoding": "gzip, deflate, br",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "cross-site" if referer else "none",
        "Sec-Fetch-User": "?1",
    }
    if referer:
        headers["Referer"] = referer
    return headers


class RateLimiter:
    """Per-site politeness delay.

    Requests to the same registrable domain (``cdn.example.com`` and
    ``www.example.com`` share one slot) are serialized and spaced by a random
    jitter between ``delay_min`` and ``delay_max`` seconds. State is kept for
    the ``max_domains`` most recently used sites only.
    """

    def __init__(
        self,
        delay_min: float | None = None,
        delay_max: float | None = None,
        max_domains: int | None = None,
    ) -> None:
        settings = get_settings()
        self._delay_min = settings.crawler.delay_min if delay_min is None else delay_min
        self._delay_max = settings.crawler.delay_max if delay_max is None else delay_max
        self._max_domains = settings.crawler.rate_limit_domains if max_domains is None else max_domains
        self._domain_locks: OrderedDict[str, asyncio.Lock] = OrderedDict()
        self._domain_last_request: dict[str, float] = {}

    def _lock_for(self, domain: str) -> asyncio.Lock:
        lock = self._domain_locks.get(domain)
        if lock is None:
            lock = self._domain_locks[domain] = asyncio.Lock()
        self._domain_locks.move_to_end(domain)
        while len(self._domain_locks) > self._max_domains:
            evicted, evicted_lock = next(iter(self._domain_locks.items()))
            if evicted_lock.locked():
                break
            del self._domain_locks[evicted]
            self._domain_last_request.pop(evicted, None)
        return lock

    async def acquire(self, url: str) -> None:
        """Wait until the site of ``url`` may be requested again."""
        domain = get_registrable_domain(get_domain(url) or url)

        async with self._lock_for(domain):
            last_request = self._domain_last_request.get(domain)
            if last_request is not None:
                jitter = random.uniform(self._delay_min, self._delay_max)
                wait_time = max(0.0, jitter - (time.monotonic() - last_request))
                if wait_time > 0:
                    await asyncio.sleep(wait_time)

            self._domain_last_request[domain] = time.monotonic()


class HTTPFetcher:
    """HTTP client fetcher using curl_cffi.

    Features:
    - Chrome TLS/HTTP2 impersonation with matching browser headers
    - Protection signature detection (challenge markup, suspicious redirects)
    - Charset detection from headers, meta tags or chardet, with mojibake repair
    - Never raises: failures come back as ``FetchResult(ok=False)``
    """

    def __init__(
        self,
        *,
        session: Any = None,
        rate_limiter: RateLimiter | None = None,
        timeout: float | None = None,
    ) -> None:
        self._settings = get_settings()
        self._session = session
        self._rate_limiter = rate_limiter or RateLimiter()
        self._timeout = timeout or self._settings.crawler.request_timeout

    def _get_session(self) -> Any:
        if self._session is None:
            from curl_cffi import requests as curl_requests

            self._session = curl_requests.AsyncSession(impersonate="chrome")
        return self._session

    async def fetch(
        self,
        url: str,
        *,
        referer: str | None = None,
        headers: dict[str, str] | None = None,
    ) -> FetchResult:
        """Fetch a document over plain HTTP.

        Args:
            url: URL to fetch.
            referer: Referer header.
            headers: Additional headers.

        Returns:
            FetchResult. ``protection_signature`` is set when the response is
            an interstitial or the redirect chain looks like a block page.
        """
        await self._rate_limiter.acquire(url)

        req_headers = build_default_headers(referer)
        if headers:
            req_headers.update(headers)

        started = time.monotonic()
        try:
            response = await self._get_session().get(
                url,
                headers=req_headers,
                timeout=self._timeout,
                allow_redirects=True,
                max_redirects=MAX_REDIRECTS,
            )
        except Exception as e:
            elapsed_ms = (time.monotonic() - started) * 1000
            message = str(e)
            if "redirect" in message.lower():
                logger.warning("Redirect loop detected", url=url[:80], error=message[:200])
                return FetchResult(
                    ok=False,
                    url=url,
                    method=FetchMethod.HTTP,
                    protection_signature=ProtectionSignature.REDIRECT_LOOP,
                    reason="redirect_loop",
                    error_kind=ErrorKind.NETWORK.value,
                    elapsed_ms=elapsed_ms,
                )

            kind = classify_exception(e)
            logger.error("HTTP fetch error", url=url[:80], error=message[:200], kind=kind.value)
            return FetchResult(
                ok=False,
                url=url,
                method=FetchMethod.HTTP,
                reason=message or type(e).__name__,
                error_kind=kind.value,
                elapsed_ms=elapsed_ms,
            )

        elapsed_ms = (time.monotonic() - started) * 1000
        status = response.status_code
        resp_headers = {k.lower(): v for k, v in dict(response.headers).items()}
        html, charset = decode_html(response.content or b"", resp_headers.get("content-type"))
        final_url = str(response.url or url)

        protection = detect_protection(html, resp_headers, status)
        if protection.has_protection:
            logger.info(
                "Challenge detected",
                url=url[:80],
                status=status,
                protection=protection.type.value,
            )
            return FetchResult(
                ok=False,
                url=url,
                html=html,
                final_url=final_url,
                status=status,
                headers=resp_headers,
                method=FetchMethod.HTTP,
                protection_signature=ProtectionSignature.CHALLENGE,
                protection_type=protection.type,
                reason="challenge_detected",
                elapsed_ms=elapsed_ms,
            )

        if is_suspicious_redirect(final_url, url):
            logger.info("Suspicious redirect", url=url[:80], final_url=final_url[:80])
            return FetchResult(
                ok=False,
                url=url,
                html=html,
                final_url=final_url,
                status=status,
                headers=resp_headers,
                method=FetchMethod.HTTP,
                protection_signature=ProtectionSignature.REDIRECT_LOOP,
                reason="suspicious_redirect",
                elapsed_ms=elapsed_ms,
            )

        if status >= 400:
            kind = ErrorKind.AUTH if status in (401, 403) else ErrorKind.NETWORK
            logger.warning("HTTP error status", url=url[:80], status=status)
            return FetchResult(
                ok=False,
                url=url,
                html=html,
                final_url=final_url,
                status=status,
                headers=resp_headers,
                method=FetchMethod.HTTP,
                reason=f"http_{status}",
                error_kind=kind.value,
                elapsed_ms=elapsed_ms,
            )

        logger.info(
            "HTTP fetch success",
            url=url[:80],
            status=status,
            content_length=len(html),
            charset=charset,
            elapsed_ms=round(elapsed_ms),
        )
        return FetchResult(
            ok=True,
            url=url,
            html=html,
            final_url=final_url,
            status=status,
            headers=resp_headers,
            method=FetchMethod.HTTP,
            elapsed_ms=elapsed_ms,
        )

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
