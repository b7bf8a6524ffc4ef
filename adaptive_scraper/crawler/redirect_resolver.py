"""
Redirect unwrapping for aggregator and shortener links.

Listing pages on news aggregators link to articles through redirect URLs
(``news.google.com/read/...``, ``bit.ly/...``, ``/redirect?url=...``).
Discovery unwraps them so callers receive publisher URLs.

Two stages:
1. URL scoring: only links whose pattern weight reaches
   ``likelihood_threshold`` are requested at all.
2. Manual redirect following: HTTP 3xx ``Location`` headers, then
   ``<meta http-equiv="refresh">`` and ``location`` assignments in inline
   scripts, for at most ``max_redirects`` hops.

A chain that loops, errors or ends on a block page keeps the original URL.
"""

import asyncio
import re
from dataclasses import dataclass
from typing import Any
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from adaptive_scraper.crawler.http_fetcher import build_default_headers
from adaptive_scraper.utils.config import RedirectConfig, get_settings
from adaptive_scraper.utils.encoding import decode_html
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import is_suspicious_redirect

logger = get_logger(__name__)

# (pattern, weight); a URL scores the highest weight it matches
REDIRECT_PATTERNS: tuple[tuple[re.Pattern[str], float], ...] = (
    (re.compile(r"^https?://news\.google\.com/(rss/)?(read|articles)/", re.I), 0.9),
    (re.compile(r"^https?://news\.google\.com/stories/", re.I), 0.8),
    (
        re.compile(r"^https?://(www\.)?(bit\.ly|t\.co|tinyurl\.com|short\.link|is\.gd|ow\.ly)/", re.I),
        0.8,
    ),
    (re.compile(r"/redirect(/|\?|$)", re.I), 0.7),
    (re.compile(r"[?&]url=", re.I), 0.7),
    (re.compile(r"[?&]link=", re.I), 0.6),
    (re.compile(r"[?&]redir", re.I), 0.6),
)

_REFRESH_URL = re.compile(r"url\s*=\s*['\"]?([^'\";]+)", re.I)
_SCRIPT_REDIRECTS = (
    re.compile(r"location\.replace\(\s*['\"](https?://[^'\"]+)['\"]", re.I),
    re.compile(
        r"(?:window\.|document\.)?location(?:\.href)?\s*=\s*['\"](https?://[^'\"]+)['\"]", re.I
    ),
)


def redirect_likelihood(url: str) -> float:
    """Pattern weight of a URL in [0, 1]; 0 when nothing matches."""
    return max((weight for pattern, weight in REDIRECT_PATTERNS if pattern.search(url)), default=0.0)


def extract_client_redirect(html: str, base_url: str) -> tuple[str, str] | None:
    """Find a meta refresh or script redirect target in a document.

    Meta refresh targets may be relative; script targets must be absolute
    http(s) URLs.

    Returns:
        Tuple of (absolute URL, "meta" | "script"), or None.
    """
    if not html:
        return None

    soup = BeautifulSoup(html, "html.parser")
    for meta in soup.find_all("meta", attrs={"http-equiv": True}):
        if str(meta.get("http-equiv", "")).strip().lower() != "refresh":
            continue
        match = _REFRESH_URL.search(str(meta.get("content", "")))
        if match:
            target = urljoin(base_url, match.group(1).strip())
            if urlparse(target).scheme in ("http", "https"):
                return target, "meta"

    for script in soup.find_all("script"):
        text = script.string or ""
        for pattern in _SCRIPT_REDIRECTS:
            match = pattern.search(text)
            if match:
                return match.group(1), "script"
    return None


@dataclass
class RedirectResolution:
    """Outcome of unwrapping one URL."""

    original_url: str
    final_url: str
    hops: int = 0
    method: str = "none"  # http | meta | script | none
    error: str | None = None

    @property
    def changed(self) -> bool:
        return self.final_url != self.original_url


class RedirectResolver:
    """Follows redirect chains by hand with a curl_cffi session.

    Args:
        config: Redirect settings.
        session: curl_cffi AsyncSession (created lazily when omitted).
    """

    def __init__(self, config: RedirectConfig | None = None, *, session: Any = None) -> None:
        self._config = config or get_settings().redirects
        self._session = session

    def _get_session(self) -> Any:
        if self._session is None:
            from curl_cffi import requests as curl_requests

            self._session = curl_requests.AsyncSession(impersonate="chrome")
        return self._session

    def is_candidate(self, url: str) -> bool:
        return redirect_likelihood(url) >= self._config.likelihood_threshold

    async def _next_hop(self, url: str) -> tuple[str, str] | None:
        response = await self._get_session().get(
            url,
            headers=build_default_headers(),
            timeout=self._config.timeout,
            allow_redirects=False,
        )
        status = response.status_code
        headers = {k.lower(): v for k, v in dict(response.headers).items()}

        if 300 <= status < 400 and headers.get("location"):
            return urljoin(url, headers["location"]), "http"
        if status >= 400:
            return None

        body = (response.content or b"")[: self._config.max_scan_chars * 4]
        html, _ = decode_html(body, headers.get("content-type"))
        return extract_client_redirect(html[: self._config.max_scan_chars], url)

    async def resolve(self, url: str) -> RedirectResolution:
        """Unwrap one URL.

        Never raises: failures return the original URL with ``error`` set.
        """
        resolution = RedirectResolution(original_url=url, final_url=url)
        current = url
        seen = {url}

        for _ in range(self._config.max_redirects):
            try:
                hop = await self._next_hop(current)
            except Exception as e:
                logger.debug("Redirect hop failed", url=current[:80], error=str(e)[:200])
                resolution.error = str(e) or type(e).__name__
                resolution.final_url = url
                return resolution
            if hop is None:
                break
            target, method = hop
            if target in seen:
                logger.debug("Circular redirect", url=url[:80], target=target[:80])
                break
            seen.add(target)
            current = target
            resolution.hops += 1
            resolution.method = method

        if current != url and is_suspicious_redirect(current, url):
            logger.info(
                "Redirect ends on a block page, keeping original",
                url=url[:80],
                final_url=current[:80],
            )
            resolution.error = "blocked_destination"
            return resolution

        resolution.final_url = current
        return resolution

    async def resolve_links(self, urls: list[str]) -> dict[str, str]:
        """Map each URL to its unwrapped target.

        Only likely redirect URLs are requested; every other URL maps to
        itself. Requests run concurrently up to ``concurrency``.
        """
        mapping = {url: url for url in urls}
        candidates = [url for url in dict.fromkeys(urls) if self.is_candidate(url)]
        if not self._config.enabled or not candidates:
            return mapping

        semaphore = asyncio.Semaphore(max(1, self._config.concurrency))

        async def run(url: str) -> RedirectResolution:
            async with semaphore:
                return await self.resolve(url)

        resolutions = await asyncio.gather(*(run(url) for url in candidates))
        for resolution in resolutions:
            mapping[resolution.original_url] = resolution.final_url

        logger.info(
            "Redirect links resolved",
            candidates=len(candidates),
            unwrapped=sum(1 for r in resolutions if r.changed),
            failed=sum(1 for r in resolutions if r.error),
        )
        return mapping

    async def close(self) -> None:
        """Close the underlying HTTP session."""
        if self._session is not None:
            await self._session.close()
            self._session = None
