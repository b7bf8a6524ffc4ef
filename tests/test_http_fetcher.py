"""
Tests for the HTTP fetcher and per-domain rate limiter.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | 200 with article HTML | Equivalence – normal | ok=True, signature none | - |
| TC-N-02 | Cloudflare interstitial | Equivalence – normal | ok=False, signature challenge | - |
| TC-N-03 | Redirect to /captcha | Equivalence – normal | signature redirect_loop | - |
| TC-N-04 | Referer given | Equivalence – normal | cross-site fetch headers | - |
| TC-A-01 | 404 | Equivalence – abnormal | ok=False, network | - |
| TC-A-02 | 403 | Equivalence – abnormal | ok=False, auth | - |
| TC-A-03 | Transport timeout | Equivalence – abnormal | ok=False, timeout | never raises |
| TC-A-04 | Too many redirects | Equivalence – abnormal | redirect_loop | - |
| TC-B-01 | Same domain twice | Boundary – rate limit | second call waits | - |
| TC-B-02 | Subdomains of one site | Boundary – rate limit | share one delay slot | registrable domain |
| TC-B-03 | More sites than max_domains | Boundary – rate limit | least recently used site forgotten | bounded state |
| TC-N-05 | windows-1251 body, charset in header | Equivalence – normal | Cyrillic text decoded | - |
| TC-N-06 | cp1252 body, charset only in meta | Equivalence – normal | accented text decoded | - |
"""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from adaptive_scraper.crawler.challenge_detector import ProtectionSignature, ProtectionType
from adaptive_scraper.crawler.fetch_result import FetchMethod
from adaptive_scraper.crawler.http_fetcher import HTTPFetcher, RateLimiter, build_default_headers

ARTICLE_HTML = "<html><body><article><h1>Title</h1>" + "<p>text</p>" * 200 + "</article></body></html>"

CHALLENGE_HTML = """
<html><head><title>Just a moment...</title></head>
<body><div id="cf-browser-verification">Checking your browser before accessing</div></body></html>
"""


def _response(
    status: int = 200,
    text: str = ARTICLE_HTML,
    url: str = "https://example.com/a",
    *,
    body: bytes | None = None,
    content_type: str = "text/html",
):
    response = MagicMock()
    response.status_code = status
    response.content = text.encode("utf-8") if body is None else body
    response.url = url
    response.headers = {"Content-Type": content_type}
    return response


def _fetcher(response=None, error: Exception | None = None) -> tuple[HTTPFetcher, MagicMock]:
    session = MagicMock()
    session.get = AsyncMock(return_value=response, side_effect=error)
    session.close = AsyncMock()
    fetcher = HTTPFetcher(session=session, rate_limiter=RateLimiter(0.0, 0.0))
    return fetcher, session


class TestBuildDefaultHeaders:
    """Tests for build_default_headers()."""

    def test_direct_navigation(self) -> None:
        """
        Given: No referer
        When: Headers are built
        Then: Sec-Fetch-Site is none and no Referer is sent
        """
        headers = build_default_headers()

        assert headers["Sec-Fetch-Site"] == "none"
        assert "Referer" not in headers
        assert "Chrome" in headers["User-Agent"]

    # =========================================================================
    # TC-N-04: Referer
    # =========================================================================
    def test_with_referer(self) -> None:
        """
        Given: A referer
        When: Headers are built
        Then: The navigation is marked cross-site
        """
        headers = build_default_headers("https://www.google.com/")

        assert headers["Referer"] == "https://www.google.com/"
        assert headers["Sec-Fetch-Site"] == "cross-site"


class TestHTTPFetcher:
    """Tests for HTTPFetcher.fetch()."""

    # =========================================================================
    # TC-N-01: Success
    # =========================================================================
    @pytest.mark.asyncio
    async def test_success(self) -> None:
        """
        Given: A 200 response with article HTML
        When: fetch() is called
        Then: An ok HTTP result without protection is returned
        """
        fetcher, session = _fetcher(_response())

        result = await fetcher.fetch("https://example.com/a", headers={"X-Test": "1"})

        assert result.ok is True
        assert result.method == FetchMethod.HTTP
        assert result.status == 200
        assert result.protection_signature is ProtectionSignature.NONE
        assert result.headers["content-type"] == "text/html"
        sent_headers = session.get.call_args.kwargs["headers"]
        assert sent_headers["X-Test"] == "1"
        assert session.get.call_args.kwargs["max_redirects"] == 10

    # =========================================================================
    # TC-N-02: Challenge
    # =========================================================================
    @pytest.mark.asyncio
    async def test_challenge_detected(self) -> None:
        """
        Given: A 503 Cloudflare interstitial
        When: fetch() is called
        Then: The result carries the challenge signature and the HTML
        """
        fetcher, _ = _fetcher(_response(503, CHALLENGE_HTML))

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.has_protection is True
        assert result.protection_signature is ProtectionSignature.CHALLENGE
        assert result.protection_type is ProtectionType.CLOUDFLARE
        assert result.html == CHALLENGE_HTML

    # =========================================================================
    # TC-N-03: Suspicious redirect
    # =========================================================================
    @pytest.mark.asyncio
    async def test_suspicious_redirect(self) -> None:
        """
        Given: A redirect that ends on a captcha URL
        When: fetch() is called
        Then: The redirect signature is set
        """
        fetcher, _ = _fetcher(_response(url="https://example.com/captcha?return=/a"))

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.protection_signature is ProtectionSignature.REDIRECT_LOOP
        assert result.reason == "suspicious_redirect"

    # =========================================================================
    # TC-A-01 / TC-A-02: Error statuses
    # =========================================================================
    @pytest.mark.asyncio
    @pytest.mark.parametrize("status,kind", [(404, "network"), (500, "network"), (403, "auth")])
    async def test_error_status(self, status: int, kind: str) -> None:
        """
        Given: An HTTP error status with a plain body
        When: fetch() is called
        Then: A failed result with the matching error kind is returned
        """
        fetcher, _ = _fetcher(_response(status, "<html><body>Not here</body></html>"))

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.reason == f"http_{status}"
        assert result.error_kind == kind
        assert result.has_protection is False

    # =========================================================================
    # TC-A-03: Transport failure
    # =========================================================================
    @pytest.mark.asyncio
    async def test_transport_timeout(self) -> None:
        """
        Given: The session raises a timeout
        When: fetch() is called
        Then: A failed result is returned instead of raising
        """
        fetcher, _ = _fetcher(error=TimeoutError("Operation timed out"))

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is False
        assert result.error_kind == "timeout"
        assert result.html is None

    # =========================================================================
    # TC-A-04: Redirect loop
    # =========================================================================
    @pytest.mark.asyncio
    async def test_redirect_loop(self) -> None:
        """
        Given: The session gives up after too many redirects
        When: fetch() is called
        Then: The redirect_loop signature is reported
        """
        fetcher, _ = _fetcher(error=RuntimeError("Maximum (10) redirects followed"))

        result = await fetcher.fetch("https://example.com/a")

        assert result.protection_signature is ProtectionSignature.REDIRECT_LOOP
        assert result.reason == "redirect_loop"
        assert result.error_kind == "network"

    @pytest.mark.asyncio
    async def test_close_releases_session(self) -> None:
        """
        Given: A fetcher with a session
        When: close() is called
        Then: The session is closed once
        """
        fetcher, session = _fetcher(_response())

        await fetcher.close()
        await fetcher.close()

        session.close.assert_awaited_once()


class TestRateLimiter:
    """Tests for RateLimiter."""

    # =========================================================================
    # TC-B-01: Same-domain spacing
    # =========================================================================
    @pytest.mark.asyncio
    async def test_same_domain_waits(self) -> None:
        """
        Given: A limiter with a fixed 1s delay
        When: The same domain is requested twice
        Then: The second request sleeps, other domains do not
        """
        limiter = RateLimiter(1.0, 1.0)

        with patch("adaptive_scraper.crawler.http_fetcher.asyncio.sleep", new=AsyncMock()) as sleep:
            await limiter.acquire("https://example.com/a")
            await limiter.acquire("https://other.org/a")
            sleep.assert_not_awaited()

            await limiter.acquire("https://www.example.com/b")
            sleep.assert_awaited_once()
            assert 0 < sleep.call_args.args[0] <= 1.0

    # =========================================================================
    # TC-B-02: Subdomains share a slot
    # =========================================================================
    @pytest.mark.asyncio
    async def test_subdomains_share_slot(self) -> None:
        """
        Given: A limiter with a fixed 1s delay
        When: Two hosts of the same registrable domain are requested
        Then: The second request waits for the first
        """
        limiter = RateLimiter(1.0, 1.0)

        with patch("adaptive_scraper.crawler.http_fetcher.asyncio.sleep", new=AsyncMock()) as sleep:
            await limiter.acquire("https://cdn.example.co.uk/a")
            await limiter.acquire("https://news.example.co.uk/b")

        sleep.assert_awaited_once()

    # =========================================================================
    # TC-B-03: Bounded per-site state
    # =========================================================================
    @pytest.mark.asyncio
    async def test_state_bounded_by_max_domains(self) -> None:
        """
        Given: A limiter that remembers two sites
        When: Three sites are requested, then the first one again
        Then: Only two sites are tracked and the evicted site does not wait
        """
        limiter = RateLimiter(1.0, 1.0, max_domains=2)

        with patch("adaptive_scraper.crawler.http_fetcher.asyncio.sleep", new=AsyncMock()) as sleep:
            for site in ("https://a.com/", "https://b.com/", "https://c.com/"):
                await limiter.acquire(site)

            assert list(limiter._domain_locks) == ["b.com", "c.com"]
            assert set(limiter._domain_last_request) == {"b.com", "c.com"}

            await limiter.acquire("https://a.com/again")
            sleep.assert_not_awaited()

            await limiter.acquire("https://c.com/again")
            sleep.assert_awaited_once()

        assert list(limiter._domain_locks) == ["a.com", "c.com"]


class TestHTTPFetcherCharset:
    """Tests for body decoding in HTTPFetcher.fetch()."""

    # =========================================================================
    # TC-N-05: Header charset
    # =========================================================================
    @pytest.mark.asyncio
    async def test_header_charset(self) -> None:
        """
        Given: A windows-1251 body announced in the Content-Type header
        When: fetch() is called
        Then: The Cyrillic text is decoded correctly
        """
        text = ARTICLE_HTML.replace("Title", "Новости безопасности")
        fetcher, _ = _fetcher(
            _response(body=text.encode("cp1251"), content_type="text/html; charset=windows-1251")
        )

        result = await fetcher.fetch("https://example.com/a")

        assert result.ok is True
        assert "Новости безопасности" in result.html

    # =========================================================================
    # TC-N-06: Meta charset
    # =========================================================================
    @pytest.mark.asyncio
    async def test_meta_charset(self) -> None:
        """
        Given: A cp1252 body whose only charset declaration is a meta tag
        When: fetch() is called
        Then: Accented text survives decoding
        """
        text = '<html><head><meta charset="windows-1252"></head>' + ARTICLE_HTML.replace(
            "Title", "Café déjà vu"
        )
        fetcher, _ = _fetcher(_response(body=text.encode("cp1252")))

        result = await fetcher.fetch("https://example.com/a")

        assert "Café déjà vu" in result.html
