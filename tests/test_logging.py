"""
Tests for structured logging helpers.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-N-01 | scrape_scope block | Equivalence – normal | Fields bound inside, gone after | - |
| TC-N-02 | Nested scopes | Equivalence – normal | parent_op_id set, outer URL restored | - |
| TC-N-03 | Long URL field | Equivalence – normal | Capped at MAX_URL_CHARS | - |
| TC-B-01 | URL of exactly MAX_URL_CHARS | Boundary – max | Unchanged | - |
| TC-N-04 | configure_logging with file | Equivalence – normal | structlog configured | - |
"""

import pytest
import structlog

from adaptive_scraper.utils.logging import (
    MAX_URL_CHARS,
    _shorten_urls,
    configure_logging,
    scrape_scope,
)

SOURCE = "https://news.example.com/security"
ARTICLE = "https://news.example.com/security/ransomware-hits-hospital"


@pytest.fixture(autouse=True)
def clean_context():
    structlog.contextvars.clear_contextvars()
    yield
    structlog.contextvars.clear_contextvars()


class TestScrapeScope:
    """Tests for scrape_scope()."""

    # =========================================================================
    # TC-N-01: Single scope
    # =========================================================================
    def test_fields_bound_inside(self) -> None:
        """
        Given: A discover_links scope
        When: The block is entered and left
        Then: op_id, operation, url and role are bound only inside
        """
        with scrape_scope("discover_links", SOURCE, "source") as op_id:
            bound = structlog.contextvars.get_contextvars()
            assert bound == {
                "op_id": op_id,
                "operation": "discover_links",
                "url": SOURCE,
                "role": "source",
            }

        assert structlog.contextvars.get_contextvars() == {}

    # =========================================================================
    # TC-N-02: Nested scopes
    # =========================================================================
    def test_nested_scope(self) -> None:
        """
        Given: An extract scope opened inside a discover scope
        When: The inner scope is entered and left
        Then: The inner scope links to the outer op_id and the outer URL comes back
        """
        with scrape_scope("discover_links", SOURCE, "source") as outer:
            with scrape_scope("extract_article", ARTICLE, "article") as inner:
                bound = structlog.contextvars.get_contextvars()
                assert bound["op_id"] == inner
                assert bound["parent_op_id"] == outer
                assert bound["url"] == ARTICLE

            bound = structlog.contextvars.get_contextvars()
            assert bound["op_id"] == outer
            assert bound["url"] == SOURCE
            assert "parent_op_id" not in bound

        assert inner != outer


class TestShortenUrls:
    """Tests for the URL-capping processor."""

    # =========================================================================
    # TC-N-03 / TC-B-01: URL length cap
    # =========================================================================
    def test_long_url_capped(self) -> None:
        """
        Given: An event with an over-long url and final_url
        When: The processor runs
        Then: Both are cut to MAX_URL_CHARS plus an ellipsis; other fields untouched
        """
        long_url = "https://news.google.com/rss/articles/" + "C" * 500
        event = _shorten_urls(None, "info", {"event": "x", "url": long_url, "final_url": long_url, "error": long_url})

        assert event["url"] == long_url[:MAX_URL_CHARS] + "..."
        assert event["final_url"] == event["url"]
        assert event["error"] == long_url

    def test_url_at_limit_unchanged(self) -> None:
        """
        Given: A url of exactly MAX_URL_CHARS
        When: The processor runs
        Then: It is left as is
        """
        url = "https://a.example/" + "x" * (MAX_URL_CHARS - len("https://a.example/"))

        assert _shorten_urls(None, "info", {"url": url})["url"] == url


class TestConfigureLogging:
    """Tests for configure_logging()."""

    def test_configure_with_file(self, temp_dir) -> None:
        """
        Given: An explicit log file and level
        When: configure_logging() is called
        Then: structlog is configured
        """
        structlog.reset_defaults()

        configure_logging(log_level="DEBUG", log_file=temp_dir / "scraper.log", json_format=False)

        assert structlog.is_configured()
        structlog.reset_defaults()
