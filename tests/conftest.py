"""
Pytest configuration and shared fixtures.
"""

import os
import sys
import tempfile
from collections.abc import Generator
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# Point settings at the repository config before any module reads them
PROJECT_ROOT = Path(__file__).parent.parent
os.environ.setdefault("ADAPTIVE_SCRAPER_CONFIG_DIR", str(PROJECT_ROOT / "config"))
sys.path.insert(0, str(PROJECT_ROOT))


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "unit: fast tests with all external services mocked")
    config.addinivalue_line("markers", "integration: components combined with mocked I/O")
    config.addinivalue_line("markers", "e2e: tests that need a real browser and network")
    config.addinivalue_line("markers", "slow: tests that take more than a few seconds")


def pytest_collection_modifyitems(config, items):
    """Default unclassified tests to ``unit`` and skip e2e unless selected."""
    markexpr = config.getoption("-m", default="") or ""
    skip_e2e = pytest.mark.skip(reason="E2E tests need a browser; run with: pytest -m e2e")

    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)

        if "e2e" not in markexpr and any(m.name == "e2e" for m in item.iter_markers()):
            item.add_marker(skip_e2e)


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def mock_settings():
    """Settings with short timings so mocked flows finish quickly."""
    from adaptive_scraper.utils.config import (
        BrowserConfig,
        BypassConfig,
        CrawlerConfig,
        DynamicLinksConfig,
        ExtractionConfig,
        GeneralConfig,
        LLMConfig,
        Settings,
    )

    return Settings(
        general=GeneralConfig(log_level="DEBUG"),
        crawler=CrawlerConfig(delay_min=0.0, delay_max=0.0, max_fetch_time=30),
        browser=BrowserConfig(max_pool_size=5, acquire_timeout=5.0, health_check_timeout=1.0),
        bypass=BypassConfig(
            challenge_timeout=1.0,
            poll_interval=0.01,
            datadome_timeout=1.0,
            datadome_poll_interval=0.01,
            stabilize_delay=0.0,
            pre_navigation_delay_min=0.0,
            pre_navigation_delay_max=0.0,
        ),
        dynamic_links=DynamicLinksConfig(settle_time=0.0, throttle_pause=0.0),
        extraction=ExtractionConfig(),
        llm=LLMConfig(enabled=False),
    )


@pytest.fixture
def make_mock_page():
    """Factory for mock Playwright pages.

    The returned page answers ``content()`` with the given HTML and
    ``evaluate()`` with ``None`` unless overridden by the test.
    """

    def _make(html: str = "<html><body></body></html>", url: str = "https://example.com/"):
        page = MagicMock()
        page.url = url
        page.content = AsyncMock(return_value=html)
        page.evaluate = AsyncMock(return_value=None)
        page.goto = AsyncMock()
        page.wait_for_load_state = AsyncMock()
        page.wait_for_timeout = AsyncMock()
        page.query_selector = AsyncMock(return_value=None)
        page.set_extra_http_headers = AsyncMock()
        page.is_closed = MagicMock(return_value=False)
        page.close = AsyncMock()
        page.viewport_size = {"width": 1920, "height": 1080}
        page.mouse = MagicMock()
        page.mouse.move = AsyncMock()
        page.mouse.wheel = AsyncMock()
        page.keyboard = MagicMock()
        page.keyboard.press = AsyncMock()
        page.keyboard.down = AsyncMock()
        page.keyboard.up = AsyncMock()
        return page

    return _make


class MockResponse:
    """Mock aiohttp response."""

    def __init__(self, json_data: dict, status: int = 200, text: str = ""):
        self._json_data = json_data
        self.status = status
        self._text = text

    async def json(self):
        return self._json_data

    async def text(self):
        return self._text

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        pass


@pytest.fixture
def make_mock_response():
    """Factory for creating mock aiohttp responses."""

    def _make(json_data: dict, status: int = 200, text: str = ""):
        return MockResponse(json_data, status, text)

    return _make


# =============================================================================
# Singleton Reset Fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def reset_settings_cache():
    """Reload settings for every test so env overrides do not leak."""
    from adaptive_scraper.utils.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture(autouse=True)
def reset_human_behavior():
    """Reset the human behavior simulator singleton."""
    yield
    from adaptive_scraper.crawler.human_behavior import reset_human_behavior_simulator

    reset_human_behavior_simulator()


@pytest.fixture(autouse=True)
async def reset_global_pools():
    """Close the global session pool and orchestrator between tests."""
    yield
    from adaptive_scraper.crawler.session_pool import reset_session_pool
    from adaptive_scraper.pipeline.orchestrator import reset_orchestrator

    await reset_orchestrator()
    await reset_session_pool()
