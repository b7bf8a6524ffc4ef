"""
Crawler module.

Provides HTTP and browser fetching, the page session pool, anti-bot
handling and dynamic link resolution.
"""

from adaptive_scraper.crawler.browser_fetcher import BrowserFetcher
from adaptive_scraper.crawler.challenge_detector import (
    ProtectionSignature,
    ProtectionType,
    detect_protection,
    needs_dynamic_content,
)
from adaptive_scraper.crawler.dynamic_links import (
    DynamicLinkResolver,
    DynamicTrigger,
    TriggerClass,
)
from adaptive_scraper.crawler.fetch_result import FetchMethod, FetchResult
from adaptive_scraper.crawler.http_fetcher import HTTPFetcher, RateLimiter
from adaptive_scraper.crawler.human_behavior import HumanBehaviorSimulator
from adaptive_scraper.crawler.protection_bypass import ProtectionBypass
from adaptive_scraper.crawler.session_pool import (
    BrowserSessionPool,
    PageLease,
    get_session_pool,
    reset_session_pool,
)

__all__ = [
    # Fetching
    "FetchMethod",
    "FetchResult",
    "HTTPFetcher",
    "RateLimiter",
    "BrowserFetcher",
    # Protection
    "ProtectionSignature",
    "ProtectionType",
    "ProtectionBypass",
    "detect_protection",
    "needs_dynamic_content",
    # Browser sessions
    "BrowserSessionPool",
    "PageLease",
    "get_session_pool",
    "reset_session_pool",
    "HumanBehaviorSimulator",
    # Dynamic links
    "DynamicLinkResolver",
    "DynamicTrigger",
    "TriggerClass",
]
