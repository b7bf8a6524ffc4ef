"""
Utilities: configuration, structured logging, URL and charset helpers.
"""

from adaptive_scraper.utils.config import Settings, get_project_root, get_settings
from adaptive_scraper.utils.logging import configure_logging, get_logger, scrape_scope

__all__ = [
    # Config
    "Settings",
    "get_settings",
    "get_project_root",
    # Logging
    "get_logger",
    "configure_logging",
    "scrape_scope",
]
