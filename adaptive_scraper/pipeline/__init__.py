"""
Pipeline layer: error taxonomy, fetch-method selection and orchestration.

Only the error types are exported here; crawler modules import them, so the
orchestrator lives behind an explicit ``adaptive_scraper.pipeline.orchestrator``
import.
"""

from adaptive_scraper.pipeline.errors import ErrorClassifier, ErrorKind, ScrapeError

__all__ = [
    "ErrorKind",
    "ScrapeError",
    "ErrorClassifier",
]
