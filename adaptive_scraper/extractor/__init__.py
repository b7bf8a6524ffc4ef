"""
Extraction module.

Selector sanitizing, structure detection, article and link extraction.
"""

from adaptive_scraper.extractor.content import ContentExtractor, ExtractedArticle
from adaptive_scraper.extractor.links import LinkExtractor
from adaptive_scraper.extractor.selector_sanitizer import (
    sanitize_selector,
    validate_selector_set,
)
from adaptive_scraper.extractor.structure_detector import (
    InMemorySelectorCache,
    SelectorOrigin,
    SelectorSet,
    StructureDetector,
)

__all__ = [
    "ContentExtractor",
    "ExtractedArticle",
    "LinkExtractor",
    "sanitize_selector",
    "validate_selector_set",
    "SelectorOrigin",
    "SelectorSet",
    "StructureDetector",
    "InMemorySelectorCache",
]
