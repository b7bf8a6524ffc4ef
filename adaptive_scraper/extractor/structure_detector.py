"""
Article structure detection: which CSS selectors hold title, body, author and date.

Fallback chain, first usable result wins:
1. cached  - selectors remembered for the domain, if they still fit the page
2. ai      - LLM inference on a cleaned excerpt, sanitized and validated
3. heuristic - fixed candidate lists checked against the document

The chain never raises. AI failures are reported as ``ai`` errors and the
chain moves on.
"""

import asyncio
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Protocol

from bs4 import BeautifulSoup, Comment

from adaptive_scraper.extractor.selector_sanitizer import (
    safe_select,
    sanitize_selector,
    validate_selector_set,
)
from adaptive_scraper.pipeline.errors import ErrorClassifier, ErrorKind, ScrapeError
from adaptive_scraper.utils.config import ExtractionConfig, get_settings
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import collapse_whitespace, get_domain

logger = get_logger(__name__)


class SelectorOrigin(str, Enum):
    """Where a selector set came from."""

    AI = "ai"
    HEURISTIC = "heuristic"
    CACHED = "cached"


@dataclass
class SelectorSet:
    """CSS selectors for one article layout."""

    title_selector: str | None
    content_selector: str | None
    author_selector: str | None = None
    date_selector: str | None = None
    confidence: float = 0.0
    origin: SelectorOrigin = SelectorOrigin.HEURISTIC

    def __post_init__(self) -> None:
        self.confidence = max(0.0, min(1.0, float(self.confidence)))
        self.origin = SelectorOrigin(self.origin)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title_selector": self.title_selector,
            "content_selector": self.content_selector,
            "author_selector": self.author_selector,
            "date_selector": self.date_selector,
            "confidence": self.confidence,
            "origin": self.origin.value,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SelectorSet":
        return cls(
            title_selector=data.get("title_selector"),
            content_selector=data.get("content_selector"),
            author_selector=data.get("author_selector"),
            date_selector=data.get("date_selector"),
            confidence=data.get("confidence", 0.0),
            origin=data.get("origin", SelectorOrigin.CACHED.value),
        )


# =============================================================================
# Collaborators
# =============================================================================


class SelectorCache(Protocol):
    """Per-domain selector storage."""

    async def get(self, domain: str) -> SelectorSet | None: ...

    async def set(self, domain: str, selectors: SelectorSet) -> None: ...


class StructureInference(Protocol):
    """Produces raw (untrusted) selector fields for an HTML excerpt."""

    async def infer(self, html_excerpt: str, url: str) -> dict[str, Any]: ...


@dataclass
class InMemorySelectorCache:
    """Process-local SelectorCache."""

    entries: dict[str, dict[str, Any]] = field(default_factory=dict)

    async def get(self, domain: str) -> SelectorSet | None:
        data = self.entries.get(domain)
        return SelectorSet.from_dict(data) if data else None

    async def set(self, domain: str, selectors: SelectorSet) -> None:
        self.entries[domain] = selectors.to_dict()


# =============================================================================
# Heuristic candidates
# =============================================================================

TITLE_CANDIDATES = (
    "h1.article-title",
    "h1.entry-title",
    "h1.post-title",
    "article h1",
    "main h1",
    "[itemprop='headline']",
    ".article-title",
    ".entry-title",
    ".post-title",
    ".headline",
    "h1",
)

CONTENT_CANDIDATES = (
    "[itemprop='articleBody']",
    ".article-content",
    ".article-body",
    ".entry-content",
    ".post-content",
    ".post-body",
    ".story-body",
    ".content-body",
    "article",
    "main",
    ".content",
    "#content",
)

# Containers that often include chrome around the body
GENERIC_CONTENT = frozenset({"article", "main", ".content", "#content"})

AUTHOR_CANDIDATES = (
    "[rel='author']",
    "[itemprop='author']",
    ".author-name",
    ".byline .author",
    ".author",
    ".byline",
    ".writer",
)

DATE_CANDIDATES = (
    "time[datetime]",
    "[itemprop='datePublished']",
    "time",
    ".publish-date",
    ".published",
    ".post-date",
    ".article-date",
    ".timestamp",
    ".date",
)

HEURISTIC_BASE_CONFIDENCE = 0.6
NO_TITLE_CONFIDENCE_CAP = 0.3
AI_BASE_CONFIDENCE = 0.7
AI_DEFAULT_REPORTED_CONFIDENCE = 0.8


def _first_matching(
    soup: BeautifulSoup,
    candidates: tuple[str, ...],
    min_chars: int,
    *,
    attrs: tuple[str, ...] = (),
) -> str | None:
    for selector in candidates:
        for el in safe_select(soup, selector):
            if any(el.get(a) for a in attrs):
                return selector
            if len(collapse_whitespace(el.get_text(" ", strip=True))) >= min_chars:
                return selector
    return None


def build_html_excerpt(html: str, max_chars: int | None = None) -> str:
    """Body markup without scripts, styles or comments, truncated for the model.

    Args:
        html: Full document.
        max_chars: Truncation limit (defaults to ``extraction.ai_excerpt_max_chars``).
    """
    limit = max_chars or get_settings().extraction.ai_excerpt_max_chars
    soup = BeautifulSoup(html or "", "html.parser")
    root = soup.body or soup

    for tag in root.find_all(["script", "style", "noscript"]):
        tag.decompose()
    for comment in root.find_all(string=lambda s: isinstance(s, Comment)):
        comment.extract()

    excerpt = root.decode_contents() if root is soup.body else str(root)
    if len(excerpt) > limit:
        excerpt = excerpt[:limit] + "\n<!-- [truncated for AI analysis] -->"
    return excerpt


# =============================================================================
# Detector
# =============================================================================


class StructureDetector:
    """Determines article selectors via cached, AI and heuristic tiers.

    Args:
        inference: Optional AI collaborator; skipped when None.
        cache: Optional per-domain selector cache.
        classifier: Error classifier for non-fatal AI failures.
        config: Extraction thresholds.
    """

    def __init__(
        self,
        inference: StructureInference | None = None,
        cache: SelectorCache | None = None,
        classifier: ErrorClassifier | None = None,
        config: ExtractionConfig | None = None,
    ) -> None:
        self._inference = inference
        self._cache = cache
        self._classifier = classifier or ErrorClassifier()
        self._config = config or get_settings().extraction

    @property
    def cache(self) -> SelectorCache | None:
        return self._cache

    async def detect(self, html: str, url: str) -> SelectorSet:
        """Return the best selector set for ``html``.

        Args:
            html: Article document.
            url: Article URL (domain keys the cache).

        Returns:
            SelectorSet with ``origin`` naming the tier that produced it.
        """
        soup = BeautifulSoup(html or "", "html.parser")
        domain = get_domain(url)

        cached = await self._from_cache(domain, soup)
        if cached is not None:
            logger.info("Using cached selectors", domain=domain)
            return cached

        inferred = await self._from_ai(html, soup, url)
        if inferred is not None:
            logger.info(
                "Using AI selectors",
                domain=domain,
                confidence=round(inferred.confidence, 3),
            )
            return inferred

        heuristic = self.detect_heuristic(soup)
        logger.info(
            "Using heuristic selectors",
            domain=domain,
            title=heuristic.title_selector,
            content=heuristic.content_selector,
            confidence=round(heuristic.confidence, 3),
        )
        return heuristic

    async def store(self, url: str, selectors: SelectorSet) -> None:
        """Remember a freshly detected selector set for the URL's domain."""
        if self._cache is None or selectors.origin is SelectorOrigin.CACHED:
            return
        try:
            await self._cache.set(get_domain(url), selectors)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._classifier.capture(e, "selector_cache_write", url=url)

    async def _from_cache(self, domain: str, soup: BeautifulSoup) -> SelectorSet | None:
        if self._cache is None:
            return None
        try:
            cached = await self._cache.get(domain)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._classifier.capture(e, "selector_cache_read", domain=domain)
            return None
        if cached is None:
            return None

        title = sanitize_selector(cached.title_selector)
        content = sanitize_selector(cached.content_selector)
        if title is None or content is None:
            logger.debug("Cached selectors no longer sanitize", domain=domain)
            return None
        for optional in (cached.author_selector, cached.date_selector):
            if optional is not None and sanitize_selector(optional) is None:
                logger.debug("Cached selectors no longer sanitize", domain=domain)
                return None
        if not safe_select(soup, content):
            logger.debug("Cached content selector stale", domain=domain, selector=content)
            return None

        return replace(cached, title_selector=title, content_selector=content, origin=SelectorOrigin.CACHED)

    def _report_ai(self, message: str, url: str, cause: BaseException | None = None) -> None:
        if isinstance(cause, ScrapeError) and cause.kind is ErrorKind.AI:
            error = cause
        else:
            error = ScrapeError(
                ErrorKind.AI,
                message,
                step="structure_ai",
                retryable=False,
                context={"url": url},
            )
        self._classifier.report(error)

    async def _from_ai(self, html: str, soup: BeautifulSoup, url: str) -> SelectorSet | None:
        if self._inference is None:
            return None

        excerpt = build_html_excerpt(html, self._config.ai_excerpt_max_chars)
        try:
            raw = await self._inference.infer(excerpt, url)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self._report_ai(f"Structure inference failed: {e}", url, e)
            return None

        if not isinstance(raw, dict):
            self._report_ai("Structure inference returned no mapping", url)
            return None

        title = sanitize_selector(raw.get("titleSelector"))
        content = sanitize_selector(raw.get("contentSelector"))
        if title is None or content is None:
            self._report_ai(
                "Structure inference returned unusable selectors "
                f"(title={str(raw.get('titleSelector'))[:60]!r}, "
                f"content={str(raw.get('contentSelector'))[:60]!r})",
                url,
            )
            return None

        candidate = SelectorSet(
            title_selector=title,
            content_selector=content,
            author_selector=sanitize_selector(raw.get("authorSelector")),
            date_selector=sanitize_selector(raw.get("dateSelector")),
            origin=SelectorOrigin.AI,
        )
        if not safe_select(soup, content):
            self._report_ai(f"AI content selector matches nothing: {content[:80]}", url)
            return None

        validation = validate_selector_set(candidate, soup)
        try:
            reported = float(raw.get("confidence", AI_DEFAULT_REPORTED_CONFIDENCE))
        except (TypeError, ValueError):
            reported = AI_DEFAULT_REPORTED_CONFIDENCE
        score = max(0.0, min(1.0, reported * validation.confidence))
        candidate.confidence = AI_BASE_CONFIDENCE + (1 - AI_BASE_CONFIDENCE) * score

        if validation.issues:
            logger.debug("AI selector issues", url=url[:80], issues=validation.issues)
        return candidate

    def detect_heuristic(self, html: str | BeautifulSoup) -> SelectorSet:
        """Pick selectors from fixed candidate lists.

        Confidence starts at 0.6; missing fields and generic containers
        lower it. Without any title match it is capped at 0.3.
        """
        soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html or "", "html.parser")

        title = _first_matching(soup, TITLE_CANDIDATES, 3)
        content = _first_matching(soup, CONTENT_CANDIDATES, self._config.min_heuristic_content_chars)
        author = _first_matching(soup, AUTHOR_CANDIDATES, 3)
        date = _first_matching(soup, DATE_CANDIDATES, 6, attrs=("datetime", "content"))

        confidence = HEURISTIC_BASE_CONFIDENCE
        if content is None:
            confidence -= 0.3
        elif content in GENERIC_CONTENT:
            confidence -= 0.1
        if author is None:
            confidence -= 0.05
        if date is None:
            confidence -= 0.05
        if title is None:
            confidence = min(confidence, NO_TITLE_CONFIDENCE_CAP)

        return SelectorSet(
            title_selector=title,
            content_selector=content,
            author_selector=author,
            date_selector=date,
            confidence=confidence,
            origin=SelectorOrigin.HEURISTIC,
        )
