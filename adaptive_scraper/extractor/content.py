"""
Article content extraction with per-field recovery tiers.

Each field walks its own chain and records which tier produced it:

- title:   selector -> variations -> fallback selectors -> page metadata
           -> URL slug -> domain name
- content: selector -> variations -> fallback selectors -> paragraph blocks
           -> whole document (trafilatura, then body text)
- author:  selector -> variations -> fallback selectors -> metadata
- date:    selector (datetime/content attribute first) -> fallback
           selectors -> metadata

The article's ``extraction_method`` is the weakest tier used for title and
content, and its confidence the minimum over every contributing step. Results
that look like block pages, soft 404s or mis-decoded text are kept but marked
unvalidated (see ``legitimacy``).
"""

import re
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any

import trafilatura
from bs4 import BeautifulSoup

from adaptive_scraper.extractor.legitimacy import assess_legitimacy
from adaptive_scraper.extractor.selector_sanitizer import safe_select, sanitize_selector
from adaptive_scraper.utils.config import ExtractionConfig, get_settings
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import collapse_whitespace, domain_title, title_from_url

if TYPE_CHECKING:
    from bs4 import Tag

    from adaptive_scraper.extractor.structure_detector import SelectorSet

logger = get_logger(__name__)


class ExtractionTier(str, Enum):
    """Recovery tiers with weakness rank and step confidence."""

    SELECTOR = ("selector", 0, 0.9)
    VARIATION = ("variation", 1, 0.7)
    FALLBACK = ("fallback", 2, 0.5)
    METADATA = ("metadata", 3, 0.6)
    BLOCK = ("block", 3, 0.4)
    URL = ("url", 4, 0.4)
    DOCUMENT = ("document", 5, 0.3)
    DOMAIN = ("domain", 6, 0.3)
    ERROR = ("error", 7, 0.0)

    def __new__(cls, value: str, rank: int, confidence: float):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.rank = rank
        obj.confidence = confidence
        return obj


@dataclass
class ExtractedArticle:
    """Normalized article record."""

    title: str
    content: str
    source_url: str
    author: str | None = None
    publish_date: str | None = None
    extraction_method: str = ExtractionTier.SELECTOR.value
    confidence: float = 0.0
    field_methods: dict[str, str | None] = field(default_factory=dict)
    validated: bool = True
    validation_issues: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "title": self.title,
            "content": self.content,
            "author": self.author,
            "publish_date": self.publish_date,
            "source_url": self.source_url,
            "extraction_method": self.extraction_method,
            "confidence": round(self.confidence, 4),
            "field_methods": dict(self.field_methods),
            "validated": self.validated,
            "validation_issues": list(self.validation_issues),
        }


# =============================================================================
# Fallback selectors
# =============================================================================

TITLE_FALLBACKS = (
    "h1.article-title",
    "h1.entry-title",
    "article h1",
    "[itemprop='headline']",
    ".headline",
    ".post-title",
    "h1",
)

CONTENT_FALLBACKS = (
    "[itemprop='articleBody']",
    ".article-content",
    ".article-body",
    ".entry-content",
    ".post-content",
    ".story-body",
    "article",
    "main",
    ".content",
    "#content",
)

AUTHOR_FALLBACKS = (
    "[rel='author']",
    "[itemprop='author']",
    ".author-name",
    ".byline .author",
    ".author",
    ".byline",
    "meta[name='author']",
)

DATE_FALLBACKS = (
    "meta[property='article:published_time']",
    "meta[name='date']",
    "time[datetime]",
    "[itemprop='datePublished']",
    ".publish-date",
    ".published",
    ".post-date",
    ".article-date",
    ".date",
)

BLOCK_TAGS = ("p", "h2", "h3", "blockquote", "pre", "li")
CHROME_TAGS = ("nav", "header", "footer", "aside", "form")
NOISE_TAGS = ("script", "style", "noscript", "template", "iframe", "svg")

LOW_QUALITY_START = re.compile(
    r"^(menu|navigation|nav|sidebar|footer|header|advertisement|ad|cookie|privacy|terms|"
    r"home|about|contact|login|register|subscribe|newsletter)(\s|$)",
    re.I,
)
REPEATED_SHORT = re.compile(r"^(.{1,5}\s*)\1{3,}$")
NO_ALNUM = re.compile(r"^[^a-zA-Z0-9]*$")

CONTACT_LINE = re.compile(r"^(CONTACT|CONTACTS:|FOR MORE INFORMATION|PRESS CONTACT|MEDIA CONTACT)", re.I)
DATE_LIKE = re.compile(
    r"\b(JANUARY|FEBRUARY|MARCH|APRIL|MAY|JUNE|JULY|AUGUST|SEPTEMBER|OCTOBER|NOVEMBER|DECEMBER|"
    r"\d{1,2},?\s*\d{4}|\d{1,2}:\d{2}\s*(AM|PM))",
    re.I,
)
BIO_MARKERS = (
    re.compile(r"\s+is\s+(a|an)\s+", re.I),
    re.compile(r"\s+has\s+(been|worked)", re.I),
    re.compile(r"\s+worked?\s+(at|for|in)", re.I),
    re.compile(r",?\s+(veteran|former|senior)\s+", re.I),
    re.compile(r"\s+of\s+more\s+than\s+\d+", re.I),
    re.compile(r"\.\s*[A-Z]"),
    re.compile(r"\s+(received|won|earned)", re.I),
    re.compile(r"\s+(published|written)", re.I),
    re.compile(r"\s+specializes?\s+in", re.I),
    re.compile(r"\s+covers?\s+(topics|stories)", re.I),
)
NAME_PREFIX = re.compile(r"^(by|written by|author:?)\s+", re.I)
LEADING_NAME = re.compile(r"^([A-Z][a-z]+(?:\s+[A-Z][a-z]*\.?){0,3})")

DATE_FORMATS = (
    "%B %d %Y",
    "%b %d %Y",
    "%d %B %Y",
    "%d %b %Y",
    "%m/%d/%Y",
    "%Y/%m/%d",
    "%d.%m.%Y",
)
ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}(?:[T ][\d:.]+(?:Z|[+-]\d{2}:?\d{2})?)?")
TEXT_DATE = re.compile(
    r"(\d{1,2}\s+[A-Za-z]{3,9}\.?\s+\d{4}|[A-Za-z]{3,9}\.?\s+\d{1,2}(?:st|nd|rd|th)?,?\s+\d{4}"
    r"|\d{1,2}/\d{1,2}/\d{4}|\d{4}/\d{1,2}/\d{1,2}|\d{1,2}\.\d{1,2}\.\d{4})"
)


# =============================================================================
# Helpers
# =============================================================================


def is_low_quality_content(content: str) -> bool:
    """Navigation-like, repetitive or non-text content."""
    if not content or len(content) < 50:
        return True
    text = content.strip()
    return bool(LOW_QUALITY_START.match(text) or REPEATED_SHORT.match(text) or NO_ALNUM.match(text))


def generate_selector_variations(selector: str) -> list[str]:
    """Near-miss rewrites of a selector, original excluded.

    Covers underscore/hyphen swaps, class attribute forms, stripped
    pseudo classes and descendant/child combinator swaps.
    """
    variations: list[str] = []
    if "_" in selector:
        variations.append(selector.replace("_", "-"))
    if "-" in selector:
        variations.append(selector.replace("-", "_"))

    if re.fullmatch(r"\.[\w-]+", selector):
        name = selector[1:]
        variations.extend(
            [
                f'[class="{name}"]',
                f'[class*="{name}"]',
                f'[class^="{name}"]',
                f'[class$="{name}"]',
            ]
        )

    without_pseudo = re.sub(r":[\w-]+(\([^)]*\))?", "", selector).strip()
    if without_pseudo and without_pseudo != selector:
        variations.append(without_pseudo)

    if " " in selector.strip() and ">" not in selector:
        variations.append(re.sub(r"\s+", " > ", selector.strip()))
    if ">" in selector:
        variations.append(re.sub(r"\s*>\s*", " ", selector).strip())

    last_class = re.search(r"\.([\w-]+)(?!.*\.[\w-])", selector)
    if last_class and not re.fullmatch(r"\.[\w-]+", selector):
        variations.append(f'[class*="{last_class.group(1)}"]')

    seen: set[str] = {selector}
    result = []
    for variation in variations:
        if variation not in seen:
            seen.add(variation)
            result.append(variation)
    return result


def clean_author_name(raw: str) -> str:
    """Trim biography text and prefixes from an author string."""
    cleaned = NAME_PREFIX.sub("", collapse_whitespace(raw))

    cut = len(cleaned)
    for pattern in BIO_MARKERS:
        match = pattern.search(cleaned)
        if match and match.start() < cut:
            cut = match.start()
    cleaned = cleaned[:cut].strip().rstrip(",.").strip()

    if len(cleaned) > 80:
        match = LEADING_NAME.match(cleaned)
        if match:
            cleaned = match.group(1).strip()
        else:
            cleaned = cleaned[:60]
            if cleaned.rfind(" ") > 20:
                cleaned = cleaned[: cleaned.rfind(" ")]
    return cleaned.strip()


def _acceptable_author(text: str) -> str | None:
    if not text or CONTACT_LINE.match(text):
        return None
    cleaned = clean_author_name(text)
    if len(cleaned) < 3 or len(cleaned) > 80 or not re.search(r"[A-Za-z]", cleaned):
        return None
    if DATE_LIKE.search(cleaned):
        return None
    return cleaned


def normalize_date(raw: str | None) -> str | None:
    """ISO date (YYYY-MM-DD) for a date-ish string, or None.

    Example:
        >>> normalize_date("Published March 3rd, 2024")
        '2024-03-03'
    """
    if not raw:
        return None
    text = collapse_whitespace(str(raw))

    iso = ISO_DATE.search(text)
    if iso:
        candidate = iso.group(0).replace("Z", "+00:00")
        try:
            return datetime.fromisoformat(candidate).date().isoformat()
        except ValueError:
            try:
                return datetime.strptime(candidate[:10], "%Y-%m-%d").date().isoformat()
            except ValueError:
                pass

    match = TEXT_DATE.search(text)
    if not match:
        return None
    candidate = re.sub(r"(\d)(st|nd|rd|th)\b", r"\1", match.group(0)).replace(",", "")
    candidate = re.sub(r"([A-Za-z]{3,})\.", r"\1", candidate)
    candidate = re.sub(r"\s+", " ", candidate).strip()
    for fmt in DATE_FORMATS:
        try:
            return datetime.strptime(candidate, fmt).date().isoformat()
        except ValueError:
            continue
    return None


def _element_text(el: "Tag") -> str:
    if el.name == "meta":
        return collapse_whitespace(str(el.get("content", "")))
    return collapse_whitespace(el.get_text(" ", strip=True))


def _block_text(el: "Tag") -> str:
    lines = [collapse_whitespace(line) for line in el.get_text("\n", strip=True).split("\n")]
    return "\n".join(line for line in lines if line)


# =============================================================================
# Extractor
# =============================================================================


class ContentExtractor:
    """Extracts an ExtractedArticle from HTML using a SelectorSet.

    Args:
        config: Extraction thresholds.
    """

    def __init__(self, config: ExtractionConfig | None = None) -> None:
        self._config = config or get_settings().extraction

    # ---- title --------------------------------------------------------------

    def _first_text(self, soup: BeautifulSoup, selector: str | None, min_chars: int = 1) -> str | None:
        for el in safe_select(soup, selector):
            text = _element_text(el)
            if len(text) >= min_chars:
                return text
        return None

    def _title_from_metadata(self, soup: BeautifulSoup, metadata: Any) -> str | None:
        if metadata is not None and getattr(metadata, "title", None):
            return collapse_whitespace(metadata.title)
        og = soup.find("meta", attrs={"property": "og:title"})
        if og and og.get("content"):
            return collapse_whitespace(str(og["content"]))
        if soup.title and soup.title.string:
            text = collapse_whitespace(soup.title.string)
            return text or None
        return None

    def _extract_title(
        self,
        soup: BeautifulSoup,
        selector: str | None,
        url: str,
        metadata: Any,
    ) -> tuple[str, ExtractionTier]:
        clean = sanitize_selector(selector)
        if clean:
            text = self._first_text(soup, clean, 3)
            if text:
                return text, ExtractionTier.SELECTOR
            for variation in generate_selector_variations(clean):
                text = self._first_text(soup, variation, 3)
                if text:
                    return text, ExtractionTier.VARIATION

        for fallback in TITLE_FALLBACKS:
            text = self._first_text(soup, fallback, 3)
            if text:
                return text, ExtractionTier.FALLBACK

        text = self._title_from_metadata(soup, metadata)
        if text:
            return text, ExtractionTier.METADATA

        text = title_from_url(url)
        if text:
            return text, ExtractionTier.URL

        return domain_title(url), ExtractionTier.DOMAIN

    # ---- content ------------------------------------------------------------

    def _joined_text(self, soup: BeautifulSoup, selector: str) -> str:
        parts = [_block_text(el) for el in safe_select(soup, selector)]
        return "\n\n".join(p for p in parts if p).strip()

    def _usable(self, content: str, min_chars: int) -> bool:
        return len(content) >= min_chars and not is_low_quality_content(content)

    def _aggregate_blocks(self, soup: BeautifulSoup) -> str:
        blocks = []
        for el in soup.find_all(BLOCK_TAGS):
            if any(parent.name in CHROME_TAGS for parent in el.parents):
                continue
            # Nested block tags (li > p) are counted once, at the innermost level
            if el.find(BLOCK_TAGS):
                continue
            text = collapse_whitespace(el.get_text(" ", strip=True))
            if len(text) >= self._config.min_block_chars:
                blocks.append(text)
        return "\n\n".join(blocks)

    def _extract_content(
        self,
        soup: BeautifulSoup,
        selector: str | None,
        html: str,
    ) -> tuple[str, ExtractionTier]:
        primary_min = self._config.min_primary_content_chars
        fallback_min = self._config.min_fallback_content_chars

        clean = sanitize_selector(selector)
        if clean:
            content = self._joined_text(soup, clean)
            if self._usable(content, primary_min):
                return content, ExtractionTier.SELECTOR
            logger.debug(
                "Primary content selector insufficient",
                selector=clean,
                length=len(content),
            )
            for variation in generate_selector_variations(clean):
                content = self._joined_text(soup, variation)
                if self._usable(content, primary_min):
                    logger.debug("Content recovered with variation", selector=variation)
                    return content, ExtractionTier.VARIATION

        for fallback in CONTENT_FALLBACKS:
            content = self._joined_text(soup, fallback)
            if self._usable(content, fallback_min):
                return content, ExtractionTier.FALLBACK

        content = self._aggregate_blocks(soup)
        if len(content) >= fallback_min:
            return content, ExtractionTier.BLOCK

        try:
            content = trafilatura.extract(
                html,
                include_comments=False,
                include_tables=True,
                favor_precision=True,
            ) or ""
        except Exception as e:
            logger.debug("trafilatura extraction failed", error=str(e))
            content = ""
        if not content.strip() and soup.body is not None:
            content = _block_text(soup.body)
        content = content.strip()
        if content:
            return content, ExtractionTier.DOCUMENT
        return "", ExtractionTier.ERROR

    # ---- author / date ------------------------------------------------------

    def _author_from(self, soup: BeautifulSoup, selector: str) -> str | None:
        for el in safe_select(soup, selector):
            author = _acceptable_author(_element_text(el))
            if author:
                return author
        return None

    def _extract_author(
        self,
        soup: BeautifulSoup,
        selector: str | None,
        metadata: Any,
    ) -> tuple[str | None, ExtractionTier | None]:
        clean = sanitize_selector(selector)
        if clean:
            author = self._author_from(soup, clean)
            if author:
                return author, ExtractionTier.SELECTOR
            for variation in generate_selector_variations(clean):
                author = self._author_from(soup, variation)
                if author:
                    return author, ExtractionTier.VARIATION

        for fallback in AUTHOR_FALLBACKS:
            author = self._author_from(soup, fallback)
            if author:
                return author, ExtractionTier.FALLBACK

        if metadata is not None and getattr(metadata, "author", None):
            author = _acceptable_author(metadata.author)
            if author:
                return author, ExtractionTier.METADATA
        return None, None

    def _date_from(self, soup: BeautifulSoup, selector: str, *, keep_raw: bool) -> str | None:
        for el in safe_select(soup, selector):
            for attr in ("datetime", "content"):
                value = el.get(attr)
                if value:
                    normalized = normalize_date(str(value))
                    if normalized:
                        return normalized
            text = _element_text(el)
            normalized = normalize_date(text)
            if normalized:
                return normalized
            if keep_raw and text:
                return text[:100]
        return None

    def _extract_date(
        self,
        soup: BeautifulSoup,
        selector: str | None,
        metadata: Any,
    ) -> tuple[str | None, ExtractionTier | None]:
        clean = sanitize_selector(selector)
        if clean:
            date = self._date_from(soup, clean, keep_raw=True)
            if date:
                return date, ExtractionTier.SELECTOR

        for fallback in DATE_FALLBACKS:
            date = self._date_from(soup, fallback, keep_raw=False)
            if date:
                return date, ExtractionTier.FALLBACK

        if metadata is not None and getattr(metadata, "date", None):
            date = normalize_date(metadata.date)
            if date:
                return date, ExtractionTier.METADATA
        return None, None

    # ---- entry point --------------------------------------------------------

    def _metadata(self, html: str) -> Any:
        try:
            return trafilatura.extract_metadata(html)
        except Exception as e:
            logger.debug("trafilatura metadata failed", error=str(e))
            return None

    def extract(self, html: str, url: str, selectors: "SelectorSet | None" = None) -> ExtractedArticle:
        """Extract an article.

        Args:
            html: Article document.
            url: Article URL.
            selectors: Detected selectors (all tiers still run without them).

        Returns:
            ExtractedArticle. Never raises for bad markup; an empty
            document yields ``extraction_method="error"``.
        """
        if not html or not html.strip():
            logger.warning("Empty document, nothing to extract", url=url[:80])
            return self._error_article(url)

        soup = BeautifulSoup(html, "html.parser")
        for tag in soup.find_all(NOISE_TAGS):
            tag.decompose()
        metadata = self._metadata(html)

        title, title_tier = self._extract_title(
            soup, selectors.title_selector if selectors else None, url, metadata
        )
        content, content_tier = self._extract_content(
            soup, selectors.content_selector if selectors else None, html
        )
        if content_tier is ExtractionTier.ERROR:
            logger.warning("No content extracted", url=url[:80])
            return self._error_article(url)

        author, author_tier = self._extract_author(
            soup, selectors.author_selector if selectors else None, metadata
        )
        publish_date, date_tier = self._extract_date(
            soup, selectors.date_selector if selectors else None, metadata
        )

        steps = [title_tier.confidence, content_tier.confidence]
        if selectors is not None:
            steps.append(selectors.confidence)
        confidence = min(steps)

        validated = len(content) >= self._config.min_valid_content_chars
        if not validated:
            confidence = min(confidence, 0.1)

        legitimacy = assess_legitimacy(title, content, html)
        if not legitimacy.is_legitimate:
            logger.warning(
                "Extraction looks like an error page",
                url=url[:80],
                issues=legitimacy.issues,
                legitimacy=legitimacy.confidence,
            )
            validated = False
            confidence = min(confidence, legitimacy.confidence)

        weakest = max(title_tier, content_tier, key=lambda tier: tier.rank)
        article = ExtractedArticle(
            title=title,
            content=content,
            source_url=url,
            author=author,
            publish_date=publish_date,
            extraction_method=weakest.value,
            confidence=confidence,
            field_methods={
                "title": title_tier.value,
                "content": content_tier.value,
                "author": author_tier.value if author_tier else None,
                "date": date_tier.value if date_tier else None,
            },
            validated=validated,
            validation_issues=legitimacy.issues,
        )
        logger.info(
            "Article extracted",
            url=url[:80],
            method=article.extraction_method,
            title_method=title_tier.value,
            content_length=len(content),
            confidence=round(confidence, 3),
            validated=validated,
        )
        return article

    def _error_article(self, url: str) -> ExtractedArticle:
        return ExtractedArticle(
            title=domain_title(url),
            content="",
            source_url=url,
            extraction_method=ExtractionTier.ERROR.value,
            confidence=0.0,
            field_methods={
                "title": ExtractionTier.DOMAIN.value,
                "content": ExtractionTier.ERROR.value,
                "author": None,
                "date": None,
            },
            validated=False,
        )
