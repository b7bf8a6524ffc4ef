"""
Static link extraction from HTML documents.

Used both for plain article-candidate discovery on source pages and for the
before/after external-link diffs of the dynamic link resolver.
"""

import re
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING

from bs4 import BeautifulSoup

from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import collapse_whitespace, get_domain, is_external, resolve_url

if TYPE_CHECKING:
    from bs4 import Tag

logger = get_logger(__name__)


class LinkType(Enum):
    """Where in the page a link sits."""

    NAVIGATION = "navigation"
    HEADING = "heading"
    ARTICLE = "article"
    RELATED = "related"
    SIDEBAR = "sidebar"
    PAGINATION = "pagination"
    BODY = "body"


@dataclass
class ExtractedLink:
    """Link extracted from a page with context."""

    url: str
    text: str
    link_type: LinkType
    external: bool

    def __hash__(self) -> int:
        return hash(self.url)

    def __eq__(self, other: object) -> bool:
        if isinstance(other, ExtractedLink):
            return self.url == other.url
        return False


class LinkExtractor:
    """Extract and classify links from HTML content."""

    # Low-value targets that are never articles
    SKIP_PATTERNS = [
        r"\.(jpg|jpeg|png|gif|svg|webp|pdf|zip|exe|mp3|mp4|avi|css|js)(?:$|\?)",
        r"/tags?/",
        r"/categor(y|ies)/",
        r"/authors?/",
        r"/page/\d+",
        r"/feed/?$",
        r"/rss",
        r"/search",
        r"/login",
        r"/register",
        r"/signup",
        r"/cart",
        r"/checkout",
        r"/privacy",
        r"/terms",
        r"/contact",
        r"/about/?$",
    ]

    SHARE_HOSTS = (
        "facebook.com",
        "twitter.com",
        "x.com",
        "linkedin.com",
        "reddit.com",
        "pinterest.com",
        "t.me",
        "wa.me",
    )

    MIN_ARTICLE_TEXT = 20

    def __init__(self) -> None:
        self._skip_patterns = [re.compile(p, re.I) for p in self.SKIP_PATTERNS]

    def _should_skip(self, url: str) -> bool:
        return any(pattern.search(url) for pattern in self._skip_patterns)

    def _is_share_link(self, url: str) -> bool:
        domain = get_domain(url)
        return any(domain == host or domain.endswith(f".{host}") for host in self.SHARE_HOSTS)

    def _classify(self, anchor: "Tag") -> LinkType:
        for parent in anchor.parents:
            if parent.name is None:
                continue
            marker = f"{' '.join(parent.get('class', []) or [])} {parent.get('id', '')}".lower()

            if parent.name in ("nav", "header", "footer") or "nav" in marker or "menu" in marker:
                return LinkType.NAVIGATION
            if "pagination" in marker or "pager" in marker:
                return LinkType.PAGINATION
            if "related" in marker or "recommended" in marker:
                return LinkType.RELATED
            if parent.name == "aside" or "sidebar" in marker:
                return LinkType.SIDEBAR
            if parent.name in ("h1", "h2", "h3", "h4", "h5", "h6"):
                return LinkType.HEADING
            if parent.name == "article" or any(
                word in marker for word in ("article", "post", "story", "entry", "news")
            ):
                return LinkType.ARTICLE
        return LinkType.BODY

    def extract_links(self, html: str, base_url: str) -> list[ExtractedLink]:
        """Extract every navigable link in document order.

        Args:
            html: HTML content.
            base_url: Page URL for resolving relative links.

        Returns:
            De-duplicated links (first occurrence wins).
        """
        soup = BeautifulSoup(html or "", "html.parser")
        links: list[ExtractedLink] = []
        seen: set[str] = set()

        for anchor in soup.find_all("a", href=True):
            absolute = resolve_url(str(anchor.get("href", "")), base_url)
            if absolute is None or absolute in seen:
                continue
            seen.add(absolute)
            links.append(
                ExtractedLink(
                    url=absolute,
                    text=collapse_whitespace(anchor.get_text(" ", strip=True))[:200],
                    link_type=self._classify(anchor),
                    external=is_external(absolute, base_url),
                )
            )
        return links

    def extract_external_links(self, html: str, base_url: str) -> list[str]:
        """Absolute URLs whose host differs from the page host, in document order."""
        return [
            link.url
            for link in self.extract_links(html, base_url)
            if link.external and not self._is_share_link(link.url)
        ]

    def extract_article_candidates(
        self,
        html: str,
        base_url: str,
        *,
        min_text_length: int | None = None,
        include_patterns: list[str] | None = None,
        exclude_patterns: list[str] | None = None,
    ) -> list[str]:
        """Links that plausibly point at articles, on any host.

        Navigation, pagination, share buttons and utility pages are dropped.
        Anchors need at least ``min_text_length`` characters of text.
        """
        min_text = self.MIN_ARTICLE_TEXT if min_text_length is None else min_text_length
        candidates: list[str] = []
        for link in self.extract_links(html, base_url):
            if link.link_type in (LinkType.NAVIGATION, LinkType.PAGINATION):
                continue
            if len(link.text) < min_text:
                continue
            if self._should_skip(link.url) or self._is_share_link(link.url):
                continue
            if link.url.rstrip("/") == base_url.rstrip("/"):
                continue
            candidates.append(link.url)

        return filter_links_by_patterns(candidates, include_patterns, exclude_patterns)


def filter_links_by_patterns(
    links: list[str],
    include_patterns: list[str] | None = None,
    exclude_patterns: list[str] | None = None,
) -> list[str]:
    """Keep links containing any include pattern and none of the exclude patterns."""
    result = links
    if include_patterns:
        result = [link for link in result if any(p in link for p in include_patterns)]
    if exclude_patterns:
        result = [link for link in result if not any(p in link for p in exclude_patterns)]
    return result
