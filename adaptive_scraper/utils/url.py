"""
URL and text helpers shared by the fetch, discovery and extraction layers.
"""

import re
from urllib.parse import parse_qsl, urldefrag, urljoin, urlparse

import tldextract

# Offline extractor: use the bundled public suffix snapshot, never fetch it.
_tld_extract = tldextract.TLDExtract(suffix_list_urls=())

SUSPICIOUS_REDIRECT_MARKERS = (
    "captcha",
    "blocked",
    "verify",
    "challenge",
    "access-denied",
    "error",
    "forbidden",
)

# A marker counts only as a whole token or a dash/underscore/dot separated part.
_MARKER_TOKEN = re.compile(
    r"(?:^|[-_.])(?:" + "|".join(map(re.escape, SUSPICIOUS_REDIRECT_MARKERS)) + r")(?:$|[-_.])"
)

_SLUG_PREFIX = re.compile(r"^(article|post|news|story|blog)[-_]", re.IGNORECASE)
_SLUG_TRAILING_ID = re.compile(r"[-_]\d+$")
_FILE_EXTENSION = re.compile(r"\.(html?|php|aspx?|jsp)$", re.IGNORECASE)


def normalize_url(url: str) -> str:
    """Normalize a user-supplied URL.

    Adds an https scheme when missing and strips one trailing slash
    (except for the bare root path).

    Args:
        url: Raw URL string.

    Returns:
        Normalized URL.
    """
    url = url.strip()
    if not url:
        return url
    if not re.match(r"^[a-zA-Z][a-zA-Z0-9+.-]*://", url):
        url = f"https://{url.lstrip('/')}"
    parsed = urlparse(url)
    if url.endswith("/") and parsed.path not in ("", "/"):
        url = url[:-1]
    return url


def get_domain(url: str) -> str:
    """Return the lowercased hostname without a leading ``www.``."""
    host = (urlparse(url).hostname or "").lower()
    if host.startswith("www."):
        host = host[4:]
    return host


def get_registrable_domain(url_or_host: str) -> str:
    """Return the registrable domain (e.g. ``news.bbc.co.uk`` -> ``bbc.co.uk``)."""
    ext = _tld_extract(url_or_host)
    if ext.domain and ext.suffix:
        return f"{ext.domain}.{ext.suffix}".lower()
    return (ext.domain or url_or_host).lower()


def domain_matches(domain: str, patterns: list[str] | tuple[str, ...]) -> bool:
    """Check whether a domain equals or is a subdomain of any pattern.

    Patterns may be given with a leading ``*.`` or ``.``.
    """
    domain = domain.lower().removeprefix("www.")
    for pattern in patterns:
        pattern = pattern.lower().strip().lstrip("*").lstrip(".")
        if not pattern:
            continue
        if domain == pattern or domain.endswith(f".{pattern}"):
            return True
    return False


def is_external(url: str, base_url: str) -> bool:
    """True when ``url`` points to a different host than ``base_url``.

    Hosts are compared without a leading ``www.``; other subdomains count as
    different hosts.
    """
    host = get_domain(url)
    return bool(host) and host != get_domain(base_url)


def resolve_url(href: str, base_url: str) -> str | None:
    """Resolve an href against the page URL.

    Returns:
        Absolute http(s) URL without fragment, or None when the href is not
        navigable (javascript:, mailto:, tel:, data:, pure fragment).
    """
    href = (href or "").strip()
    if not href or href.startswith("#"):
        return None
    lowered = href.lower()
    if lowered.startswith(("javascript:", "mailto:", "tel:", "data:")):
        return None
    absolute, _ = urldefrag(urljoin(base_url, href))
    if urlparse(absolute).scheme not in ("http", "https"):
        return None
    return absolute


def is_suspicious_redirect(final_url: str, original_url: str) -> bool:
    """Detect redirects that land on a challenge or block page.

    Markers must be a whole path segment or query key, or a dash-separated
    part of one (`/access-denied`, `/error-403`, `?captcha=1`). Words that
    merely contain a marker (`/terror-attack`) do not count.
    """
    if not final_url or final_url.rstrip("/") == original_url.rstrip("/"):
        return False
    parsed = urlparse(final_url.lower())
    tokens = [s for s in parsed.path.split("/") if s]
    tokens.extend(key for key, _ in parse_qsl(parsed.query, keep_blank_values=True))
    return any(_MARKER_TOKEN.search(token) for token in tokens)


def title_from_url(url: str) -> str | None:
    """Derive a human title from the last URL path segment.

    ``/news/article-big-data-breach-12345.html`` -> ``Big Data Breach``.

    Returns:
        Title, or None when the slug does not look like words.
    """
    segments = [s for s in urlparse(url).path.split("/") if s]
    if not segments:
        return None
    slug = _FILE_EXTENSION.sub("", segments[-1])
    slug = _SLUG_PREFIX.sub("", slug)
    slug = _SLUG_TRAILING_ID.sub("", slug)
    words = [w for w in re.split(r"[-_+]+", slug) if w]
    title = " ".join(w.capitalize() for w in words)
    letters = sum(1 for c in title if c.isalpha())
    if not 5 <= len(title) <= 200 or letters < 3:
        return None
    return title


def domain_title(url: str) -> str:
    """Last-resort title built from the hostname.

    ``https://www.krebs-on-security.com/x`` -> ``Krebs On Security``.
    """
    domain = get_domain(url)
    if not domain:
        return url
    labels = domain.split(".")
    if len(labels) > 1:
        labels = labels[:-1]
    words = []
    for label in labels:
        words.extend(w.capitalize() for w in re.split(r"[-_]+", label) if w)
    return " ".join(words) or domain


def match_returned_url(returned: str, candidates: list[str]) -> str | None:
    """Map a URL echoed back by an LLM onto one of the original candidates.

    Models sometimes truncate long URLs or drop the query string. An exact
    match wins; otherwise a unique candidate that starts with the returned
    URL (or equals it once the query is ignored) is accepted.
    """
    returned = returned.strip()
    if not returned:
        return None
    if returned in candidates:
        return returned

    stripped = returned.rstrip("/").rstrip(".").rstrip("…")
    prefix_hits = [c for c in candidates if c.startswith(stripped)]
    if len(prefix_hits) == 1:
        return prefix_hits[0]

    base = stripped.split("?", 1)[0]
    query_hits = [c for c in candidates if c.split("?", 1)[0].rstrip("/") == base]
    if len(query_hits) == 1:
        return query_hits[0]
    return None


def collapse_whitespace(text: str) -> str:
    """Collapse runs of whitespace into single spaces and trim."""
    return re.sub(r"\s+", " ", text or "").strip()
