"""Protection signature and dynamic-content detection for fetched documents."""

import re
from dataclasses import dataclass
from enum import Enum


class ProtectionSignature(str, Enum):
    """Coarse signature attached to every FetchResult."""

    NONE = "none"
    CHALLENGE = "challenge"
    REDIRECT_LOOP = "redirect_loop"


class ProtectionType(str, Enum):
    """Anti-bot systems, with detection priority (lower is checked first)."""

    DATADOME = ("datadome", 10)
    INCAPSULA = ("incapsula", 20)
    TURNSTILE = ("turnstile", 30)
    CLOUDFLARE = ("cloudflare", 40)
    CAPTCHA = ("captcha", 50)
    RATE_LIMIT = ("rate_limit", 60)
    COOKIE_CHECK = ("cookie_check", 70)
    NONE = ("none", 1000)

    def __new__(cls, value: str, priority: int):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.priority = priority
        return obj


@dataclass(frozen=True)
class ProtectionInfo:
    """Detected protection for one response."""

    type: ProtectionType
    confidence: float
    details: str = ""

    @property
    def has_protection(self) -> bool:
        return self.type is not ProtectionType.NONE


NO_PROTECTION = ProtectionInfo(ProtectionType.NONE, 1.0, "no protection markers")

# Phrases shown on interstitial pages while a challenge runs. Matched against
# the visible title/body text while polling in the browser.
CHALLENGE_TEXT_MARKERS = (
    "checking your browser",
    "just a moment",
    "ddos protection",
    "verify you are human",
    "verifying you are human",
    "attention required",
    "please wait while we verify",
    "please enable js and disable any ad blocker",
)

_CLOUDFLARE_MARKERS = (
    "cf-browser-verification",
    "_cf_chl_opt",
    "checking your browser before accessing",
    "please wait while we verify your browser",
    "ray id:</strong>",
)

_CAPTCHA_WIDGET_MARKERS = (
    'src="https://hcaptcha.com',
    'src="https://www.hcaptcha.com',
    "data-sitekey=",
    'class="h-captcha"',
    'class="g-recaptcha"',
    'id="captcha-container"',
    "grecaptcha.execute",
    "hcaptcha.execute",
)

_TURNSTILE_MARKERS = (
    'class="cf-turnstile"',
    "challenges.cloudflare.com/turnstile",
)

_DATADOME_MARKERS = (
    "captcha-delivery.com",
    "please enable js and disable any ad blocker",
    "datadome-captcha",
)

_INCAPSULA_MARKERS = (
    "/_incapsula_",
    "window._icdt",
    "_incapsula_resource",
)


def _lower_headers(headers: dict[str, str] | None) -> dict[str, str]:
    return {k.lower(): str(v) for k, v in (headers or {}).items()}


def _matches_datadome(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    if "x-datadome" in headers or "x-dd-b" in headers:
        return True
    if any(m in content_lower for m in _DATADOME_MARKERS):
        return True
    return status in (401, 403) and "datadome" in content_lower


def _matches_incapsula(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    if "x-iinfo" in headers or headers.get("x-cdn", "").lower() == "incapsula":
        return True
    return any(m in content_lower for m in _INCAPSULA_MARKERS)


def _matches_turnstile(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    return any(m in content_lower for m in _TURNSTILE_MARKERS)


def _matches_cloudflare(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    if any(m in content_lower for m in _CLOUDFLARE_MARKERS):
        return True
    if "just a moment" in content_lower and (
        "cloudflare" in content_lower or "_cf_" in content_lower
    ):
        return True
    # Challenge pages served by Cloudflare are tiny and nearly structure-free
    if "cloudflare" in headers.get("server", "").lower() and headers.get("cf-ray"):
        if len(content_lower) < 5000 and "<body" in content_lower:
            return content_lower.count("<div") < 10
    return False


def _matches_captcha(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    return any(m in content_lower for m in _CAPTCHA_WIDGET_MARKERS)


def _matches_rate_limit(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    return status == 429


def _matches_cookie_check(content_lower: str, headers: dict[str, str], status: int | None) -> bool:
    cookie = headers.get("set-cookie", "").lower()
    return "challenge" in cookie or "verify" in cookie


_RULES = (
    (ProtectionType.DATADOME, 0.95, _matches_datadome),
    (ProtectionType.INCAPSULA, 0.9, _matches_incapsula),
    (ProtectionType.TURNSTILE, 0.9, _matches_turnstile),
    (ProtectionType.CLOUDFLARE, 0.85, _matches_cloudflare),
    (ProtectionType.CAPTCHA, 0.9, _matches_captcha),
    (ProtectionType.RATE_LIMIT, 1.0, _matches_rate_limit),
    (ProtectionType.COOKIE_CHECK, 0.8, _matches_cookie_check),
)


def detect_protection(
    content: str,
    headers: dict[str, str] | None = None,
    status: int | None = None,
) -> ProtectionInfo:
    """Detect anti-bot protection in a response.

    Rules are evaluated in ProtectionType priority order and the first match
    wins. Patterns target active challenge widgets and interstitials, not
    articles that merely mention CAPTCHA or Cloudflare.

    Args:
        content: Response body.
        headers: Response headers (any case).
        status: HTTP status code.

    Returns:
        ProtectionInfo (type NONE when nothing matched).
    """
    content_lower = (content or "").lower()
    lowered_headers = _lower_headers(headers)
    for ptype, confidence, matcher in sorted(_RULES, key=lambda rule: rule[0].priority):
        if matcher(content_lower, lowered_headers, status):
            return ProtectionInfo(ptype, confidence, f"{ptype.value} markers detected")
    return NO_PROTECTION


def is_challenge_page(content: str, headers: dict[str, str] | None = None) -> bool:
    """Check if a page is a challenge/captcha interstitial.

    Args:
        content: Page content.
        headers: Response headers.

    Returns:
        True if a challenge was detected.
    """
    info = detect_protection(content, headers)
    return info.type not in (ProtectionType.NONE, ProtectionType.COOKIE_CHECK)


def is_challenge_text(text: str) -> bool:
    """Check visible title/body text for interstitial phrases."""
    lowered = (text or "").lower()
    return any(marker in lowered for marker in CHALLENGE_TEXT_MARKERS)


# =============================================================================
# Dynamic content detection
# =============================================================================

_STRONG_HTMX_MARKERS = (
    "hx-get=",
    "hx-post=",
    "hx-trigger=",
    "data-hx-get=",
    "htmx.min.js",
    "unpkg.com/htmx",
)

_DYNAMIC_LOADING_MARKERS = (
    "load-more",
    "lazy-load",
    "infinite-scroll",
    "ajax-load",
    "data-react-root",
    "ng-app=",
    "v-app",
    "@click=",
)

_PLACEHOLDER_MARKERS = (
    "content-skeleton",
    "article-skeleton",
    "loading-spinner",
    "posts-loading",
    "articles-loading",
    "content-placeholder",
)

_SPA_MARKERS = ("react-root", "ng-app", "vue-app", 'id="__next"', "__nuxt", "data-reactroot")

_EMPTY_CONTAINER = re.compile(
    r"<(?:div|section|ul)[^>]*(?:class|id)=[\"'][^\"']*(?:articles|posts|content)[^\"']*[\"'][^>]*>\s*</(?:div|section|ul)>",
    re.IGNORECASE,
)
_LINK = re.compile(r"<a\s[^>]*href=", re.IGNORECASE)


def needs_dynamic_content(html: str) -> bool:
    """Decide whether a source page only renders its links client-side.

    Args:
        html: Document fetched without JavaScript.

    Returns:
        True when links are likely loaded by HTMX, SPA frameworks or
        load-more/lazy patterns, so automation is required.
    """
    lowered = (html or "").lower()

    if any(m in lowered for m in _STRONG_HTMX_MARKERS):
        return True
    if any(m in lowered for m in _DYNAMIC_LOADING_MARKERS):
        return True
    if any(m in lowered for m in _PLACEHOLDER_MARKERS):
        return True
    if len(_LINK.findall(html or "")) < 5:
        return True
    if _EMPTY_CONTAINER.search(html or "") and any(
        m in lowered for m in ("loading", "spinner", "skeleton")
    ):
        return True
    return any(m in lowered for m in _SPA_MARKERS)
