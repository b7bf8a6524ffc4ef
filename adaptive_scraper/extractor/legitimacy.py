"""
Error-page and corrupted-text checks for extracted articles.

A fetch can succeed and extraction can still produce garbage: a block page
that slipped past challenge detection, a soft 404 served with status 200, or
text decoded with the wrong charset. These checks score the result so the
extractor can mark it unvalidated instead of passing it on as an article.
"""

import re
from dataclasses import dataclass, field

_ERROR_TITLE = re.compile(
    r"\b(access denied|403 forbidden|404 not found|page not found|"
    r"security check|captcha|just a moment|attention required|are you a (robot|human)|"
    r"site (is )?(under maintenance|unavailable)|server error|bad gateway|service unavailable)\b",
    re.IGNORECASE,
)
TITLE_PENALTY = 0.4

# Matched against the start of the content only; block pages lead with the message.
_ERROR_CONTENT = re.compile(
    r"\b(access (to this page )?(has been )?denied|you don'?t have permission to access|"
    r"checking (if the site connection is secure|your browser)|"
    r"enable javascript and cookies to continue|verify (that )?you are (a )?human|"
    r"please complete the security check|the page you (are looking for|requested) "
    r"(could not be found|does not exist|was not found)|"
    r"this page (isn'?t|is not) available|request unsuccessful|ray id)\b",
    re.IGNORECASE,
)
CONTENT_PENALTY = 0.5
CONTENT_SCAN_CHARS = 600

MIN_CONTENT_CHARS = 500
SHORT_CONTENT_PENALTY = 0.3

# Markup left behind by bot-protection vendors.
HTML_INDICATORS = (
    "cf-browser-verification",
    "cf-challenge-form",
    "challenge-platform",
    "datadome",
    "captcha-delivery",
    "px-captcha",
    "hcaptcha",
    "g-recaptcha",
)
HTML_INDICATOR_PENALTY = 0.4

CORRUPTED_PENALTY = 0.6

LEGITIMATE_MIN_CONFIDENCE = 0.4
MAX_ISSUES = 3

_CONTROL = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
_C1 = re.compile(r"[\x80-\x9f]")
_SYMBOL_RUN = re.compile(r"[^\w\s]{20,}")
_WORD = re.compile(r"\w{2,}")
_COMMON_PUNCTUATION = frozenset(".,;:!?'\"()[]-–—’‘“”…/%&@#*+=<>|")


def is_corrupted_text(text: str) -> bool:
    """Heuristic check for text decoded with the wrong charset or binary junk.

    Flags control or C1 characters, three or more replacement characters,
    a run of 20+ mixed symbols, more than 30% symbol characters, or (for text over
    100 chars) fewer than 30% word-like tokens. Any script counts as letters,
    so correctly decoded non-Latin text passes.
    """
    if not text:
        return False
    if _CONTROL.search(text) or _C1.search(text):
        return True
    if text.count("\ufffd") >= 3:
        return True
    # Separator lines ("-----") repeat one or two characters and are fine.
    if any(len(set(run)) >= 4 for run in _SYMBOL_RUN.findall(text)):
        return True

    visible = [c for c in text if not c.isspace()]
    if visible:
        symbols = sum(1 for c in visible if not c.isalnum() and c not in _COMMON_PUNCTUATION)
        if symbols / len(visible) > 0.3:
            return True

    if len(text) > 100:
        tokens = text.split()
        words = sum(1 for token in tokens if _WORD.search(token))
        if tokens and words / len(tokens) < 0.3:
            return True
    return False


@dataclass
class LegitimacyCheck:
    """Outcome of checking an extracted article."""

    is_legitimate: bool
    confidence: float
    issues: list[str] = field(default_factory=list)


def assess_legitimacy(title: str, content: str, html: str = "") -> LegitimacyCheck:
    """Score whether an extraction is a real article rather than an error page.

    Scoring starts at 1.0:
    - error/block wording in the title: -0.4
    - error/block wording at the start of the content: -0.5
    - content shorter than 500 chars: -0.3
    - each bot-protection marker in the raw HTML: -0.4
    - corrupted text: -0.6

    Args:
        title: Extracted title.
        content: Extracted body text.
        html: Raw document, for vendor markers.

    Returns:
        LegitimacyCheck. Legitimate when confidence stays above 0.4 with
        fewer than three issues.
    """
    confidence = 1.0
    issues: list[str] = []

    if _ERROR_TITLE.search(title or ""):
        confidence -= TITLE_PENALTY
        issues.append("error_title")

    head = (content or "")[:CONTENT_SCAN_CHARS]
    if _ERROR_CONTENT.search(head):
        confidence -= CONTENT_PENALTY
        issues.append("error_content")

    if len((content or "").strip()) < MIN_CONTENT_CHARS:
        confidence -= SHORT_CONTENT_PENALTY
        issues.append("short_content")

    lowered = (html or "").lower()
    for marker in HTML_INDICATORS:
        if marker in lowered:
            confidence -= HTML_INDICATOR_PENALTY
            issues.append(f"html:{marker}")

    if is_corrupted_text(content or "") or is_corrupted_text(title or ""):
        confidence -= CORRUPTED_PENALTY
        issues.append("corrupted_text")

    confidence = max(0.0, round(confidence, 4))
    return LegitimacyCheck(
        is_legitimate=confidence > LEGITIMATE_MIN_CONFIDENCE and len(issues) < MAX_ISSUES,
        confidence=confidence,
        issues=issues,
    )
