"""
Selector sanitizer and validator.

Selectors arrive from untrusted places (LLM output, cached records, heuristic
tables). Nothing here ever executes a selector against a live page; every
string is checked against an allow-list and compiled by soupsieve before it
is handed to any querying code.
"""

import re
from dataclasses import dataclass, field
from typing import Any, Protocol

import soupsieve
from bs4 import BeautifulSoup

from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)

MAX_SELECTOR_LENGTH = 500

_NULL_LITERALS = frozenset({"null", "undefined", "none", "nil", "n/a"})

# Characters a CSS selector can contain outside quoted attribute values.
_ALLOWED_CHARS = re.compile(r"^[\w\s\-#.\[\]=:\"'(),>+~*^$|/@%\\]+$")

# Script-shaped tokens. Identifier parts (".window.main", "#main-document")
# do not count; soupsieve compilation rejects the rest of JS-like input.
_SCRIPT_TOKENS = re.compile(
    r"<script|=>|(?<![\w\-.#\\])(?:javascript:|(?:alert|expression)\s*\()",
    re.IGNORECASE,
)

# jQuery-only pseudos mapped to CSS (or soupsieve) equivalents.
_JQUERY_REWRITES: tuple[tuple[re.Pattern[str], str], ...] = (
    (re.compile(r":contains\("), ":-soup-contains("),
    (re.compile(r":first(?![-\w])"), ":first-of-type"),
    (re.compile(r":last(?![-\w])"), ":last-of-type"),
    (re.compile(r":(visible|hidden|animated|input|button|header)(?![-\w])"), ""),
)
_JQUERY_EQ = re.compile(r":eq\((\d+)\)")

BROAD_SELECTORS = frozenset({"body", "html", "div", "span", "p", "*"})

_BRACKET_PAIRS = {")": "(", "]": "["}
_QUOTED = re.compile(r"'(?:[^'\\]|\\.)*'|\"(?:[^\"\\]|\\.)*\"", re.DOTALL)


@dataclass
class SelectorCheck:
    """Outcome of sanitizing one selector string."""

    raw: Any
    selector: str | None
    reason: str | None = None
    rewritten: bool = False

    @property
    def ok(self) -> bool:
        return self.selector is not None


def _is_balanced(selector: str) -> bool:
    stack: list[str] = []
    quote: str | None = None
    escaped = False
    for char in selector:
        if escaped:
            escaped = False
            continue
        if char == "\\":
            escaped = True
            continue
        if quote:
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char in ("(", "["):
            stack.append(char)
        elif char in _BRACKET_PAIRS:
            if not stack or stack.pop() != _BRACKET_PAIRS[char]:
                return False
    return not stack and quote is None


def _unquoted(selector: str) -> str:
    """Selector text with quoted attribute values emptied."""
    return _QUOTED.sub(lambda m: m.group(0)[0] * 2, selector)


def _rewrite_jquery(selector: str) -> str:
    rewritten = _JQUERY_EQ.sub(lambda m: f":nth-child({int(m.group(1)) + 1})", selector)
    for pattern, replacement in _JQUERY_REWRITES:
        rewritten = pattern.sub(replacement, rewritten)
    return rewritten.strip()


def inspect_selector(raw: Any) -> SelectorCheck:
    """Sanitize a selector and report why it was rejected.

    Args:
        raw: Untrusted value, usually a string.

    Returns:
        SelectorCheck with the safe selector, or None plus a rejection reason.
    """
    if raw is None:
        return SelectorCheck(raw, None, "missing")
    if not isinstance(raw, str):
        return SelectorCheck(raw, None, "not_a_string")

    selector = raw.strip()
    if not selector:
        return SelectorCheck(raw, None, "empty")
    if selector.lower() in _NULL_LITERALS:
        return SelectorCheck(raw, None, "null_literal")
    if len(selector) > MAX_SELECTOR_LENGTH:
        return SelectorCheck(raw, None, "too_long")

    if _SCRIPT_TOKENS.search(selector):
        return SelectorCheck(raw, None, "script_token")

    if not _ALLOWED_CHARS.match(_unquoted(selector)):
        return SelectorCheck(raw, None, "disallowed_characters")
    if not _is_balanced(selector):
        return SelectorCheck(raw, None, "unbalanced")

    rewritten = False
    try:
        soupsieve.compile(selector)
    except soupsieve.SelectorSyntaxError:
        candidate = _rewrite_jquery(selector)
        if not candidate or candidate == selector:
            return SelectorCheck(raw, None, "syntax_error")
        try:
            soupsieve.compile(candidate)
        except soupsieve.SelectorSyntaxError:
            return SelectorCheck(raw, None, "syntax_error")
        selector = candidate
        rewritten = True

    return SelectorCheck(raw, selector, rewritten=rewritten)


def sanitize_selector(raw: Any) -> str | None:
    """Return a safe selector string or None when the input is rejected.

    Valid CSS selectors are returned unchanged (apart from surrounding
    whitespace). jQuery-only pseudo classes are rewritten to CSS.

    Example:
        >>> sanitize_selector("article .post-body")
        'article .post-body'
        >>> sanitize_selector("null") is None
        True
    """
    check = inspect_selector(raw)
    if not check.ok and check.reason not in ("missing", "empty"):
        logger.debug("Selector rejected", selector=str(raw)[:100], reason=check.reason)
    return check.selector


def safe_select(soup: BeautifulSoup, selector: str | None) -> list:
    """Run a sanitized selector against a parsed document.

    Returns an empty list for rejected selectors instead of raising.
    """
    clean = sanitize_selector(selector)
    if clean is None:
        return []
    try:
        return soup.select(clean)
    except (soupsieve.SelectorSyntaxError, ValueError, NotImplementedError):
        return []


class _SelectorFields(Protocol):
    title_selector: str | None
    content_selector: str | None
    author_selector: str | None
    date_selector: str | None


@dataclass
class SelectorValidation:
    """Result of scoring a selector set."""

    is_valid: bool
    confidence: float
    issues: list[str] = field(default_factory=list)


# field -> penalty when the selector is missing or rejected
_MISSING_PENALTIES = {
    "title_selector": 0.3,
    "content_selector": 0.4,
    "author_selector": 0.1,
    "date_selector": 0.1,
}


def validate_selector_set(
    selectors: _SelectorFields,
    html: str | BeautifulSoup | None = None,
) -> SelectorValidation:
    """Score a selector set, optionally against the document it targets.

    Scoring starts at 1.0:
    - missing/invalid selector: title -0.3, content -0.4, author/date -0.1
    - overly broad selector (body, div, p...): -0.2
    - with a document: title no match -0.2, >3 matches -0.1; content no match -0.3

    Args:
        selectors: Object exposing title/content/author/date selector fields.
        html: Document (string or parsed) to check matches against.

    Returns:
        SelectorValidation. Valid when title and content are usable and the
        confidence stays at or above 0.5.
    """
    confidence = 1.0
    issues: list[str] = []
    clean: dict[str, str | None] = {}

    for name, penalty in _MISSING_PENALTIES.items():
        value = getattr(selectors, name, None)
        check = inspect_selector(value)
        clean[name] = check.selector
        if not check.ok:
            confidence -= penalty
            issues.append(f"{name}: {check.reason}")
            continue
        if check.selector.lower() in BROAD_SELECTORS:
            confidence -= 0.2
            issues.append(f"{name}: too broad")

    if html is not None:
        soup = html if isinstance(html, BeautifulSoup) else BeautifulSoup(html, "html.parser")
        title = clean["title_selector"]
        if title:
            matches = safe_select(soup, title)
            if not matches:
                confidence -= 0.2
                issues.append("title_selector: no match")
            elif len(matches) > 3:
                confidence -= 0.1
                issues.append("title_selector: too many matches")
        content = clean["content_selector"]
        if content and not safe_select(soup, content):
            confidence -= 0.3
            issues.append("content_selector: no match")

    confidence = max(0.0, min(1.0, round(confidence, 4)))
    is_valid = (
        clean["title_selector"] is not None
        and clean["content_selector"] is not None
        and confidence >= 0.5
    )
    return SelectorValidation(is_valid=is_valid, confidence=confidence, issues=issues)
