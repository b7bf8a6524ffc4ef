"""
Charset detection and text repair for fetched documents.

Order of trust when decoding a body:
1. ``charset=`` from the Content-Type header (ignored when it is the
   ISO-8859-1 default that servers send without knowing better)
2. ``<meta charset>`` / ``http-equiv`` declaration in the first bytes
3. chardet guess with confidence above ``MIN_DETECT_CONFIDENCE``
4. UTF-8

Decoded text is then repaired: UTF-8 that was read as Windows-1252
(``CafÃ©``, ``donâ€™t``) is converted back, and control characters and
replacement characters are dropped.
"""

import codecs
import re

import chardet

from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)

MIN_DETECT_CONFIDENCE = 0.7
META_SCAN_BYTES = 2048
DETECT_SAMPLE_BYTES = 65536

_HEADER_CHARSET = re.compile(r"charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)
_META_CHARSET = re.compile(rb"<meta[^>]+charset\s*=\s*[\"']?([\w.:-]+)", re.IGNORECASE)

# Lead bytes of two/three byte UTF-8 sequences as they look after a cp1252 decode.
_MOJIBAKE = re.compile("[\u00c2\u00c3][\u0080-\u00bf\u0152-\u0178\u2013-\u203a\u20ac\u2122]|\u00e2\u20ac")
_CONTROL_CHARS = re.compile("[\x00-\x08\x0b\x0c\x0e-\x1f\x7f-\x9f\ufffd]")

_WEAK_HEADER_CHARSETS = frozenset({"iso8859-1", "iso-8859-1", "latin-1", "latin1"})


def _codec_name(label: str | bytes | None) -> str | None:
    if not label:
        return None
    if isinstance(label, bytes):
        label = label.decode("ascii", errors="ignore")
    try:
        return codecs.lookup(label.strip()).name
    except LookupError:
        return None


def charset_from_header(content_type: str | None) -> str | None:
    """Codec named by a Content-Type header, or None when absent or unknown."""
    match = _HEADER_CHARSET.search(content_type or "")
    return _codec_name(match.group(1)) if match else None


def charset_from_meta(body: bytes) -> str | None:
    """Codec declared by a meta tag near the top of the document."""
    match = _META_CHARSET.search(body[:META_SCAN_BYTES])
    return _codec_name(match.group(1)) if match else None


def detect_charset(body: bytes, content_type: str | None = None) -> str:
    """Pick the codec for an HTML body.

    Args:
        body: Raw response bytes.
        content_type: Content-Type header value.

    Returns:
        Python codec name.
    """
    header = charset_from_header(content_type)
    if header and header.replace("_", "-") not in _WEAK_HEADER_CHARSETS:
        return header

    meta = charset_from_meta(body)
    if meta:
        return meta

    if body:
        guess = chardet.detect(body[:DETECT_SAMPLE_BYTES])
        detected = _codec_name(guess.get("encoding"))
        if detected and (guess.get("confidence") or 0.0) > MIN_DETECT_CONFIDENCE:
            # ASCII samples are UTF-8 documents whose first bytes had no accents.
            return "utf-8" if detected == "ascii" else detected

    return header or "utf-8"


def repair_mojibake(text: str) -> str:
    """Undo UTF-8 bytes that were decoded as Windows-1252.

    The text is only replaced when the round trip succeeds and leaves fewer
    mojibake sequences than before.
    """
    before = len(_MOJIBAKE.findall(text))
    if not before:
        return text
    try:
        repaired = text.encode("cp1252").decode("utf-8")
    except (UnicodeEncodeError, UnicodeDecodeError):
        return text
    if len(_MOJIBAKE.findall(repaired)) < before:
        return repaired
    return text


def sanitize_text(text: str) -> str:
    """Drop control, C1 and replacement characters (tabs and newlines stay)."""
    return _CONTROL_CHARS.sub("", text)


def decode_html(body: bytes, content_type: str | None = None) -> tuple[str, str]:
    """Decode and repair an HTML body.

    Returns:
        Tuple of (text, codec name used).
    """
    charset = detect_charset(body, content_type)
    text = body.decode(charset, errors="replace")
    repaired = repair_mojibake(text)
    if repaired is not text:
        logger.debug("Repaired mojibake", charset=charset)
    return sanitize_text(repaired), charset
