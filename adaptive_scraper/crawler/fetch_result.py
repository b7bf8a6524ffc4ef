"""Fetch result data class shared by the HTTP and automation fetchers."""

from typing import Any

from adaptive_scraper.crawler.challenge_detector import ProtectionSignature, ProtectionType


class FetchMethod:
    """Fetch method identifiers."""

    HTTP = "http"
    AUTOMATION = "automation"


class FetchResult:
    """Result of a fetch operation.

    Transient: produced by a fetcher and consumed by the next pipeline stage.
    A failed fetch carries ``reason`` and, when known, ``error_kind``.
    """

    def __init__(
        self,
        ok: bool,
        url: str,
        *,
        html: str | None = None,
        final_url: str | None = None,
        status: int | None = None,
        headers: dict[str, str] | None = None,
        method: str = FetchMethod.HTTP,
        protection_signature: ProtectionSignature = ProtectionSignature.NONE,
        protection_type: ProtectionType = ProtectionType.NONE,
        reason: str | None = None,
        error_kind: str | None = None,
        elapsed_ms: float | None = None,
        escalation_path: list[str] | None = None,
        page_data: Any = None,
    ):
        self.ok = ok
        self.url = url
        self.html = html
        self.final_url = final_url or url
        self.status = status
        self.headers = headers or {}
        self.method = method
        self.protection_signature = protection_signature
        self.protection_type = protection_type
        self.reason = reason
        self.error_kind = error_kind
        self.elapsed_ms = elapsed_ms
        self.escalation_path = escalation_path or [method]
        # Result of an in-page hook run while the browser lease was held
        self.page_data = page_data

    @property
    def content_length(self) -> int:
        return len(self.html or "")

    @property
    def has_protection(self) -> bool:
        return self.protection_signature is not ProtectionSignature.NONE

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (without the document body)."""
        result: dict[str, Any] = {
            "ok": self.ok,
            "url": self.url,
            "final_url": self.final_url,
            "status": self.status,
            "method": self.method,
            "protection_signature": self.protection_signature.value,
            "content_length": self.content_length,
            "escalation_path": list(self.escalation_path),
        }
        if self.protection_type is not ProtectionType.NONE:
            result["protection_type"] = self.protection_type.value
        if self.reason:
            result["reason"] = self.reason
        if self.error_kind:
            result["error_kind"] = self.error_kind
        if self.elapsed_ms is not None:
            result["elapsed_ms"] = round(self.elapsed_ms, 1)
        return result

    def __repr__(self) -> str:
        return (
            f"FetchResult(ok={self.ok}, url={self.url!r}, method={self.method!r}, "
            f"status={self.status}, signature={self.protection_signature.value!r})"
        )
