"""
Scrape error taxonomy and classification.

Every failure that leaves a pipeline stage is expressed as a ScrapeError
carrying one ErrorKind:
- network / timeout: transport failures (retried once by method escalation)
- automation: browser/page failures (retried once with a fresh lease)
- ai / parsing: inference or decoding problems (structure chain falls through)
- auth: refused targets (never retried)
- unknown: anything else
"""

import asyncio
import inspect
import json
from collections.abc import AsyncIterator, Awaitable
from contextlib import asynccontextmanager
from enum import Enum
from typing import Any, Protocol

import aiohttp
from curl_cffi import CurlError
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from pydantic import ValidationError

from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)


class ErrorKind(str, Enum):
    """Error taxonomy for the scraping pipeline."""

    NETWORK = "network"
    """Connection refused, DNS failure, HTTP transport error."""

    PARSING = "parsing"
    """Malformed document or response payload."""

    AI = "ai"
    """Structure inference or link filtering via LLM failed."""

    AUTOMATION = "automation"
    """Browser, page or navigation failure."""

    TIMEOUT = "timeout"
    """An operation exceeded its time bound."""

    AUTH = "auth"
    """Access refused (401/403, denied domain)."""

    UNKNOWN = "unknown"
    """Unclassified failure."""


RETRYABLE_KINDS = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.AUTOMATION})

# Ordered: first matching group wins.
_MESSAGE_RULES: tuple[tuple[ErrorKind, tuple[str, ...]], ...] = (
    (
        ErrorKind.TIMEOUT,
        ("timeout", "timed out", "connection", "network", "econnrefused", "enotfound"),
    ),
    (ErrorKind.AUTOMATION, ("playwright", "puppeteer", "browser", "page", "navigation")),
    (ErrorKind.AI, ("openai", "ollama", "llm", "gpt", "rate limit", "api key")),
    (ErrorKind.AUTH, ("unauthorized", "forbidden", "401", "403")),
    (ErrorKind.PARSING, ("parse", "syntax", "invalid", "malformed")),
    (ErrorKind.NETWORK, ("http", "request", "response", "status")),
)


class ScrapeError(Exception):
    """Structured pipeline error.

    Attributes:
        kind: Error classification.
        message: Human-readable description.
        step: Pipeline stage where the error happened (e.g. "fetch").
        retryable: Whether a single retry may help.
        context: Extra key/values (url, method, status...).
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        step: str = "unknown",
        retryable: bool | None = None,
        context: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.step = step
        self.retryable = kind in RETRYABLE_KINDS if retryable is None else retryable
        self.context = context or {}

    def to_dict(self) -> dict[str, Any]:
        """Convert to a JSON-serializable dictionary."""
        result: dict[str, Any] = {
            "ok": False,
            "error_kind": self.kind.value,
            "error": self.message,
            "step": self.step,
            "retryable": self.retryable,
        }
        if self.context:
            result["context"] = self.context
        return result

    def __repr__(self) -> str:
        return f"ScrapeError(kind={self.kind.value!r}, step={self.step!r}, message={self.message!r})"


def kind_from_message(message: str) -> ErrorKind:
    """Infer an ErrorKind from free-form error text."""
    lowered = message.lower()
    for kind, needles in _MESSAGE_RULES:
        if any(needle in lowered for needle in needles):
            return kind
    return ErrorKind.UNKNOWN


def classify_exception(exc: BaseException) -> ErrorKind:
    """Map an exception to an ErrorKind.

    Exception types are checked first; message heuristics are the fallback.
    """
    if isinstance(exc, ScrapeError):
        return exc.kind
    if isinstance(exc, (TimeoutError, PlaywrightTimeoutError)):
        return ErrorKind.TIMEOUT
    if isinstance(exc, PlaywrightError):
        return ErrorKind.AUTOMATION
    if isinstance(exc, (CurlError, aiohttp.ClientError, ConnectionError)):
        lowered = str(exc).lower()
        if "timed out" in lowered or "timeout" in lowered:
            return ErrorKind.TIMEOUT
        return ErrorKind.NETWORK
    if isinstance(exc, (json.JSONDecodeError, ValidationError, UnicodeDecodeError)):
        return ErrorKind.PARSING
    return kind_from_message(f"{type(exc).__name__}: {exc}")


class TelemetrySink(Protocol):
    """Receives classified errors. May be sync or async; never awaited by callers."""

    def record(self, error: ScrapeError) -> Awaitable[None] | None: ...


class ErrorClassifier:
    """Classifies, logs and forwards pipeline errors.

    Reporting is fire-and-forget: a failing sink is logged and never
    interrupts the pipeline.
    """

    def __init__(self, sink: TelemetrySink | None = None):
        self._sink = sink
        self._pending: set[asyncio.Task] = set()

    def classify(self, exc: BaseException, step: str, **context: Any) -> ScrapeError:
        """Wrap any exception as a ScrapeError for the given step."""
        if isinstance(exc, ScrapeError):
            if exc.step == "unknown":
                exc.step = step
            for key, value in context.items():
                exc.context.setdefault(key, value)
            return exc
        kind = classify_exception(exc)
        message = str(exc) or type(exc).__name__
        return ScrapeError(kind, message, step=step, context=dict(context))

    def report(self, error: ScrapeError) -> None:
        """Log the error and hand it to the telemetry sink."""
        logger.warning(
            "Scrape error",
            kind=error.kind.value,
            step=error.step,
            retryable=error.retryable,
            error=error.message[:200],
            **{k: v for k, v in error.context.items() if isinstance(v, str | int | float | bool)},
        )
        if self._sink is None:
            return

        try:
            result = self._sink.record(error)
        except Exception as e:
            logger.error("Telemetry sink failed", error=str(e))
            return

        if inspect.isawaitable(result):
            try:
                task = asyncio.ensure_future(result)
            except RuntimeError as e:
                # No running loop: drop the pending coroutine
                if inspect.iscoroutine(result):
                    result.close()
                logger.error("Telemetry sink could not be scheduled", error=str(e))
                return
            self._pending.add(task)
            task.add_done_callback(self._on_sink_done)

    def _on_sink_done(self, task: asyncio.Task) -> None:
        self._pending.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Telemetry sink failed", error=str(exc))

    def capture(self, exc: BaseException, step: str, **context: Any) -> ScrapeError:
        """Classify and report in one call."""
        error = self.classify(exc, step, **context)
        self.report(error)
        return error

    @asynccontextmanager
    async def step(self, name: str, **context: Any) -> AsyncIterator[None]:
        """Wrap a pipeline stage.

        Any exception raised inside is classified, reported and re-raised
        as a ScrapeError. Cancellation passes through untouched.

        Example:
            async with classifier.step("fetch", url=url):
                result = await fetcher.fetch(url)
        """
        try:
            yield
        except asyncio.CancelledError:
            raise
        except Exception as e:
            error = self.capture(e, name, **context)
            if error is e:
                raise
            raise error from e

    async def drain(self) -> None:
        """Wait for in-flight sink deliveries (used on shutdown and in tests)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
