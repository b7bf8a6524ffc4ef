"""
Structured logging for adaptive_scraper.

structlog renders JSON lines (or coloured console output) to stderr and a
daily log file under ``general.logs_dir``. Each discover/extract call runs
inside ``scrape_scope``, so every line it emits, including lines from the
fetchers and extractors it calls, carries the operation name, the target URL,
its role and a short ``op_id``.
"""

import logging
import sys
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

import structlog
from structlog.types import Processor

from adaptive_scraper.utils.config import get_project_root, get_settings

MAX_URL_CHARS = 200
URL_FIELDS = ("url", "final_url", "source_url", "target")


def _shorten_urls(
    logger: logging.Logger,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Cap URL fields; tracking-laden aggregator URLs can run to kilobytes."""
    for key in URL_FIELDS:
        value = event_dict.get(key)
        if isinstance(value, str) and len(value) > MAX_URL_CHARS:
            event_dict[key] = value[:MAX_URL_CHARS] + "..."
    return event_dict


def configure_logging(
    log_level: str | None = None,
    log_file: str | Path | None = None,
    json_format: bool = True,
) -> None:
    """Configure structlog over the stdlib logging handlers.

    Args:
        log_level: DEBUG, INFO, WARNING or ERROR. Uses settings if None.
        log_file: Log file path. Defaults to a dated file in ``logs_dir``.
        json_format: JSON lines (True) or console rendering (False).
    """
    settings = get_settings()
    log_level = log_level or settings.general.log_level

    if log_file is None:
        log_dir = get_project_root() / settings.general.logs_dir
        log_dir.mkdir(parents=True, exist_ok=True)
        log_file = log_dir / f"adaptive_scraper_{datetime.now().strftime('%Y%m%d')}.log"

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, log_level.upper(), logging.INFO),
        handlers=[
            logging.StreamHandler(sys.stderr),
            logging.FileHandler(log_file, encoding="utf-8"),
        ],
    )

    processors: list[Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.add_log_level,
        _shorten_urls,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]
    if json_format:
        processors += [
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(ensure_ascii=False),
        ]
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a logger (usually ``get_logger(__name__)``)."""
    return structlog.get_logger(name)


@contextmanager
def scrape_scope(operation: str, url: str, role: str) -> Iterator[str]:
    """Bind operation context for the duration of one scrape call.

    A scope opened inside another records the outer ``op_id`` as
    ``parent_op_id``. Leaving a scope restores whatever was bound before.

    Example:
        with scrape_scope("extract_article", url, "article") as op_id:
            logger.info("Extracting article")

    Yields:
        The new op_id.
    """
    op_id = uuid.uuid4().hex[:12]
    fields = {"op_id": op_id, "operation": operation, "url": url, "role": role}
    parent = structlog.contextvars.get_contextvars().get("op_id")
    if parent:
        fields["parent_op_id"] = parent
    with structlog.contextvars.bound_contextvars(**fields):
        yield op_id


_logging_configured = False


def ensure_logging_configured(json_format: bool = True) -> None:
    """Configure logging once per process."""
    global _logging_configured
    if not _logging_configured:
        configure_logging(json_format=json_format)
        _logging_configured = True
