"""
Command line entry point.

    adaptive-scraper discover https://example.com/news --topic "ransomware" --max-links 30
    adaptive-scraper extract https://example.com/news/some-article

Results are printed to stdout as JSON; logs go to stderr and the log file.
"""

import argparse
import asyncio
import json
import sys

from adaptive_scraper.pipeline.errors import ScrapeError
from adaptive_scraper.pipeline.orchestrator import get_orchestrator, reset_orchestrator
from adaptive_scraper.utils.config import get_settings
from adaptive_scraper.utils.logging import ensure_logging_configured, get_logger


async def run_discover(url: str, topic: str | None, max_links: int | None) -> dict:
    """Discover article links on a source page."""
    links = await get_orchestrator().discover_links(url, topic_hint=topic, max_links=max_links)
    return {"ok": True, "url": url, "links": links}


async def run_extract(url: str) -> dict:
    """Extract one article."""
    article = await get_orchestrator().extract_article(url)
    return {"ok": True, **article.to_dict()}


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="adaptive-scraper",
        description="Adaptive link discovery and article extraction",
    )
    parser.add_argument(
        "command",
        choices=["discover", "extract"],
        help="Command to run",
    )
    parser.add_argument("url", help="Source page (discover) or article URL (extract)")
    parser.add_argument(
        "--topic", "-t",
        type=str,
        default=None,
        help="Topic hint used to filter discovered links",
    )
    parser.add_argument(
        "--max-links", "-n",
        type=int,
        default=None,
        help="Maximum number of links to return",
    )
    parser.add_argument(
        "--console-logs",
        action="store_true",
        help="Human-readable logs instead of JSON",
    )
    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    ensure_logging_configured(json_format=not args.console_logs)
    logger = get_logger(__name__)
    logger.info(
        "adaptive_scraper starting",
        version=get_settings().general.version,
        command=args.command,
    )

    async def async_main() -> dict:
        try:
            if args.command == "discover":
                return await run_discover(args.url, args.topic, args.max_links)
            return await run_extract(args.url)
        finally:
            await reset_orchestrator()

    try:
        output = asyncio.run(async_main())
        exit_code = 0
    except ScrapeError as e:
        output = e.to_dict()
        exit_code = 1

    print(json.dumps(output, ensure_ascii=False, indent=2))
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
