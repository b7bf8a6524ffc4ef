"""
Topic-driven link filtering through an LLM provider.

The model sees the candidate URLs (with anchor text where known) and returns
``{"articleUrls": [...]}``. Returned URLs are mapped back onto the original
candidates, so a truncated or rewritten URL never leaks into the result.
Any failure keeps the unfiltered list.
"""

from pydantic import BaseModel, Field

from adaptive_scraper.filter.llm_output import parse_reply
from adaptive_scraper.filter.provider import JSONPrompt, LLMProvider
from adaptive_scraper.utils.config import LLMConfig, get_settings
from adaptive_scraper.utils.logging import get_logger
from adaptive_scraper.utils.url import match_returned_url

logger = get_logger(__name__)

LINK_FILTER_SYSTEM_PROMPT = """You identify links that lead to individual news or blog articles.

Keep links that point to a single article, report or post related to the topic.
Exclude:
- Category, tag and author index pages
- Navigation, login, search and account pages
- Pagination links
- General company information pages

Copy each kept URL exactly as given. Return JSON in format: { "articleUrls": string[] }"""


class LinkFilterResponse(BaseModel):
    """Expected shape of the filter reply."""

    article_urls: list[str] = Field(default_factory=list, alias="articleUrls")


def _format_links(links: list[str], link_texts: dict[str, str]) -> str:
    lines = []
    for url in links:
        text = link_texts.get(url, "")
        lines.append(f"- {url} | {text[:120]}" if text else f"- {url}")
    return "\n".join(lines)


class TopicLinkFilter:
    """Keeps links relevant to a topic hint.

    Args:
        provider: LLM provider (any object with a ``complete_json`` coroutine).
        config: LLM settings (temperature, candidate cap).
    """

    def __init__(self, provider: LLMProvider, config: LLMConfig | None = None) -> None:
        self._provider = provider
        self._config = config or get_settings().llm

    async def filter_links(
        self,
        links: list[str],
        topic_hint: str,
        *,
        link_texts: dict[str, str] | None = None,
    ) -> list[str]:
        """Return the subset of ``links`` the model considers on-topic articles.

        Args:
            links: Candidate absolute URLs, in discovery order.
            topic_hint: Free-text topic description.
            link_texts: Optional anchor text per URL.

        Returns:
            Filtered links in their original order, or ``links`` unchanged
            when the provider fails or returns nothing usable.
        """
        if not links or not topic_hint.strip():
            return links

        capped = links[: self._config.max_links_for_filter]
        prompt = (
            f"Topic: {topic_hint.strip()}\n\n"
            f"Here are the links with their titles:\n{_format_links(capped, link_texts or {})}"
        )

        try:
            response = await self._provider.complete_json(
                JSONPrompt(
                    system=LINK_FILTER_SYSTEM_PROMPT,
                    prompt=prompt,
                    temperature=self._config.temperature,
                )
            )
        except Exception as e:
            logger.warning("Link filter request failed, keeping all links", error=str(e))
            return links

        if not response.ok:
            logger.warning(
                "Link filter returned error, keeping all links",
                error=response.error_message,
            )
            return links

        parsed = parse_reply(response.text, LinkFilterResponse)
        if parsed is None:
            logger.warning(
                "Link filter reply unparseable, keeping all links",
                response=response.text[:200],
            )
            return links

        kept: set[str] = set()
        for returned in parsed.article_urls:
            if not isinstance(returned, str):
                continue
            matched = match_returned_url(returned, capped)
            if matched is None:
                logger.debug("Unmatched URL from link filter", url=returned[:120])
                continue
            kept.add(matched)

        result = [url for url in capped if url in kept]
        logger.info(
            "Links filtered by topic",
            topic=topic_hint[:60],
            candidates=len(capped),
            kept=len(result),
        )
        return result
