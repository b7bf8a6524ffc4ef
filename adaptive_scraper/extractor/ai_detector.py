"""
LLM-backed CSS selector inference for article pages.

Returns the raw selector fields exactly as the model produced them. Callers
treat every field as untrusted and run it through the selector sanitizer.
"""

from typing import Any

from adaptive_scraper.filter.llm_output import find_json_object
from adaptive_scraper.filter.provider import JSONPrompt, LLMProvider
from adaptive_scraper.pipeline.errors import ErrorKind, ScrapeError
from adaptive_scraper.utils.config import LLMConfig, get_settings
from adaptive_scraper.utils.logging import get_logger

logger = get_logger(__name__)

STRUCTURE_SYSTEM_PROMPT = (
    "You are a CSS selector expert. You identify HTML structure and return "
    "precise CSS selectors for article content extraction."
)

STRUCTURE_PROMPT_TEMPLATE = """Analyze this HTML from {url} and identify the best CSS selectors for:
1. Article title (main headline)
2. Article content/body (main text content)
3. Author information (if available)
4. Publish date (if available)

Selection criteria:
- Target the main content, not navigation or sidebar elements
- Prefer semantic elements (article, main, section) and specific class names
- For dates, prefer <time> elements with datetime attributes
- For authors, look for author/byline classes or rel="author"
- Avoid generic selectors like 'div' or 'span' without classes
- Use standard CSS only (no jQuery pseudo classes)

Return valid JSON in this exact format:
{{
  "titleSelector": "CSS selector for title",
  "contentSelector": "CSS selector for main content",
  "authorSelector": "CSS selector for author or null",
  "dateSelector": "CSS selector for publish date or null",
  "confidence": 0.9
}}

HTML to analyze:
{html}"""

RESPONSE_KEYS = ("titleSelector", "contentSelector", "authorSelector", "dateSelector", "confidence")


class LLMStructureInference:
    """Structure inference over an LLM provider.

    Args:
        provider: LLM provider.
        config: LLM settings (temperature).
    """

    def __init__(self, provider: LLMProvider, config: LLMConfig | None = None) -> None:
        self._provider = provider
        self._config = config or get_settings().llm

    async def infer(self, html_excerpt: str, url: str) -> dict[str, Any]:
        """Ask the model for selectors.

        Args:
            html_excerpt: Cleaned, truncated body HTML.
            url: Page URL (context for the model).

        Returns:
            Dict with the known response keys that were present.

        Raises:
            ScrapeError: kind ``ai`` when the provider fails or the reply holds
                no JSON object.
        """
        response = await self._provider.complete_json(
            JSONPrompt(
                system=STRUCTURE_SYSTEM_PROMPT,
                prompt=STRUCTURE_PROMPT_TEMPLATE.format(url=url, html=html_excerpt),
                temperature=self._config.temperature,
            )
        )
        if not response.ok:
            raise ScrapeError(
                ErrorKind.AI,
                f"LLM structure inference failed: {response.error_message}",
                step="structure_ai",
                context={"url": url, "provider": response.provider},
            )

        data = find_json_object(response.text)
        if data is None:
            raise ScrapeError(
                ErrorKind.AI,
                "LLM structure reply is not a JSON object",
                step="structure_ai",
                context={"url": url, "response": response.text[:200]},
            )

        logger.debug(
            "LLM structure reply",
            url=url[:80],
            title=str(data.get("titleSelector"))[:80],
            content=str(data.get("contentSelector"))[:80],
        )
        return {key: data[key] for key in RESPONSE_KEYS if key in data}
