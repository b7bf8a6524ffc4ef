"""
Caller-facing pipeline: link discovery on source pages and article extraction.

discover_links:
    fetch (source role) -> static article candidates -> dynamic links from
    the live page when automation was used -> de-duplicate -> unwrap
    aggregator redirects -> optional topic filter -> cap

extract_article:
    fetch (article role) -> selectors (known, or structure detection)
    -> content extraction -> remember detected selectors
"""

import asyncio
from typing import TYPE_CHECKING, Any

from adaptive_scraper.crawler.dynamic_links import DynamicLinkResolver
from adaptive_scraper.crawler.redirect_resolver import RedirectResolver
from adaptive_scraper.extractor.ai_detector import LLMStructureInference
from adaptive_scraper.extractor.content import ContentExtractor, ExtractedArticle, ExtractionTier
from adaptive_scraper.extractor.links import LinkExtractor
from adaptive_scraper.extractor.structure_detector import (
    InMemorySelectorCache,
    SelectorSet,
    StructureDetector,
)
from adaptive_scraper.filter.link_filter import TopicLinkFilter
from adaptive_scraper.filter.ollama_provider import OllamaProvider
from adaptive_scraper.pipeline.errors import ErrorClassifier, ScrapeError, TelemetrySink
from adaptive_scraper.pipeline.method_selector import FetchTarget, MethodSelector, TargetRole
from adaptive_scraper.utils.config import Settings, get_settings
from adaptive_scraper.utils.logging import get_logger, scrape_scope
from adaptive_scraper.utils.url import normalize_url

if TYPE_CHECKING:
    from playwright.async_api import Page

    from adaptive_scraper.filter.provider import LLMProvider

logger = get_logger(__name__)


def _dedupe(urls: list[str]) -> list[str]:
    return list(dict.fromkeys(urls))


class ScrapeOrchestrator:
    """Wires fetchers, detectors and extractors into the two public operations.

    Every collaborator can be injected; missing ones are built from settings.
    With ``llm.enabled`` an Ollama provider backs structure inference and
    topic filtering.

    Args:
        method_selector: HTTP/automation fetch routing.
        structure_detector: Selector detection chain.
        content_extractor: Article field extraction.
        link_extractor: Static link extraction.
        dynamic_resolver: In-page trigger resolver for automation fetches.
        redirect_resolver: Aggregator link unwrapping (None when disabled).
        link_filter: Topic filter (None disables filtering).
        classifier: Error classifier shared by all steps.
        llm_provider: Provider for the default AI collaborators.
        telemetry_sink: Sink for the default classifier.
        settings: Settings override.
    """

    def __init__(
        self,
        *,
        method_selector: MethodSelector | None = None,
        structure_detector: StructureDetector | None = None,
        content_extractor: ContentExtractor | None = None,
        link_extractor: LinkExtractor | None = None,
        dynamic_resolver: DynamicLinkResolver | None = None,
        redirect_resolver: RedirectResolver | None = None,
        link_filter: TopicLinkFilter | None = None,
        classifier: ErrorClassifier | None = None,
        llm_provider: "LLMProvider | None" = None,
        telemetry_sink: TelemetrySink | None = None,
        settings: Settings | None = None,
    ) -> None:
        self._settings = settings or get_settings()
        self._classifier = classifier or ErrorClassifier(telemetry_sink)

        if llm_provider is None and self._settings.llm.enabled and (
            structure_detector is None or link_filter is None
        ):
            llm_provider = OllamaProvider()
        self._llm_provider = llm_provider

        self._selector = method_selector or MethodSelector(config=self._settings.crawler)
        self._links = link_extractor or LinkExtractor()
        self._resolver = dynamic_resolver or DynamicLinkResolver(
            self._settings.dynamic_links, self._links
        )
        if redirect_resolver is None and self._settings.redirects.enabled:
            redirect_resolver = RedirectResolver(self._settings.redirects)
        self._redirects = redirect_resolver
        self._detector = structure_detector or StructureDetector(
            inference=LLMStructureInference(llm_provider, self._settings.llm) if llm_provider else None,
            cache=InMemorySelectorCache(),
            classifier=self._classifier,
            config=self._settings.extraction,
        )
        self._extractor = content_extractor or ContentExtractor(self._settings.extraction)
        if link_filter is None and llm_provider is not None:
            link_filter = TopicLinkFilter(llm_provider, self._settings.llm)
        self._link_filter = link_filter

    @property
    def classifier(self) -> ErrorClassifier:
        return self._classifier

    # =========================================================================
    # Link discovery
    # =========================================================================

    async def discover_links(
        self,
        source_url: str,
        *,
        topic_hint: str | None = None,
        max_links: int | None = None,
        protected_domains: list[str] | None = None,
    ) -> list[str]:
        """Discover article links on a source page.

        Args:
            source_url: Listing/front page URL.
            topic_hint: Optional topic used to filter links through the LLM.
            max_links: Cap on the number of links returned.
            protected_domains: Extra domains that go straight to automation.

        Returns:
            De-duplicated absolute URLs in discovery order.

        Raises:
            ScrapeError: When the source page cannot be fetched.
        """
        url = normalize_url(source_url)
        resolver = self._resolver

        async def resolve_dynamic(page: "Page", html: str) -> list[str]:
            return await resolver.resolve(page, page.url or url)

        with scrape_scope("discover_links", url, TargetRole.SOURCE.value):
            async with self._classifier.step("discover_fetch", url=url):
                result = await self._selector.fetch(
                    FetchTarget(url, TargetRole.SOURCE, topic_hint or ""),
                    protected_domains=protected_domains,
                    page_hook=resolve_dynamic,
                )

            base_url = result.final_url or url
            html = result.html or ""
            static_links = self._links.extract_article_candidates(html, base_url)
            link_texts = {link.url: link.text for link in self._links.extract_links(html, base_url)}
            dynamic_links = result.page_data if isinstance(result.page_data, list) else []

            links = _dedupe(static_links + dynamic_links)
            logger.info(
                "Links discovered",
                method=result.method,
                static=len(static_links),
                dynamic=len(dynamic_links),
                total=len(links),
            )

            if self._redirects is not None and links:
                resolved = await self._redirects.resolve_links(links)
                for original, final in resolved.items():
                    if final != original and original in link_texts:
                        link_texts.setdefault(final, link_texts[original])
                links = _dedupe([resolved.get(link, link) for link in links])

            if topic_hint and self._link_filter is not None and links:
                links = await self._link_filter.filter_links(links, topic_hint, link_texts=link_texts)

            if max_links is not None:
                links = links[: max(0, max_links)]
            return links

    # =========================================================================
    # Article extraction
    # =========================================================================

    async def extract_article(
        self,
        article_url: str,
        known_selectors: SelectorSet | dict[str, Any] | None = None,
        *,
        protected_domains: list[str] | None = None,
    ) -> ExtractedArticle:
        """Fetch and extract one article.

        Args:
            article_url: Article URL.
            known_selectors: Selectors to use instead of detection.
            protected_domains: Extra domains that go straight to automation.

        Returns:
            ExtractedArticle (``extraction_method="error"`` when nothing
            usable was found in the fetched document).

        Raises:
            ScrapeError: When the article cannot be fetched.
        """
        url = normalize_url(article_url)

        with scrape_scope("extract_article", url, TargetRole.ARTICLE.value):
            async with self._classifier.step("article_fetch", url=url):
                result = await self._selector.fetch(
                    FetchTarget(url, TargetRole.ARTICLE),
                    protected_domains=protected_domains,
                )
            html = result.html or ""

            if isinstance(known_selectors, dict):
                known_selectors = SelectorSet.from_dict(known_selectors)
            selectors = known_selectors or await self._detector.detect(html, url)

            article = self._extractor.extract(html, url, selectors)

            if (
                known_selectors is None
                and selectors.content_selector is not None
                and article.extraction_method != ExtractionTier.ERROR.value
            ):
                await self._detector.store(url, selectors)
            return article

    async def extract_articles(self, urls: list[str]) -> list[ExtractedArticle | ScrapeError]:
        """Extract many articles; a failing URL yields its ScrapeError in place.

        Concurrency is bounded by the browser pool size.
        """
        semaphore = asyncio.Semaphore(self._settings.browser.max_pool_size)

        async def run(url: str) -> ExtractedArticle | ScrapeError:
            async with semaphore:
                try:
                    return await self.extract_article(url)
                except ScrapeError as e:
                    logger.warning("Skipping article", url=url[:80], kind=e.kind.value)
                    return e
                except Exception as e:
                    error = self._classifier.capture(e, "extract_article", url=url)
                    logger.warning("Skipping article", url=url[:80], kind=error.kind.value)
                    return error

        return list(await asyncio.gather(*(run(url) for url in urls)))

    async def close(self) -> None:
        """Release fetchers, the browser pool and the LLM provider."""
        await self._selector.close()
        if self._redirects is not None:
            await self._redirects.close()
        if self._llm_provider is not None:
            await self._llm_provider.close()
        await self._classifier.drain()


# =============================================================================
# Global instance
# =============================================================================

_orchestrator: ScrapeOrchestrator | None = None


def get_orchestrator() -> ScrapeOrchestrator:
    """Get or create the process-wide orchestrator."""
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = ScrapeOrchestrator()
    return _orchestrator


async def reset_orchestrator() -> None:
    """Close and drop the global orchestrator."""
    global _orchestrator
    if _orchestrator is not None:
        await _orchestrator.close()
        _orchestrator = None
