"""
Multi-level dynamic link resolution on a navigated automation page.

Source pages often render their article lists client-side (HTMX endpoints,
load-more buttons, lazy containers). The resolver:

1. Detects trigger elements and classifies them (container, item,
   pagination, filter) with explicit priority weights
2. Fires containers first (bounded), diffing external links before/after
3. Re-detects once, since item triggers usually appear only now
4. Fires items up to the remaining trigger budget, pausing periodically
5. Fires pagination, then filters, only while too few links were found

It never follows triggers beyond that single re-detection. No new trigger is
fired once ``max_resolve_time`` has passed; the links found so far are kept.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any

from adaptive_scraper.extractor.links import LinkExtractor
from adaptive_scraper.utils.config import DynamicLinksConfig, get_settings
from adaptive_scraper.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import Page

logger = get_logger(__name__)

TRIGGER_ATTR = "data-scraper-trigger"


class TriggerClass(str, Enum):
    """Trigger classes with processing order and base priority weight."""

    CONTAINER = ("container", 0, 10)
    ITEM = ("item", 1, 8)
    PAGINATION = ("pagination", 2, 6)
    FILTER = ("filter", 3, 3)

    def __new__(cls, value: str, order: int, weight: int):
        obj = str.__new__(cls, value)
        obj._value_ = value
        obj.order = order
        obj.weight = weight
        return obj


DEFAULT_ITEM_PRIORITY = 5


@dataclass(frozen=True)
class DynamicTrigger:
    """A DOM element whose activation loads more content."""

    selector_path: str
    endpoint: str | None
    target_region: str | None
    trigger_event: str
    classification: TriggerClass
    priority: int
    text: str = ""

    @property
    def sort_key(self) -> tuple[int, int]:
        return (self.classification.order, -self.priority)


# =============================================================================
# Classification
# =============================================================================

_PAGINATION_ENDPOINT = re.compile(r"[?&](page|offset|cursor)=|/next/?|/more/?|/page/\d+", re.I)
_PAGINATION_TEXT = re.compile(r"\b(load more|show more|more stories|next|older)\b", re.I)
_FILTER_ENDPOINT = re.compile(r"/(filter|search|topics?|tags?)/", re.I)
_FILTER_TEXT = re.compile(r"\b(filter|search|sort by)\b", re.I)
_CONTAINER_ENDPOINT = re.compile(
    r"/(items|articles|posts|news)/?(?:[?#].*)?$|/(list|feed|latest|stream)(?:/|$|\?)",
    re.I,
)
_ITEM_ENDPOINT = re.compile(r"/(items|articles|posts|news)/[^/?#]+", re.I)


def classify_trigger(raw: dict[str, Any]) -> tuple[TriggerClass, int]:
    """Classify a detected trigger and compute its priority.

    Args:
        raw: Detection record with ``endpoint``, ``tag``, ``className``,
            ``text`` and ``target`` keys.

    Returns:
        (classification, priority). Unrecognized triggers are items with
        a lower priority.
    """
    endpoint = raw.get("endpoint") or ""
    tag = (raw.get("tag") or "").lower()
    class_name = (raw.get("className") or "").lower()
    text = (raw.get("text") or "").strip().lower()
    bonus = 1 if raw.get("target") else 0

    if _PAGINATION_ENDPOINT.search(endpoint) or _PAGINATION_TEXT.search(text):
        cls = TriggerClass.PAGINATION
    elif _FILTER_ENDPOINT.search(endpoint) or _FILTER_TEXT.search(text):
        cls = TriggerClass.FILTER
    elif _CONTAINER_ENDPOINT.search(endpoint) or (
        tag == "div" and ("content" in class_name or "list" in class_name)
    ):
        cls = TriggerClass.CONTAINER
    elif _ITEM_ENDPOINT.search(endpoint) or (tag == "a" and "/" in endpoint):
        cls = TriggerClass.ITEM
    else:
        return TriggerClass.ITEM, DEFAULT_ITEM_PRIORITY

    return cls, cls.weight + bonus


def build_trigger(raw: dict[str, Any]) -> DynamicTrigger | None:
    """Turn a detection record into a DynamicTrigger (None if unusable)."""
    selector = raw.get("selector")
    if not selector or not isinstance(selector, str):
        return None
    classification, priority = classify_trigger(raw)
    return DynamicTrigger(
        selector_path=selector,
        endpoint=raw.get("endpoint") or None,
        target_region=raw.get("target") or None,
        trigger_event=raw.get("event") or "click",
        classification=classification,
        priority=priority,
        text=(raw.get("text") or "")[:100],
    )


def order_triggers(triggers: list[DynamicTrigger]) -> list[DynamicTrigger]:
    """Containers, then items, pagination, filters; higher priority first within a class."""
    return sorted(triggers, key=lambda t: t.sort_key)


# =============================================================================
# In-page scripts
# =============================================================================

DETECT_JS = """
(attr) => {
    const selectors = [
        '[hx-get]', '[hx-post]', '[data-hx-get]', '[data-hx-post]',
        '[data-url][data-load-more]', 'button.load-more', 'a.load-more',
        '[class*="load-more"]', '[data-load-more]',
    ];
    // Ids outlive swapped-out elements, so they are never reused.
    if (typeof window.__scraperTriggerSeq !== 'number') window.__scraperTriggerSeq = 0;
    const seen = new Set();
    const found = [];
    for (const el of document.querySelectorAll(selectors.join(','))) {
        if (seen.has(el)) continue;
        seen.add(el);
        if (!el.hasAttribute(attr)) el.setAttribute(attr, String(window.__scraperTriggerSeq++));
        const trig = el.getAttribute('hx-trigger') || el.getAttribute('data-hx-trigger') || '';
        found.push({
            selector: '[' + attr + '="' + el.getAttribute(attr) + '"]',
            endpoint: el.getAttribute('hx-get') || el.getAttribute('data-hx-get')
                || el.getAttribute('hx-post') || el.getAttribute('data-hx-post')
                || el.getAttribute('data-url') || el.getAttribute('href') || '',
            method: (el.hasAttribute('hx-post') || el.hasAttribute('data-hx-post')) ? 'POST' : 'GET',
            target: el.getAttribute('hx-target') || el.getAttribute('data-hx-target') || '',
            event: (trig.split(/[\\s,]/)[0]) || 'click',
            tag: el.tagName.toLowerCase(),
            className: typeof el.className === 'string' ? el.className : '',
            text: (el.textContent || '').trim().slice(0, 100),
        });
    }
    return found;
}
"""

ACTIVATE_JS = """
([selector, eventName, endpoint, target]) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    if (window.htmx && endpoint) {
        const method = el.hasAttribute('hx-post') || el.hasAttribute('data-hx-post') ? 'POST' : 'GET';
        const swapTarget = target ? document.querySelector(target) || el : el;
        window.htmx.ajax(method, endpoint, { source: el, target: swapTarget });
        return true;
    }
    if (eventName === 'click') {
        el.click();
    } else {
        el.dispatchEvent(new Event(eventName, { bubbles: true }));
    }
    return true;
}
"""


# =============================================================================
# Resolver
# =============================================================================


@dataclass
class DynamicLinkResult:
    """Outcome of one resolution pass."""

    links: list[str] = field(default_factory=list)
    fired: list[DynamicTrigger] = field(default_factory=list)
    attribution: dict[str, list[str]] = field(default_factory=dict)
    detected: int = 0
    fallback: bool = False
    deadline_reached: bool = False


class DynamicLinkResolver:
    """Fires dynamic-loading triggers in bounded, prioritized order.

    Args:
        config: Budgets and timings.
        link_extractor: Static extractor used for before/after snapshots.
    """

    def __init__(
        self,
        config: DynamicLinksConfig | None = None,
        link_extractor: LinkExtractor | None = None,
    ) -> None:
        self._config = config or get_settings().dynamic_links
        self._links = link_extractor or LinkExtractor()

    async def _external_links(self, page: Page, base_url: str) -> list[str]:
        html = await asyncio.wait_for(page.content(), timeout=self._config.script_timeout)
        return self._links.extract_external_links(html, base_url)

    async def detect(self, page: Page) -> list[DynamicTrigger]:
        """Scan the page for trigger elements, ordered for processing."""
        raw = await asyncio.wait_for(
            page.evaluate(DETECT_JS, TRIGGER_ATTR),
            timeout=self._config.script_timeout,
        )
        triggers = [t for t in (build_trigger(r) for r in raw or []) if t is not None]
        return order_triggers(triggers)

    async def _activate(self, page: Page, trigger: DynamicTrigger) -> bool:
        if trigger.trigger_event == "click" and not trigger.endpoint:
            element = await page.query_selector(trigger.selector_path)
            if element is None:
                return False
            await element.click(timeout=self._config.script_timeout * 1000)
            return True
        result = await asyncio.wait_for(
            page.evaluate(
                ACTIVATE_JS,
                [trigger.selector_path, trigger.trigger_event, trigger.endpoint, trigger.target_region],
            ),
            timeout=self._config.script_timeout,
        )
        return bool(result)

    async def _fire(
        self,
        page: Page,
        trigger: DynamicTrigger,
        base_url: str,
        result: DynamicLinkResult,
        discovered: dict[str, None],
    ) -> None:
        before = set(await self._external_links(page, base_url))
        result.fired.append(trigger)
        try:
            activated = await self._activate(page, trigger)
        except Exception as e:
            logger.debug(
                "Trigger activation failed",
                selector=trigger.selector_path,
                classification=trigger.classification.value,
                error=str(e),
            )
            return
        if not activated:
            return

        await asyncio.sleep(self._config.settle_time)
        after = await self._external_links(page, base_url)
        new_links = [url for url in after if url not in before]
        for url in after:
            discovered.setdefault(url, None)
        result.attribution[trigger.selector_path] = new_links
        logger.debug(
            "Trigger fired",
            classification=trigger.classification.value,
            endpoint=(trigger.endpoint or "")[:80],
            new_links=len(new_links),
        )

    async def _fire_batch(
        self,
        page: Page,
        triggers: list[DynamicTrigger],
        base_url: str,
        result: DynamicLinkResult,
        discovered: dict[str, None],
        deadline: float,
    ) -> None:
        for trigger in triggers:
            if len(result.fired) >= self._config.max_triggers:
                break
            if time.monotonic() >= deadline:
                if not result.deadline_reached:
                    logger.warning(
                        "Dynamic link deadline reached, keeping partial links",
                        url=base_url[:80],
                        fired=len(result.fired),
                        links=len(discovered),
                    )
                result.deadline_reached = True
                break
            await self._fire(page, trigger, base_url, result, discovered)
            if self._config.throttle_every and len(result.fired) % self._config.throttle_every == 0:
                await asyncio.sleep(self._config.throttle_pause)

    async def resolve_detailed(self, page: Page, base_url: str) -> DynamicLinkResult:
        """Run the full detection/trigger state machine.

        Args:
            page: Page already navigated to ``base_url``.
            base_url: Page URL; links on other hosts count as external.

        Returns:
            DynamicLinkResult with links in discovery order.
        """
        result = DynamicLinkResult()
        try:
            await self._run(page, base_url, result)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(
                "Dynamic link resolution failed, using static links",
                url=base_url[:80],
                error=str(e),
            )
            result.fallback = True
            try:
                result.links = await self._external_links(page, base_url)
            except Exception as inner:
                logger.warning("Static link fallback failed", url=base_url[:80], error=str(inner))
                result.links = []
        return result

    async def resolve(self, page: Page, base_url: str) -> list[str]:
        """De-duplicated external links after firing dynamic triggers."""
        return (await self.resolve_detailed(page, base_url)).links

    async def _run(self, page: Page, base_url: str, result: DynamicLinkResult) -> None:
        cfg = self._config
        deadline = time.monotonic() + cfg.max_resolve_time
        discovered: dict[str, None] = dict.fromkeys(await self._external_links(page, base_url))

        triggers = await self.detect(page)
        result.detected = len(triggers)
        containers = [t for t in triggers if t.classification is TriggerClass.CONTAINER]
        await self._fire_batch(
            page, containers[: cfg.max_containers], base_url, result, discovered, deadline
        )

        if containers:
            redetected = await self.detect(page)
            known = {t.selector_path for t in triggers}
            triggers = order_triggers(triggers + [t for t in redetected if t.selector_path not in known])
            result.detected = len(triggers)

        fired = {t.selector_path for t in result.fired}
        pending = [
            t
            for t in triggers
            if t.selector_path not in fired and t.classification is not TriggerClass.CONTAINER
        ]

        items = [t for t in pending if t.classification is TriggerClass.ITEM]
        await self._fire_batch(page, items, base_url, result, discovered, deadline)

        if len(discovered) < cfg.min_links:
            pagination = [t for t in pending if t.classification is TriggerClass.PAGINATION]
            await self._fire_batch(
                page, pagination[: cfg.max_pagination], base_url, result, discovered, deadline
            )

        if len(discovered) < cfg.min_links:
            filters = [t for t in pending if t.classification is TriggerClass.FILTER]
            await self._fire_batch(
                page, filters[: cfg.max_filters], base_url, result, discovered, deadline
            )

        result.links = list(discovered)
        logger.info(
            "Dynamic link resolution complete",
            url=base_url[:80],
            detected=result.detected,
            fired=len(result.fired),
            links=len(result.links),
            deadline_reached=result.deadline_reached,
        )
