"""Structured data extraction from the live DOM."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from playwright.async_api import Error as PlaywrightError, Page

from sitewarden.exceptions import ExtractionError
from sitewarden.models.results import ScrapeResult
from sitewarden.models.target import ScrapeSelector
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)

# Per-element extraction shared by single and multiple modes.
_EXTRACT_ONE = """
(el, [attr, mode]) => {
    if (mode === 'html') return el.innerHTML;
    if (mode === 'link') return el.href;
    if (mode === 'attribute' && attr) return el.getAttribute(attr);
    return (el.textContent || '').trim();
}
"""
_EXTRACT_MANY = f"(els, args) => els.map((el) => ({_EXTRACT_ONE})(el, args))"

_AUTO_SCRAPE_JS = """
() => {
    const result = {};
    if (document.title) result.pageTitle = document.title;
    const meta = document.querySelector('meta[name="description"]');
    if (meta) result.metaDescription = meta.getAttribute('content');
    const h1 = document.querySelector('h1');
    if (h1) result.mainHeading = (h1.textContent || '').trim();
    result.headings = Array.from(document.querySelectorAll('h1, h2, h3'))
        .slice(0, 10)
        .map((h) => ({tag: h.tagName, text: (h.textContent || '').trim()}));
    result.images = Array.from(document.querySelectorAll('img[src]'))
        .slice(0, 20)
        .map((img) => ({src: img.src, alt: img.getAttribute('alt')}));
    result.links = Array.from(document.querySelectorAll('a[href]'))
        .slice(0, 50)
        .map((a) => ({href: a.href, text: (a.textContent || '').trim().substring(0, 100)}));
    result.paragraphs = Array.from(document.querySelectorAll('p'))
        .slice(0, 10)
        .map((p) => (p.textContent || '').trim().substring(0, 500))
        .filter((p) => p && p.length > 20);
    return result;
}
"""

AUTO_SELECTOR = "auto"


class Scraper:
    """Extract named fields (or a heuristic page summary) and persist them.

    Args:
        store: Persistence for scraped items.
        max_value_chars: Stored values are truncated to this many characters.
    """

    def __init__(self, store: AutomationStore, *, max_value_chars: int = 10_000) -> None:
        self._store = store
        self._max_chars = max_value_chars

    async def scrape_with_selectors(
        self, page: Page, target_id: str, selectors: list[ScrapeSelector]
    ) -> ScrapeResult:
        """Extract every configured field; a failing field becomes ``None``.

        ``item_count`` adds the length of list results and one for any other
        result, including a missing single match.
        """
        page_url = page.url
        data: dict[str, Any] = {}
        item_count = 0

        for spec in selectors:
            try:
                value = await self._extract(page, spec)
            except ExtractionError as exc:
                logger.warning("Failed to extract %s: %s", spec.name, exc.reason)
                data[spec.name] = None
                continue

            data[spec.name] = value
            if isinstance(value, list):
                item_count += len(value)
                for item in value:
                    await self._save(target_id, page_url, spec.name, spec.selector, item)
            else:
                item_count += 1
                if value:
                    await self._save(target_id, page_url, spec.name, spec.selector, value)

        logger.info("Scraped %d items from %s", item_count, page_url)
        return ScrapeResult(success=True, item_count=item_count, data=data)

    async def auto_scrape(self, page: Page, target_id: str) -> ScrapeResult:
        """Collect title, meta description, headings, images, links and paragraphs.

        Only scalar string values are persisted; ``item_count`` is the number
        of keys collected.
        """
        page_url = page.url
        try:
            data: dict[str, Any] = await page.evaluate(_AUTO_SCRAPE_JS)
        except PlaywrightError as exc:
            logger.warning("Auto-scrape failed on %s: %s", page_url, exc)
            return ScrapeResult(success=False)

        for key, value in data.items():
            if isinstance(value, str) and value:
                await self._save(target_id, page_url, key, AUTO_SELECTOR, value)

        logger.info("Auto-scraped %d data points from %s", len(data), page_url)
        return ScrapeResult(success=True, item_count=len(data), data=data)

    async def list_scraped(self, target_id: str, *, limit: int = 1000) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._store.list_scraped_items, target_id, limit=limit)

    async def clear_scraped(self, target_id: str) -> int:
        return await asyncio.to_thread(self._store.clear_scraped_items, target_id)

    # ------------------------------------------------------------------

    async def _extract(self, page: Page, spec: ScrapeSelector) -> Any:
        args = [spec.attribute, spec.type.value]
        try:
            if spec.multiple:
                return await page.eval_on_selector_all(spec.selector, _EXTRACT_MANY, args)
            handle = await page.query_selector(spec.selector)
            if handle is None:
                return None
            return await handle.evaluate(_EXTRACT_ONE, args)
        except PlaywrightError as exc:
            raise ExtractionError(spec.name, str(exc)) from exc

    async def _save(self, target_id: str, page_url: str, name: str, selector: str, value: Any) -> None:
        await asyncio.to_thread(
            self._store.add_scraped_item,
            target_id,
            page_url=page_url,
            name=name,
            selector=selector,
            value=str(value)[: self._max_chars],
        )
