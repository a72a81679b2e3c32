"""Traversal engine backed by the persistent traversal queue.

The queue lives in the store so retry counts and priorities survive
between runs; the visited-URL set is kept in memory per target and is
cleared whenever that target's queue is re-initialized.
"""

from __future__ import annotations

import asyncio
import logging
from urllib.parse import urlsplit

from playwright.async_api import Error as PlaywrightError, Page

from sitewarden.detection.canonical import content_hash
from sitewarden.exceptions import TraversalLinkError
from sitewarden.models.results import PageInfo, QueueStatus
from sitewarden.models.target import Target
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)

SEED_PRIORITY = 100
LINK_PRIORITY_BASE = 50
PRIORITY_STEP_PER_DEPTH = 10
HASH_PREFIX_CHARS = 50_000
PAGINATION_NAV_TIMEOUT_MS = 10_000

_PAGE_DATA_JS = """
() => {
    const links = Array.from(document.querySelectorAll('a[href]'))
        .map((a) => a.href)
        .filter((href) => href.startsWith('http'));
    return {links: [...new Set(links)], html: document.documentElement.outerHTML};
}
"""

_IS_DISABLED_JS = "(el) => el.hasAttribute('disabled') || el.classList.contains('disabled')"


def normalize_link(href: str) -> tuple[str, str]:
    """Reduce *href* to ``origin + path``; returns ``(clean_url, hostname)``.

    Query strings and fragments are dropped.

    Raises:
        TraversalLinkError: If *href* is not an absolute http(s) URL.
    """
    try:
        parts = urlsplit(href)
        hostname = parts.hostname
        port = parts.port
    except ValueError as exc:
        raise TraversalLinkError(href) from exc
    if parts.scheme not in ("http", "https") or not hostname:
        raise TraversalLinkError(href)
    netloc = hostname if port is None else f"{hostname}:{port}"
    return f"{parts.scheme}://{netloc}{parts.path or '/'}", hostname


class TraversalEngine:
    """Discover links, manage the crawl queue and step through pagination."""

    def __init__(self, store: AutomationStore) -> None:
        self._store = store
        self._visited: dict[str, set[str]] = {}

    # ------------------------------------------------------------------
    # Queue lifecycle
    # ------------------------------------------------------------------

    async def initialize_queue(self, target: Target) -> None:
        """Clear prior queue state and seed the target's own URL at depth 0."""
        visited = self._visited.setdefault(target.target_id, set())
        visited.clear()
        try:
            visited.add(normalize_link(target.url)[0])
        except TraversalLinkError:
            pass
        await asyncio.to_thread(self._store.reset_queue, target.target_id)
        await asyncio.to_thread(
            self._store.enqueue_page,
            target.target_id,
            target.url,
            depth=0,
            priority=SEED_PRIORITY,
        )
        logger.info("Queue initialized for target %s", target.target_id)

    def visited(self, target_id: str) -> set[str]:
        """The in-memory set of URLs already discovered for *target_id*."""
        return self._visited.setdefault(target_id, set())

    async def get_next_page(self, target_id: str) -> dict | None:
        return await asyncio.to_thread(self._store.claim_next_page, target_id)

    async def mark_page_complete(self, target_id: str, page_url: str) -> None:
        await asyncio.to_thread(self._store.mark_page_complete, target_id, page_url)

    async def mark_page_failed(self, target_id: str, page_url: str) -> str | None:
        """Requeue (deprioritized) or permanently fail the entry; returns its new status."""
        status = await asyncio.to_thread(self._store.mark_page_failed, target_id, page_url)
        logger.debug("Queue entry %s for %s is now %s", page_url, target_id, status)
        return status

    async def get_queue_status(self, target_id: str) -> QueueStatus:
        counts = await asyncio.to_thread(self._store.count_queue_by_status, target_id)
        return QueueStatus(**{k: v for k, v in counts.items() if k in QueueStatus.model_fields})

    # ------------------------------------------------------------------
    # Page inspection
    # ------------------------------------------------------------------

    async def extract_page_info(self, page: Page, depth: int) -> PageInfo:
        """Collect title, absolute links and a content hash for *page*."""
        title = await page.title()
        data = await page.evaluate(_PAGE_DATA_JS)
        html: str = data["html"]
        return PageInfo(
            url=page.url,
            title=title,
            depth=depth,
            links=list(data["links"]),
            content_length=len(html),
            content_hash=content_hash(html[:HASH_PREFIX_CHARS]),
        )

    async def discover_links(self, page: Page, target: Target, depth: int) -> list[str]:
        """Enqueue unseen links from *page* one level deeper than *depth*.

        Returns an empty list once *depth* reaches ``traversal.max_depth``.
        Off-host links are skipped unless ``follow_external_links`` is set.
        """
        config = target.traversal
        if depth >= config.max_depth:
            return []

        info = await self.extract_page_info(page, depth)
        base_host = urlsplit(target.url).hostname
        visited = self.visited(target.target_id)
        priority = LINK_PRIORITY_BASE - depth * PRIORITY_STEP_PER_DEPTH
        discovered: list[str] = []

        for href in info.links:
            try:
                clean_url, host = normalize_link(href)
            except TraversalLinkError as exc:
                logger.debug("Skipping link: %s", exc)
                continue
            if not config.follow_external_links and host != base_host:
                continue
            if clean_url in visited:
                continue
            visited.add(clean_url)
            discovered.append(clean_url)
            await asyncio.to_thread(
                self._store.enqueue_page,
                target.target_id,
                clean_url,
                depth=depth + 1,
                priority=priority,
                parent_url=info.url,
            )

        logger.info("Discovered %d new links at depth %d", len(discovered), depth)
        return discovered

    async def record_page_visit(self, target_id: str, info: PageInfo) -> str:
        return await asyncio.to_thread(
            self._store.record_page_visit,
            target_id,
            page_url=info.url,
            page_title=info.title,
            depth=info.depth,
            content_length=info.content_length,
            content_hash=info.content_hash,
        )

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def handle_pagination(self, page: Page, selector: str) -> bool:
        """Click the "next" control if present and enabled, then wait for navigation.

        Returns:
            True if a new page was loaded; False when pagination is over or
            the control could not be used.
        """
        try:
            button = await page.query_selector(selector)
            if button is None:
                return False
            if await button.evaluate(_IS_DISABLED_JS):
                return False
            async with page.expect_navigation(wait_until="networkidle", timeout=PAGINATION_NAV_TIMEOUT_MS):
                await button.click()
            return True
        except PlaywrightError as exc:
            logger.debug("Pagination failed: %s", exc)
            return False
