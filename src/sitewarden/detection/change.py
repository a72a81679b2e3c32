"""Snapshot-based change detection.

Each call compares the page's canonicalized hash with the latest stored
snapshot for the exact (target, page URL) pair and always appends a new
snapshot. The magnitude of a change comes from a pluggable
``ChangeStrategy``; the default compares raw HTML lengths, so a rewrite
that keeps the same length scores 0%.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Protocol

from playwright.async_api import Page

from sitewarden.detection.canonical import canonicalize_html, content_hash
from sitewarden.models.results import ChangeResult
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)

_OUTER_HTML_JS = "() => document.documentElement.outerHTML"


class ChangeStrategy(Protocol):
    """Scores how much a page changed between two snapshots, in percent."""

    def change_percent(self, previous: dict[str, Any], *, html: str, canonical: str) -> float: ...


class LengthDeltaStrategy:
    """``|new_len - old_len| / old_len * 100``; 100 when the old length is zero."""

    def change_percent(self, previous: dict[str, Any], *, html: str, canonical: str) -> float:
        old_length = int(previous.get("html_length") or 0)
        if old_length == 0:
            return 100.0
        return abs(len(html) - old_length) / old_length * 100


class ChangeDetector:
    """Detect content changes for a target's pages and keep snapshot history."""

    def __init__(self, store: AutomationStore, *, strategy: ChangeStrategy | None = None) -> None:
        self._store = store
        self._strategy = strategy or LengthDeltaStrategy()

    async def detect(self, page: Page, target_id: str, *, threshold: float = 10.0) -> ChangeResult:
        """Compare *page* against its latest snapshot and record a new one."""
        page_url = page.url
        html: str = await page.evaluate(_OUTER_HTML_JS)
        return await self.compare(target_id, page_url, html, threshold=threshold)

    async def compare(self, target_id: str, page_url: str, html: str, *, threshold: float = 10.0) -> ChangeResult:
        """Score raw *html* for (*target_id*, *page_url*) and append the snapshot."""
        canonical = canonicalize_html(html)
        current_hash = content_hash(canonical)
        previous = await asyncio.to_thread(self._store.latest_snapshot, target_id, page_url)

        if previous is None:
            has_changed, percent = True, 100.0
        elif previous["content_hash"] == current_hash:
            has_changed, percent = False, 0.0
        else:
            percent = self._strategy.change_percent(previous, html=html, canonical=canonical)
            has_changed = percent >= threshold
            if has_changed:
                logger.info("Change detected on %s: %.1f%% change", page_url, percent)

        await asyncio.to_thread(
            self._store.create_snapshot,
            target_id,
            page_url=page_url,
            content_hash=current_hash,
            html_length=len(html),
            change_percent=percent,
        )
        return ChangeResult(
            page_url=page_url,
            has_changed=has_changed,
            change_percent=percent,
            current_hash=current_hash,
            previous_hash=previous["content_hash"] if previous else None,
            content_length=len(html),
        )

    async def get_change_history(
        self, target_id: str, page_url: str | None = None, *, limit: int = 100
    ) -> list[dict[str, Any]]:
        return await asyncio.to_thread(self._store.list_snapshots, target_id, page_url=page_url, limit=limit)

    async def get_latest_snapshot(self, target_id: str, page_url: str) -> dict[str, Any] | None:
        return await asyncio.to_thread(self._store.latest_snapshot, target_id, page_url)

    async def clear_snapshots(self, target_id: str) -> int:
        return await asyncio.to_thread(self._store.clear_snapshots, target_id)
