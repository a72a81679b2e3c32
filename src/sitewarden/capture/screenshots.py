"""Screenshot capture with a per-target, per-run cap.

``CaptureService`` owns a process-local counter per target id. The
orchestrator resets it at the start of every run; once a target reaches
its ``max_screenshots`` further captures return ``None`` rather than
raising. Counters are not persisted and reset on restart.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from pathlib import Path
from uuid import uuid4

from playwright.async_api import Error as PlaywrightError, Page

from sitewarden.models.results import CaptureResult
from sitewarden.monitoring.event_bus import EventBus, EventType
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)

_DOCUMENT_SIZE_JS = (
    "() => ({width: document.documentElement.scrollWidth, height: document.documentElement.scrollHeight})"
)
_VIEWPORT_SIZE_JS = "() => ({width: window.innerWidth, height: window.innerHeight})"


def _file_name(target_id: str, tag: str) -> str:
    return f"{target_id}-{tag}-{int(time.time() * 1000)}-{uuid4().hex[:8]}.png"


class CaptureService:
    """Capture full-page, viewport, element, and multi-section screenshots.

    Args:
        store: Persistence for screenshot metadata.
        screenshot_dir: Output directory; defaults to ``capture.screenshot_dir``.
        events: Optional bus notified with ``screenshot_captured``.
        section_pause_s: Pause after each scroll in :meth:`capture_sections`.
    """

    def __init__(
        self,
        store: AutomationStore,
        *,
        screenshot_dir: str | Path | None = None,
        events: EventBus | None = None,
        section_pause_s: float = 0.5,
    ) -> None:
        if screenshot_dir is None:
            from sitewarden.settings import get_settings

            screenshot_dir = get_settings().capture.screenshot_dir
        self._dir = Path(screenshot_dir)
        self._store = store
        self._events = events
        self._section_pause_s = section_pause_s
        self._counts: dict[str, int] = {}

    # ------------------------------------------------------------------
    # Counters
    # ------------------------------------------------------------------

    def reset_counter(self, target_id: str) -> None:
        self._counts[target_id] = 0

    def _release(self, target_id: str) -> None:
        self._counts[target_id] = max(self._counts.get(target_id, 0) - 1, 0)

    def get_count(self, target_id: str) -> int:
        return self._counts.get(target_id, 0)

    # ------------------------------------------------------------------
    # Capture variants
    # ------------------------------------------------------------------

    async def capture_page(
        self,
        page: Page,
        target_id: str,
        *,
        max_screenshots: int,
        index: int | None = None,
        selector: str | None = None,
    ) -> CaptureResult | None:
        """Capture the full page, or one element, unless the run's cap is reached.

        Args:
            page: Live page to capture.
            target_id: Owner of the screenshot (and of the counter).
            max_screenshots: Cap for this run.
            index: Page index used in the file name; defaults to the counter.
            selector: Capture only this element instead of the full page.

        Returns:
            The stored capture, or ``None`` if capped or the capture failed.
        """
        current = self._counts.get(target_id, 0)
        if current >= max_screenshots:
            logger.debug("Max screenshots (%d) reached for target %s", max_screenshots, target_id)
            return None
        # Reserve the slot before any await so the cap holds.
        self._counts[target_id] = current + 1

        page_index = current if index is None else index
        tag = f"page{page_index + 1}"
        try:
            if selector:
                result = await self._capture_element(page, target_id, selector, tag=f"{tag}-element")
            else:
                result = await self._capture(page, target_id, tag=tag, full_page=True)
        except Exception:
            self._release(target_id)
            raise
        if result is None:
            self._release(target_id)
            return None
        logger.info("Screenshot %d/%d captured: %s", current + 1, max_screenshots, result.file_path)
        return result

    async def capture_full_page(self, page: Page, target_id: str, *, tag: str = "manual") -> CaptureResult | None:
        """Capture the full page outside any run cap (one-off captures)."""
        return await self._capture(page, target_id, tag=tag, full_page=True)

    async def capture_viewport(self, page: Page, target_id: str, *, tag: str = "viewport") -> CaptureResult | None:
        """Capture only the visible viewport (not counted against the run cap)."""
        return await self._capture(page, target_id, tag=tag, full_page=False)

    async def capture_element(self, page: Page, target_id: str, selector: str) -> CaptureResult | None:
        """Capture one element's bounding box; ``None`` if the element is absent."""
        return await self._capture_element(page, target_id, selector, tag="element")

    async def _capture_element(self, page: Page, target_id: str, selector: str, *, tag: str) -> CaptureResult | None:
        handle = await page.query_selector(selector)
        if handle is None:
            logger.warning("Element not found for screenshot: %s", selector)
            return None

        self._dir.mkdir(parents=True, exist_ok=True)
        file_name = _file_name(target_id, tag)
        path = self._dir / file_name
        try:
            page_title = await page.title()
            await handle.screenshot(path=str(path))
            box = await handle.bounding_box() or {"width": 0, "height": 0}
            file_size = path.stat().st_size
        except (PlaywrightError, OSError) as exc:
            logger.error("Failed to capture element screenshot: %s", exc)
            return None
        return await self._record(
            target_id,
            file_name=file_name,
            path=path,
            page_url=page.url,
            page_title=page_title,
            kind="element",
            width=round(box["width"]),
            height=round(box["height"]),
            file_size=file_size,
        )

    async def capture_sections(self, page: Page, target_id: str, *, max_sections: int = 3) -> list[CaptureResult]:
        """Scroll through the page one viewport at a time, capturing each section.

        Scrolls back to the top afterwards.
        """
        viewport = await page.evaluate(_VIEWPORT_SIZE_JS)
        viewport_height = viewport["height"] or 1080
        page_height = await page.evaluate("() => document.body.scrollHeight")
        sections = min(max_sections, math.ceil(page_height / viewport_height))

        results: list[CaptureResult] = []
        for i in range(sections):
            await page.evaluate("(y) => window.scrollTo(0, y)", i * viewport_height)
            await asyncio.sleep(self._section_pause_s)
            result = await self.capture_viewport(page, target_id, tag=f"section{i + 1}")
            if result is not None:
                results.append(result)
        await page.evaluate("() => window.scrollTo(0, 0)")
        logger.info("Captured %d sections for target %s", len(results), target_id)
        return results

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _capture(self, page: Page, target_id: str, *, tag: str, full_page: bool) -> CaptureResult | None:
        self._dir.mkdir(parents=True, exist_ok=True)
        file_name = _file_name(target_id, tag)
        path = self._dir / file_name
        try:
            page_title = await page.title()
            await page.screenshot(path=str(path), full_page=full_page)
            dims = await page.evaluate(_DOCUMENT_SIZE_JS if full_page else _VIEWPORT_SIZE_JS)
            file_size = path.stat().st_size
        except (PlaywrightError, OSError) as exc:
            logger.error("Failed to capture screenshot for %s: %s", target_id, exc)
            return None
        return await self._record(
            target_id,
            file_name=file_name,
            path=path,
            page_url=page.url,
            page_title=page_title,
            kind="full_page" if full_page else "viewport",
            width=int(dims["width"]),
            height=int(dims["height"]),
            file_size=file_size,
        )

    async def _record(self, target_id: str, *, file_name: str, path: Path, **meta: object) -> CaptureResult:
        screenshot_id = await asyncio.to_thread(
            self._store.add_screenshot,
            target_id,
            file_name=file_name,
            file_path=str(path),
            **meta,
        )
        result = CaptureResult(screenshot_id=screenshot_id, file_path=str(path), **meta)  # type: ignore[arg-type]
        if self._events is not None:
            await self._events.emit(
                EventType.SCREENSHOT_CAPTURED,
                result.model_dump(),
                target_id=target_id,
            )
        return result
