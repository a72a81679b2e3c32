"""Drives one target run end-to-end.

Sequence for :meth:`Orchestrator.execute`::

    acquire browser -> isolated page with identity overrides
    -> dismiss popups -> resilient navigation (must succeed)
    -> wait for stabilization -> dismiss popups
    -> injected script -> interaction steps
    -> change detection -> one screenshot -> scrape
    -> bounded auto-traversal (+ pagination)

Every failure inside a run is caught once, here. The run is then recorded
as a single execution log row with the counters gathered so far, the
target's bookkeeping advances by one interval, and the circuit breaker
sees the outcome. The page context is always closed.
"""

from __future__ import annotations

import asyncio
import logging
import random
import time
import traceback
from datetime import datetime, timedelta, timezone

from playwright.async_api import Page

from sitewarden.browser.human import HumanInput, jittered_delay_ms
from sitewarden.browser.manager import BrowserManager
from sitewarden.capture.scraper import Scraper
from sitewarden.capture.screenshots import CaptureService
from sitewarden.detection.change import ChangeDetector
from sitewarden.exceptions import NavigationError
from sitewarden.interactions.executor import StepExecutor
from sitewarden.models.results import CaptureResult, ExecutionResult, ExecutionStatus, RunCounters
from sitewarden.models.target import Target
from sitewarden.monitoring.event_bus import EventBus, EventType
from sitewarden.resilience.service import ResilienceService
from sitewarden.settings.config import AutomationSettings, Settings
from sitewarden.store.automation_store import AutomationStore
from sitewarden.traversal.engine import TraversalEngine

logger = logging.getLogger(__name__)


class Orchestrator:
    """Compose the browser, resilience, traversal, detection and capture services.

    Args:
        store: Persistent store shared by every collaborator.
        browser: Owner of the shared browser process.
        resilience: Retry / navigation / circuit-breaker service.
        capture: Screenshot service (owns the per-run counters).
        scraper: DOM data extraction.
        detector: Content-change detection.
        traversal: Crawl queue and link discovery.
        automation: Step and traversal tuning.
        events: Optional notification bus.
        human: Simulated input used by interaction steps.
        rng: Random source for pacing jitter.
    """

    def __init__(
        self,
        store: AutomationStore,
        *,
        browser: BrowserManager,
        resilience: ResilienceService,
        capture: CaptureService,
        scraper: Scraper,
        detector: ChangeDetector,
        traversal: TraversalEngine,
        automation: AutomationSettings | None = None,
        events: EventBus | None = None,
        human: HumanInput | None = None,
        rng: random.Random | None = None,
    ) -> None:
        self.store = store
        self.browser = browser
        self.resilience = resilience
        self.capture = capture
        self.scraper = scraper
        self.detector = detector
        self.traversal = traversal
        self.automation = automation or AutomationSettings()
        self.events = events
        self.human = human or HumanInput()
        self._rng = rng or random.Random()

    @classmethod
    def from_settings(
        cls,
        store: AutomationStore,
        settings: Settings,
        *,
        events: EventBus | None = None,
        browser: BrowserManager | None = None,
    ) -> "Orchestrator":
        """Build an orchestrator with default collaborators wired from *settings*."""
        return cls(
            store,
            browser=browser or BrowserManager(settings.browser),
            resilience=ResilienceService(settings.resilience),
            capture=CaptureService(store, screenshot_dir=settings.capture.screenshot_dir, events=events),
            scraper=Scraper(store, max_value_chars=settings.automation.scrape_value_max_chars),
            detector=ChangeDetector(store),
            traversal=TraversalEngine(store),
            automation=settings.automation,
            events=events,
        )

    # ------------------------------------------------------------------
    # Full run
    # ------------------------------------------------------------------

    async def execute(self, target: Target) -> ExecutionResult:
        """Run *target* end-to-end and record exactly one execution log row.

        Never raises for run failures; those are reported on the result.
        Store failures while recording the outcome propagate.
        """
        started_at = datetime.now(timezone.utc)
        start = time.monotonic()
        counters = RunCounters()
        error: str | None = None
        error_stack: str | None = None

        self.capture.reset_counter(target.target_id)
        await self._emit(EventType.EXECUTION_STARTED, target, {"url": target.url})

        try:
            async with self.browser.open_page(target) as page:
                await self._run(page, target, counters)
        except Exception as exc:
            error = str(exc) or type(exc).__name__
            error_stack = traceback.format_exc()
            logger.error(
                "Execution failed for target %s: %s", target.target_id, error, extra={"target_id": target.target_id}
            )

        success = error is None
        duration_ms = int((time.monotonic() - start) * 1000)
        completed_at = datetime.now(timezone.utc)

        execution_id = await asyncio.to_thread(
            self.store.create_execution_log,
            target_id=target.target_id,
            status=(ExecutionStatus.SUCCESS if success else ExecutionStatus.ERROR).value,
            duration_ms=duration_ms,
            started_at=started_at,
            completed_at=completed_at,
            actions_completed=counters.actions_completed,
            screenshots_taken=counters.screenshots_taken,
            pages_visited=counters.pages_visited,
            data_scraped=counters.data_scraped,
            changes_detected=counters.changes_detected,
            error_message=error,
            error_stack=error_stack,
        )
        await asyncio.to_thread(
            self.store.record_run_outcome,
            target.target_id,
            success=success,
            finished_at=completed_at,
            next_scheduled_at=completed_at + timedelta(seconds=target.run_interval_seconds),
        )
        if success:
            self.resilience.record_success(target.target_id)
            logger.info(
                "Execution complete for %s: %d pages, %d screenshots, %d data items",
                target.target_id,
                counters.pages_visited,
                counters.screenshots_taken,
                counters.data_scraped,
                extra={"target_id": target.target_id, "execution_id": execution_id},
            )
        else:
            self.resilience.record_failure(target.target_id)

        result = ExecutionResult(
            target_id=target.target_id,
            success=success,
            duration_ms=duration_ms,
            actions_completed=counters.actions_completed,
            screenshots_taken=counters.screenshots_taken,
            pages_visited=counters.pages_visited,
            data_scraped=counters.data_scraped,
            changes_detected=counters.changes_detected,
            error=error,
            error_stack=error_stack,
            execution_id=execution_id,
        )
        await self._emit(EventType.EXECUTION_COMPLETED, target, result.model_dump(exclude={"error_stack"}))
        return result

    async def _run(self, page: Page, target: Target, counters: RunCounters) -> None:
        await self.resilience.handle_popups(page)

        logger.info("Navigating to %s", target.url)
        if not await self.resilience.safe_navigate(page, target.url):
            raise NavigationError(target.url, "")
        counters.actions_completed += 1
        counters.pages_visited += 1

        await self.resilience.wait_for_page_stable(page)
        await self.resilience.handle_popups(page)

        if target.javascript_code:
            await page.evaluate(target.javascript_code)
            counters.actions_completed += 1

        executor = StepExecutor(
            target,
            resilience=self.resilience,
            capture=self.capture,
            human=self.human,
            counters=counters,
            default_timeout_ms=self.automation.default_step_timeout_ms,
            strict=self.automation.strict_steps,
            rng=self._rng,
        )
        await executor.run(page)

        await self._inspect_page(page, target, counters)

        if target.traversal.auto_navigate:
            counters.merge(await self.run_traversal(page, target, counters))

    async def _inspect_page(self, page: Page, target: Target, counters: RunCounters) -> None:
        """Change-check, screenshot and scrape the current page as the target configures."""
        if target.change_detection.enabled:
            change = await self.detector.detect(
                page, target.target_id, threshold=target.change_detection.threshold_pct
            )
            if change.has_changed:
                counters.changes_detected += 1
                logger.info("Change detected on %s: %.1f%%", change.page_url, change.change_percent)

        if target.capture.auto_screenshot:
            shot = await self.capture.capture_page(
                page, target.target_id, max_screenshots=target.capture.max_screenshots
            )
            if shot is not None:
                counters.screenshots_taken += 1

        if target.scrape.auto_scrape:
            if target.scrape.selectors:
                scraped = await self.scraper.scrape_with_selectors(page, target.target_id, target.scrape.selectors)
            else:
                scraped = await self.scraper.auto_scrape(page, target.target_id)
            counters.data_scraped += scraped.item_count

    # ------------------------------------------------------------------
    # Traversal
    # ------------------------------------------------------------------

    async def run_traversal(self, page: Page, target: Target, current: RunCounters) -> RunCounters:
        """Visit newly discovered links, then follow pagination.

        Returns only the counts produced by traversal; *current* (the run's
        totals so far) is read for the page budget and never mutated.
        """
        found = RunCounters()
        config = target.traversal
        max_pages = config.max_pages
        if current.pages_visited >= max_pages:
            return found

        await self.traversal.initialize_queue(target)
        links = await self.traversal.discover_links(page, target, 0)
        budget = min(self.automation.traversal_links_per_run, max_pages - current.pages_visited - 1)

        for link in links[: max(budget, 0)]:
            if self.resilience.is_circuit_open(target.target_id):
                logger.warning("Circuit breaker open for %s, stopping traversal", target.target_id)
                break
            try:
                logger.info("Visiting %s", link)
                if not await self.resilience.safe_navigate(page, link):
                    await self.traversal.mark_page_failed(target.target_id, link)
                    continue
                found.pages_visited += 1
                found.actions_completed += 1

                await self.resilience.wait_for_page_stable(page)
                await self.resilience.handle_popups(page)
                info = await self.traversal.extract_page_info(page, 1)
                await self.traversal.record_page_visit(target.target_id, info)
                await self._inspect_page(page, target, found)
                await self.traversal.mark_page_complete(target.target_id, link)
                await self._pace(target)
            except Exception as exc:
                logger.error("Failed to visit %s: %s", link, exc)
                await self.traversal.mark_page_failed(target.target_id, link)

        if config.pagination_selector:
            iterations = 0
            while (
                iterations < self.automation.pagination_max_iterations
                and current.pages_visited + found.pages_visited < max_pages
            ):
                if not await self.traversal.handle_pagination(page, config.pagination_selector):
                    break
                iterations += 1
                found.pages_visited += 1
                found.actions_completed += 1
                await self.resilience.wait_for_page_stable(page)
                await self._paginated_capture(page, target, found)
                await self._pace(target)

        return found

    async def _paginated_capture(self, page: Page, target: Target, found: RunCounters) -> None:
        if target.capture.auto_screenshot:
            shot = await self.capture.capture_page(
                page, target.target_id, max_screenshots=target.capture.max_screenshots
            )
            if shot is not None:
                found.screenshots_taken += 1
        if target.scrape.auto_scrape:
            scraped = await self.scraper.auto_scrape(page, target.target_id)
            found.data_scraped += scraped.item_count

    async def _pace(self, target: Target) -> None:
        behavior = target.behavior
        delay = jittered_delay_ms(behavior.delay_between_actions_ms, behavior.random_variation_pct, self._rng)
        if delay:
            await asyncio.sleep(delay / 1000)

    # ------------------------------------------------------------------
    # One-off capture
    # ------------------------------------------------------------------

    async def capture_screenshot_only(self, target: Target) -> CaptureResult | None:
        """Navigate to *target* and take one full-page screenshot outside any run.

        Does not touch execution logs, bookkeeping or the circuit breaker.

        Raises:
            NavigationError: If the target cannot be reached.
        """
        async with self.browser.open_page(target) as page:
            if not await self.resilience.safe_navigate(page, target.url):
                raise NavigationError(target.url, "")
            await self.resilience.wait_for_page_stable(page)
            await self.resilience.handle_popups(page)
            return await self.capture.capture_full_page(page, target.target_id)

    async def _emit(self, event_type: EventType, target: Target, data: dict) -> None:
        if self.events is not None:
            await self.events.emit(event_type, data, target_id=target.target_id)
