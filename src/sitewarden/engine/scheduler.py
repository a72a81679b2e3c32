"""Always-on scheduler.

A single background task ticks every ``scheduler.tick_seconds``: it loads
the enabled targets and dispatches each one that is due and not already
running as its own asyncio task. The in-flight set is the only ordering
guarantee: at most one execution per target, no fleet-wide cap.

Lifecycle::

    scheduler = Scheduler(store, orchestrator)
    await scheduler.start()
    ...
    await scheduler.stop()
"""

from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Any

from sitewarden.engine.orchestrator import Orchestrator
from sitewarden.exceptions import ExecutionInProgressError
from sitewarden.models.results import CaptureResult, ExecutionResult
from sitewarden.models.target import Target
from sitewarden.monitoring.event_bus import EventBus, EventType
from sitewarden.settings.config import SchedulerSettings
from sitewarden.store.automation_store import AutomationStore

logger = logging.getLogger(__name__)


def _as_utc(value: datetime) -> datetime:
    return value.replace(tzinfo=timezone.utc) if value.tzinfo is None else value


def should_run(target: Target, now: datetime) -> bool:
    """Decide whether *target* is due at *now* (an aware datetime).

    Due when it has never been scheduled, or when its next slot has passed
    and, if an active-hours window is set, the target-local time is inside it.
    """
    if target.next_scheduled_at is None:
        return True
    if now < _as_utc(target.next_scheduled_at):
        return False
    if target.active_hours is not None:
        local = now.astimezone(target.tz).strftime("%H:%M")
        if not target.active_hours.contains(local):
            return False
    return True


class Scheduler:
    """Periodic dispatcher of due targets onto the orchestrator.

    Args:
        store: Source of targets.
        orchestrator: Runs a single target end-to-end.
        settings: Tick period and overdue threshold.
        events: Optional bus for ``status_update`` notifications.
    """

    def __init__(
        self,
        store: AutomationStore,
        orchestrator: Orchestrator,
        *,
        settings: SchedulerSettings | None = None,
        events: EventBus | None = None,
    ) -> None:
        self.store = store
        self.orchestrator = orchestrator
        self.settings = settings or SchedulerSettings()
        self.events = events
        self._in_flight: set[str] = set()
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._loop_task: asyncio.Task[None] | None = None
        self._start_time: datetime | None = None
        self._started_monotonic: float | None = None
        self.total_executions_since_start = 0

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    async def start(self) -> None:
        """Start ticking. A second call while running only logs a warning."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return
        self._start_time = datetime.now(timezone.utc)
        self._started_monotonic = time.monotonic()
        self.total_executions_since_start = 0
        self._loop_task = asyncio.create_task(self._loop(), name="sitewarden-scheduler")
        logger.info("Scheduler started, checking targets every %.0f seconds", self.settings.tick_seconds)

    async def stop(self, *, wait: bool = False) -> None:
        """Stop ticking; with *wait*, also let in-flight executions finish."""
        task, self._loop_task = self._loop_task, None
        if task is not None:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
            logger.info("Scheduler stopped")
        if wait:
            await self.drain()

    async def drain(self) -> None:
        """Wait for every in-flight execution to complete."""
        pending = list(self._tasks.values())
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    async def _loop(self) -> None:
        await self.run_recovery_check()
        while True:
            await self.tick()
            await asyncio.sleep(self.settings.tick_seconds)

    # ------------------------------------------------------------------
    # Ticks
    # ------------------------------------------------------------------

    async def tick(self, now: datetime | None = None) -> list[str]:
        """Dispatch every due, idle, enabled target. Returns the dispatched ids."""
        now = now or datetime.now(timezone.utc)
        try:
            targets = await asyncio.to_thread(self.store.list_targets, enabled=True)
        except Exception as exc:
            logger.error("Scheduler error: %s", exc)
            return []

        dispatched: list[str] = []
        for target in targets:
            if target.target_id in self._in_flight:
                logger.debug("Target %s already executing, skipping", target.target_id)
                continue
            if should_run(target, now):
                self.dispatch(target)
                dispatched.append(target.target_id)
        return dispatched

    def dispatch(self, target: Target) -> asyncio.Task[None]:
        """Mark *target* in flight and start its execution as a background task."""
        self._in_flight.add(target.target_id)
        self.total_executions_since_start += 1
        logger.info("Starting execution for %s (%s)", target.label or target.url, target.target_id)
        task = asyncio.create_task(self._execute(target), name=f"sitewarden-run-{target.target_id}")
        self._tasks[target.target_id] = task
        return task

    async def _execute(self, target: Target) -> None:
        try:
            result: ExecutionResult = await self.orchestrator.execute(target)
            if result.success:
                logger.info("Execution completed for %s in %dms", target.target_id, result.duration_ms)
            else:
                logger.error("Execution failed for %s: %s", target.target_id, result.error)
            if self.events is not None:
                await self.events.emit(
                    EventType.STATUS_UPDATE,
                    {"last_run_at": datetime.now(timezone.utc).isoformat(), "success": result.success},
                    target_id=target.target_id,
                )
        except Exception as exc:
            logger.error("Unexpected error executing target %s: %s", target.target_id, exc)
        finally:
            self._in_flight.discard(target.target_id)
            self._tasks.pop(target.target_id, None)

    async def run_recovery_check(self, now: datetime | None = None) -> int:
        """Log enabled targets whose next run is overdue by more than the threshold.

        Observation only: overdue targets are not requeued; the next tick
        picks them up because their slot has passed.
        """
        now = now or datetime.now(timezone.utc)
        threshold = self.settings.overdue_threshold_seconds
        try:
            targets = await asyncio.to_thread(self.store.list_targets, enabled=True)
        except Exception as exc:
            logger.error("Recovery check failed: %s", exc)
            return 0

        overdue = 0
        for target in targets:
            if target.next_scheduled_at is None:
                continue
            late = (now - _as_utc(target.next_scheduled_at)).total_seconds()
            if late > threshold:
                overdue += 1
                logger.warning("Target %s is %d minutes overdue", target.label or target.target_id, late // 60)
        logger.info("Recovery check complete: %d overdue target(s)", overdue)
        return overdue

    # ------------------------------------------------------------------
    # Manual operations
    # ------------------------------------------------------------------

    def is_in_flight(self, target_id: str) -> bool:
        return target_id in self._in_flight

    async def manual_execute(self, target_id: str) -> dict[str, str]:
        """Run a target now, bypassing its schedule but not the in-flight guard.

        Raises:
            TargetNotFoundError: Unknown target.
            ExecutionInProgressError: The target is already running.
        """
        target = await asyncio.to_thread(self.store.require_target, target_id)
        if target_id in self._in_flight:
            raise ExecutionInProgressError(target_id)
        self.dispatch(target)
        return {"message": "Execution started", "target_id": target_id}

    async def capture_screenshot(self, target_id: str) -> CaptureResult | None:
        """Take a one-off screenshot of a target outside the schedule."""
        target = await asyncio.to_thread(self.store.require_target, target_id)
        logger.info("Capturing screenshot for %s (%s)", target.label or target.url, target_id)
        try:
            return await self.orchestrator.capture_screenshot_only(target)
        except Exception as exc:
            logger.error("Screenshot capture failed for %s: %s", target_id, exc)
            raise

    async def enable_target(self, target_id: str) -> Target:
        target = await asyncio.to_thread(self.store.set_enabled, target_id, True)
        logger.info("Automation started for %s", target.label or target_id)
        return target

    async def disable_target(self, target_id: str) -> Target:
        """Stop scheduling a target. An in-flight execution is not aborted."""
        target = await asyncio.to_thread(self.store.set_enabled, target_id, False)
        logger.info("Automation stopped for %s", target.label or target_id)
        return target

    def status(self) -> dict[str, Any]:
        """Snapshot of scheduler state for status endpoints."""
        uptime = time.monotonic() - self._started_monotonic if self._started_monotonic is not None else 0.0
        return {
            "is_running": self.is_running,
            "active_executions": sorted(self._in_flight),
            "start_time": self._start_time.isoformat() if self._start_time else None,
            "uptime_seconds": round(uptime, 1) if self.is_running else 0.0,
            "total_executions_since_start": self.total_executions_since_start,
        }
