"""API routes for SiteWarden."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any

from fastapi import APIRouter, HTTPException, Query, Request
from pydantic import BaseModel, Field

from sitewarden.engine.scheduler import Scheduler
from sitewarden.exceptions import ExecutionInProgressError, NavigationError, TargetNotFoundError
from sitewarden.models.results import CaptureResult, QueueStatus
from sitewarden.models.target import (
    ActiveHours,
    BehaviorConfig,
    CaptureConfig,
    ChangeDetectionConfig,
    NetworkIdentity,
    ScrapeConfig,
    Target,
    TraversalConfig,
)
from sitewarden.store.automation_store import AutomationStore

router = APIRouter()


# ---------------------------------------------------------------------------
# Request / response models
# ---------------------------------------------------------------------------


class TargetCreate(BaseModel):
    """Parameters for a ``POST /targets`` request."""

    url: str = Field(..., pattern=r"^https?://", description="Address the run starts from.")
    label: str = ""
    description: str = ""
    enabled: bool = True
    run_interval_seconds: int = Field(1800, ge=1)
    active_hours: ActiveHours | None = None
    timezone: str = "UTC"
    steps: list[dict[str, Any]] = Field(default_factory=list)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
    change_detection: ChangeDetectionConfig = Field(default_factory=ChangeDetectionConfig)
    identity: NetworkIdentity = Field(default_factory=NetworkIdentity)
    javascript_code: str | None = None


class RunAccepted(BaseModel):
    target_id: str
    status: str
    message: str


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _store(request: Request) -> AutomationStore:
    return request.app.state.store


def _scheduler(request: Request) -> Scheduler:
    return request.app.state.scheduler


def _require_target(store: AutomationStore, target_id: str) -> Target:
    try:
        return store.require_target(target_id)
    except TargetNotFoundError:
        raise HTTPException(status_code=404, detail="Target not found.")


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.post("/targets", response_model=Target, status_code=201)
def create_target(req: TargetCreate, request: Request) -> Target:
    """Register a new target; its first scheduled run is one interval away."""
    try:
        target = Target(**req.model_dump())
    except ValueError as exc:
        raise HTTPException(status_code=422, detail=str(exc))
    return _store(request).create_target(target)


@router.get("/targets", response_model=list[Target])
def list_targets(request: Request, enabled: bool | None = Query(None)) -> list[Target]:
    return _store(request).list_targets(enabled=enabled)


@router.get("/targets/{target_id}", response_model=Target)
def get_target(target_id: str, request: Request) -> Target:
    return _require_target(_store(request), target_id)


@router.delete("/targets/{target_id}")
def delete_target(target_id: str, request: Request) -> dict[str, str]:
    """Delete a target together with its logs, queue, snapshots, items and screenshots."""
    if not _store(request).delete_target(target_id):
        raise HTTPException(status_code=404, detail="Target not found.")
    return {"target_id": target_id, "status": "deleted"}


@router.post("/targets/{target_id}/run", response_model=RunAccepted, status_code=202)
async def run_target(target_id: str, request: Request) -> RunAccepted:
    """Run a target now in the background, outside its schedule."""
    try:
        await _scheduler(request).manual_execute(target_id)
    except TargetNotFoundError:
        raise HTTPException(status_code=404, detail="Target not found.")
    except ExecutionInProgressError:
        raise HTTPException(status_code=409, detail="Target is already being executed.")
    return RunAccepted(
        target_id=target_id,
        status="queued",
        message=f"Execution queued. Poll /targets/{target_id}/history for the outcome.",
    )


@router.post("/targets/{target_id}/screenshot", response_model=CaptureResult)
async def capture_screenshot(target_id: str, request: Request) -> CaptureResult:
    """Take a one-off full-page screenshot of the target's address."""
    try:
        result = await _scheduler(request).capture_screenshot(target_id)
    except TargetNotFoundError:
        raise HTTPException(status_code=404, detail="Target not found.")
    except NavigationError as exc:
        raise HTTPException(status_code=502, detail=str(exc))
    if result is None:
        raise HTTPException(status_code=500, detail="Screenshot capture failed.")
    return result


@router.post("/targets/{target_id}/enable", response_model=Target)
async def enable_target(target_id: str, request: Request) -> Target:
    try:
        return await _scheduler(request).enable_target(target_id)
    except TargetNotFoundError:
        raise HTTPException(status_code=404, detail="Target not found.")


@router.post("/targets/{target_id}/disable", response_model=Target)
async def disable_target(target_id: str, request: Request) -> Target:
    """Stop scheduling a target; a run already in flight completes normally."""
    try:
        return await _scheduler(request).disable_target(target_id)
    except TargetNotFoundError:
        raise HTTPException(status_code=404, detail="Target not found.")


@router.get("/targets/{target_id}/history")
def target_history(
    target_id: str,
    request: Request,
    status: str | None = Query(None, pattern="^(success|error)$"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> dict[str, Any]:
    store = _store(request)
    _require_target(store, target_id)
    logs = store.list_execution_logs(target_id=target_id, status=status, limit=limit, offset=offset)
    total = store.count_executions(target_id=target_id, status=status)
    return {"target_id": target_id, "total": total, "executions": logs}


@router.get("/targets/{target_id}/queue", response_model=QueueStatus)
def target_queue(target_id: str, request: Request) -> QueueStatus:
    store = _store(request)
    _require_target(store, target_id)
    counts = store.count_queue_by_status(target_id)
    return QueueStatus(**{k: v for k, v in counts.items() if k in QueueStatus.model_fields})


@router.get("/targets/{target_id}/screenshots")
def target_screenshots(
    target_id: str, request: Request, limit: int = Query(100, ge=1, le=1000)
) -> list[dict[str, Any]]:
    store = _store(request)
    _require_target(store, target_id)
    return store.list_screenshots(target_id, limit=limit)


@router.get("/targets/{target_id}/scraped")
def target_scraped(
    target_id: str, request: Request, limit: int = Query(1000, ge=1, le=5000)
) -> list[dict[str, Any]]:
    store = _store(request)
    _require_target(store, target_id)
    return store.list_scraped_items(target_id, limit=limit)


@router.get("/system/status", tags=["monitoring"])
def system_status(request: Request) -> dict[str, Any]:
    """Fleet totals, in-flight runs, and scheduler state."""
    store = _store(request)
    scheduler = _scheduler(request)
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    scheduler_status = scheduler.status()
    return {
        "targets_total": store.count_targets(),
        "targets_active": store.count_targets(enabled=True),
        "in_flight": len(scheduler_status["active_executions"]),
        "total_executions": store.count_executions(),
        "errors_last_24h": store.count_executions(status="error", since=since),
        "scheduler": scheduler_status,
        "latest_status": scheduler.events.get_snapshot() if scheduler.events is not None else {},
    }


@router.get("/system/metrics", tags=["monitoring"])
def system_metrics(request: Request) -> dict[str, Any]:
    """Execution volume and success rate over the last 24 hours."""
    store = _store(request)
    since = datetime.now(timezone.utc) - timedelta(hours=24)
    executions = store.count_executions(since=since)
    successes = store.count_executions(status="success", since=since)
    rate = round(successes / executions * 100, 1) if executions else 0.0
    return {
        "executions_last_24h": executions,
        "successes_last_24h": successes,
        "errors_last_24h": executions - successes,
        "success_rate_pct": rate,
    }
