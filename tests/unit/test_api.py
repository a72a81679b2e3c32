"""Unit tests for the FastAPI routes."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient

from sitewarden.api.app import create_app
from sitewarden.engine.scheduler import Scheduler
from sitewarden.exceptions import NavigationError
from sitewarden.models.results import CaptureResult, ExecutionResult


@pytest.fixture()
def stub_orchestrator():
    async def _execute(target):
        return ExecutionResult(target_id=target.target_id, success=True)

    orch = MagicMock()
    orch.execute = AsyncMock(side_effect=_execute)
    orch.capture_screenshot_only = AsyncMock(return_value=None)
    orch.browser.close = AsyncMock()
    return orch


@pytest.fixture()
def scheduler(store, stub_orchestrator):
    return Scheduler(store, stub_orchestrator)


@pytest.fixture()
def client(store, scheduler):
    app = create_app(store=store, scheduler=scheduler, start_scheduler=False)
    with TestClient(app) as c:
        yield c


def _create(client, **overrides):
    body = {"url": "https://example.com/", "label": "Example"}
    body.update(overrides)
    resp = client.post("/targets", json=body)
    assert resp.status_code == 201, resp.text
    return resp.json()


def _log(store, target_id, status, *, at=None):
    at = at or datetime.now(timezone.utc)
    store.create_execution_log(
        target_id=target_id,
        status=status,
        duration_ms=10,
        started_at=at,
        completed_at=at,
        error_message="boom" if status == "error" else None,
    )


class TestHealth:
    def test_health(self, client):
        assert client.get("/health").json() == {"status": "ok"}


class TestTargets:
    def test_create_sets_first_slot_one_interval_away(self, client):
        before = datetime.now(timezone.utc)
        data = _create(client, run_interval_seconds=600)
        next_run = datetime.fromisoformat(data["next_scheduled_at"])
        if next_run.tzinfo is None:
            next_run = next_run.replace(tzinfo=timezone.utc)
        assert next_run >= before + timedelta(seconds=599)
        assert data["enabled"] is True
        assert data["success_count"] == 0

    def test_create_with_steps(self, client):
        data = _create(
            client,
            steps=[{"type": "click", "selector": "#go"}, {"type": "teleport"}, {"type": "press", "key": "Enter"}],
        )
        assert [s["type"] for s in data["steps"]] == ["click", "press"]

    def test_create_rejects_bad_step_params(self, client):
        resp = client.post("/targets", json={"url": "https://example.com/", "steps": [{"type": "click"}]})
        assert resp.status_code == 422

    def test_create_rejects_bad_url(self, client):
        assert client.post("/targets", json={"url": "ftp://example.com/"}).status_code == 422

    def test_create_rejects_bad_timezone(self, client):
        resp = client.post("/targets", json={"url": "https://example.com/", "timezone": "Mars/Olympus"})
        assert resp.status_code == 422

    def test_list_and_filter(self, client):
        a = _create(client)
        b = _create(client, enabled=False)
        assert {t["target_id"] for t in client.get("/targets").json()} == {a["target_id"], b["target_id"]}
        assert [t["target_id"] for t in client.get("/targets", params={"enabled": "true"}).json()] == [a["target_id"]]

    def test_get_and_delete(self, client):
        target = _create(client)
        tid = target["target_id"]
        assert client.get(f"/targets/{tid}").json()["url"] == "https://example.com/"
        assert client.delete(f"/targets/{tid}").json() == {"target_id": tid, "status": "deleted"}
        assert client.get(f"/targets/{tid}").status_code == 404
        assert client.delete(f"/targets/{tid}").status_code == 404

    def test_enable_disable(self, client):
        tid = _create(client)["target_id"]
        assert client.post(f"/targets/{tid}/disable").json()["enabled"] is False
        assert client.post(f"/targets/{tid}/enable").json()["enabled"] is True
        assert client.post("/targets/missing/enable").status_code == 404


class TestRun:
    def test_run_is_accepted(self, client, stub_orchestrator):
        tid = _create(client)["target_id"]
        resp = client.post(f"/targets/{tid}/run")
        assert resp.status_code == 202
        body = resp.json()
        assert body["status"] == "queued"
        assert body["target_id"] == tid

    def test_run_unknown_target(self, client):
        assert client.post("/targets/missing/run").status_code == 404

    def test_run_conflict_when_in_flight(self, client, scheduler):
        tid = _create(client)["target_id"]
        scheduler._in_flight.add(tid)
        assert client.post(f"/targets/{tid}/run").status_code == 409


class TestScreenshot:
    def test_returns_capture(self, client, stub_orchestrator):
        tid = _create(client)["target_id"]
        stub_orchestrator.capture_screenshot_only.return_value = CaptureResult(
            screenshot_id="s1", file_path="/tmp/s1.png", page_url="https://example.com/"
        )
        resp = client.post(f"/targets/{tid}/screenshot")
        assert resp.status_code == 200
        assert resp.json()["screenshot_id"] == "s1"

    def test_navigation_failure_is_bad_gateway(self, client, stub_orchestrator):
        tid = _create(client)["target_id"]
        stub_orchestrator.capture_screenshot_only.side_effect = NavigationError("https://example.com/", "timeout")
        resp = client.post(f"/targets/{tid}/screenshot")
        assert resp.status_code == 502
        assert "Failed to navigate" in resp.json()["detail"]

    def test_capture_failure(self, client):
        tid = _create(client)["target_id"]
        assert client.post(f"/targets/{tid}/screenshot").status_code == 500

    def test_unknown_target(self, client):
        assert client.post("/targets/missing/screenshot").status_code == 404


class TestTargetViews:
    def test_history_filters_and_totals(self, client, store):
        tid = _create(client)["target_id"]
        _log(store, tid, "success")
        _log(store, tid, "error")
        _log(store, tid, "success")

        body = client.get(f"/targets/{tid}/history").json()
        assert body["total"] == 3
        assert len(body["executions"]) == 3

        errors = client.get(f"/targets/{tid}/history", params={"status": "error"}).json()
        assert errors["total"] == 1
        assert errors["executions"][0]["error_message"] == "boom"

        page = client.get(f"/targets/{tid}/history", params={"limit": 1, "offset": 1}).json()
        assert len(page["executions"]) == 1
        assert page["total"] == 3

    def test_history_rejects_unknown_status(self, client):
        tid = _create(client)["target_id"]
        assert client.get(f"/targets/{tid}/history", params={"status": "weird"}).status_code == 422

    def test_queue(self, client, store):
        tid = _create(client)["target_id"]
        store.enqueue_page(tid, "https://example.com/", depth=0, priority=100)
        store.enqueue_page(tid, "https://example.com/a", depth=1, priority=50)
        store.claim_next_page(tid)
        assert client.get(f"/targets/{tid}/queue").json() == {
            "pending": 1,
            "processing": 1,
            "completed": 0,
            "failed": 0,
        }

    def test_screenshots_and_scraped_require_target(self, client):
        assert client.get("/targets/missing/screenshots").status_code == 404
        assert client.get("/targets/missing/scraped").status_code == 404

    def test_scraped(self, client, store):
        tid = _create(client)["target_id"]
        store.add_scraped_item(tid, page_url="https://example.com/", name="title", selector="h1", value="Hi")
        items = client.get(f"/targets/{tid}/scraped").json()
        assert [i["value"] for i in items] == ["Hi"]


class TestSystem:
    def test_status(self, client, store):
        a = _create(client)["target_id"]
        _create(client, enabled=False)
        _log(store, a, "error")
        _log(store, a, "error", at=datetime.now(timezone.utc) - timedelta(days=2))

        body = client.get("/system/status").json()
        assert body["targets_total"] == 2
        assert body["targets_active"] == 1
        assert body["total_executions"] == 2
        assert body["errors_last_24h"] == 1
        assert body["in_flight"] == 0
        assert body["scheduler"]["is_running"] is False
        assert body["latest_status"] == {}

    def test_metrics(self, client, store):
        tid = _create(client)["target_id"]
        for status in ("success", "success", "success", "error"):
            _log(store, tid, status)
        assert client.get("/system/metrics").json() == {
            "executions_last_24h": 4,
            "successes_last_24h": 3,
            "errors_last_24h": 1,
            "success_rate_pct": 75.0,
        }

    def test_metrics_empty(self, client):
        assert client.get("/system/metrics").json()["success_rate_pct"] == 0.0


class TestLifespan:
    def test_shutdown_closes_browser(self, store, scheduler, stub_orchestrator):
        app = create_app(store=store, scheduler=scheduler, start_scheduler=False)
        with TestClient(app):
            pass
        stub_orchestrator.browser.close.assert_awaited_once()
