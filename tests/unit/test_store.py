"""Unit tests for the AutomationStore SQLite persistence layer."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from sitewarden.exceptions import PersistenceError, TargetNotFoundError
from sitewarden.models.target import Target


def _now() -> datetime:
    return datetime.now(timezone.utc)


class TestTargets:
    def test_create_sets_next_run_one_interval_out(self, store):
        before = _now()
        stored = store.create_target(Target(url="https://example.com/", run_interval_seconds=600))
        assert stored.created_at is not None
        assert stored.next_scheduled_at >= before + timedelta(seconds=600)
        assert stored.next_scheduled_at <= _now() + timedelta(seconds=600)

    def test_explicit_next_run_is_kept(self, store):
        when = datetime(2030, 1, 1, tzinfo=timezone.utc)
        stored = store.create_target(Target(url="https://example.com/", next_scheduled_at=when))
        assert store.require_target(stored.target_id).next_scheduled_at == when

    def test_round_trip_nested_config(self, store):
        target = Target(
            url="https://example.com/",
            label="shop",
            steps=[{"type": "click", "selector": "#buy"}, {"type": "wait_for_time", "delay_ms": 5}],
            traversal={"auto_navigate": False, "max_pages": 7},
            scrape={"auto_scrape": True, "selectors": [{"name": "price", "selector": ".price"}]},
            active_hours={"start": "09:00", "end": "17:00"},
            timezone="Europe/Berlin",
            identity={"cookies": {"session": "abc"}},
        )
        store.create_target(target)
        loaded = store.require_target(target.target_id)
        assert loaded.label == "shop"
        assert [s.type for s in loaded.steps] == ["click", "wait_for_time"]
        assert loaded.traversal.max_pages == 7
        assert loaded.traversal.auto_navigate is False
        assert loaded.scrape.selectors[0].name == "price"
        assert loaded.active_hours.start == "09:00"
        assert loaded.identity.cookies == {"session": "abc"}
        assert loaded.next_scheduled_at.tzinfo is not None

    def test_get_missing_returns_none(self, store):
        assert store.get_target("nope") is None

    def test_require_missing_raises(self, store):
        with pytest.raises(TargetNotFoundError):
            store.require_target("nope")

    def test_list_filters_by_enabled(self, store):
        store.create_target(Target(url="https://a.example/", enabled=True))
        store.create_target(Target(url="https://b.example/", enabled=False))
        assert len(store.list_targets()) == 2
        assert [t.url for t in store.list_targets(enabled=True)] == ["https://a.example/"]
        assert store.count_targets(enabled=False) == 1

    def test_list_skips_unreadable_rows(self, store, caplog):
        good = store.create_target(Target(url="https://a.example/"))
        bad = store.create_target(Target(url="https://b.example/"))
        store.update_target(bad.target_id, timezone="Mars/Olympus_Mons")

        with caplog.at_level("ERROR", logger="sitewarden.store.automation_store"):
            listed = store.list_targets(enabled=True)

        assert [t.target_id for t in listed] == [good.target_id]
        assert bad.target_id in caplog.text

    def test_get_unreadable_row_raises_persistence_error(self, store):
        bad = store.create_target(Target(url="https://b.example/"))
        store.update_target(bad.target_id, run_interval_seconds=0)
        with pytest.raises(PersistenceError, match=bad.target_id):
            store.get_target(bad.target_id)

    def test_set_enabled(self, store):
        stored = store.create_target(Target(url="https://example.com/"))
        updated = store.set_enabled(stored.target_id, False)
        assert updated.enabled is False

    def test_set_enabled_missing(self, store):
        with pytest.raises(TargetNotFoundError):
            store.set_enabled("nope", True)

    def test_record_run_outcome_success(self, store):
        stored = store.create_target(Target(url="https://example.com/"))
        finished = _now()
        store.record_run_outcome(
            stored.target_id, success=True, finished_at=finished, next_scheduled_at=finished + timedelta(hours=1)
        )
        loaded = store.require_target(stored.target_id)
        assert loaded.success_count == 1
        assert loaded.error_count == 0
        assert loaded.last_run_at is not None
        assert loaded.last_error_at is None

    def test_record_run_outcome_failure(self, store):
        stored = store.create_target(Target(url="https://example.com/"))
        finished = _now()
        next_run = finished + timedelta(hours=1)
        store.record_run_outcome(stored.target_id, success=False, finished_at=finished, next_scheduled_at=next_run)
        loaded = store.require_target(stored.target_id)
        assert loaded.error_count == 1
        assert loaded.last_error_at is not None
        assert abs((loaded.next_scheduled_at - next_run).total_seconds()) < 1

    def test_delete_cascades(self, store):
        stored = store.create_target(Target(url="https://example.com/"))
        tid = stored.target_id
        store.create_execution_log(
            target_id=tid, status="success", duration_ms=5, started_at=_now(), completed_at=_now()
        )
        store.enqueue_page(tid, "https://example.com/", depth=0, priority=100)
        store.create_snapshot(tid, page_url="https://example.com/", content_hash="h", html_length=1, change_percent=100)
        store.add_scraped_item(tid, page_url="https://example.com/", name="n", selector="s", value="v")
        store.add_screenshot(tid, file_name="a.png", file_path="/tmp/a.png")

        assert store.delete_target(tid) is True
        assert store.get_target(tid) is None
        assert store.count_executions(target_id=tid) == 0
        assert store.list_queue(tid) == []
        assert store.list_snapshots(tid) == []
        assert store.list_scraped_items(tid) == []
        assert store.count_screenshots(tid) == 0

    def test_delete_missing(self, store):
        assert store.delete_target("nope") is False


class TestExecutionLogs:
    def test_create_and_fetch(self, store):
        started = _now()
        eid = store.create_execution_log(
            target_id="t1",
            status="error",
            duration_ms=42,
            started_at=started,
            completed_at=started + timedelta(seconds=1),
            pages_visited=1,
            error_message="boom",
        )
        log = store.get_execution_log(eid)
        assert log["status"] == "error"
        assert log["error_message"] == "boom"
        assert log["pages_visited"] == 1
        assert log["started_at"].tzinfo is not None

    def test_list_newest_first_and_filters(self, store):
        base = _now()
        for i, status in enumerate(["success", "error", "success"]):
            ts = base + timedelta(seconds=i)
            store.create_execution_log(target_id="t1", status=status, duration_ms=i, started_at=ts, completed_at=ts)
        logs = store.list_execution_logs(target_id="t1")
        assert [log["duration_ms"] for log in logs] == [2, 1, 0]
        assert store.count_executions(target_id="t1", status="success") == 2
        assert store.count_executions(since=base + timedelta(seconds=1)) == 2
        assert len(store.list_execution_logs(target_id="t1", limit=1, offset=1)) == 1


class TestTraversalQueue:
    def test_enqueue_is_idempotent(self, store):
        assert store.enqueue_page("t1", "https://e.com/a", depth=1, priority=50) is True
        assert store.enqueue_page("t1", "https://e.com/a", depth=2, priority=10) is False
        entry = store.get_queue_entry("t1", "https://e.com/a")
        assert entry["depth"] == 1
        assert entry["priority"] == 50

    def test_claim_orders_by_priority_then_insertion(self, store):
        store.enqueue_page("t1", "https://e.com/low", depth=1, priority=40)
        store.enqueue_page("t1", "https://e.com/first", depth=1, priority=50)
        store.enqueue_page("t1", "https://e.com/second", depth=1, priority=50)
        claimed = [store.claim_next_page("t1")["page_url"] for _ in range(3)]
        assert claimed == ["https://e.com/first", "https://e.com/second", "https://e.com/low"]
        assert store.claim_next_page("t1") is None
        assert store.count_queue_by_status("t1") == {"processing": 3}

    def test_failed_entry_retries_then_fails(self, store):
        store.enqueue_page("t1", "https://e.com/x", depth=1, priority=50)
        for expected_retry in (1, 2, 3):
            assert store.mark_page_failed("t1", "https://e.com/x") == "pending"
            entry = store.get_queue_entry("t1", "https://e.com/x")
            assert entry["retry_count"] == expected_retry
            assert entry["priority"] == 50 - 10 * expected_retry
        assert store.mark_page_failed("t1", "https://e.com/x") == "failed"
        assert store.get_queue_entry("t1", "https://e.com/x")["processed_at"] is not None

    def test_mark_failed_missing_entry(self, store):
        assert store.mark_page_failed("t1", "https://e.com/missing") is None

    def test_complete_and_reset(self, store):
        store.enqueue_page("t1", "https://e.com/", depth=0, priority=100)
        store.mark_page_complete("t1", "https://e.com/")
        assert store.get_queue_entry("t1", "https://e.com/")["status"] == "completed"
        store.reset_queue("t1")
        assert store.list_queue("t1") == []


class TestSnapshotsAndCaptures:
    def test_latest_snapshot_is_exact_url(self, store):
        store.create_snapshot("t1", page_url="https://e.com/a", content_hash="a1", html_length=10, change_percent=100)
        store.create_snapshot("t1", page_url="https://e.com/a", content_hash="a2", html_length=12, change_percent=20)
        store.create_snapshot("t1", page_url="https://e.com/b", content_hash="b1", html_length=5, change_percent=100)
        assert store.latest_snapshot("t1", "https://e.com/a")["content_hash"] == "a2"
        assert store.latest_snapshot("t1", "https://e.com/c") is None
        assert len(store.list_snapshots("t1")) == 3
        assert len(store.list_snapshots("t1", page_url="https://e.com/b")) == 1
        assert store.clear_snapshots("t1") == 3

    def test_scraped_items(self, store):
        store.add_scraped_item("t1", page_url="https://e.com/", name="title", selector="h1", value="Hello")
        items = store.list_scraped_items("t1")
        assert items[0]["value"] == "Hello"
        assert store.clear_scraped_items("t1") == 1

    def test_screenshots(self, store):
        sid = store.add_screenshot("t1", file_name="a.png", file_path="/x/a.png", width=10, height=20, file_size=3)
        rows = store.list_screenshots("t1")
        assert rows[0]["screenshot_id"] == sid
        assert rows[0]["kind"] == "full_page"
        assert store.count_screenshots("t1") == 1
        assert store.clear_screenshots("t1") == 1

    def test_page_visits(self, store):
        store.record_page_visit("t1", page_url="https://e.com/a", page_title="A", depth=1, content_hash="h")
        visits = store.list_page_visits("t1")
        assert visits[0]["page_title"] == "A"
        assert visits[0]["status"] == "completed"
