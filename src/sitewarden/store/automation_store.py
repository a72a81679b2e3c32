"""Persistence store for targets, runs, and per-run audit rows.

``AutomationStore`` accepts an optional *db_path* for convenience or a
pre-built *session_factory* for a shared engine / test fixture. Every
method opens its own short session; the scheduler's in-flight guard
makes each target effectively single-writer, so queue and snapshot
writes do not need cross-statement transactions.

SQLite hands back naive datetimes even for ``timezone=True`` columns;
rows are normalised to UTC-aware values on the way out.
"""

from __future__ import annotations

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import uuid4

import sqlalchemy as sa
from pydantic import ValidationError
from sqlalchemy.dialects import sqlite
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from sitewarden.exceptions import PersistenceError, TargetNotFoundError
from sitewarden.models.target import Target
from sitewarden.store import sql as sql_schema
from sitewarden.store.sql import (
    CHILD_TABLES,
    METADATA,
    build_session_factory,
)

logger = logging.getLogger(__name__)

MAX_QUEUE_RETRIES = 3

_TARGET_JSON_FIELDS = (
    "behavior",
    "traversal",
    "capture",
    "scrape",
    "change_detection",
    "identity",
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: Any) -> Any:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _row_dict(row: Any) -> dict[str, Any]:
    return {k: _as_utc(v) for k, v in row._mapping.items()}


class AutomationStore:
    """Persist targets, execution logs, traversal queue, snapshots, and captures.

    Args:
        db_path: Convenience path for a local SQLite file. Mutually
            exclusive with *session_factory*.
        session_factory: Pre-configured ``sessionmaker``.
    """

    def __init__(
        self,
        db_path: str | Path | None = None,
        *,
        session_factory: sessionmaker | None = None,
    ) -> None:
        if session_factory is not None:
            self._session_factory = session_factory
        elif db_path is not None:
            self._session_factory = build_session_factory(db_path=db_path)
        else:
            self._session_factory = build_session_factory()

        # Ensure schema exists (auto-create for SQLite / local dev)
        with self._session() as session:
            METADATA.create_all(session.connection())
            session.commit()

    @contextmanager
    def _session(self) -> Iterator[Session]:
        """Yield a session, translating driver failures into ``PersistenceError``."""
        try:
            with self._session_factory() as session:
                yield session
        except SQLAlchemyError as exc:
            raise PersistenceError(str(exc)) from exc

    # ------------------------------------------------------------------
    # targets
    # ------------------------------------------------------------------

    def create_target(self, target: Target) -> Target:
        """Insert *target* and return it with bookkeeping defaults filled in.

        ``next_scheduled_at`` defaults to now + the run interval so a freshly
        created target waits one interval before its first scheduled run.
        """
        now = _utcnow()
        next_run = target.next_scheduled_at or now + timedelta(seconds=target.run_interval_seconds)
        stored = target.model_copy(update={"next_scheduled_at": next_run, "created_at": now, "updated_at": now})
        with self._session() as session:
            session.execute(sa.insert(sql_schema.targets).values(**self._target_values(stored)))
            session.commit()
        logger.info("Created target %s for %s", stored.target_id, stored.url)
        return stored

    def get_target(self, target_id: str) -> Target | None:
        """Return a single target, or ``None``."""
        with self._session() as session:
            row = session.execute(
                sa.select(sql_schema.targets).where(sql_schema.targets.c.target_id == target_id)
            ).first()
        if row is None:
            return None
        try:
            return self._row_to_target(row)
        except ValidationError as exc:
            raise PersistenceError(f"Stored target {target_id} is unreadable: {exc.error_count()} error(s)") from exc

    def require_target(self, target_id: str) -> Target:
        """Return a target or raise :class:`TargetNotFoundError`."""
        target = self.get_target(target_id)
        if target is None:
            raise TargetNotFoundError(target_id)
        return target

    def list_targets(self, *, enabled: bool | None = None, limit: int | None = None) -> list[Target]:
        """Return targets ordered by creation time, optionally filtered by *enabled*."""
        stmt = sa.select(sql_schema.targets).order_by(sql_schema.targets.c.created_at.asc())
        if enabled is not None:
            stmt = stmt.where(sql_schema.targets.c.enabled == enabled)
        if limit is not None:
            stmt = stmt.limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).all()
        targets: list[Target] = []
        for row in rows:
            try:
                targets.append(self._row_to_target(row))
            except ValidationError as exc:
                logger.error("Skipping unreadable target %s: %s", row.target_id, exc)
        return targets

    def update_target(self, target_id: str, **fields: Any) -> None:
        """Update arbitrary columns on a ``targets`` row."""
        fields["updated_at"] = _utcnow()
        with self._session() as session:
            session.execute(
                sa.update(sql_schema.targets)
                .where(sql_schema.targets.c.target_id == target_id)
                .values(**fields)
            )
            session.commit()

    def set_enabled(self, target_id: str, enabled: bool) -> Target:
        """Enable or disable a target and return the updated model."""
        self.require_target(target_id)
        self.update_target(target_id, enabled=enabled)
        return self.require_target(target_id)

    def record_run_outcome(
        self,
        target_id: str,
        *,
        success: bool,
        finished_at: datetime,
        next_scheduled_at: datetime,
    ) -> None:
        """Apply post-run bookkeeping: timestamps, counters, next schedule."""
        t = sql_schema.targets
        values: dict[str, Any] = {"next_scheduled_at": next_scheduled_at, "updated_at": _utcnow()}
        if success:
            values["last_run_at"] = finished_at
            values["success_count"] = t.c.success_count + 1
        else:
            values["last_error_at"] = finished_at
            values["error_count"] = t.c.error_count + 1
        with self._session() as session:
            session.execute(sa.update(t).where(t.c.target_id == target_id).values(**values))
            session.commit()

    def delete_target(self, target_id: str) -> bool:
        """Delete a target and every dependent row. Returns False if absent."""
        with self._session() as session:
            for table in CHILD_TABLES:
                session.execute(sa.delete(table).where(table.c.target_id == target_id))
            result = session.execute(
                sa.delete(sql_schema.targets).where(sql_schema.targets.c.target_id == target_id)
            )
            session.commit()
        deleted = (result.rowcount or 0) > 0
        if deleted:
            logger.info("Deleted target %s", target_id)
        return deleted

    def count_targets(self, *, enabled: bool | None = None) -> int:
        """Count targets, optionally filtered by *enabled*."""
        stmt = sa.select(sa.func.count()).select_from(sql_schema.targets)
        if enabled is not None:
            stmt = stmt.where(sql_schema.targets.c.enabled == enabled)
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    @staticmethod
    def _target_values(target: Target) -> dict[str, Any]:
        data = target.model_dump(mode="json", exclude={"steps", "active_hours", *_TARGET_JSON_FIELDS})
        for key in ("last_run_at", "next_scheduled_at", "last_error_at", "created_at", "updated_at"):
            data[key] = getattr(target, key)
        data["steps"] = [step.model_dump(mode="json") for step in target.steps]
        data["active_hours"] = target.active_hours.model_dump() if target.active_hours else None
        for key in _TARGET_JSON_FIELDS:
            data[key] = getattr(target, key).model_dump(mode="json")
        return data

    @staticmethod
    def _row_to_target(row: Any) -> Target:
        data = _row_dict(row)
        for key in (*_TARGET_JSON_FIELDS, "steps"):
            if data.get(key) is None:
                data.pop(key, None)
        return Target.model_validate(data)

    # ------------------------------------------------------------------
    # execution_logs
    # ------------------------------------------------------------------

    def create_execution_log(
        self,
        *,
        target_id: str,
        status: str,
        duration_ms: int,
        started_at: datetime,
        completed_at: datetime,
        actions_completed: int = 0,
        screenshots_taken: int = 0,
        pages_visited: int = 0,
        data_scraped: int = 0,
        changes_detected: int = 0,
        error_message: str | None = None,
        error_stack: str | None = None,
    ) -> str:
        """Insert the single finalized log row for one run and return its id."""
        execution_id = str(uuid4())
        with self._session() as session:
            session.execute(
                sa.insert(sql_schema.execution_logs).values(
                    execution_id=execution_id,
                    target_id=target_id,
                    status=status,
                    duration_ms=duration_ms,
                    actions_completed=actions_completed,
                    screenshots_taken=screenshots_taken,
                    pages_visited=pages_visited,
                    data_scraped=data_scraped,
                    changes_detected=changes_detected,
                    error_message=error_message,
                    error_stack=error_stack,
                    started_at=started_at,
                    completed_at=completed_at,
                    created_at=completed_at,
                )
            )
            session.commit()
        logger.debug("Logged execution %s for target %s (status=%s)", execution_id, target_id, status)
        return execution_id

    def get_execution_log(self, execution_id: str) -> dict[str, Any] | None:
        """Return a single execution log row as a dict, or ``None``."""
        with self._session() as session:
            row = session.execute(
                sa.select(sql_schema.execution_logs).where(
                    sql_schema.execution_logs.c.execution_id == execution_id
                )
            ).first()
        return _row_dict(row) if row else None

    def list_execution_logs(
        self,
        *,
        target_id: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[dict[str, Any]]:
        """Return a paginated list of execution logs, newest first."""
        logs = sql_schema.execution_logs
        stmt = sa.select(logs).order_by(logs.c.created_at.desc())
        if target_id is not None:
            stmt = stmt.where(logs.c.target_id == target_id)
        if status is not None:
            stmt = stmt.where(logs.c.status == status)
        if since is not None:
            stmt = stmt.where(logs.c.created_at >= since)
        stmt = stmt.limit(limit).offset(offset)
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    def count_executions(
        self,
        *,
        target_id: str | None = None,
        status: str | None = None,
        since: datetime | None = None,
    ) -> int:
        """Count execution logs matching the given filters."""
        logs = sql_schema.execution_logs
        stmt = sa.select(sa.func.count()).select_from(logs)
        if target_id is not None:
            stmt = stmt.where(logs.c.target_id == target_id)
        if status is not None:
            stmt = stmt.where(logs.c.status == status)
        if since is not None:
            stmt = stmt.where(logs.c.created_at >= since)
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    # ------------------------------------------------------------------
    # traversal_queue
    # ------------------------------------------------------------------

    def reset_queue(self, target_id: str) -> None:
        """Remove every queue entry for *target_id*."""
        q = sql_schema.traversal_queue
        with self._session() as session:
            session.execute(sa.delete(q).where(q.c.target_id == target_id))
            session.commit()

    def enqueue_page(
        self,
        target_id: str,
        page_url: str,
        *,
        depth: int,
        priority: int,
        parent_url: str | None = None,
    ) -> bool:
        """Upsert a pending queue entry; existing (target, url) rows are left untouched.

        Returns:
            True if a new entry was inserted.
        """
        with self._session() as session:
            stmt = (
                sqlite.insert(sql_schema.traversal_queue)
                .values(
                    target_id=target_id,
                    page_url=page_url,
                    parent_url=parent_url,
                    depth=depth,
                    priority=priority,
                    status="pending",
                    retry_count=0,
                    created_at=_utcnow(),
                )
                .on_conflict_do_nothing(index_elements=["target_id", "page_url"])
            )
            result = session.execute(stmt)
            session.commit()
        return (result.rowcount or 0) > 0

    def get_queue_entry(self, target_id: str, page_url: str) -> dict[str, Any] | None:
        """Return the queue entry for (*target_id*, *page_url*), or ``None``."""
        q = sql_schema.traversal_queue
        with self._session() as session:
            row = session.execute(
                sa.select(q).where(q.c.target_id == target_id, q.c.page_url == page_url)
            ).first()
        return _row_dict(row) if row else None

    def list_queue(self, target_id: str) -> list[dict[str, Any]]:
        """Return every queue entry for *target_id* in selection order."""
        q = sql_schema.traversal_queue
        stmt = (
            sa.select(q)
            .where(q.c.target_id == target_id)
            .order_by(q.c.priority.desc(), q.c.entry_id.asc())
        )
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    def claim_next_page(self, target_id: str) -> dict[str, Any] | None:
        """Pop the best pending entry (priority desc, insertion order) into ``processing``."""
        q = sql_schema.traversal_queue
        with self._session() as session:
            row = session.execute(
                sa.select(q)
                .where(q.c.target_id == target_id, q.c.status == "pending")
                .order_by(q.c.priority.desc(), q.c.entry_id.asc())
                .limit(1)
            ).first()
            if row is None:
                return None
            session.execute(sa.update(q).where(q.c.entry_id == row.entry_id).values(status="processing"))
            session.commit()
        entry = _row_dict(row)
        entry["status"] = "processing"
        return entry

    def mark_page_complete(self, target_id: str, page_url: str) -> None:
        """Mark a queue entry completed."""
        q = sql_schema.traversal_queue
        with self._session() as session:
            session.execute(
                sa.update(q)
                .where(q.c.target_id == target_id, q.c.page_url == page_url)
                .values(status="completed", processed_at=_utcnow())
            )
            session.commit()

    def mark_page_failed(self, target_id: str, page_url: str, *, max_retries: int = MAX_QUEUE_RETRIES) -> str | None:
        """Apply the retry policy to a failed entry.

        Entries with ``retry_count < max_retries`` go back to ``pending`` with
        ``retry_count + 1`` and ``priority - 10``; otherwise they are marked
        permanently ``failed``.

        Returns:
            The entry's new status, or ``None`` if no such entry exists.
        """
        q = sql_schema.traversal_queue
        with self._session() as session:
            row = session.execute(
                sa.select(q.c.entry_id, q.c.retry_count, q.c.priority).where(
                    q.c.target_id == target_id, q.c.page_url == page_url
                )
            ).first()
            if row is None:
                return None
            if row.retry_count < max_retries:
                values: dict[str, Any] = {
                    "status": "pending",
                    "retry_count": row.retry_count + 1,
                    "priority": row.priority - 10,
                }
            else:
                values = {"status": "failed", "processed_at": _utcnow()}
            session.execute(sa.update(q).where(q.c.entry_id == row.entry_id).values(**values))
            session.commit()
        return values["status"]

    def count_queue_by_status(self, target_id: str) -> dict[str, int]:
        """Return ``{status: count}`` for *target_id*'s queue."""
        q = sql_schema.traversal_queue
        stmt = (
            sa.select(q.c.status, sa.func.count())
            .where(q.c.target_id == target_id)
            .group_by(q.c.status)
        )
        with self._session() as session:
            rows = session.execute(stmt).all()
        return {status: int(count) for status, count in rows}

    # ------------------------------------------------------------------
    # page_visits
    # ------------------------------------------------------------------

    def record_page_visit(
        self,
        target_id: str,
        *,
        page_url: str,
        page_title: str | None = None,
        depth: int = 0,
        content_length: int | None = None,
        content_hash: str | None = None,
        status: str = "completed",
    ) -> str:
        """Append a ``page_visits`` row and return its id."""
        visit_id = str(uuid4())
        with self._session() as session:
            session.execute(
                sa.insert(sql_schema.page_visits).values(
                    visit_id=visit_id,
                    target_id=target_id,
                    page_url=page_url,
                    page_title=page_title,
                    depth=depth,
                    status=status,
                    content_length=content_length,
                    content_hash=content_hash,
                    visited_at=_utcnow(),
                )
            )
            session.commit()
        return visit_id

    def list_page_visits(self, target_id: str, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return the most recent page visits for *target_id*."""
        v = sql_schema.page_visits
        stmt = sa.select(v).where(v.c.target_id == target_id).order_by(v.c.visited_at.desc()).limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    # ------------------------------------------------------------------
    # page_snapshots
    # ------------------------------------------------------------------

    def create_snapshot(
        self,
        target_id: str,
        *,
        page_url: str,
        content_hash: str,
        html_length: int,
        change_percent: float | None,
    ) -> int:
        """Append a snapshot row and return its id."""
        with self._session() as session:
            result = session.execute(
                sa.insert(sql_schema.page_snapshots).values(
                    target_id=target_id,
                    page_url=page_url,
                    content_hash=content_hash,
                    html_length=html_length,
                    change_percent=change_percent,
                    captured_at=_utcnow(),
                )
            )
            session.commit()
        return int(result.inserted_primary_key[0])

    def latest_snapshot(self, target_id: str, page_url: str) -> dict[str, Any] | None:
        """Return the newest snapshot for the exact (*target_id*, *page_url*)."""
        s = sql_schema.page_snapshots
        stmt = (
            sa.select(s)
            .where(s.c.target_id == target_id, s.c.page_url == page_url)
            .order_by(s.c.captured_at.desc(), s.c.snapshot_id.desc())
            .limit(1)
        )
        with self._session() as session:
            row = session.execute(stmt).first()
        return _row_dict(row) if row else None

    def list_snapshots(
        self,
        target_id: str,
        *,
        page_url: str | None = None,
        limit: int = 100,
    ) -> list[dict[str, Any]]:
        """Return snapshot history, newest first."""
        s = sql_schema.page_snapshots
        stmt = sa.select(s).where(s.c.target_id == target_id)
        if page_url is not None:
            stmt = stmt.where(s.c.page_url == page_url)
        stmt = stmt.order_by(s.c.captured_at.desc(), s.c.snapshot_id.desc()).limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    def clear_snapshots(self, target_id: str) -> int:
        """Delete every snapshot for *target_id*; returns the number removed."""
        return self._delete_for_target(sql_schema.page_snapshots, target_id)

    # ------------------------------------------------------------------
    # scraped_items
    # ------------------------------------------------------------------

    def add_scraped_item(
        self,
        target_id: str,
        *,
        page_url: str,
        name: str,
        selector: str,
        value: str | None,
    ) -> str:
        """Append one scraped value and return its id."""
        item_id = str(uuid4())
        with self._session() as session:
            session.execute(
                sa.insert(sql_schema.scraped_items).values(
                    item_id=item_id,
                    target_id=target_id,
                    page_url=page_url,
                    name=name,
                    selector=selector,
                    value=value,
                    scraped_at=_utcnow(),
                )
            )
            session.commit()
        return item_id

    def list_scraped_items(self, target_id: str, *, limit: int = 1000) -> list[dict[str, Any]]:
        """Return scraped items for *target_id*, newest first."""
        i = sql_schema.scraped_items
        stmt = sa.select(i).where(i.c.target_id == target_id).order_by(i.c.scraped_at.desc()).limit(limit)
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    def clear_scraped_items(self, target_id: str) -> int:
        """Delete every scraped item for *target_id*."""
        return self._delete_for_target(sql_schema.scraped_items, target_id)

    # ------------------------------------------------------------------
    # screenshots
    # ------------------------------------------------------------------

    def add_screenshot(
        self,
        target_id: str,
        *,
        file_name: str,
        file_path: str,
        page_url: str | None = None,
        page_title: str | None = None,
        kind: str = "full_page",
        width: int | None = None,
        height: int | None = None,
        file_size: int | None = None,
    ) -> str:
        """Insert screenshot metadata and return its id."""
        screenshot_id = str(uuid4())
        with self._session() as session:
            session.execute(
                sa.insert(sql_schema.screenshots).values(
                    screenshot_id=screenshot_id,
                    target_id=target_id,
                    file_name=file_name,
                    file_path=file_path,
                    page_url=page_url,
                    page_title=page_title,
                    kind=kind,
                    width=width,
                    height=height,
                    file_size=file_size,
                    captured_at=_utcnow(),
                )
            )
            session.commit()
        return screenshot_id

    def list_screenshots(self, target_id: str | None = None, *, limit: int = 100) -> list[dict[str, Any]]:
        """Return screenshot metadata, newest first."""
        s = sql_schema.screenshots
        stmt = sa.select(s).order_by(s.c.captured_at.desc()).limit(limit)
        if target_id is not None:
            stmt = stmt.where(s.c.target_id == target_id)
        with self._session() as session:
            rows = session.execute(stmt).all()
        return [_row_dict(r) for r in rows]

    def count_screenshots(self, target_id: str) -> int:
        """Count stored screenshots for *target_id*."""
        s = sql_schema.screenshots
        stmt = sa.select(sa.func.count()).select_from(s).where(s.c.target_id == target_id)
        with self._session() as session:
            return int(session.execute(stmt).scalar_one())

    def clear_screenshots(self, target_id: str) -> int:
        """Delete screenshot metadata for *target_id*; image files are left on disk."""
        return self._delete_for_target(sql_schema.screenshots, target_id)

    # ------------------------------------------------------------------
    # helpers
    # ------------------------------------------------------------------

    def _delete_for_target(self, table: sa.Table, target_id: str) -> int:
        with self._session() as session:
            result = session.execute(sa.delete(table).where(table.c.target_id == target_id))
            session.commit()
        return result.rowcount or 0
