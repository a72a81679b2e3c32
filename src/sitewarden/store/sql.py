"""SQLAlchemy table definitions for SiteWarden persistence.

All tables share the same ``METADATA`` instance used by ``create_all``.
Child tables reference ``targets.target_id`` with ``ON DELETE CASCADE``;
:meth:`AutomationStore.delete_target` also removes children explicitly so
the cascade holds on SQLite connections without ``PRAGMA foreign_keys``.
"""

from __future__ import annotations

from pathlib import Path

import sqlalchemy as sa
from sqlalchemy.orm import sessionmaker

JSON_TYPE = sa.JSON()
TIMESTAMP = sa.DateTime(timezone=True)
UUID_TYPE = sa.String(length=64)

METADATA = sa.MetaData()


def _target_fk() -> sa.ForeignKey:
    return sa.ForeignKey("targets.target_id", ondelete="CASCADE")


# ---------------------------------------------------------------------------
# targets: one row per automation job
# ---------------------------------------------------------------------------

targets = sa.Table(
    "targets",
    METADATA,
    sa.Column("target_id", UUID_TYPE, primary_key=True),
    sa.Column("url", sa.Text(), nullable=False),
    sa.Column("label", sa.Text(), nullable=False, server_default=""),
    sa.Column("description", sa.Text(), nullable=False, server_default=""),
    sa.Column("enabled", sa.Boolean(), nullable=False, server_default=sa.text("1")),
    sa.Column("run_interval_seconds", sa.Integer(), nullable=False, server_default="1800"),
    sa.Column("active_hours", JSON_TYPE, nullable=True),
    sa.Column("timezone", sa.Text(), nullable=False, server_default="UTC"),
    sa.Column("steps", JSON_TYPE, nullable=True),
    sa.Column("behavior", JSON_TYPE, nullable=True),
    sa.Column("traversal", JSON_TYPE, nullable=True),
    sa.Column("capture", JSON_TYPE, nullable=True),
    sa.Column("scrape", JSON_TYPE, nullable=True),
    sa.Column("change_detection", JSON_TYPE, nullable=True),
    sa.Column("identity", JSON_TYPE, nullable=True),
    sa.Column("javascript_code", sa.Text(), nullable=True),
    sa.Column("last_run_at", TIMESTAMP, nullable=True),
    sa.Column("next_scheduled_at", TIMESTAMP, nullable=True),
    sa.Column("last_error_at", TIMESTAMP, nullable=True),
    sa.Column("success_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("error_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("updated_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_targets_enabled", targets.c.enabled)
sa.Index("idx_targets_next_scheduled_at", targets.c.next_scheduled_at)

# ---------------------------------------------------------------------------
# execution_logs: one row per run, finalized exactly once
# ---------------------------------------------------------------------------

execution_logs = sa.Table(
    "execution_logs",
    METADATA,
    sa.Column("execution_id", UUID_TYPE, primary_key=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("status", sa.Text(), nullable=False),
    sa.Column("duration_ms", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("actions_completed", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("screenshots_taken", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("pages_visited", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("data_scraped", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("changes_detected", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("error_message", sa.Text(), nullable=True),
    sa.Column("error_stack", sa.Text(), nullable=True),
    sa.Column("started_at", TIMESTAMP, nullable=True),
    sa.Column("completed_at", TIMESTAMP, nullable=True),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_execution_logs_target_id", execution_logs.c.target_id)
sa.Index("idx_execution_logs_status", execution_logs.c.status)
sa.Index("idx_execution_logs_created_at", execution_logs.c.created_at)

# ---------------------------------------------------------------------------
# traversal_queue: retry-aware crawl frontier, unique per (target, url)
# ---------------------------------------------------------------------------

traversal_queue = sa.Table(
    "traversal_queue",
    METADATA,
    sa.Column("entry_id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("page_url", sa.Text(), nullable=False),
    sa.Column("parent_url", sa.Text(), nullable=True),
    sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("priority", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
    sa.Column("retry_count", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("created_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
    sa.Column("processed_at", TIMESTAMP, nullable=True),
    sa.UniqueConstraint("target_id", "page_url", name="uq_traversal_queue_target_url"),
)
sa.Index("idx_traversal_queue_status", traversal_queue.c.target_id, traversal_queue.c.status)

# ---------------------------------------------------------------------------
# page_visits: append-only audit of traversed pages
# ---------------------------------------------------------------------------

page_visits = sa.Table(
    "page_visits",
    METADATA,
    sa.Column("visit_id", UUID_TYPE, primary_key=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("page_url", sa.Text(), nullable=False),
    sa.Column("page_title", sa.Text(), nullable=True),
    sa.Column("depth", sa.Integer(), nullable=False, server_default="0"),
    sa.Column("status", sa.Text(), nullable=False, server_default="completed"),
    sa.Column("content_length", sa.Integer(), nullable=True),
    sa.Column("content_hash", sa.Text(), nullable=True),
    sa.Column("visited_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_page_visits_target_id", page_visits.c.target_id)

# ---------------------------------------------------------------------------
# page_snapshots: canonical-content hashes, latest row is the baseline
# ---------------------------------------------------------------------------

page_snapshots = sa.Table(
    "page_snapshots",
    METADATA,
    sa.Column("snapshot_id", sa.Integer(), primary_key=True, autoincrement=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("page_url", sa.Text(), nullable=False),
    sa.Column("content_hash", sa.Text(), nullable=False),
    sa.Column("html_length", sa.Integer(), nullable=False),
    sa.Column("change_percent", sa.Float(), nullable=True),
    sa.Column("captured_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_page_snapshots_target_url", page_snapshots.c.target_id, page_snapshots.c.page_url)

# ---------------------------------------------------------------------------
# scraped_items: one row per extracted field value
# ---------------------------------------------------------------------------

scraped_items = sa.Table(
    "scraped_items",
    METADATA,
    sa.Column("item_id", UUID_TYPE, primary_key=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("page_url", sa.Text(), nullable=False),
    sa.Column("name", sa.Text(), nullable=False),
    sa.Column("selector", sa.Text(), nullable=False),
    sa.Column("value", sa.Text(), nullable=True),
    sa.Column("scraped_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_scraped_items_target_id", scraped_items.c.target_id, scraped_items.c.scraped_at)

# ---------------------------------------------------------------------------
# screenshots: file metadata for captured images
# ---------------------------------------------------------------------------

screenshots = sa.Table(
    "screenshots",
    METADATA,
    sa.Column("screenshot_id", UUID_TYPE, primary_key=True),
    sa.Column("target_id", UUID_TYPE, _target_fk(), nullable=False),
    sa.Column("file_name", sa.Text(), nullable=False),
    sa.Column("file_path", sa.Text(), nullable=False),
    sa.Column("page_url", sa.Text(), nullable=True),
    sa.Column("page_title", sa.Text(), nullable=True),
    sa.Column("kind", sa.Text(), nullable=False, server_default="full_page"),
    sa.Column("width", sa.Integer(), nullable=True),
    sa.Column("height", sa.Integer(), nullable=True),
    sa.Column("file_size", sa.Integer(), nullable=True),
    sa.Column("captured_at", TIMESTAMP, nullable=False, server_default=sa.text("CURRENT_TIMESTAMP")),
)
sa.Index("idx_screenshots_target_id", screenshots.c.target_id, screenshots.c.captured_at)

CHILD_TABLES: tuple[sa.Table, ...] = (
    execution_logs,
    traversal_queue,
    page_visits,
    page_snapshots,
    scraped_items,
    screenshots,
)


def build_engine(*, db_path: str | Path | None = None, echo: bool = False) -> sa.Engine:
    """SQLite engine for *db_path*, or ``storage.sqlite_path`` from settings.

    The parent directory is created on demand. Connections may be used from
    worker threads because the async layers call the store via
    ``asyncio.to_thread``.
    """
    from sitewarden.settings import get_settings

    storage = get_settings().storage
    if storage.backend != "sqlite":
        raise ValueError(f"Unsupported storage backend: {storage.backend!r}")

    path = Path(db_path if db_path is not None else storage.sqlite_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    return sa.create_engine(
        sa.URL.create("sqlite", database=str(path)),
        echo=echo,
        connect_args={"check_same_thread": False, "timeout": 30},
    )


def build_session_factory(*, db_path: str | Path | None = None) -> sessionmaker:
    return sessionmaker(bind=build_engine(db_path=db_path), autoflush=False, expire_on_commit=False)
