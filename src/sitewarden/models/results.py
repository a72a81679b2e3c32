"""Result models produced by a run and its collaborators."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class ExecutionStatus(str, Enum):
    """Final status of one execution log row."""

    SUCCESS = "success"
    ERROR = "error"


class ExecutionResult(BaseModel):
    """Outcome of one end-to-end run against a target."""

    target_id: str
    success: bool
    duration_ms: int = 0
    actions_completed: int = 0
    screenshots_taken: int = 0
    pages_visited: int = 0
    data_scraped: int = 0
    changes_detected: int = 0
    error: str | None = None
    error_stack: str | None = None
    execution_id: str | None = None


@dataclass
class RunCounters:
    """Mutable per-run tallies, folded together across traversal phases."""

    actions_completed: int = 0
    screenshots_taken: int = 0
    pages_visited: int = 0
    data_scraped: int = 0
    changes_detected: int = 0

    def merge(self, other: "RunCounters") -> None:
        """Add *other*'s counts into this instance."""
        self.actions_completed += other.actions_completed
        self.screenshots_taken += other.screenshots_taken
        self.pages_visited += other.pages_visited
        self.data_scraped += other.data_scraped
        self.changes_detected += other.changes_detected


class ChangeResult(BaseModel):
    """Verdict of comparing a page against its latest stored snapshot."""

    page_url: str
    has_changed: bool
    change_percent: float
    current_hash: str
    previous_hash: str | None = None
    content_length: int = 0


class CaptureResult(BaseModel):
    """Metadata for one stored screenshot."""

    screenshot_id: str
    file_path: str
    page_url: str
    page_title: str = ""
    width: int = 0
    height: int = 0
    file_size: int = 0
    kind: str = "full_page"


class ScrapeResult(BaseModel):
    """Outcome of a selector or heuristic scrape."""

    success: bool = True
    item_count: int = 0
    data: dict[str, Any] = Field(default_factory=dict)


class PageInfo(BaseModel):
    """Lightweight summary of a rendered page used by traversal."""

    url: str
    title: str = ""
    depth: int = 0
    links: list[str] = Field(default_factory=list)
    content_length: int = 0
    content_hash: str = ""


class QueueStatus(BaseModel):
    """Traversal queue entry counts per status for one target."""

    pending: int = 0
    processing: int = 0
    completed: int = 0
    failed: int = 0

    @property
    def total(self) -> int:
        return self.pending + self.processing + self.completed + self.failed
