"""The target model: one automation job the scheduler drives on an interval.

A ``Target`` bundles the address to visit, the interaction script, and the
per-run tuning for traversal, capture, scraping, and change detection.
Bookkeeping fields (``last_run_at``, ``next_scheduled_at``, counters) are
owned by the store and mutated after every run.
"""

from __future__ import annotations

import re
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import uuid4
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, Field, field_validator

from sitewarden.interactions.models import ScriptStep, parse_steps

_HHMM_RE = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


# ---------------------------------------------------------------------------
# Sub-configs
# ---------------------------------------------------------------------------


class ActiveHours(BaseModel):
    """Daily window (local to the target's timezone) during which runs may start."""

    start: str = Field(..., description="Window start, HH:MM (24h).")
    end: str = Field(..., description="Window end, HH:MM (24h).")

    @field_validator("start", "end")
    @classmethod
    def validate_hhmm(cls, v: str) -> str:
        """Require zero-padded 24h ``HH:MM`` so string comparison orders correctly."""
        if not _HHMM_RE.match(v):
            raise ValueError(f"Expected HH:MM, got {v!r}")
        return v

    def contains(self, hhmm: str) -> bool:
        """Return True if *hhmm* falls inside the inclusive window."""
        return self.start <= hhmm <= self.end


class BehaviorConfig(BaseModel):
    """Pacing between interaction steps."""

    delay_between_actions_ms: int = Field(default=1000, ge=0)
    random_variation_pct: float = Field(default=10.0, ge=0, le=100)


class TraversalConfig(BaseModel):
    """Bounded auto-crawl settings."""

    auto_navigate: bool = True
    max_depth: int = Field(default=3, ge=0)
    max_pages: int = Field(default=50, ge=1)
    follow_external_links: bool = False
    pagination_selector: str | None = None


class CaptureConfig(BaseModel):
    """Automatic screenshot settings."""

    auto_screenshot: bool = True
    max_screenshots: int = Field(default=10, ge=0)


class ExtractMode(str, Enum):
    """How a scrape selector turns a matched element into a value."""

    TEXT = "text"
    HTML = "html"
    ATTRIBUTE = "attribute"
    LINK = "link"


class ScrapeSelector(BaseModel):
    """One named field to extract from the live DOM."""

    name: str = Field(..., min_length=1)
    selector: str = Field(..., min_length=1)
    type: ExtractMode = ExtractMode.TEXT
    attribute: str | None = None
    multiple: bool = False


class ScrapeConfig(BaseModel):
    """Scrape settings; with no selectors the heuristic auto-scrape runs."""

    auto_scrape: bool = False
    selectors: list[ScrapeSelector] = Field(default_factory=list)


class ChangeDetectionConfig(BaseModel):
    """Content-change detection settings."""

    enabled: bool = True
    threshold_pct: float = Field(default=10.0, ge=0)


class NetworkIdentity(BaseModel):
    """Per-target overrides applied to the isolated browser context."""

    user_agent: str | None = None
    headers: dict[str, str] = Field(default_factory=dict)
    cookies: dict[str, str] = Field(default_factory=dict)
    proxy_url: str | None = None


# ---------------------------------------------------------------------------
# Target
# ---------------------------------------------------------------------------


class Target(BaseModel):
    """A configured site plus script the engine automates on a schedule."""

    target_id: str = Field(default_factory=lambda: str(uuid4()))
    url: str = Field(..., pattern=r"^https?://", description="Address the run starts from.")
    label: str = ""
    description: str = ""
    enabled: bool = True

    run_interval_seconds: int = Field(default=1800, ge=1)
    active_hours: ActiveHours | None = None
    timezone: str = "UTC"

    steps: list[ScriptStep] = Field(default_factory=list)
    behavior: BehaviorConfig = Field(default_factory=BehaviorConfig)
    traversal: TraversalConfig = Field(default_factory=TraversalConfig)
    capture: CaptureConfig = Field(default_factory=CaptureConfig)
    scrape: ScrapeConfig = Field(default_factory=ScrapeConfig)
    change_detection: ChangeDetectionConfig = Field(default_factory=ChangeDetectionConfig)
    identity: NetworkIdentity = Field(default_factory=NetworkIdentity)
    javascript_code: str | None = None

    # Scheduling bookkeeping
    last_run_at: datetime | None = None
    next_scheduled_at: datetime | None = None
    last_error_at: datetime | None = None
    success_count: int = 0
    error_count: int = 0
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        """Ensure the timezone is a valid IANA name."""
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"Unknown timezone: {v!r}") from e
        return v

    @field_validator("steps", mode="before")
    @classmethod
    def parse_script(cls, v: Any) -> Any:
        """Type each step; unknown kinds are kept for the executor to judge."""
        if isinstance(v, list):
            return parse_steps(v)
        return v

    @property
    def tz(self) -> ZoneInfo:
        """The target's timezone as a ``ZoneInfo``."""
        return ZoneInfo(self.timezone)
