"""Domain models: targets and run results."""

from __future__ import annotations

from sitewarden.models.results import (
    CaptureResult,
    ChangeResult,
    ExecutionResult,
    ExecutionStatus,
    PageInfo,
    QueueStatus,
    ScrapeResult,
)
from sitewarden.models.target import (
    ActiveHours,
    BehaviorConfig,
    CaptureConfig,
    ChangeDetectionConfig,
    ExtractMode,
    NetworkIdentity,
    ScrapeConfig,
    ScrapeSelector,
    Target,
    TraversalConfig,
)

__all__ = [
    "ActiveHours",
    "BehaviorConfig",
    "CaptureConfig",
    "CaptureResult",
    "ChangeDetectionConfig",
    "ChangeResult",
    "ExecutionResult",
    "ExecutionStatus",
    "ExtractMode",
    "NetworkIdentity",
    "PageInfo",
    "QueueStatus",
    "ScrapeConfig",
    "ScrapeResult",
    "ScrapeSelector",
    "Target",
    "TraversalConfig",
]
