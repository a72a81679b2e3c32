"""Run orchestration and scheduling."""

from sitewarden.engine.orchestrator import Orchestrator
from sitewarden.engine.scheduler import Scheduler, should_run

__all__ = ["Orchestrator", "Scheduler", "should_run"]
