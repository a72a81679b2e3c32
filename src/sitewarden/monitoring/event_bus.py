"""In-process notifications from the scheduler and orchestrator.

Producers call :meth:`EventBus.emit`; every registered sink receives the
event. A sink that raises is logged and skipped so a broken consumer never
fails an execution. The bus also remembers the last ``status_update`` per
target for the system status endpoint.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import IO, Any, Protocol, runtime_checkable

from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class EventType(str, Enum):
    EXECUTION_STARTED = "execution_started"
    EXECUTION_COMPLETED = "execution_completed"
    STATUS_UPDATE = "status_update"
    SCREENSHOT_CAPTURED = "screenshot_captured"
    LOG = "log"

    @classmethod
    def coerce(cls, value: EventType | str) -> EventType:
        """Map a raw name onto a member; unknown names become ``LOG``."""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return cls.LOG


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class Event(BaseModel):
    event_type: EventType
    timestamp: str = Field(default_factory=_utc_now_iso)
    target_id: str = ""
    data: dict[str, Any] = Field(default_factory=dict)

    def to_jsonl(self) -> str:
        """One JSON object, no trailing newline."""
        return self.model_dump_json()


@runtime_checkable
class EventSink(Protocol):
    async def handle_event(self, event: Event) -> None: ...


class LoggingSink:
    """Writes a one-line DEBUG summary of each event."""

    def __init__(self, logger_name: str = "sitewarden.events") -> None:
        self._log = logging.getLogger(logger_name)

    async def handle_event(self, event: Event) -> None:
        if not self._log.isEnabledFor(logging.DEBUG):
            return
        summary = json.dumps(event.data, default=str)
        self._log.debug("[%s] %s: %.200s", event.target_id or "-", event.event_type.value, summary)


class InMemorySink:
    """Keeps every event in order. Used by tests and ad-hoc inspection."""

    def __init__(self) -> None:
        self.events: list[Event] = []

    async def handle_event(self, event: Event) -> None:
        self.events.append(event)

    def of_type(self, event_type: EventType) -> list[Event]:
        return [e for e in self.events if e.event_type is event_type]

    def clear(self) -> None:
        self.events.clear()

    @property
    def count(self) -> int:
        return len(self.events)


class JsonlSink:
    """Appends one JSON line per event to a text stream."""

    def __init__(self, stream: IO[str]) -> None:
        self.stream = stream

    async def handle_event(self, event: Event) -> None:
        print(event.to_jsonl(), file=self.stream, flush=True)


class EventBus:
    def __init__(self) -> None:
        self._sinks: list[EventSink] = []
        self._last_status: dict[str, dict[str, Any]] = {}

    def add_sink(self, sink: EventSink) -> None:
        self._sinks.append(sink)

    def remove_sink(self, sink: EventSink) -> None:
        self._sinks = [registered for registered in self._sinks if registered is not sink]

    @property
    def sink_count(self) -> int:
        return len(self._sinks)

    async def emit(
        self,
        event_type: EventType | str,
        data: dict[str, Any] | None = None,
        *,
        target_id: str = "",
    ) -> None:
        """Deliver an event to every sink, in registration order.

        *event_type* may be a raw string; names outside :class:`EventType`
        are delivered as ``log`` events.
        """
        event = Event(event_type=EventType.coerce(event_type), target_id=target_id, data=data or {})
        if event.event_type is EventType.STATUS_UPDATE and target_id:
            self._last_status[target_id] = event.data

        for sink in list(self._sinks):
            try:
                await sink.handle_event(event)
            except Exception:
                logger.warning("Event sink %s failed on %s", type(sink).__name__, event.event_type.value, exc_info=True)

    def get_snapshot(self, target_id: str | None = None) -> dict[str, Any]:
        """Last ``status_update`` payload for one target, or for all targets keyed by id."""
        if target_id is not None:
            return dict(self._last_status.get(target_id, {}))
        return {tid: dict(payload) for tid, payload in self._last_status.items()}
