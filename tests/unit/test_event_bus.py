"""Unit tests for the event bus module."""

from __future__ import annotations

import json
from io import StringIO

import pytest

from sitewarden.monitoring.event_bus import (
    Event,
    EventBus,
    EventSink,
    EventType,
    InMemorySink,
    JsonlSink,
    LoggingSink,
)


# ===================================================================
# Event model tests
# ===================================================================


class TestEvent:
    """Tests for the Event Pydantic model."""

    def test_create_event(self) -> None:
        event = Event(event_type=EventType.EXECUTION_STARTED, target_id="t1", data={"url": "https://example.com"})
        assert event.event_type == EventType.EXECUTION_STARTED
        assert event.target_id == "t1"
        assert event.timestamp

    def test_event_to_jsonl(self) -> None:
        """to_jsonl produces valid JSON without newlines."""
        line = Event(event_type=EventType.LOG, data={"msg": "test"}).to_jsonl()
        assert "\n" not in line
        parsed = json.loads(line)
        assert parsed["event_type"] == "log"
        assert parsed["data"]["msg"] == "test"


# ===================================================================
# Sinks
# ===================================================================


class TestSinks:
    def test_builtin_sinks_satisfy_protocol(self) -> None:
        assert isinstance(InMemorySink(), EventSink)
        assert isinstance(LoggingSink(), EventSink)
        assert isinstance(JsonlSink(StringIO()), EventSink)

    @pytest.mark.anyio
    async def test_in_memory_filter_and_clear(self) -> None:
        sink = InMemorySink()
        await sink.handle_event(Event(event_type=EventType.LOG))
        await sink.handle_event(Event(event_type=EventType.STATUS_UPDATE))
        assert sink.count == 2
        assert len(sink.of_type(EventType.LOG)) == 1
        sink.clear()
        assert sink.count == 0

    @pytest.mark.anyio
    async def test_jsonl_sink_writes_lines(self) -> None:
        stream = StringIO()
        sink = JsonlSink(stream)
        await sink.handle_event(Event(event_type=EventType.LOG, data={"n": 1}))
        await sink.handle_event(Event(event_type=EventType.LOG, data={"n": 2}))
        lines = stream.getvalue().splitlines()
        assert [json.loads(line)["data"]["n"] for line in lines] == [1, 2]

    @pytest.mark.anyio
    async def test_logging_sink_logs_at_debug(self, caplog) -> None:
        caplog.set_level("DEBUG", logger="sitewarden.events")
        await LoggingSink().handle_event(Event(event_type=EventType.LOG, target_id="t9", data={"k": "v"}))
        assert "[t9] log" in caplog.text


# ===================================================================
# Bus
# ===================================================================


class TestEventBus:
    @pytest.mark.anyio
    async def test_fans_out_to_every_sink(self) -> None:
        bus = EventBus()
        a, b = InMemorySink(), InMemorySink()
        bus.add_sink(a)
        bus.add_sink(b)
        await bus.emit(EventType.EXECUTION_COMPLETED, {"success": True}, target_id="t1")
        assert a.count == b.count == 1
        assert a.events[0].data == {"success": True}

    @pytest.mark.anyio
    async def test_remove_sink(self) -> None:
        bus = EventBus()
        sink = InMemorySink()
        bus.add_sink(sink)
        bus.remove_sink(sink)
        assert bus.sink_count == 0
        await bus.emit(EventType.LOG)
        assert sink.count == 0

    @pytest.mark.anyio
    async def test_string_event_types(self) -> None:
        bus = EventBus()
        sink = InMemorySink()
        bus.add_sink(sink)
        await bus.emit("status_update", target_id="t1")
        await bus.emit("something_else")
        assert [e.event_type for e in sink.events] == [EventType.STATUS_UPDATE, EventType.LOG]

    @pytest.mark.anyio
    async def test_failing_sink_does_not_block_others(self) -> None:
        class Broken:
            async def handle_event(self, event: Event) -> None:
                raise RuntimeError("sink down")

        bus = EventBus()
        good = InMemorySink()
        bus.add_sink(Broken())
        bus.add_sink(good)
        await bus.emit(EventType.LOG, {"msg": "still delivered"})
        assert good.count == 1

    @pytest.mark.anyio
    async def test_status_snapshot(self) -> None:
        bus = EventBus()
        await bus.emit(EventType.STATUS_UPDATE, {"success": False}, target_id="t1")
        await bus.emit(EventType.STATUS_UPDATE, {"success": True}, target_id="t1")
        await bus.emit(EventType.STATUS_UPDATE, {"success": True}, target_id="t2")
        await bus.emit(EventType.LOG, {"ignored": True}, target_id="t3")

        assert bus.get_snapshot("t1") == {"success": True}
        assert set(bus.get_snapshot()) == {"t1", "t2"}
        assert bus.get_snapshot("missing") == {}
