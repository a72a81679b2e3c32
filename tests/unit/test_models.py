"""Unit tests for SiteWarden domain models."""

from __future__ import annotations

import pytest
from pydantic import ValidationError

from sitewarden.exceptions import UnknownStepTypeError
from sitewarden.interactions.models import (
    ClickStep,
    DoubleClickStep,
    DragAndDropStep,
    NavigateStep,
    ScreenshotStep,
    ScrollStep,
    UnknownStep,
    WaitForNavigationStep,
    WaitForTimeStep,
    parse_step,
    parse_steps,
)
from sitewarden.models.results import QueueStatus, RunCounters
from sitewarden.models.target import ActiveHours, ExtractMode, ScrapeSelector, Target


class TestParseSteps:
    def test_discriminates_on_type(self):
        steps = parse_steps(
            [
                {"type": "navigate", "url": "https://example.com/"},
                {"type": "click", "selector": "#go", "description": "submit"},
                {"type": "wait_for_time"},
            ]
        )
        assert isinstance(steps[0], NavigateStep)
        assert isinstance(steps[1], ClickStep)
        assert steps[1].description == "submit"
        assert isinstance(steps[2], WaitForTimeStep)
        assert steps[2].delay_ms == 1000

    def test_unknown_types_kept_as_placeholders(self):
        steps = parse_steps([{"type": "fly", "speed": 3}, "junk", {"type": "reload"}])
        assert [s.type for s in steps] == ["fly", "reload"]
        assert isinstance(steps[0], UnknownStep)
        assert steps[0].model_dump() == {"type": "fly", "speed": 3}

    def test_unknown_type_strict(self):
        with pytest.raises(UnknownStepTypeError, match=r"Step 2 \(fly\)") as exc_info:
            parse_steps([{"type": "reload"}, {"type": "fly"}], strict=True)
        assert exc_info.value.step_index == 1

    def test_camel_case_tags_and_keys(self):
        steps = parse_steps(
            [
                {"type": "doubleClick", "selector": "#a", "timeout": 500},
                {"type": "waitForNavigation"},
                {"type": "scroll", "xOffset": 10, "yOffset": 200},
                {"type": "waitForTime", "delay": 250},
            ]
        )
        assert isinstance(steps[0], DoubleClickStep)
        assert steps[0].timeout_ms == 500
        assert isinstance(steps[1], WaitForNavigationStep)
        assert isinstance(steps[2], ScrollStep)
        assert (steps[2].x_offset, steps[2].y_offset) == (10, 200)
        assert steps[3].delay_ms == 250

    def test_camel_case_single_step(self):
        step = parse_step({"type": "dragAndDrop", "selector": "#a", "targetSelector": "#b"})
        assert step.target_selector == "#b"

    def test_unknown_camel_case_tag_untouched(self):
        (step,) = parse_steps([{"type": "getElementText", "selector": "#a"}])
        assert isinstance(step, UnknownStep)
        assert step.type == "getElementText"

    def test_screenshot_selector_optional(self):
        assert ScreenshotStep().selector is None
        assert parse_step({"type": "screenshot", "selector": "#chart"}).selector == "#chart"

    def test_invalid_params_raise(self):
        with pytest.raises(ValidationError):
            parse_steps([{"type": "drag_and_drop", "selector": "#a"}])

    def test_models_pass_through(self):
        step = ClickStep(selector="#a")
        assert parse_steps([step]) == [step]

    def test_extra_fields_ignored(self):
        step = parse_step({"type": "press", "key": "Tab", "legacy": True})
        assert step.key == "Tab"

    def test_steps_are_frozen(self):
        step = DragAndDropStep(selector="#a", target_selector="#b")
        with pytest.raises(ValidationError):
            step.selector = "#c"


class TestTarget:
    def test_defaults(self):
        target = Target(url="https://example.com/")
        assert target.enabled is True
        assert target.run_interval_seconds == 1800
        assert target.timezone == "UTC"
        assert target.traversal.max_depth == 3
        assert target.capture.max_screenshots == 10
        assert target.change_detection.threshold_pct == 10.0
        assert target.target_id

    def test_url_scheme_required(self):
        with pytest.raises(ValidationError):
            Target(url="example.com")

    def test_bad_timezone(self):
        with pytest.raises(ValidationError, match="Unknown timezone"):
            Target(url="https://example.com/", timezone="Nowhere/City")

    def test_steps_are_parsed(self):
        target = Target(url="https://example.com/", steps=[{"type": "click", "selector": "#a"}, {"type": "x"}])
        assert isinstance(target.steps[0], ClickStep)
        assert isinstance(target.steps[1], UnknownStep)

    def test_unknown_steps_survive_round_trip(self):
        target = Target(url="https://example.com/", steps=[{"type": "teleport", "to": "moon"}])
        restored = Target.model_validate(target.model_dump(mode="json"))
        assert restored.steps[0].type == "teleport"
        assert restored.steps[0].model_dump() == {"type": "teleport", "to": "moon"}

    def test_json_roundtrip_keeps_step_types(self):
        target = Target(url="https://example.com/", steps=[{"type": "hover", "selector": "#m"}])
        restored = Target.model_validate_json(target.model_dump_json())
        assert restored.steps == target.steps

    def test_tz_property(self):
        assert Target(url="https://example.com/", timezone="Europe/Paris").tz.key == "Europe/Paris"


class TestActiveHours:
    @pytest.mark.parametrize("value", ["9:00", "24:00", "12:60", "noon"])
    def test_rejects_bad_times(self, value):
        with pytest.raises(ValidationError):
            ActiveHours(start=value, end="18:00")

    def test_contains_is_inclusive(self):
        window = ActiveHours(start="09:00", end="17:00")
        assert window.contains("09:00")
        assert window.contains("17:00")
        assert not window.contains("08:59")
        assert not window.contains("17:01")


class TestScrapeSelector:
    def test_defaults(self):
        spec = ScrapeSelector(name="title", selector="h1")
        assert spec.type == ExtractMode.TEXT
        assert spec.multiple is False

    def test_mode_from_string(self):
        assert ScrapeSelector(name="l", selector="a", type="link").type == ExtractMode.LINK


class TestResults:
    def test_run_counters_merge(self):
        total = RunCounters(actions_completed=2, pages_visited=1)
        total.merge(RunCounters(actions_completed=1, screenshots_taken=1, pages_visited=2, data_scraped=3))
        assert total == RunCounters(
            actions_completed=3, screenshots_taken=1, pages_visited=3, data_scraped=3, changes_detected=0
        )

    def test_queue_status_total(self):
        assert QueueStatus(pending=1, processing=2, completed=3, failed=4).total == 10
        assert QueueStatus().total == 0
