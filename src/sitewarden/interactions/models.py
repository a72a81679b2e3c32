"""Interaction steps as a closed tagged union keyed on ``type``.

Each step kind carries only the parameters it needs. Tags and parameter
names are snake_case; camelCase payloads (``doubleClick``, ``xOffset``,
``timeout``, ``delay``) are normalised on the way in. A step whose tag is
not a known kind parses to :class:`UnknownStep` so it survives storage and
the executor decides whether to skip it or fail the run.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter, ValidationError

from sitewarden.exceptions import UnknownStepTypeError

logger = logging.getLogger(__name__)


class StepType(str, Enum):
    """Every interaction a target script may perform."""

    NAVIGATE = "navigate"
    CLICK = "click"
    DOUBLE_CLICK = "double_click"
    RIGHT_CLICK = "right_click"
    FILL = "fill"
    TYPE = "type"
    PRESS = "press"
    SELECT_OPTION = "select_option"
    CHECK = "check"
    UNCHECK = "uncheck"
    SCROLL = "scroll"
    SCROLL_TO_ELEMENT = "scroll_to_element"
    SCROLL_TO_BOTTOM = "scroll_to_bottom"
    SCROLL_TO_TOP = "scroll_to_top"
    WAIT_FOR_SELECTOR = "wait_for_selector"
    WAIT_FOR_NAVIGATION = "wait_for_navigation"
    WAIT_FOR_TIME = "wait_for_time"
    SCREENSHOT = "screenshot"
    EVALUATE_JS = "evaluate_js"
    GO_BACK = "go_back"
    GO_FORWARD = "go_forward"
    RELOAD = "reload"
    HOVER = "hover"
    DRAG_AND_DROP = "drag_and_drop"


STEP_TYPES: frozenset[str] = frozenset(t.value for t in StepType)

# camelCase parameter names whose snake_case form also changes unit suffix.
_RENAMED_KEYS = {"timeout": "timeout_ms", "delay": "delay_ms"}
_CAMEL_HUMP = re.compile(r"(?<=[a-z0-9])([A-Z])")


def _snake(name: str) -> str:
    return _CAMEL_HUMP.sub(r"_\1", name).lower()


def normalize_step_payload(raw: dict[str, Any]) -> dict[str, Any]:
    """Snake-case a known step's tag and keys; unknown tags pass through unchanged."""
    tag = raw.get("type")
    if not isinstance(tag, str) or _snake(tag) not in STEP_TYPES:
        return raw
    payload: dict[str, Any] = {}
    for key, value in raw.items():
        name = _RENAMED_KEYS.get(key) or _snake(key)
        payload.setdefault(name, value)
    payload["type"] = _snake(tag)
    return payload


# ---------------------------------------------------------------------------
# Base shapes
# ---------------------------------------------------------------------------


class _Step(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True)

    timeout_ms: int | None = Field(default=None, ge=0, description="Per-step timeout override.")
    description: str = ""


class _SelectorStep(_Step):
    selector: str = Field(..., min_length=1)


class _ValueStep(_SelectorStep):
    value: str = ""


# ---------------------------------------------------------------------------
# Concrete step kinds
# ---------------------------------------------------------------------------


class NavigateStep(_Step):
    type: Literal["navigate"] = "navigate"
    url: str = Field(..., min_length=1)


class ClickStep(_SelectorStep):
    type: Literal["click"] = "click"


class DoubleClickStep(_SelectorStep):
    type: Literal["double_click"] = "double_click"


class RightClickStep(_SelectorStep):
    type: Literal["right_click"] = "right_click"


class FillStep(_ValueStep):
    """Clear the field (triple-click select) then type ``value``."""

    type: Literal["fill"] = "fill"


class TypeStep(_Step):
    """Type ``value`` key by key; into ``selector`` if given, else the focused element."""

    type: Literal["type"] = "type"
    selector: str | None = None
    value: str = ""


class PressStep(_Step):
    type: Literal["press"] = "press"
    key: str = Field(..., min_length=1)


class SelectOptionStep(_ValueStep):
    type: Literal["select_option"] = "select_option"


class CheckStep(_SelectorStep):
    type: Literal["check"] = "check"


class UncheckStep(_SelectorStep):
    type: Literal["uncheck"] = "uncheck"


class ScrollStep(_Step):
    type: Literal["scroll"] = "scroll"
    x_offset: int = 0
    y_offset: int = 0


class ScrollToElementStep(_SelectorStep):
    type: Literal["scroll_to_element"] = "scroll_to_element"


class ScrollToBottomStep(_Step):
    type: Literal["scroll_to_bottom"] = "scroll_to_bottom"


class ScrollToTopStep(_Step):
    type: Literal["scroll_to_top"] = "scroll_to_top"


class WaitForSelectorStep(_SelectorStep):
    type: Literal["wait_for_selector"] = "wait_for_selector"


class WaitForNavigationStep(_Step):
    type: Literal["wait_for_navigation"] = "wait_for_navigation"


class WaitForTimeStep(_Step):
    type: Literal["wait_for_time"] = "wait_for_time"
    delay_ms: int = Field(default=1000, ge=0)


class ScreenshotStep(_Step):
    """Capture the page, or only ``selector`` when given; both count toward the run cap."""

    type: Literal["screenshot"] = "screenshot"
    selector: str | None = None


class EvaluateJsStep(_Step):
    type: Literal["evaluate_js"] = "evaluate_js"
    code: str = Field(..., min_length=1)


class GoBackStep(_Step):
    type: Literal["go_back"] = "go_back"


class GoForwardStep(_Step):
    type: Literal["go_forward"] = "go_forward"


class ReloadStep(_Step):
    type: Literal["reload"] = "reload"


class HoverStep(_SelectorStep):
    type: Literal["hover"] = "hover"


class DragAndDropStep(_SelectorStep):
    type: Literal["drag_and_drop"] = "drag_and_drop"
    target_selector: str = Field(..., min_length=1)


class UnknownStep(BaseModel):
    """A step whose ``type`` is not a known kind, kept verbatim."""

    model_config = ConfigDict(extra="allow", frozen=True)

    type: str = ""


InteractionStep = Annotated[
    Union[
        NavigateStep,
        ClickStep,
        DoubleClickStep,
        RightClickStep,
        FillStep,
        TypeStep,
        PressStep,
        SelectOptionStep,
        CheckStep,
        UncheckStep,
        ScrollStep,
        ScrollToElementStep,
        ScrollToBottomStep,
        ScrollToTopStep,
        WaitForSelectorStep,
        WaitForNavigationStep,
        WaitForTimeStep,
        ScreenshotStep,
        EvaluateJsStep,
        GoBackStep,
        GoForwardStep,
        ReloadStep,
        HoverStep,
        DragAndDropStep,
    ],
    Field(discriminator="type"),
]

_STEP_ADAPTER: TypeAdapter[InteractionStep] = TypeAdapter(InteractionStep)

ScriptStep = Union[InteractionStep, UnknownStep]


def parse_step(raw: Any) -> InteractionStep:
    """Validate a single raw step payload (dict or model) of a known kind."""
    if isinstance(raw, dict):
        raw = normalize_step_payload(raw)
    return _STEP_ADAPTER.validate_python(raw)


def parse_steps(raw_steps: list[Any], *, strict: bool = False) -> list[ScriptStep]:
    """Parse a list of raw step payloads into typed steps, keeping their order.

    A dict with an unknown ``type`` becomes an :class:`UnknownStep`, or raises
    :class:`~sitewarden.exceptions.UnknownStepTypeError` when *strict* is set.
    Entries that are not mappings at all are dropped. Known kinds with invalid
    parameters always raise ``ValidationError``.
    """
    steps: list[ScriptStep] = []
    for index, raw in enumerate(raw_steps):
        if isinstance(raw, BaseModel):
            steps.append(raw)  # type: ignore[arg-type]
            continue
        if not isinstance(raw, dict):
            logger.warning("Dropping step %d: expected an object, got %s", index + 1, type(raw).__name__)
            continue
        payload = normalize_step_payload(raw)
        tag = payload.get("type")
        if tag not in STEP_TYPES:
            if strict:
                raise UnknownStepTypeError(index, str(tag))
            logger.warning("Step %d has unknown type %r", index + 1, tag)
            steps.append(UnknownStep.model_validate({**payload, "type": str(tag or "")}))
            continue
        try:
            steps.append(_STEP_ADAPTER.validate_python(payload))
        except ValidationError:
            logger.warning("Step %d (%s) has invalid parameters", index + 1, tag)
            raise
    return steps
