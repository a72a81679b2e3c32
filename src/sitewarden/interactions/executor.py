"""Runs a target's interaction script against a live page.

Steps run strictly in order with a jittered pause between them. The first
failing step aborts the rest of the script by raising
:class:`~sitewarden.exceptions.StepExecutionError`; counters gathered up to
that point remain available on the executor's :class:`RunCounters`.
"""

from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable, Sequence
from typing import Any

from playwright.async_api import Page
from pydantic import BaseModel, ValidationError

from sitewarden.browser.human import HumanInput, jittered_delay_ms
from sitewarden.browser.navigation import resilient_reload
from sitewarden.capture.screenshots import CaptureService
from sitewarden.exceptions import StepExecutionError, UnknownStepTypeError
from sitewarden.interactions.models import (
    STEP_TYPES,
    CheckStep,
    ClickStep,
    DoubleClickStep,
    DragAndDropStep,
    EvaluateJsStep,
    FillStep,
    GoBackStep,
    GoForwardStep,
    HoverStep,
    InteractionStep,
    NavigateStep,
    PressStep,
    ReloadStep,
    RightClickStep,
    ScreenshotStep,
    ScriptStep,
    ScrollStep,
    ScrollToBottomStep,
    ScrollToElementStep,
    ScrollToTopStep,
    SelectOptionStep,
    StepType,
    TypeStep,
    UncheckStep,
    UnknownStep,
    WaitForNavigationStep,
    WaitForSelectorStep,
    WaitForTimeStep,
    normalize_step_payload,
    parse_step,
)
from sitewarden.models.results import RunCounters
from sitewarden.models.target import Target
from sitewarden.resilience.service import ResilienceService

logger = logging.getLogger(__name__)

_Handler = Callable[[Page, Any, int], Awaitable[None]]


class StepExecutor:
    """Execute interaction steps for one target run.

    Args:
        target: The target whose script is running (behavior pacing,
            screenshot cap).
        resilience: Used for resilient navigation.
        capture: Used by ``screenshot`` steps.
        human: Simulated input primitives.
        counters: Run tallies to update; a fresh instance by default.
        default_timeout_ms: Timeout for steps that set none.
        strict: Raise on unknown step kinds instead of skipping them.
        rng: Random source for inter-step jitter.
    """

    def __init__(
        self,
        target: Target,
        *,
        resilience: ResilienceService,
        capture: CaptureService,
        human: HumanInput | None = None,
        counters: RunCounters | None = None,
        default_timeout_ms: int = 30_000,
        strict: bool = False,
        rng: random.Random | None = None,
    ) -> None:
        self.target = target
        self.counters = counters or RunCounters()
        self._resilience = resilience
        self._capture = capture
        self._human = human or HumanInput()
        self._default_timeout_ms = default_timeout_ms
        self._strict = strict
        self._rng = rng or random.Random()
        self._handlers: dict[str, _Handler] = {
            StepType.NAVIGATE.value: self._navigate,
            StepType.CLICK.value: self._click,
            StepType.DOUBLE_CLICK.value: self._double_click,
            StepType.RIGHT_CLICK.value: self._right_click,
            StepType.FILL.value: self._fill,
            StepType.TYPE.value: self._type,
            StepType.PRESS.value: self._press,
            StepType.SELECT_OPTION.value: self._select_option,
            StepType.CHECK.value: self._check,
            StepType.UNCHECK.value: self._uncheck,
            StepType.SCROLL.value: self._scroll,
            StepType.SCROLL_TO_ELEMENT.value: self._scroll_to_element,
            StepType.SCROLL_TO_BOTTOM.value: self._scroll_to_bottom,
            StepType.SCROLL_TO_TOP.value: self._scroll_to_top,
            StepType.WAIT_FOR_SELECTOR.value: self._wait_for_selector,
            StepType.WAIT_FOR_NAVIGATION.value: self._wait_for_navigation,
            StepType.WAIT_FOR_TIME.value: self._wait_for_time,
            StepType.SCREENSHOT.value: self._screenshot,
            StepType.EVALUATE_JS.value: self._evaluate_js,
            StepType.GO_BACK.value: self._go_back,
            StepType.GO_FORWARD.value: self._go_forward,
            StepType.RELOAD.value: self._reload,
            StepType.HOVER.value: self._hover,
            StepType.DRAG_AND_DROP.value: self._drag_and_drop,
        }

    # ------------------------------------------------------------------
    # Script execution
    # ------------------------------------------------------------------

    async def run(self, page: Page, steps: Sequence[ScriptStep | dict[str, Any]] | None = None) -> RunCounters:
        """Run *steps* (the target's script by default) in order.

        Raises:
            StepExecutionError: On the first failing step.
            UnknownStepTypeError: For an unknown kind when running strict.
        """
        script = self.target.steps if steps is None else steps
        behavior = self.target.behavior
        for index, raw in enumerate(script):
            step = self._resolve(index, raw)
            if step is None:
                continue
            await self.execute_step(page, step, index)
            delay = jittered_delay_ms(
                behavior.delay_between_actions_ms, behavior.random_variation_pct, self._rng
            )
            if delay:
                await asyncio.sleep(delay / 1000)
        return self.counters

    async def execute_step(self, page: Page, step: InteractionStep, index: int = 0) -> None:
        """Execute one step and count it as a completed action."""
        step_type = getattr(step, "type", None)
        handler = self._handlers.get(step_type) if isinstance(step_type, str) else None
        if handler is None:
            self._unknown(index, str(step_type))
            return

        timeout = step.timeout_ms or self._default_timeout_ms
        logger.debug("Step %d: %s %s", index + 1, step_type, step.description)
        try:
            await handler(page, step, timeout)
        except StepExecutionError:
            raise
        except Exception as exc:
            raise StepExecutionError(index, step_type, str(exc)) from exc
        self.counters.actions_completed += 1

    def _resolve(self, index: int, raw: Any) -> InteractionStep | None:
        if isinstance(raw, UnknownStep):
            self._unknown(index, raw.type)
            return None
        if isinstance(raw, BaseModel):
            return raw  # type: ignore[return-value]
        if isinstance(raw, dict):
            raw = normalize_step_payload(raw)
        tag = raw.get("type") if isinstance(raw, dict) else None
        if tag not in STEP_TYPES:
            self._unknown(index, str(tag))
            return None
        try:
            return parse_step(raw)
        except ValidationError as exc:
            raise StepExecutionError(index, str(tag), f"invalid parameters: {exc.error_count()} error(s)") from exc

    def _unknown(self, index: int, step_type: str) -> None:
        if self._strict:
            raise UnknownStepTypeError(index, step_type)
        logger.warning("Skipping step %d with unknown type %r", index + 1, step_type)

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _navigate(self, page: Page, step: NavigateStep, timeout: int) -> None:
        if not await self._resilience.safe_navigate(page, step.url, timeout_ms=timeout):
            raise RuntimeError(f"could not navigate to {step.url}")

    async def _click(self, page: Page, step: ClickStep, timeout: int) -> None:
        await self._human.click(page, step.selector, timeout_ms=timeout)

    async def _double_click(self, page: Page, step: DoubleClickStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        await page.dblclick(step.selector, timeout=timeout)

    async def _right_click(self, page: Page, step: RightClickStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        await page.click(step.selector, button="right", timeout=timeout)

    async def _fill(self, page: Page, step: FillStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        # Triple-click selects existing content so typing replaces it.
        await page.click(step.selector, click_count=3, timeout=timeout)
        await self._human.type_text(page, step.value)

    async def _type(self, page: Page, step: TypeStep, timeout: int) -> None:
        if step.selector:
            await page.wait_for_selector(step.selector, timeout=timeout)
            await page.focus(step.selector)
        await self._human.type_text(page, step.value)

    async def _press(self, page: Page, step: PressStep, timeout: int) -> None:
        await page.keyboard.press(step.key)

    async def _select_option(self, page: Page, step: SelectOptionStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        await page.select_option(step.selector, step.value, timeout=timeout)

    async def _check(self, page: Page, step: CheckStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        if not await page.is_checked(step.selector, timeout=timeout):
            await page.click(step.selector, timeout=timeout)

    async def _uncheck(self, page: Page, step: UncheckStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        if await page.is_checked(step.selector, timeout=timeout):
            await page.click(step.selector, timeout=timeout)

    async def _scroll(self, page: Page, step: ScrollStep, timeout: int) -> None:
        await self._human.scroll_by(page, step.x_offset, step.y_offset)

    async def _scroll_to_element(self, page: Page, step: ScrollToElementStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)
        await page.eval_on_selector(step.selector, "(el) => el.scrollIntoView({behavior: 'smooth'})")

    async def _scroll_to_bottom(self, page: Page, step: ScrollToBottomStep, timeout: int) -> None:
        await self._human.scroll_to_bottom(page)

    async def _scroll_to_top(self, page: Page, step: ScrollToTopStep, timeout: int) -> None:
        await self._human.scroll_to_top(page)

    async def _wait_for_selector(self, page: Page, step: WaitForSelectorStep, timeout: int) -> None:
        await page.wait_for_selector(step.selector, timeout=timeout)

    async def _wait_for_navigation(self, page: Page, step: WaitForNavigationStep, timeout: int) -> None:
        # The current document is already loaded; wait for the main frame to move on.
        await page.wait_for_event("framenavigated", lambda frame: frame == page.main_frame, timeout=timeout)
        await page.wait_for_load_state("load", timeout=timeout)

    async def _wait_for_time(self, page: Page, step: WaitForTimeStep, timeout: int) -> None:
        await asyncio.sleep(step.delay_ms / 1000)

    async def _screenshot(self, page: Page, step: ScreenshotStep, timeout: int) -> None:
        result = await self._capture.capture_page(
            page,
            self.target.target_id,
            max_screenshots=self.target.capture.max_screenshots,
            selector=step.selector,
        )
        if result is not None:
            self.counters.screenshots_taken += 1

    async def _evaluate_js(self, page: Page, step: EvaluateJsStep, timeout: int) -> None:
        await page.evaluate(step.code)

    async def _go_back(self, page: Page, step: GoBackStep, timeout: int) -> None:
        await page.go_back(wait_until="networkidle", timeout=timeout)

    async def _go_forward(self, page: Page, step: GoForwardStep, timeout: int) -> None:
        await page.go_forward(wait_until="networkidle", timeout=timeout)

    async def _reload(self, page: Page, step: ReloadStep, timeout: int) -> None:
        await resilient_reload(page, timeout_ms=timeout)

    async def _hover(self, page: Page, step: HoverStep, timeout: int) -> None:
        await self._human.hover(page, step.selector, timeout_ms=timeout)

    async def _drag_and_drop(self, page: Page, step: DragAndDropStep, timeout: int) -> None:
        await self._human.drag_and_drop(page, step.selector, step.target_selector, timeout_ms=timeout)
