"""Human-like pointer, keyboard, and scroll input.

Clicks travel along an eased curve from a randomized origin with small
jitter; typing has randomized inter-key delays plus a rare longer pause;
scrolls are split into several jittered sub-steps rather than one jump.

All sleeps are multiplied by ``HumanConfig.pace`` so tests can run with
``pace=0``.
"""

from __future__ import annotations

import asyncio
import logging
import random
from dataclasses import dataclass

from playwright.async_api import ElementHandle, Page

logger = logging.getLogger(__name__)

_PAGE_METRICS_JS = "() => ({height: document.body.scrollHeight, viewport: window.innerHeight})"


@dataclass
class HumanConfig:
    """Timing and jitter ranges for simulated input (delays in ms)."""

    path_steps: tuple[int, int] = (10, 19)
    path_jitter_px: float = 2.5
    step_delay_ms: tuple[int, int] = (10, 30)
    click_jitter_px: float = 5.0
    post_click_ms: tuple[int, int] = (100, 300)
    key_delay_ms: tuple[int, int] = (50, 150)
    pause_probability: float = 0.02
    pause_ms: tuple[int, int] = (200, 500)
    scroll_steps: tuple[int, int] = (5, 9)
    scroll_jitter_px: float = 5.0
    scroll_delay_ms: tuple[int, int] = (50, 150)
    hover_ms: tuple[int, int] = (200, 500)
    drag_pause_ms: tuple[int, int] = (100, 200)
    pace: float = 1.0


def smoothstep(t: float) -> float:
    """Ease-in/ease-out curve mapping [0, 1] onto [0, 1]."""
    return t * t * (3 - 2 * t)


def eased_path(
    start: tuple[float, float],
    end: tuple[float, float],
    steps: int,
    *,
    jitter: float = 0.0,
    rng: random.Random | None = None,
) -> list[tuple[float, float]]:
    """Return *steps* points from *start* to *end* along a smoothstep curve.

    Intermediate points get up to ``±jitter`` pixels of noise; the final
    point is exactly *end*.
    """
    rng = rng or random.Random()
    points: list[tuple[float, float]] = []
    for i in range(1, steps + 1):
        t = smoothstep(i / steps)
        x = start[0] + (end[0] - start[0]) * t
        y = start[1] + (end[1] - start[1]) * t
        if i < steps and jitter:
            x += rng.uniform(-jitter, jitter)
            y += rng.uniform(-jitter, jitter)
        points.append((x, y))
    return points


def jittered_delay_ms(base_ms: float, variation_pct: float, rng: random.Random | None = None) -> float:
    """Return ``base ± up to variation%`` (never negative)."""
    rng = rng or random.Random()
    spread = base_ms * variation_pct / 100
    return max(0.0, base_ms + rng.uniform(-spread, spread))


class HumanInput:
    """Simulated user input bound to no particular page.

    Args:
        config: Timing/jitter configuration.
        rng: Random source (seed it for deterministic tests).
    """

    def __init__(self, config: HumanConfig | None = None, *, rng: random.Random | None = None) -> None:
        self.config = config or HumanConfig()
        self._rng = rng or random.Random()

    async def _pause(self, bounds: tuple[int, int]) -> None:
        if self.config.pace <= 0:
            return
        await asyncio.sleep(self._rng.uniform(*bounds) * self.config.pace / 1000)

    # ------------------------------------------------------------------
    # Pointer
    # ------------------------------------------------------------------

    async def move_mouse(self, page: Page, x: float, y: float) -> None:
        """Move the pointer to (*x*, *y*) from a random origin along an eased path."""
        cfg = self.config
        origin = (self._rng.uniform(0, 100), self._rng.uniform(0, 100))
        steps = self._rng.randint(*cfg.path_steps)
        for px, py in eased_path(origin, (x, y), steps, jitter=cfg.path_jitter_px, rng=self._rng):
            await page.mouse.move(px, py)
            await self._pause(cfg.step_delay_ms)

    async def _element_center(self, handle: ElementHandle, jitter: float) -> tuple[float, float] | None:
        box = await handle.bounding_box()
        if box is None:
            await handle.scroll_into_view_if_needed()
            box = await handle.bounding_box()
        if box is None:
            return None
        x = box["x"] + box["width"] / 2 + self._rng.uniform(-jitter, jitter)
        y = box["y"] + box["height"] / 2 + self._rng.uniform(-jitter, jitter)
        return x, y

    async def click(
        self,
        page: Page,
        selector: str,
        *,
        button: str = "left",
        click_count: int = 1,
        timeout_ms: int = 30_000,
    ) -> None:
        """Move to the element's jittered center and click it."""
        handle = await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        point = await self._element_center(handle, self.config.click_jitter_px) if handle else None
        if point is None:
            # No layout box (e.g. zero-size element); let Playwright click it directly.
            await page.click(selector, button=button, click_count=click_count, timeout=timeout_ms)
        else:
            await self.move_mouse(page, *point)
            await page.mouse.click(point[0], point[1], button=button, click_count=click_count)
        await self._pause(self.config.post_click_ms)

    async def hover(self, page: Page, selector: str, *, timeout_ms: int = 30_000) -> None:
        """Move the pointer over the element and linger briefly."""
        handle = await page.wait_for_selector(selector, state="visible", timeout=timeout_ms)
        point = await self._element_center(handle, self.config.path_jitter_px) if handle else None
        if point is None:
            await page.hover(selector, timeout=timeout_ms)
        else:
            await self.move_mouse(page, *point)
        await self._pause(self.config.hover_ms)

    async def drag_and_drop(self, page: Page, source: str, target: str, *, timeout_ms: int = 30_000) -> None:
        """Press on *source*, travel to *target*, and release."""
        src = await page.wait_for_selector(source, state="visible", timeout=timeout_ms)
        dst = await page.wait_for_selector(target, state="visible", timeout=timeout_ms)
        start = await self._element_center(src, 0) if src else None
        end = await self._element_center(dst, 0) if dst else None
        if start is None or end is None:
            await page.drag_and_drop(source, target, timeout=timeout_ms)
            return
        await self.move_mouse(page, *start)
        await page.mouse.down()
        await self._pause(self.config.drag_pause_ms)
        steps = self._rng.randint(*self.config.path_steps)
        for px, py in eased_path(start, end, steps, jitter=self.config.path_jitter_px, rng=self._rng):
            await page.mouse.move(px, py)
            await self._pause(self.config.step_delay_ms)
        await page.mouse.up()
        await self._pause(self.config.drag_pause_ms)

    # ------------------------------------------------------------------
    # Keyboard
    # ------------------------------------------------------------------

    async def type_text(self, page: Page, text: str) -> None:
        """Type *text* into the focused element one character at a time."""
        cfg = self.config
        for char in text:
            await page.keyboard.type(char)
            await self._pause(cfg.key_delay_ms)
            if self._rng.random() < cfg.pause_probability:
                await self._pause(cfg.pause_ms)

    # ------------------------------------------------------------------
    # Scrolling
    # ------------------------------------------------------------------

    async def scroll_by(self, page: Page, dx: float, dy: float) -> None:
        """Scroll by (*dx*, *dy*) in several jittered sub-steps."""
        cfg = self.config
        steps = self._rng.randint(*cfg.scroll_steps)
        for _ in range(steps):
            jx = self._rng.uniform(-cfg.scroll_jitter_px, cfg.scroll_jitter_px) if dx else 0.0
            jy = self._rng.uniform(-cfg.scroll_jitter_px, cfg.scroll_jitter_px) if dy else 0.0
            await page.mouse.wheel(dx / steps + jx, dy / steps + jy)
            await self._pause(cfg.scroll_delay_ms)

    async def scroll_to_bottom(self, page: Page) -> None:
        metrics = await page.evaluate(_PAGE_METRICS_JS)
        distance = max(0, metrics["height"] - metrics["viewport"])
        await self.scroll_by(page, 0, distance)

    async def scroll_to_top(self, page: Page) -> None:
        offset = await page.evaluate("() => window.scrollY")
        if offset:
            await self.scroll_by(page, 0, -offset)
