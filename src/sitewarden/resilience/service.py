"""The failure-absorbing probes every run relies on.

Most operations here deliberately convert failure into a non-throwing
signal because they are expected to fail sometimes:

* :meth:`ResilienceService.safe_navigate` returns ``False`` instead of raising.
* :meth:`ResilienceService.find_with_fallbacks` returns ``None``.
* :meth:`ResilienceService.handle_popups` skips selectors that error.
* :meth:`ResilienceService.wait_for_page_stable` gives up silently at its timeout.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import TypeVar

from playwright.async_api import Error as PlaywrightError, Page

from sitewarden.browser.navigation import resilient_goto
from sitewarden.exceptions import NavigationError
from sitewarden.resilience.circuit_breaker import CircuitBreaker
from sitewarden.resilience.retry import RetryPolicy, with_retry
from sitewarden.settings.config import ResilienceSettings

logger = logging.getLogger(__name__)

T = TypeVar("T")

POPUP_SELECTORS: tuple[str, ...] = (
    '[class*="modal"] button[class*="close"]',
    '[class*="popup"] button[class*="close"]',
    '[class*="overlay"] button[class*="close"]',
    '[aria-label="Close"]',
    ".cookie-banner button",
    "#cookie-consent button",
    '[class*="cookie"] button[class*="accept"]',
    '[class*="cookie"] button[class*="dismiss"]',
)

_SCROLL_HEIGHT_JS = "() => document.body ? document.body.scrollHeight : 0"
_SCRIPTED_CLICK_JS = "(sel) => { const el = document.querySelector(sel); if (el) el.click(); }"


@dataclass(frozen=True)
class SelectorSet:
    """A primary CSS selector plus ordered fallbacks."""

    primary: str
    fallbacks: tuple[str, ...] = field(default_factory=tuple)

    def all(self) -> list[str]:
        return [self.primary, *self.fallbacks]


class ResilienceService:
    """Retry, navigation, selector fallback, stabilization, popups, circuit breaking.

    Args:
        settings: Tuning values; defaults to ``ResilienceSettings()``.
        breaker: Shared circuit breaker; one is built from *settings* if omitted.
    """

    def __init__(
        self,
        settings: ResilienceSettings | None = None,
        *,
        breaker: CircuitBreaker | None = None,
    ) -> None:
        self.settings = settings or ResilienceSettings()
        self.breaker = breaker or CircuitBreaker(
            threshold=self.settings.circuit_failure_threshold,
            reset_seconds=self.settings.circuit_reset_ms / 1000,
        )
        self.default_policy = RetryPolicy(
            max_retries=self.settings.max_retries,
            initial_delay_ms=self.settings.initial_delay_ms,
            max_delay_ms=self.settings.max_delay_ms,
            multiplier=self.settings.backoff_multiplier,
        )

    # ------------------------------------------------------------------
    # Retry / navigation
    # ------------------------------------------------------------------

    async def with_retry(
        self,
        operation: Callable[[], Awaitable[T]],
        name: str = "operation",
        *,
        max_retries: int | None = None,
        should_retry: Callable[[Exception], bool] | None = None,
    ) -> T:
        """Run *operation* under the service's backoff policy."""
        policy = self.default_policy
        if max_retries is not None:
            policy = RetryPolicy(
                max_retries=max_retries,
                initial_delay_ms=policy.initial_delay_ms,
                max_delay_ms=policy.max_delay_ms,
                multiplier=policy.multiplier,
            )
        return await with_retry(operation, name=name, policy=policy, should_retry=should_retry)

    async def safe_navigate(self, page: Page, url: str, *, timeout_ms: int | None = None) -> bool:
        """Navigate with retries; return ``False`` instead of raising on final failure.

        DNS, connection, and certificate errors are not retried.
        """
        timeout = timeout_ms or self.settings.navigation_timeout_ms

        async def _go() -> bool:
            await resilient_goto(page, url, timeout_ms=timeout)
            return True

        try:
            return await self.with_retry(
                _go,
                f"navigate to {url}",
                max_retries=self.settings.navigation_retries,
                should_retry=lambda exc: not isinstance(exc, NavigationError),
            )
        except Exception as exc:
            logger.warning("Navigation to %s failed: %s", url, exc)
            return False

    # ------------------------------------------------------------------
    # Selectors
    # ------------------------------------------------------------------

    async def find_with_fallbacks(self, page: Page, selectors: SelectorSet, *, timeout_ms: int = 5000) -> str | None:
        """Return the first selector that resolves within its own timeout, else ``None``."""
        for selector in selectors.all():
            try:
                handle = await page.wait_for_selector(selector, timeout=timeout_ms)
            except PlaywrightError:
                continue
            if handle is not None:
                logger.debug("Found element with selector: %s", selector)
                return selector
        logger.warning("No selector resolved from %s", selectors.all())
        return None

    async def smart_click(self, page: Page, selectors: SelectorSet, *, timeout_ms: int = 5000) -> bool:
        """Click via fallback resolution, falling back to an in-page scripted click."""
        found = await self.find_with_fallbacks(page, selectors, timeout_ms=timeout_ms)
        if found is None:
            return False
        try:
            await page.click(found, timeout=timeout_ms)
            return True
        except PlaywrightError:
            logger.debug("Native click failed for %s, trying scripted click", found)
        try:
            await page.evaluate(_SCRIPTED_CLICK_JS, found)
            return True
        except PlaywrightError as exc:
            logger.error("Click failed for %s: %s", found, exc)
            return False

    # ------------------------------------------------------------------
    # Page probes
    # ------------------------------------------------------------------

    async def wait_for_page_stable(self, page: Page, *, timeout_ms: int | None = None) -> bool:
        """Poll document height until it stops changing.

        Returns:
            True if the page settled, False if the timeout elapsed first.
        """
        timeout = (timeout_ms or self.settings.stable_timeout_ms) / 1000
        poll = self.settings.stable_poll_ms / 1000
        deadline = time.monotonic() + timeout
        last_height: int | None = None
        stable_count = 0
        while time.monotonic() < deadline:
            try:
                height = await page.evaluate(_SCROLL_HEIGHT_JS)
            except PlaywrightError as exc:
                logger.debug("Height probe failed: %s", exc)
                height = None
            if height is not None and height == last_height:
                stable_count += 1
                if stable_count >= self.settings.stable_checks:
                    return True
            else:
                stable_count = 0
            last_height = height
            await asyncio.sleep(poll)
        logger.debug("Page did not stabilize within %.1fs", timeout)
        return False

    async def handle_popups(self, page: Page) -> int:
        """Click any visible modal-close or cookie-banner control.

        Returns:
            The number of controls clicked.
        """
        dismissed = 0
        for selector in POPUP_SELECTORS:
            try:
                handle = await page.query_selector(selector)
                if handle is None or not await handle.is_visible():
                    continue
                await handle.click()
                dismissed += 1
                logger.debug("Closed popup with selector: %s", selector)
                await asyncio.sleep(self.settings.popup_pause_ms / 1000)
            except PlaywrightError as exc:
                logger.debug("Popup selector %s skipped: %s", selector, exc)
        return dismissed

    # ------------------------------------------------------------------
    # Circuit breaker
    # ------------------------------------------------------------------

    def record_success(self, key: str) -> None:
        self.breaker.record_success(key)

    def record_failure(self, key: str) -> None:
        self.breaker.record_failure(key)

    def is_circuit_open(self, key: str) -> bool:
        return self.breaker.is_open(key)
