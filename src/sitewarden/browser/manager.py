"""Owner of the single shared Chromium process.

``BrowserManager`` lazily launches the browser, probes liveness before
every run, and relaunches after a crash or disconnect. An ``asyncio.Lock``
serializes (re)launch so exactly one happens at a time; once the browser
is live, runs open their own isolated contexts concurrently without
holding the lock.

Usage::

    manager = BrowserManager()
    async with manager.open_page(target) as page:
        await page.goto(target.url)
    await manager.close()
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Any

from playwright.async_api import Browser, Error as PlaywrightError, Page, async_playwright

from sitewarden.browser.profile import build_context_profile, build_launch_options
from sitewarden.exceptions import BrowserInitError
from sitewarden.models.target import Target
from sitewarden.settings.config import BrowserSettings

logger = logging.getLogger(__name__)

Launcher = Callable[[BrowserSettings], Awaitable[tuple[Any, Browser]]]


async def launch_chromium(settings: BrowserSettings) -> tuple[Any, Browser]:
    """Start Playwright and launch Chromium; returns ``(playwright, browser)``."""
    playwright = await async_playwright().start()
    try:
        browser = await playwright.chromium.launch(**build_launch_options(settings))
    except Exception:
        await playwright.stop()
        raise
    return playwright, browser


class BrowserManager:
    """Explicit resource owner for the shared browser.

    Args:
        settings: Browser settings; read from ``get_settings()`` if omitted.
        launcher: Coroutine that starts a browser (injectable for tests).
    """

    def __init__(
        self,
        settings: BrowserSettings | None = None,
        *,
        launcher: Launcher = launch_chromium,
    ) -> None:
        if settings is None:
            from sitewarden.settings import get_settings

            settings = get_settings().browser
        self._settings = settings
        self._launcher = launcher
        self._lock = asyncio.Lock()
        self._playwright: Any = None
        self._browser: Browser | None = None
        self.launch_count = 0

    @property
    def is_running(self) -> bool:
        return self._browser is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def _is_alive(self) -> bool:
        """Cheap liveness probe: connected and able to list its contexts."""
        if self._browser is None:
            return False
        try:
            return self._browser.is_connected() and self._browser.contexts is not None
        except PlaywrightError:
            return False

    async def acquire(self) -> Browser:
        """Return a live browser, (re)launching it if needed.

        Raises:
            BrowserInitError: If launch fails. Fatal to the calling run only.
        """
        if self._is_alive():
            return self._browser  # type: ignore[return-value]

        async with self._lock:
            # Another task may have relaunched while we waited.
            if self._is_alive():
                return self._browser  # type: ignore[return-value]

            if self._browser is not None:
                logger.warning("Browser disconnected, relaunching")
                await self._shutdown()

            try:
                self._playwright, self._browser = await self._launcher(self._settings)
            except Exception as exc:
                logger.error("Failed to launch browser: %s", exc)
                raise BrowserInitError(
                    f"{exc}. Ensure Chromium is installed or set CHROMIUM_PATH."
                ) from exc
            self.launch_count += 1
            logger.info("Browser launched (headless=%s)", self._settings.headless)
            return self._browser

    async def close(self) -> None:
        """Shut down the browser. Safe to call repeatedly."""
        async with self._lock:
            if self._browser is None and self._playwright is None:
                return
            await self._shutdown()
            logger.info("Browser stopped")

    async def _shutdown(self) -> None:
        browser, playwright = self._browser, self._playwright
        self._browser = None
        self._playwright = None
        if browser is not None:
            try:
                await browser.close()
            except PlaywrightError as exc:
                logger.warning("Browser close error (non-fatal): %s", exc)
        if playwright is not None:
            try:
                await playwright.stop()
            except PlaywrightError as exc:
                logger.warning("Playwright stop error (non-fatal): %s", exc)

    # ------------------------------------------------------------------
    # Pages
    # ------------------------------------------------------------------

    @asynccontextmanager
    async def open_page(self, target: Target) -> AsyncIterator[Page]:
        """Yield a page in a fresh context carrying *target*'s identity overrides.

        The context (and with it the page) is closed on exit whatever the outcome.
        """
        browser = await self.acquire()
        profile = build_context_profile(target, self._settings)
        context = await browser.new_context(**profile.context_args)
        try:
            if profile.cookies:
                await context.add_cookies(profile.cookies)
            page = await context.new_page()
            yield page
        finally:
            try:
                await context.close()
            except PlaywrightError as exc:
                logger.warning("Context close error for target %s: %s", target.target_id, exc)
