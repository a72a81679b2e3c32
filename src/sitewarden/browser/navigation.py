"""Page loads that degrade from ``networkidle`` to weaker load states.

Monitored pages often keep a socket or beacon open forever, so waiting for
network idle alone would time out on otherwise healthy sites. Each load is
attempted against a ladder of load states; a timeout steps down one rung.
Errors that mean the host cannot be reached at all end the ladder early as
:class:`NavigationError`.
"""

from __future__ import annotations

import logging
from typing import Awaitable, Callable, Literal

from playwright.async_api import Error as PlaywrightError, Page, Response, TimeoutError as PlaywrightTimeout

from sitewarden.exceptions import NavigationError

logger = logging.getLogger(__name__)

LoadState = Literal["commit", "domcontentloaded", "load", "networkidle"]

LOAD_LADDER: tuple[LoadState, ...] = ("networkidle", "load", "domcontentloaded")

# Chromium net error codes after which another attempt cannot help.
FATAL_NET_ERRORS = frozenset(
    {
        "ERR_NAME_NOT_RESOLVED",
        "ERR_CONNECTION_REFUSED",
        "ERR_CONNECTION_RESET",
        "ERR_CONNECTION_CLOSED",
        "ERR_ADDRESS_UNREACHABLE",
        "ERR_SSL_PROTOCOL_ERROR",
        "ERR_CERT_AUTHORITY_INVALID",
        "ERR_CERT_COMMON_NAME_INVALID",
    }
)


def wait_chain(first: LoadState) -> list[LoadState]:
    """Load states to try, in order, when starting from *first*."""
    if first in LOAD_LADDER:
        return list(LOAD_LADDER[LOAD_LADDER.index(first) :])
    return [first, *LOAD_LADDER]


def fatal_reason(exc: BaseException) -> str | None:
    """Readable cause for a fatal net error, e.g. ``name not resolved``."""
    text = str(exc)
    code = next((c for c in FATAL_NET_ERRORS if c in text), None)
    if code is None:
        return None
    return code.removeprefix("ERR_").replace("_", " ").lower()


async def _with_fallback(
    load: Callable[[LoadState], Awaitable[Response | None]],
    url: str,
    first: LoadState,
) -> Response | None:
    timed_out: PlaywrightTimeout | None = None
    for state in wait_chain(first):
        try:
            return await load(state)
        except PlaywrightTimeout as exc:
            logger.info("Load of %s timed out waiting for %s", url, state)
            timed_out = exc
        except PlaywrightError as exc:
            reason = fatal_reason(exc)
            if reason is None:
                raise
            logger.warning("Cannot reach %s: %s", url, reason)
            raise NavigationError(url, reason) from exc
    assert timed_out is not None
    raise timed_out


async def resilient_goto(
    page: Page,
    url: str,
    *,
    timeout_ms: int = 30_000,
    wait_until: LoadState = "networkidle",
) -> Response | None:
    """Open *url* in *page*, stepping down the load ladder on timeouts.

    Returns the main-frame response, or ``None`` when Playwright reports none
    (same-document navigations). Raises :class:`NavigationError` for fatal
    net errors and re-raises the last ``TimeoutError`` once every load state
    has timed out.
    """

    async def load(state: LoadState) -> Response | None:
        logger.debug("goto %s wait_until=%s timeout=%dms", url, state, timeout_ms)
        return await page.goto(url, wait_until=state, timeout=timeout_ms)

    return await _with_fallback(load, url, wait_until)


async def resilient_reload(
    page: Page,
    *,
    timeout_ms: int = 15_000,
    wait_until: LoadState = "networkidle",
) -> Response | None:
    """Reload the current page; same ladder and errors as :func:`resilient_goto`."""

    async def load(state: LoadState) -> Response | None:
        logger.debug("reload %s wait_until=%s timeout=%dms", page.url, state, timeout_ms)
        return await page.reload(wait_until=state, timeout=timeout_ms)

    return await _with_fallback(load, page.url, wait_until)
