"""Exponential-backoff retry for async operations.

Usage::

    policy = RetryPolicy(max_retries=2)
    await with_retry(lambda: page.goto(url), name=f"navigate {url}", policy=policy)
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff parameters; delays are in milliseconds."""

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    multiplier: float = 2.0

    def delay_for(self, attempt: int) -> float:
        """Return the delay in seconds after failed *attempt* (1-based)."""
        delay_ms = min(self.initial_delay_ms * (self.multiplier ** (attempt - 1)), self.max_delay_ms)
        return delay_ms / 1000


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    *,
    name: str = "operation",
    policy: RetryPolicy | None = None,
    should_retry: Callable[[Exception], bool] | None = None,
) -> T:
    """Invoke *operation*, retrying with exponential backoff on failure.

    Performs at most ``policy.max_retries + 1`` attempts and re-raises the
    final error once they are exhausted.

    Args:
        operation: Zero-argument coroutine factory.
        name: Label used in retry warnings.
        policy: Backoff parameters (defaults to :class:`RetryPolicy`).
        should_retry: Optional predicate; errors it rejects are raised at once.

    Returns:
        The operation's result.
    """
    policy = policy or RetryPolicy()
    total = policy.max_retries + 1
    for attempt in range(1, total + 1):
        try:
            return await operation()
        except Exception as exc:
            if attempt >= total or (should_retry is not None and not should_retry(exc)):
                raise
            delay = policy.delay_for(attempt)
            logger.warning(
                "%s failed (attempt %d/%d): %s, retrying in %.1fs",
                name,
                attempt,
                total,
                exc,
                delay,
            )
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
