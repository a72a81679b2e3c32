"""Per-key circuit breaker gating traversal after repeated run failures.

State is process-local and resets on restart. The breaker only decides
whether traversal may continue; it never blocks a run's initial navigation.

State transitions:
- closed -> open: ``failures >= threshold`` after ``record_failure``
- open -> closed: ``record_success``, or the first ``is_open`` check made
  more than ``reset_seconds`` after the last failure (which also zeroes
  the failure count)
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable
from dataclasses import dataclass

logger = logging.getLogger(__name__)


@dataclass
class CircuitState:
    """Failure tally for one key."""

    failures: int = 0
    last_failure_at: float = 0.0
    open: bool = False


class CircuitBreaker:
    """Consecutive-failure breaker keyed by target id.

    Args:
        threshold: Failures that open the circuit.
        reset_seconds: Quiet period after the last failure before auto-reset.
        clock: Monotonic time source (injectable for tests).
    """

    def __init__(
        self,
        *,
        threshold: int = 5,
        reset_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.threshold = threshold
        self.reset_seconds = reset_seconds
        self._clock = clock
        self._states: dict[str, CircuitState] = {}

    def record_failure(self, key: str) -> None:
        state = self._states.setdefault(key, CircuitState())
        state.failures += 1
        state.last_failure_at = self._clock()
        if state.failures >= self.threshold and not state.open:
            state.open = True
            logger.warning("Circuit breaker opened for %s after %d failures", key, state.failures)

    def record_success(self, key: str) -> None:
        state = self._states.get(key)
        if state is None:
            return
        state.failures = max(0, state.failures - 1)
        state.open = False

    def is_open(self, key: str) -> bool:
        """Return whether *key*'s circuit is open, auto-resetting after the quiet period."""
        state = self._states.get(key)
        if state is None or not state.open:
            return False
        if self._clock() - state.last_failure_at > self.reset_seconds:
            state.open = False
            state.failures = 0
            logger.info("Circuit breaker reset for %s", key)
            return False
        return True

    def state(self, key: str) -> CircuitState:
        """Return a copy of *key*'s state (a fresh closed state if unseen)."""
        state = self._states.get(key)
        if state is None:
            return CircuitState()
        return CircuitState(state.failures, state.last_failure_at, state.open)

    def reset(self, key: str | None = None) -> None:
        """Forget one key's state, or every key when *key* is ``None``."""
        if key is None:
            self._states.clear()
        else:
            self._states.pop(key, None)
