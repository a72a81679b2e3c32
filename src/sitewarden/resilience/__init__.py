"""Retry, circuit breaking, and failure-absorbing page probes."""

from __future__ import annotations

from sitewarden.resilience.circuit_breaker import CircuitBreaker, CircuitState
from sitewarden.resilience.retry import RetryPolicy, with_retry
from sitewarden.resilience.service import ResilienceService, SelectorSet

__all__ = [
    "CircuitBreaker",
    "CircuitState",
    "ResilienceService",
    "RetryPolicy",
    "SelectorSet",
    "with_retry",
]
