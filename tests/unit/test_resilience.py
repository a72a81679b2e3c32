"""Unit tests for retry, circuit breaking, and the resilience page probes."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest
from playwright.async_api import Error as PlaywrightError, TimeoutError as PlaywrightTimeout

from sitewarden.resilience.circuit_breaker import CircuitBreaker
from sitewarden.resilience.retry import RetryPolicy, with_retry
from sitewarden.resilience.service import POPUP_SELECTORS, ResilienceService, SelectorSet
from fakes import FakeElement, FakePage


class _Clock:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now


# ---------------------------------------------------------------------------
# with_retry
# ---------------------------------------------------------------------------


class TestRetryPolicy:
    def test_delay_grows_exponentially_and_caps(self):
        policy = RetryPolicy(initial_delay_ms=1000, max_delay_ms=5000, multiplier=2.0)
        assert policy.delay_for(1) == 1.0
        assert policy.delay_for(2) == 2.0
        assert policy.delay_for(3) == 4.0
        assert policy.delay_for(4) == 5.0


class TestWithRetry:
    _FAST = RetryPolicy(max_retries=3, initial_delay_ms=1, max_delay_ms=1)

    @pytest.mark.anyio
    async def test_returns_first_success(self):
        op = AsyncMock(return_value="ok")
        assert await with_retry(op, policy=self._FAST) == "ok"
        assert op.await_count == 1

    @pytest.mark.anyio
    async def test_recovers_after_transient_failures(self):
        op = AsyncMock(side_effect=[RuntimeError("a"), RuntimeError("b"), "done"])
        assert await with_retry(op, policy=self._FAST) == "done"
        assert op.await_count == 3

    @pytest.mark.anyio
    async def test_makes_max_retries_plus_one_attempts(self):
        op = AsyncMock(side_effect=RuntimeError("always"))
        with pytest.raises(RuntimeError, match="always"):
            await with_retry(op, policy=self._FAST)
        assert op.await_count == 4

    @pytest.mark.anyio
    async def test_zero_retries_is_single_attempt(self):
        op = AsyncMock(side_effect=ValueError("x"))
        with pytest.raises(ValueError):
            await with_retry(op, policy=RetryPolicy(max_retries=0))
        assert op.await_count == 1

    @pytest.mark.anyio
    async def test_should_retry_short_circuits(self):
        op = AsyncMock(side_effect=KeyError("fatal"))
        with pytest.raises(KeyError):
            await with_retry(op, policy=self._FAST, should_retry=lambda exc: not isinstance(exc, KeyError))
        assert op.await_count == 1


# ---------------------------------------------------------------------------
# CircuitBreaker
# ---------------------------------------------------------------------------


class TestCircuitBreaker:
    def test_opens_at_threshold(self):
        breaker = CircuitBreaker(threshold=5, reset_seconds=60, clock=_Clock())
        for _ in range(4):
            breaker.record_failure("t1")
        assert breaker.is_open("t1") is False
        breaker.record_failure("t1")
        assert breaker.is_open("t1") is True
        assert breaker.is_open("t2") is False

    def test_success_closes_and_decrements(self):
        breaker = CircuitBreaker(threshold=2, clock=_Clock())
        breaker.record_failure("t1")
        breaker.record_failure("t1")
        assert breaker.is_open("t1")
        breaker.record_success("t1")
        assert breaker.is_open("t1") is False
        assert breaker.state("t1").failures == 1

    def test_success_floor_is_zero(self):
        breaker = CircuitBreaker(clock=_Clock())
        breaker.record_failure("t1")
        breaker.record_success("t1")
        breaker.record_success("t1")
        assert breaker.state("t1").failures == 0

    def test_auto_reset_after_quiet_period(self):
        clock = _Clock()
        breaker = CircuitBreaker(threshold=1, reset_seconds=60, clock=clock)
        breaker.record_failure("t1")
        clock.now += 60
        assert breaker.is_open("t1") is True
        clock.now += 1
        assert breaker.is_open("t1") is False
        assert breaker.state("t1").failures == 0

    def test_unknown_key_state_is_closed(self):
        state = CircuitBreaker().state("never-seen")
        assert state.failures == 0
        assert state.open is False

    def test_reset(self):
        breaker = CircuitBreaker(threshold=1, clock=_Clock())
        breaker.record_failure("a")
        breaker.record_failure("b")
        breaker.reset("a")
        assert breaker.is_open("a") is False
        assert breaker.is_open("b") is True
        breaker.reset()
        assert breaker.is_open("b") is False


# ---------------------------------------------------------------------------
# ResilienceService
# ---------------------------------------------------------------------------


class TestSafeNavigate:
    @pytest.mark.anyio
    async def test_success(self, fast_resilience_settings):
        page = FakePage()
        svc = ResilienceService(fast_resilience_settings)
        assert await svc.safe_navigate(page, "https://example.com/") is True
        assert page.url == "https://example.com/"

    @pytest.mark.anyio
    async def test_non_retryable_failure_returns_false_once(self, fast_resilience_settings):
        page = FakePage()
        page.goto_errors["https://nowhere.invalid/"] = PlaywrightError("net::ERR_NAME_NOT_RESOLVED")
        svc = ResilienceService(fast_resilience_settings)
        assert await svc.safe_navigate(page, "https://nowhere.invalid/") is False
        assert page.goto.await_count == 1

    @pytest.mark.anyio
    async def test_generic_failure_is_retried(self, fast_resilience_settings):
        page = FakePage()
        page.goto_errors["https://flaky.example/"] = PlaywrightError("Target closed")
        svc = ResilienceService(fast_resilience_settings)
        assert await svc.safe_navigate(page, "https://flaky.example/") is False
        assert page.goto.await_count == fast_resilience_settings.navigation_retries + 1

    @pytest.mark.anyio
    async def test_timeouts_fall_back_then_succeed(self, fast_resilience_settings):
        page = FakePage()
        page.goto = AsyncMock(side_effect=[PlaywrightTimeout("slow"), None])
        svc = ResilienceService(fast_resilience_settings)
        assert await svc.safe_navigate(page, "https://example.com/") is True
        strategies = [c.kwargs["wait_until"] for c in page.goto.await_args_list]
        assert strategies == ["networkidle", "load"]


class TestSelectors:
    @pytest.mark.anyio
    async def test_find_with_fallbacks_uses_first_resolving(self):
        page = FakePage()
        page.wait_for_selector = AsyncMock(side_effect=[PlaywrightTimeout("nope"), FakeElement()])
        svc = ResilienceService()
        found = await svc.find_with_fallbacks(page, SelectorSet("#a", ("#b", "#c")), timeout_ms=1)
        assert found == "#b"

    @pytest.mark.anyio
    async def test_find_with_fallbacks_none(self):
        page = FakePage()
        page.wait_for_selector = AsyncMock(side_effect=PlaywrightTimeout("nope"))
        svc = ResilienceService()
        assert await svc.find_with_fallbacks(page, SelectorSet("#a", ("#b",)), timeout_ms=1) is None

    @pytest.mark.anyio
    async def test_smart_click_falls_back_to_scripted_click(self):
        page = FakePage()
        page.click = AsyncMock(side_effect=PlaywrightError("intercepted"))
        svc = ResilienceService()
        assert await svc.smart_click(page, SelectorSet("#go"), timeout_ms=1) is True
        assert any("el.click()" in s for s in page.scripts)

    @pytest.mark.anyio
    async def test_smart_click_unresolved(self):
        page = FakePage()
        page.wait_for_selector = AsyncMock(return_value=None)
        assert await ResilienceService().smart_click(page, SelectorSet("#go"), timeout_ms=1) is False


class TestPageProbes:
    @pytest.mark.anyio
    async def test_stable_page(self, fast_resilience_settings):
        page = FakePage(height=1200)
        assert await ResilienceService(fast_resilience_settings).wait_for_page_stable(page) is True

    @pytest.mark.anyio
    async def test_growing_page_times_out(self, fast_resilience_settings):
        page = FakePage()
        heights = iter(range(10_000))
        page.evaluate = AsyncMock(side_effect=lambda *_: next(heights))
        svc = ResilienceService(fast_resilience_settings)
        assert await svc.wait_for_page_stable(page, timeout_ms=30) is False

    @pytest.mark.anyio
    async def test_handle_popups_clicks_visible_only(self, fast_resilience_settings):
        page = FakePage()
        visible = FakeElement(visible=True)
        hidden = FakeElement(visible=False)
        page.elements[POPUP_SELECTORS[0]] = visible
        page.elements[POPUP_SELECTORS[1]] = hidden
        assert await ResilienceService(fast_resilience_settings).handle_popups(page) == 1
        visible.click.assert_awaited_once()
        hidden.click.assert_not_awaited()

    @pytest.mark.anyio
    async def test_handle_popups_skips_errors(self, fast_resilience_settings):
        page = FakePage()
        page.query_selector = AsyncMock(side_effect=PlaywrightError("detached"))
        assert await ResilienceService(fast_resilience_settings).handle_popups(page) == 0


class TestBreakerDelegation:
    def test_service_uses_configured_threshold(self, fast_resilience_settings):
        svc = ResilienceService(fast_resilience_settings)
        for _ in range(fast_resilience_settings.circuit_failure_threshold):
            svc.record_failure("t1")
        assert svc.is_circuit_open("t1") is True
        svc.record_success("t1")
        assert svc.is_circuit_open("t1") is False
