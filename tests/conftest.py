"""Shared fixtures for unit and integration tests."""

from __future__ import annotations

from pathlib import Path
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
from fakes import FakeBrowser, FakePage


# ---------------------------------------------------------------------------
# Async backend
# ---------------------------------------------------------------------------


@pytest.fixture()
def anyio_backend() -> str:
    return "asyncio"


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def _reset_settings_cache():
    """Clear the settings LRU cache between tests."""
    from sitewarden.settings.config import get_settings

    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture()
def fast_resilience_settings():
    """Resilience tuning with near-zero waits so retries and probes finish quickly."""
    from sitewarden.settings.config import ResilienceSettings

    return ResilienceSettings(
        initial_delay_ms=1,
        max_delay_ms=2,
        stable_poll_ms=1,
        stable_checks=2,
        stable_timeout_ms=200,
        popup_pause_ms=0,
    )


# ---------------------------------------------------------------------------
# Stores
# ---------------------------------------------------------------------------


@pytest.fixture()
def store(tmp_path: Path):
    """Create a disposable ``AutomationStore`` backed by a temporary SQLite DB."""
    from sitewarden.store.automation_store import AutomationStore

    return AutomationStore(db_path=tmp_path / "test_sitewarden.db")


@pytest.fixture()
def make_target():
    """Factory for ``Target`` models with test-friendly pacing (no delays)."""
    from sitewarden.models.target import Target

    def _make(url: str = "https://example.com/", **overrides: Any) -> Target:
        fields: dict[str, Any] = {
            "url": url,
            "label": "example",
            "behavior": {"delay_between_actions_ms": 0, "random_variation_pct": 0},
        }
        fields.update(overrides)
        return Target(**fields)

    return _make


# ---------------------------------------------------------------------------
# Fake browser
# ---------------------------------------------------------------------------


@pytest.fixture()
def fake_page() -> FakePage:
    return FakePage()


@pytest.fixture()
def fake_browser(fake_page: FakePage) -> FakeBrowser:
    return FakeBrowser(fake_page)


@pytest.fixture()
def browser_manager(fake_browser: FakeBrowser):
    """``BrowserManager`` whose launcher returns ``fake_browser``."""
    from sitewarden.browser.manager import BrowserManager
    from sitewarden.settings.config import BrowserSettings

    async def _launch(settings):
        return MagicMock(stop=AsyncMock()), fake_browser

    return BrowserManager(BrowserSettings(), launcher=_launch)


@pytest.fixture()
def orchestrator(store, browser_manager, fast_resilience_settings, tmp_path: Path):
    """Orchestrator wired to the fake browser, a real store, and no pacing delays."""
    import random

    from sitewarden.browser.human import HumanConfig, HumanInput
    from sitewarden.capture.scraper import Scraper
    from sitewarden.capture.screenshots import CaptureService
    from sitewarden.detection.change import ChangeDetector
    from sitewarden.engine.orchestrator import Orchestrator
    from sitewarden.monitoring.event_bus import EventBus, InMemorySink
    from sitewarden.resilience.service import ResilienceService
    from sitewarden.traversal.engine import TraversalEngine

    events = EventBus()
    sink = InMemorySink()
    events.add_sink(sink)
    orch = Orchestrator(
        store,
        browser=browser_manager,
        resilience=ResilienceService(fast_resilience_settings),
        capture=CaptureService(store, screenshot_dir=tmp_path / "shots", events=events, section_pause_s=0),
        scraper=Scraper(store),
        detector=ChangeDetector(store),
        traversal=TraversalEngine(store),
        events=events,
        human=HumanInput(HumanConfig(pace=0), rng=random.Random(7)),
        rng=random.Random(7),
    )
    orch.sink = sink  # type: ignore[attr-defined]
    return orch
