"""Unit tests for SiteWarden settings.

Covers default loading, env var overrides, the dev profile, path
resolution, and section defaults.
"""

from __future__ import annotations

import os


class TestSettings:
    """Core settings loading and override mechanics."""

    def test_default_settings_load(self, monkeypatch):
        """Settings should load without any env overrides."""
        monkeypatch.delenv("SITEWARDEN_ENV", raising=False)
        from sitewarden.settings import get_settings

        s = get_settings()
        assert s.env == "local"
        assert s.api.port == 8200
        assert s.scheduler.tick_seconds == 30

    def test_get_settings_is_cached(self):
        from sitewarden.settings import get_settings

        assert get_settings() is get_settings()

    def test_env_override(self, monkeypatch):
        """SITEWARDEN_SCHEDULER__TICK_SECONDS should override the TOML default."""
        monkeypatch.setenv("SITEWARDEN_SCHEDULER__TICK_SECONDS", "5")
        from sitewarden.settings.config import Settings

        assert Settings().scheduler.tick_seconds == 5

    def test_multiple_section_overrides(self, monkeypatch):
        monkeypatch.setenv("SITEWARDEN_API__PORT", "9999")
        monkeypatch.setenv("SITEWARDEN_BROWSER__HEADLESS", "false")
        monkeypatch.setenv("SITEWARDEN_RESILIENCE__MAX_RETRIES", "7")
        from sitewarden.settings.config import Settings

        s = Settings()
        assert s.api.port == 9999
        assert s.browser.headless is False
        assert s.resilience.max_retries == 7

    def test_paths_resolved_relative_to_project_root(self):
        from sitewarden.settings.config import Settings

        s = Settings()
        assert os.path.isabs(s.storage.sqlite_path)
        assert os.path.isabs(s.capture.screenshot_dir)
        assert s.storage.sqlite_path.startswith(str(s.project_root))

    def test_absolute_paths_left_alone(self, monkeypatch, tmp_path):
        db = tmp_path / "x.db"
        monkeypatch.setenv("SITEWARDEN_STORAGE__SQLITE_PATH", str(db))
        from sitewarden.settings.config import Settings

        assert Settings().storage.sqlite_path == str(db)

    def test_dev_profile(self, monkeypatch):
        """SITEWARDEN_ENV=dev should layer settings.dev.toml over the defaults."""
        monkeypatch.setenv("SITEWARDEN_ENV", "dev")
        from sitewarden.settings.config import Settings

        s = Settings()
        assert s.env == "dev"
        assert s.scheduler.tick_seconds == 60
        assert s.browser.extra_args == ["--disable-extensions"]
        # Untouched keys keep their defaults
        assert s.scheduler.overdue_threshold_seconds == 300

    def test_unknown_env_falls_back_to_defaults(self, monkeypatch):
        monkeypatch.setenv("SITEWARDEN_ENV", "nonexistent")
        from sitewarden.settings.config import Settings

        s = Settings()
        assert s.env == "nonexistent"
        assert s.scheduler.tick_seconds == 30


class TestSectionDefaults:
    def test_resilience_defaults(self):
        from sitewarden.settings.config import ResilienceSettings

        r = ResilienceSettings()
        assert (r.max_retries, r.initial_delay_ms, r.max_delay_ms, r.backoff_multiplier) == (3, 1000, 10_000, 2.0)
        assert (r.circuit_failure_threshold, r.circuit_reset_ms) == (5, 60_000)

    def test_automation_defaults(self):
        from sitewarden.settings.config import AutomationSettings

        a = AutomationSettings()
        assert a.traversal_links_per_run == 5
        assert a.pagination_max_iterations == 5
        assert a.strict_steps is False


class TestLayering:
    def test_deep_merge_recurses_into_tables(self):
        from sitewarden.settings.config import deep_merge

        base = {"browser": {"headless": True, "viewport_width": 1920}, "debug": False}
        merged = deep_merge(base, {"browser": {"headless": False}, "debug": True})
        assert merged == {"browser": {"headless": False, "viewport_width": 1920}, "debug": True}
        assert base["browser"]["headless"] is True

    def test_load_layers_order(self, tmp_path):
        from sitewarden.settings.config import load_layers

        (tmp_path / "settings.default.toml").write_text("[api]\nport = 1\nhost = 'a'\n")
        (tmp_path / "settings.qa.toml").write_text("[api]\nport = 2\n")
        (tmp_path / "settings.local.toml").write_text("[api]\nhost = 'b'\n")

        assert load_layers("qa", tmp_path) == {"api": {"port": 2, "host": "b"}}
        assert load_layers("other", tmp_path) == {"api": {"port": 1, "host": "b"}}

    def test_missing_files_give_empty_layers(self, tmp_path):
        from sitewarden.settings.config import load_layers

        assert load_layers("local", tmp_path) == {}
