"""SiteWarden settings: TOML files layered under ``SITEWARDEN_*`` env vars.

Lookup order, later entries winning::

    config/settings.default.toml
    config/settings.<env>.toml      (env from SITEWARDEN_ENV, default "local")
    config/settings.local.toml      (untracked, per machine)
    SITEWARDEN_<SECTION>__<KEY> environment variables
    explicit keyword arguments / CLI flags

Relative storage paths are anchored at ``project_root``.
"""

from __future__ import annotations

import os
import tomllib
from functools import lru_cache
from pathlib import Path
from typing import Any

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(os.getenv("SITEWARDEN_PROJECT_ROOT") or Path(__file__).resolve().parents[3])
CONFIG_DIR = PROJECT_ROOT / "config"

ENV_VAR = "SITEWARDEN_ENV"


def current_env(explicit: str | None = None) -> str:
    return (explicit or os.getenv(ENV_VAR) or "local").strip()


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Merge *override* into a copy of *base*, recursing into tables."""
    merged = dict(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def load_layers(env_name: str, config_dir: Path = CONFIG_DIR) -> dict[str, Any]:
    """Combined content of the default, per-env and local TOML files that exist."""
    combined: dict[str, Any] = {}
    for name in ("settings.default.toml", f"settings.{env_name}.toml", "settings.local.toml"):
        path = config_dir / name
        if path.is_file():
            combined = deep_merge(combined, tomllib.loads(path.read_text(encoding="utf-8")))
    return combined


class BrowserSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_BROWSER__")

    headless: bool = True
    # Empty means search CHROMIUM_PATH, PATH and common install locations.
    executable_path: str = ""
    extra_args: list[str] = Field(default_factory=list)
    viewport_width: int = 1920
    viewport_height: int = 1080
    launch_timeout_ms: int = 60_000


class SchedulerSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_SCHEDULER__")

    enabled: bool = True
    tick_seconds: float = 30.0
    overdue_threshold_seconds: int = 300


class ResilienceSettings(BaseSettings):
    """Retry backoff, per-target circuit breaker and DOM-settling knobs."""

    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_RESILIENCE__")

    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10_000
    backoff_multiplier: float = 2.0
    navigation_timeout_ms: int = 30_000
    navigation_retries: int = 2
    circuit_failure_threshold: int = 5
    circuit_reset_ms: int = 60_000
    stable_poll_ms: int = 200
    stable_checks: int = 3
    stable_timeout_ms: int = 5000
    popup_pause_ms: int = 500


class AutomationSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_AUTOMATION__")

    default_step_timeout_ms: int = 30_000
    # Reject unknown step types instead of skipping them.
    strict_steps: bool = False
    traversal_links_per_run: int = 5
    pagination_max_iterations: int = 5
    scrape_value_max_chars: int = 10_000


class CaptureSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_CAPTURE__")

    screenshot_dir: str = "data/screenshots"


class StorageSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_STORAGE__")

    backend: str = "sqlite"
    sqlite_path: str = "data/sitewarden.db"


class APISettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="SITEWARDEN_API__")

    host: str = "0.0.0.0"
    port: int = 8200
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="SITEWARDEN_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    env: str = Field(default_factory=current_env)
    project_root: Path = PROJECT_ROOT
    debug: bool = False

    browser: BrowserSettings = Field(default_factory=BrowserSettings)
    scheduler: SchedulerSettings = Field(default_factory=SchedulerSettings)
    resilience: ResilienceSettings = Field(default_factory=ResilienceSettings)
    automation: AutomationSettings = Field(default_factory=AutomationSettings)
    capture: CaptureSettings = Field(default_factory=CaptureSettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    api: APISettings = Field(default_factory=APISettings)

    @model_validator(mode="before")
    @classmethod
    def _apply_toml_layers(cls, values: dict[str, Any]) -> dict[str, Any]:
        # values already holds env vars and init kwargs; they sit on top.
        return deep_merge(load_layers(current_env(values.get("env"))), values)

    @model_validator(mode="after")
    def _anchor_paths(self) -> Settings:
        for section, field in (("capture", "screenshot_dir"), ("storage", "sqlite_path")):
            owner = getattr(self, section)
            path = Path(getattr(owner, field))
            if not path.is_absolute():
                setattr(owner, field, str(self.project_root / path))
        return self


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Process-wide settings, loaded on first use."""
    return Settings()
