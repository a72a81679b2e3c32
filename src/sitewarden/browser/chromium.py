"""Chromium executable discovery and launch arguments.

Resolution order for the executable:

1. ``browser.executable_path`` setting
2. ``CHROMIUM_PATH`` / ``PUPPETEER_EXECUTABLE_PATH`` environment variables
3. ``chromium`` / ``chromium-browser`` / ``google-chrome`` on ``PATH``
4. Well-known install locations
5. The Nix store
6. ``None``: Playwright falls back to its bundled Chromium
"""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path

logger = logging.getLogger(__name__)

COMMON_CHROMIUM_PATHS: tuple[str, ...] = (
    "/usr/bin/chromium",
    "/usr/bin/chromium-browser",
    "/usr/bin/google-chrome",
    "/usr/bin/google-chrome-stable",
    "/snap/bin/chromium",
    "/Applications/Google Chrome.app/Contents/MacOS/Google Chrome",
    "/Applications/Chromium.app/Contents/MacOS/Chromium",
    r"C:\Program Files\Google\Chrome\Application\chrome.exe",
    r"C:\Program Files (x86)\Google\Chrome\Application\chrome.exe",
)

_PATH_BINARIES: tuple[str, ...] = ("chromium", "chromium-browser", "google-chrome")

_ENV_VARS: tuple[str, ...] = ("CHROMIUM_PATH", "PUPPETEER_EXECUTABLE_PATH")

BASE_LAUNCH_ARGS: tuple[str, ...] = (
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--disable-gpu",
)


def _find_nix_chromium(store: Path = Path("/nix/store")) -> str | None:
    if not store.is_dir():
        return None
    try:
        for entry in store.iterdir():
            if "chromium" in entry.name:
                candidate = entry / "bin" / "chromium"
                if candidate.is_file():
                    return str(candidate)
    except OSError as exc:
        logger.debug("Nix store scan failed: %s", exc)
    return None


def resolve_chromium_path(configured: str = "") -> str | None:
    """Return a Chromium executable path, or ``None`` to use Playwright's bundled build."""
    if configured:
        if Path(configured).is_file():
            return configured
        logger.warning("Configured browser executable %s does not exist, autodetecting", configured)

    for var in _ENV_VARS:
        value = os.environ.get(var, "")
        if value and Path(value).is_file():
            logger.info("Using Chromium from %s: %s", var, value)
            return value

    for binary in _PATH_BINARIES:
        found = shutil.which(binary)
        if found:
            logger.info("Using system Chromium: %s", found)
            return found

    for candidate in COMMON_CHROMIUM_PATHS:
        if Path(candidate).is_file():
            logger.info("Found Chromium at: %s", candidate)
            return candidate

    nix_path = _find_nix_chromium()
    if nix_path:
        logger.info("Found Nix Chromium: %s", nix_path)
        return nix_path

    logger.info("No system Chromium found, using Playwright's bundled browser")
    return None


def chromium_launch_args(
    *,
    extra_args: list[str] | None = None,
    window_size: tuple[int, int] = (1920, 1080),
) -> list[str]:
    """Return Chromium command-line flags, including ``PUPPETEER_EXTRA_ARGS`` (comma-separated)."""
    args = [*BASE_LAUNCH_ARGS, f"--window-size={window_size[0]},{window_size[1]}"]
    args.extend(a for a in (extra_args or []) if a)
    env_extra = os.environ.get("PUPPETEER_EXTRA_ARGS", "")
    args.extend(a.strip() for a in env_extra.split(",") if a.strip())
    return args
