"""Per-target browser profile: launch options and isolated-context arguments.

Usage::

    launch = build_launch_options(settings.browser)
    browser = await pw.chromium.launch(**launch)
    profile = build_context_profile(target, settings.browser)
    context = await browser.new_context(**profile.context_args)
    await context.add_cookies(profile.cookies)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlsplit

from sitewarden.browser.chromium import chromium_launch_args, resolve_chromium_path
from sitewarden.models.target import Target
from sitewarden.settings.config import BrowserSettings

logger = logging.getLogger(__name__)


@dataclass
class ContextProfile:
    """Arguments for ``browser.new_context()`` plus cookies to seed it with."""

    context_args: dict[str, Any] = field(default_factory=dict)
    cookies: list[dict[str, Any]] = field(default_factory=list)


def build_launch_options(settings: BrowserSettings) -> dict[str, Any]:
    """Return keyword arguments for ``chromium.launch()``."""
    options: dict[str, Any] = {
        "headless": settings.headless,
        "args": chromium_launch_args(
            extra_args=settings.extra_args,
            window_size=(settings.viewport_width, settings.viewport_height),
        ),
        "timeout": settings.launch_timeout_ms,
    }
    executable = resolve_chromium_path(settings.executable_path)
    if executable:
        options["executable_path"] = executable
    return options


def build_context_profile(target: Target, settings: BrowserSettings) -> ContextProfile:
    """Translate a target's network identity overrides into context arguments.

    Cookies are scoped to the hostname of the target's start URL.
    """
    profile = ContextProfile()
    ctx = profile.context_args
    ctx["viewport"] = {"width": settings.viewport_width, "height": settings.viewport_height}

    identity = target.identity
    if identity.user_agent:
        ctx["user_agent"] = identity.user_agent
    if identity.headers:
        ctx["extra_http_headers"] = dict(identity.headers)
    if identity.proxy_url:
        ctx["proxy"] = {"server": identity.proxy_url}
        logger.debug("Target %s using proxy %s", target.target_id, identity.proxy_url)

    if identity.cookies:
        hostname = urlsplit(target.url).hostname or ""
        profile.cookies = [
            {"name": name, "value": str(value), "domain": hostname, "path": "/"}
            for name, value in identity.cookies.items()
        ]
    return profile
