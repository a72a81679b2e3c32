"""SiteWarden configuration package."""

from __future__ import annotations

from sitewarden.settings.config import Settings, get_settings

__all__ = ["Settings", "get_settings"]
