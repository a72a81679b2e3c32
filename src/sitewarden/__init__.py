"""Scheduled headless-browser automation, crawling and change detection."""

from __future__ import annotations

try:
    from importlib.metadata import version

    __version__ = version("sitewarden")
except Exception:
    __version__ = "0.0.0"
