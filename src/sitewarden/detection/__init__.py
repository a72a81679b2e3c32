"""Content-change detection over canonicalized page HTML."""

from sitewarden.detection.canonical import canonicalize_html, content_hash
from sitewarden.detection.change import ChangeDetector, ChangeStrategy, LengthDeltaStrategy

__all__ = [
    "ChangeDetector",
    "ChangeStrategy",
    "LengthDeltaStrategy",
    "canonicalize_html",
    "content_hash",
]
