"""HTML canonicalization so cosmetic churn does not register as change."""

from __future__ import annotations

import hashlib
import re

_SCRIPT_RE = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_STYLE_RE = re.compile(r"<style\b[^<]*(?:(?!</style>)<[^<]*)*</style>", re.IGNORECASE)
_COMMENT_RE = re.compile(r"<!--[\s\S]*?-->")
_WHITESPACE_RE = re.compile(r"\s+")
_DATA_ATTR_RE = re.compile(r'data-[\w-]+="[^"]*"')
_ID_ATTR_RE = re.compile(r'id="[^"]*"')
_CLASS_ATTR_RE = re.compile(r'class="[^"]*"')


def canonicalize_html(html: str) -> str:
    """Strip scripts, styles, comments and volatile attributes; collapse whitespace.

    ``data-*`` and ``id`` attributes are removed and every ``class`` value is
    blanked, so hashed builds and framework-generated ids do not count as change.
    """
    text = _SCRIPT_RE.sub("", html)
    text = _STYLE_RE.sub("", text)
    text = _COMMENT_RE.sub("", text)
    text = _WHITESPACE_RE.sub(" ", text)
    text = _DATA_ATTR_RE.sub("", text)
    text = _ID_ATTR_RE.sub("", text)
    text = _CLASS_ATTR_RE.sub('class=""', text)
    return text.strip()


def content_hash(text: str) -> str:
    """MD5 hex digest of *text*; used for equality only, never for security."""
    return hashlib.md5(text.encode("utf-8")).hexdigest()
