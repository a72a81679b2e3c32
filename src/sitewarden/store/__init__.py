"""SQL schema, engine helpers and the AutomationStore."""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from sitewarden.store.automation_store import AutomationStore


def build_automation_store(db_path: str | Path | None = None) -> "AutomationStore":
    """Factory: return an ``AutomationStore`` honouring SiteWarden settings.

    When *db_path* is ``None``, the store resolves its database from
    ``get_settings().storage.sqlite_path``.

    Args:
        db_path: Optional override for the SQLite file path.

    Returns:
        A configured :class:`AutomationStore` instance.
    """
    from sitewarden.store.automation_store import AutomationStore

    return AutomationStore(db_path=db_path)
