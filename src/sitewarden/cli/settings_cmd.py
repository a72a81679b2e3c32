"""``sitewarden settings``: print the resolved configuration or sanity-check it."""

from __future__ import annotations

from typing import Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

settings_app = typer.Typer(help="Inspect and validate SiteWarden configuration.")
console = Console()


@settings_app.command("show")
def show_settings(
    section: Optional[str] = typer.Option(None, "--section", "-s", help="Only print one section, e.g. 'browser'."),
) -> None:
    """Print the merged settings (TOML layers plus env overrides) as JSON."""
    from sitewarden.settings import get_settings

    data = get_settings().model_dump(mode="json")
    if section is not None:
        if section not in data or not isinstance(data[section], dict):
            console.print(f"[red]Unknown settings section:[/red] {section}")
            raise typer.Exit(code=1)
        data = data[section]
    console.print_json(data=data)


@settings_app.command("validate")
def validate_settings() -> None:
    """Load settings, then report where data, screenshots and Chromium resolve to."""
    from sitewarden.browser.chromium import resolve_chromium_path
    from sitewarden.settings import get_settings

    try:
        settings = get_settings()
    except ValidationError as exc:
        console.print(f"[red]Invalid settings:[/red] {exc.error_count()} error(s)")
        console.print(str(exc))
        raise typer.Exit(code=1) from None

    table = Table(show_header=False, box=None)
    table.add_row("Environment", settings.env)
    table.add_row("Database", settings.storage.sqlite_path)
    table.add_row("Screenshots", settings.capture.screenshot_dir)
    table.add_row("Chromium", resolve_chromium_path(settings.browser.executable_path) or "bundled")
    table.add_row("Scheduler", f"every {settings.scheduler.tick_seconds:g}s" if settings.scheduler.enabled else "off")
    table.add_row("API", f"{settings.api.host}:{settings.api.port}")

    console.print("[green]Settings are valid.[/green]")
    console.print(table)
