"""CLI commands for managing automation targets."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

targets_app = typer.Typer(help="Create, inspect and toggle automation targets.")
console = Console()


def _open_store():
    from sitewarden.store import build_automation_store

    try:
        return build_automation_store()
    except Exception as e:
        console.print(f"[red]Cannot open automation store:[/red] {e}")
        raise typer.Exit(code=1) from None


# ---------------------------------------------------------------------------
# sitewarden targets add <url>
# ---------------------------------------------------------------------------


@targets_app.command("add")
def targets_add(
    url: str = typer.Argument(..., help="Address the target's runs start from."),
    label: str = typer.Option("", "--label", "-l", help="Human-readable label."),
    interval: int = typer.Option(1800, "--interval", "-i", help="Run interval in seconds."),
    config_file: Optional[Path] = typer.Option(
        None,
        "--config",
        "-c",
        help="JSON file with extra target fields (steps, traversal, capture, scrape, ...).",
    ),
    disabled: bool = typer.Option(False, "--disabled", help="Create the target disabled."),
) -> None:
    """Register a new target."""
    from pydantic import ValidationError

    from sitewarden.models.target import Target

    extra: dict = {}
    if config_file is not None:
        try:
            extra = json.loads(config_file.read_text())
        except (OSError, json.JSONDecodeError) as e:
            console.print(f"[red]Cannot read {config_file}:[/red] {e}")
            raise typer.Exit(code=1) from None

    try:
        target = Target(**{**extra, "url": url, "label": label, "run_interval_seconds": interval, "enabled": not disabled})
    except ValidationError as e:
        console.print(f"[red]Invalid target:[/red] {e}")
        raise typer.Exit(code=1) from None

    stored = _open_store().create_target(target)
    console.print(f"[green]✓[/green] Created target [cyan]{stored.target_id}[/cyan]")
    console.print(f"  Next run: {stored.next_scheduled_at}")


# ---------------------------------------------------------------------------
# sitewarden targets list
# ---------------------------------------------------------------------------


@targets_app.command("list")
def targets_list(
    enabled: Optional[bool] = typer.Option(None, "--enabled/--disabled", help="Filter by enabled flag."),
    json_output: bool = typer.Option(False, "--json", "-j", help="Output as JSON."),
) -> None:
    """List configured targets."""
    targets = _open_store().list_targets(enabled=enabled)

    if not targets:
        console.print("[dim]No targets found.[/dim]")
        return

    if json_output:
        console.print_json(json.dumps([t.model_dump(mode="json") for t in targets], indent=2))
        return

    table = Table(title="Targets")
    table.add_column("Target ID", style="cyan", max_width=12)
    table.add_column("URL", max_width=50)
    table.add_column("Label")
    table.add_column("Enabled")
    table.add_column("OK/Err", justify="right")
    table.add_column("Next run", style="dim")

    for t in targets:
        table.add_row(
            t.target_id[:12],
            t.url[:50],
            t.label,
            "[green]yes[/green]" if t.enabled else "[red]no[/red]",
            f"{t.success_count}/{t.error_count}",
            str(t.next_scheduled_at or "")[:19],
        )

    console.print(table)
    console.print(f"\n[bold]{len(targets)}[/bold] target(s)")


# ---------------------------------------------------------------------------
# sitewarden targets show / remove / enable / disable
# ---------------------------------------------------------------------------


@targets_app.command("show")
def targets_show(
    target_id: str = typer.Argument(..., help="Target ID to display."),
    history: int = typer.Option(5, "--history", "-n", help="Number of recent executions to include."),
) -> None:
    """Display a target and its most recent executions."""
    from sitewarden.exceptions import TargetNotFoundError

    store = _open_store()
    try:
        target = store.require_target(target_id)
    except TargetNotFoundError:
        console.print(f"[red]Target not found:[/red] {target_id}")
        raise typer.Exit(code=1) from None

    console.print_json(json.dumps(target.model_dump(mode="json"), indent=2))
    logs = store.list_execution_logs(target_id=target_id, limit=history)
    if not logs:
        return

    table = Table(title="Recent executions")
    table.add_column("Started", style="dim")
    table.add_column("Status")
    table.add_column("Duration", justify="right")
    table.add_column("Pages", justify="right")
    table.add_column("Shots", justify="right")
    table.add_column("Error", max_width=50)
    for log in logs:
        ok = log["status"] == "success"
        table.add_row(
            str(log.get("started_at", ""))[:19],
            "[green]success[/green]" if ok else "[red]error[/red]",
            f"{log.get('duration_ms', 0)}ms",
            str(log.get("pages_visited", 0)),
            str(log.get("screenshots_taken", 0)),
            (log.get("error_message") or "")[:50],
        )
    console.print(table)


@targets_app.command("remove")
def targets_remove(
    target_id: str = typer.Argument(..., help="Target ID to delete."),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation."),
) -> None:
    """Delete a target and everything recorded for it."""
    if not yes:
        typer.confirm(f"Delete target {target_id} and all of its history?", abort=True)
    if not _open_store().delete_target(target_id):
        console.print(f"[red]Target not found:[/red] {target_id}")
        raise typer.Exit(code=1)
    console.print(f"[green]✓[/green] Deleted target {target_id}")


def _set_enabled(target_id: str, enabled: bool) -> None:
    from sitewarden.exceptions import TargetNotFoundError

    try:
        _open_store().set_enabled(target_id, enabled)
    except TargetNotFoundError:
        console.print(f"[red]Target not found:[/red] {target_id}")
        raise typer.Exit(code=1) from None
    console.print(f"[green]✓[/green] Target {target_id} {'enabled' if enabled else 'disabled'}")


@targets_app.command("enable")
def targets_enable(target_id: str = typer.Argument(..., help="Target ID to schedule.")) -> None:
    """Resume scheduled runs for a target."""
    _set_enabled(target_id, True)


@targets_app.command("disable")
def targets_disable(target_id: str = typer.Argument(..., help="Target ID to pause.")) -> None:
    """Stop scheduled runs for a target (an in-flight run still completes)."""
    _set_enabled(target_id, False)
