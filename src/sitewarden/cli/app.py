"""Unified CLI entry point for SiteWarden.

Config precedence: settings.default.toml -> settings.{env}.toml -> settings.local.toml
-> env vars (SITEWARDEN_* with double underscores) -> CLI flags.
"""

from __future__ import annotations

import asyncio
import json

import typer
from rich.console import Console

from sitewarden.cli.settings_cmd import settings_app
from sitewarden.cli.targets_cmd import targets_app

try:
    from importlib.metadata import version

    VERSION = version("sitewarden")
except Exception:
    VERSION = "unknown"

APP_HELP = (
    "sitewarden: scheduled browser automation, crawling and change monitoring. "
    "Config precedence: settings.default.toml -> settings.{env}.toml -> settings.local.toml "
    "-> env vars (SITEWARDEN_* with __) -> CLI flags."
)

app = typer.Typer(add_completion=True, help=APP_HELP)
console = Console()

app.add_typer(targets_app, name="targets")
app.add_typer(settings_app, name="settings")


@app.callback(invoke_without_command=True)
def main(ctx: typer.Context, version: bool = typer.Option(False, "--version", help="Show version and exit.")) -> None:
    """Show help when no subcommand is provided."""
    if version:
        typer.echo(f"sitewarden {VERSION}")
        raise typer.Exit()
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


@app.command("serve")
def serve(
    host: str = typer.Option(None, "--host", help="Bind address (default: api.host)."),
    port: int = typer.Option(None, "--port", "-p", help="Bind port (default: api.port)."),
    no_scheduler: bool = typer.Option(False, "--no-scheduler", help="Serve the API without scheduling runs."),
) -> None:
    """Start the HTTP API together with the always-on scheduler."""
    import uvicorn

    from sitewarden.api.app import create_app
    from sitewarden.logging_setup import configure_logging
    from sitewarden.settings import get_settings

    settings = get_settings()
    configure_logging(env=settings.env)
    application = create_app(settings=settings, start_scheduler=False if no_scheduler else None)
    uvicorn.run(
        application,
        host=host or settings.api.host,
        port=port or settings.api.port,
        log_config=None,
    )


@app.command("run")
def run_target(
    target_id: str = typer.Argument(..., help="Target ID to execute once."),
) -> None:
    """Execute one target immediately and print the result as JSON."""
    from sitewarden.engine.orchestrator import Orchestrator
    from sitewarden.exceptions import TargetNotFoundError
    from sitewarden.logging_setup import configure_logging
    from sitewarden.settings import get_settings
    from sitewarden.store import build_automation_store

    settings = get_settings()
    configure_logging(env=settings.env)
    store = build_automation_store()
    try:
        target = store.require_target(target_id)
    except TargetNotFoundError:
        console.print(f"[red]Target not found:[/red] {target_id}")
        raise typer.Exit(code=1) from None

    orchestrator = Orchestrator.from_settings(store, settings)

    async def _run():
        try:
            return await orchestrator.execute(target)
        finally:
            await orchestrator.browser.close()

    result = asyncio.run(_run())
    console.print_json(json.dumps(result.model_dump(mode="json", exclude={"error_stack"}), indent=2))
    if not result.success:
        raise typer.Exit(code=1)


if __name__ == "__main__":
    app()
