"""duckattach CLI.

Thin command line front end over :class:`ConnectionLifecycleManager`. Every
command restores the persisted registry, runs one lifecycle operation and
closes the engine pool again.
"""

import asyncio
import json
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import duckdb
import typer
import yaml
from rich.console import Console
from rich.table import Table

from duckattach.config import create_manager, load_settings
from duckattach.exceptions import AttachmentError, VaultError
from duckattach.lifecycle.classify import user_message
from duckattach.lifecycle.manager import (
    ConnectionLifecycleManager,
    GSheetWorkbookParams,
)
from duckattach.logging import get_logger
from duckattach.models import (
    AttachResult,
    DataSourceConfig,
    DataSourceRecord,
    config_from_dict,
)

logger = get_logger(__name__)
console = Console()

app = typer.Typer(
    name="duckattach",
    help="Attach remote data sources to DuckDB and manage their connections",
    add_completion=False,
    invoke_without_command=True,
)

STATE_STYLES = {
    "connected": "green",
    "connecting": "yellow",
    "disconnected": "dim",
    "error": "red",
    "credentials-required": "magenta",
}


@app.callback()
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", help="Show version and exit"),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable verbose output"
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Only show warnings and errors"
    ),
    settings: Optional[str] = typer.Option(
        None, "--settings", "-s", help="Path to a duckattach.yml settings file"
    ),
) -> None:
    """Attach remote data sources to DuckDB.

    Examples:
        duckattach add postgres --config sales.yml
        duckattach list --format json
        duckattach reconnect ds_0123abcd
    """
    if version:
        from duckattach import __version__

        console.print(f"duckattach v{__version__}")
        raise typer.Exit()

    _setup_environment(verbose, quiet)
    ctx.obj = {"settings_path": settings}
    if ctx.invoked_subcommand is None:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def _setup_environment(verbose: bool = False, quiet: bool = False) -> None:
    try:
        from duckattach.logging import configure_logging, suppress_third_party_loggers
        from duckattach.utils.env import setup_environment

        setup_environment()
        configure_logging(verbose=verbose, quiet=quiet)
        suppress_third_party_loggers()
    except Exception as e:
        if verbose:
            logger.warning(f"Environment setup issue: {e}")


def display_error(message: str) -> None:
    console.print(f"❌ [bold red]{message}[/bold red]")


def _fail(message: str) -> None:
    display_error(message)
    raise typer.Exit(1)


def _settings_path(ctx: typer.Context) -> Optional[str]:
    return (ctx.obj or {}).get("settings_path")


def _run(
    ctx: typer.Context,
    operation: Callable[[ConnectionLifecycleManager], Awaitable[Any]],
) -> Any:
    """Run ``operation`` against a manager restored from the registry."""
    try:
        settings = load_settings(_settings_path(ctx))
    except ValueError as e:
        _fail(f"Invalid settings: {e}")

    async def runner():
        manager = create_manager(settings)
        try:
            await manager.restore()
            return await operation(manager)
        finally:
            await manager.close()
            await manager.pool.close()

    try:
        return asyncio.run(runner())
    except (AttachmentError, VaultError) as e:
        _fail(user_message(e))


def read_source_file(
    kind: str, path: str
) -> Tuple[DataSourceConfig, Optional[Dict[str, str]]]:
    """Parse a YAML source file into a config and optional credentials.

    Raises:
        ValueError: If the file is unreadable or does not describe a
            valid ``kind`` configuration
    """
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except OSError as e:
        raise ValueError(f"Cannot read {path}: {e}")
    except yaml.YAMLError as e:
        raise ValueError(f"{path} is not valid YAML: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping of configuration fields")

    data = dict(data)
    declared = data.pop("kind", None)
    if declared is not None and declared != kind:
        raise ValueError(f"{path} describes a '{declared}' source, not '{kind}'")

    credentials = data.pop("credentials", None)
    if credentials is not None and not isinstance(credentials, dict):
        raise ValueError("'credentials' must be a mapping")

    config = config_from_dict({"kind": kind, **data})
    if credentials:
        credentials = {str(k): str(v) for k, v in credentials.items()}
    return config, credentials or None


def read_credentials_file(path: str) -> Dict[str, str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f) or {}
    except (OSError, yaml.YAMLError) as e:
        raise ValueError(f"Cannot read credentials from {path}: {e}")
    if not isinstance(data, dict):
        raise ValueError(f"{path} must contain a mapping of credentials")
    data = data.get("credentials", data)
    return {str(k): str(v) for k, v in data.items()}


def _records_table(records: List[DataSourceRecord]) -> Table:
    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Name", style="cyan")
    table.add_column("Kind", style="white")
    table.add_column("State")
    table.add_column("Attached", style="dim")
    table.add_column("Error", style="red")

    for record in records:
        state = record.connection_state.value
        style = STATE_STYLES.get(state, "white")
        table.add_row(
            record.id,
            record.display_name,
            record.kind.value,
            f"[{style}]{state}[/{style}]",
            record.attached_at.isoformat(timespec="seconds")
            if record.attached_at
            else "-",
            record.connection_error or "",
        )
    return table


def _report(result: Optional[AttachResult], action: str) -> None:
    if result is None:
        _fail(f"Another {action} for this source is already running")
    if not result.success:
        state = result.record.connection_state.value if result.record else None
        suffix = f" (state: {state})" if state else ""
        _fail(f"{action.capitalize()} failed: {result.message}{suffix}")

    console.print(f"✅ [bold green]{result.message}[/bold green]")
    for record in result.records or [result.record]:
        if record is not None:
            console.print(
                f"  [cyan]{record.display_name}[/cyan] [dim]{record.id}[/dim]"
            )


@app.command("list")
def list_sources(
    ctx: typer.Context,
    format: str = typer.Option(
        "table", "--format", help="Output format: table or json"
    ),
) -> None:
    """List registered data sources and their connection state."""
    if format not in ("table", "json"):
        _fail(f"Unknown format '{format}' (expected table or json)")

    async def operation(manager: ConnectionLifecycleManager):
        return manager.list_records()

    records = _run(ctx, operation)
    if format == "json":
        console.print_json(json.dumps([record.to_dict() for record in records]))
        return
    if not records:
        console.print("[dim]No data sources registered[/dim]")
        return
    console.print(_records_table(records))


@app.command("test")
def test_source(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Source kind, e.g. postgres or iceberg"),
    config: str = typer.Option(..., "--config", "-c", help="YAML source file"),
) -> None:
    """Test a source configuration without registering it."""
    try:
        source, credentials = read_source_file(kind, config)
    except ValueError as e:
        _fail(str(e))

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.test_connection(source, credentials)

    result = _run(ctx, operation)
    if result is None:
        _fail("A test for this source is already running")
    if not result.success:
        _fail(f"Connection test failed: {result.message}")
    console.print(f"✅ [bold green]{result.message}[/bold green]")


@app.command("add")
def add_source(
    ctx: typer.Context,
    kind: str = typer.Argument(..., help="Source kind, e.g. postgres or iceberg"),
    config: str = typer.Option(..., "--config", "-c", help="YAML source file"),
) -> None:
    """Register a data source and attach it."""
    try:
        source, credentials = read_source_file(kind, config)
    except ValueError as e:
        _fail(str(e))

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.add(source, credentials)

    _report(_run(ctx, operation), "add")


@app.command("add-sheet")
def add_sheet(
    ctx: typer.Context,
    sheet_ref: str = typer.Argument(..., help="Google Sheets URL or spreadsheet id"),
    name: str = typer.Option("", "--name", "-n", help="Connection name"),
    token: Optional[str] = typer.Option(
        None,
        "--token",
        envvar="DUCKATTACH_GSHEET_TOKEN",
        help="OAuth access token for private spreadsheets",
    ),
    sheets: Optional[List[str]] = typer.Option(
        None, "--sheet", help="Sheet to add (repeatable); defaults to all"
    ),
) -> None:
    """Add the sheets of a Google Sheets workbook as views."""
    params = GSheetWorkbookParams(
        sheet_ref=sheet_ref,
        connection_name=name,
        access_mode="authorized" if token else "public",
        access_token=token,
        sheet_names=list(sheets) if sheets else None,
    )

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.add_gsheet_workbook(params)

    _report(_run(ctx, operation), "add")


@app.command("reconnect")
def reconnect_source(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Data source id"),
    credentials: Optional[str] = typer.Option(
        None, "--credentials", help="YAML file with new credentials"
    ),
) -> None:
    """Reconnect a data source, optionally with new credentials."""
    new_credentials = None
    if credentials:
        try:
            new_credentials = read_credentials_file(credentials)
        except ValueError as e:
            _fail(str(e))

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.reconnect(record_id, new_credentials)

    _report(_run(ctx, operation), "reconnect")


@app.command("disconnect")
def disconnect_source(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Data source id"),
) -> None:
    """Detach a data source but keep it registered."""

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.disconnect(record_id)

    record = _run(ctx, operation)
    console.print(
        f"✅ [bold green]Disconnected '{record.display_name}'[/bold green] "
        f"(state: {record.connection_state.value})"
    )


@app.command("remove")
def remove_source(
    ctx: typer.Context,
    record_id: str = typer.Argument(..., help="Data source id"),
) -> None:
    """Detach a data source and delete it with its stored credentials."""

    async def operation(manager: ConnectionLifecycleManager):
        return await manager.remove(record_id)

    record = _run(ctx, operation)
    console.print(f"✅ [bold green]Removed '{record.display_name}'[/bold green]")


@app.command("secrets")
def list_secrets(ctx: typer.Context) -> None:
    """List stored credential secrets (labels only)."""

    async def operation(manager: ConnectionLifecycleManager):
        summaries = await manager.vault.list()
        usage = {
            summary.id: len(manager.registry.find_by_credentials(summary.id))
            for summary in summaries
        }
        return summaries, usage

    summaries, usage = _run(ctx, operation)
    if not summaries:
        console.print("[dim]No stored secrets[/dim]")
        return

    table = Table(show_header=True, header_style="bold blue")
    table.add_column("ID", style="dim")
    table.add_column("Label", style="cyan")
    table.add_column("Used by", justify="right")
    table.add_column("Updated", style="dim")
    for summary in summaries:
        table.add_row(
            summary.id,
            summary.label,
            str(usage.get(summary.id, 0)),
            summary.updated_at.isoformat(timespec="seconds"),
        )
    console.print(table)


@app.command("version")
def version() -> None:
    """Show duckattach and DuckDB version information."""
    from duckattach import __version__

    console.print(f"Version: [cyan]{__version__}[/cyan]")
    console.print(f"Python: [cyan]{sys.version.split()[0]}[/cyan]")
    console.print(f"DuckDB: [dim]{duckdb.__version__}[/dim]")
    console.print(f"Typer: [dim]{typer.__version__}[/dim]")


def cli() -> None:
    """Entry point for the console script."""
    try:
        app()
    except KeyboardInterrupt:
        console.print("\n⚠️  [yellow]Operation cancelled by user[/yellow]")
        raise typer.Exit(130)


if __name__ == "__main__":
    cli()
