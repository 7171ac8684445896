"""Typer-powered command line for ``bootagent``.

The CLI is an operator surface around the agent: it shows the persisted
instance state, the effective configuration, and can fetch a resource
through the failover downloader to check endpoint reachability.
"""
from __future__ import annotations

import json
import logging
import textwrap
from dataclasses import dataclass
from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from . import __version__
from .config import AppConfig, ConfigError, load_config
from .exit_codes import ExitCode
from .net import AllEndpointsFailed, HttpDownloader, InvalidArgument, ResolutionError, TransferError
from .state import InstanceStateStore, StateStoreError

console = Console()

CONFIG_FILE_OPTION = typer.Option(
    None,
    "--config-file",
    dir_okay=False,
    help="Override the path to bootagent's YAML config file.",
)

JSON_OPTION = typer.Option(
    False,
    "--json",
    help="Emit JSON instead of a table.",
)

app = typer.Typer(
    add_completion=False,
    help=textwrap.dedent(
        """
        Instance boot agent.

        Inspect the persisted boot state and configuration, and exercise the
        failover downloader against the configured endpoints.
        """
    ).strip(),
)

config_app = typer.Typer(help="Inspect the effective configuration.")
app.add_typer(config_app, name="config")


@dataclass
class RuntimeContext:
    """Objects shared by every command of one invocation."""

    config: AppConfig
    store: InstanceStateStore


def _ensure_runtime(ctx: typer.Context, config_file: Path | None) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime

    try:
        config = load_config(config_file=config_file)
    except ConfigError as exc:
        console.print(f"[red]Configuration error:[/red] {exc}")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    runtime = RuntimeContext(config=config, store=InstanceStateStore(config.state_file))
    ctx.obj = runtime
    return runtime


def _get_runtime(ctx: typer.Context) -> RuntimeContext:
    runtime = ctx.obj
    if isinstance(runtime, RuntimeContext):
        return runtime
    return _ensure_runtime(ctx, None)


@app.callback(invoke_without_command=True)
def _root(  # noqa: D401 - Typer displays help for us, docstring optional.
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        help="Show the bootagent version and exit.",
    ),
    config_file: Path | None = CONFIG_FILE_OPTION,
    log_level: str = typer.Option(
        "WARNING",
        "--log-level",
        help="Log level for diagnostics written to stderr.",
    ),
) -> None:
    """Entry point callback invoked for every CLI execution."""
    if version:
        console.print(f"bootagent {__version__}")
        raise typer.Exit(code=ExitCode.OK)

    level = logging.getLevelName(log_level.upper())
    if not isinstance(level, int):
        console.print(f"[red]Unknown log level:[/red] {log_level}")
        raise typer.Exit(code=ExitCode.VALIDATION)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")

    _ensure_runtime(ctx, config_file)

    if ctx.invoked_subcommand is None:
        console.print(ctx.get_help())
        raise typer.Exit(code=ExitCode.OK)


@app.command("state")
def state_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Show the persisted instance state."""
    runtime = _get_runtime(ctx)
    try:
        snapshot = runtime.store.snapshot()
    except StateStoreError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.STATE) from exc

    data = {
        "state_file": str(runtime.store.path),
        "identity": snapshot.get("identity"),
        "value": snapshot.get("value"),
        "startup_tags": list(snapshot.get("startup_tags") or []),
    }
    if json_output:
        console.print_json(data=data)
        return
    if not snapshot:
        console.print(f"No instance state recorded at {runtime.store.path}.")
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        rendered = ", ".join(value) if isinstance(value, list) else str(value)
        table.add_row(key, rendered)
    console.print(table)


@app.command("download")
def download(
    ctx: typer.Context,
    resource: str = typer.Argument(..., help="Resource path to fetch, e.g. /bundles/app.tgz."),
    destination: Path = typer.Argument(..., dir_okay=False, help="File to write."),
    hosts: list[str] | None = typer.Option(
        None,
        "--host",
        help="Hostname to fetch from (repeatable). Defaults to downloader.hostnames.",
    ),
) -> None:
    """Download a resource from the first healthy endpoint."""
    runtime = _get_runtime(ctx)
    settings = runtime.config.downloader
    hostnames = list(hosts) if hosts else list(settings.hostnames)

    try:
        downloader = HttpDownloader(
            hostnames,
            port=settings.port,
            timeout=settings.timeout,
            user_agent=settings.user_agent,
        )
    except InvalidArgument as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.VALIDATION) from exc
    except ResolutionError as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.NETWORK) from exc

    try:
        downloader.download(resource, destination)
    except AllEndpointsFailed as exc:
        console.print(f"[red]{exc}[/red]")
        raise typer.Exit(code=ExitCode.NETWORK) from exc
    except TransferError as exc:
        console.print(f"[red]Download failed:[/red] {exc}")
        raise typer.Exit(code=ExitCode.NETWORK) from exc

    console.print(downloader.details())


@config_app.command("show")
def config_show(ctx: typer.Context, json_output: bool = JSON_OPTION) -> None:
    """Display the effective configuration after merges."""
    runtime = _get_runtime(ctx)
    data = runtime.config.to_dict()

    if json_output:
        console.print_json(data=data)
        return

    table = Table(show_header=True, header_style="bold magenta")
    table.add_column("Key", style="bold")
    table.add_column("Value")
    for key, value in data.items():
        if isinstance(value, dict):
            rendered = json.dumps(value, indent=2, sort_keys=True)
        else:
            rendered = str(value)
        table.add_row(key, rendered)
    console.print(table)


def main() -> None:
    """Console script entry point."""
    app()


__all__ = ["app", "main"]
