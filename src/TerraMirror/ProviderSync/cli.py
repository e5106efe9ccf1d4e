# === NAVMAP v1 ===
# {
#   "module": "TerraMirror.ProviderSync.cli",
#   "purpose": "Typer command line interface for mirroring registry providers",
#   "sections": [
#     {"id": "clicontext", "name": "CliContext", "anchor": "class-clicontext", "kind": "class"},
#     {"id": "main", "name": "main", "anchor": "function-main", "kind": "function"},
#     {"id": "sync-cmd", "name": "sync_cmd", "anchor": "function-sync-cmd", "kind": "function"},
#     {"id": "plan-cmd", "name": "plan_cmd", "anchor": "function-plan-cmd", "kind": "function"},
#     {"id": "show-cmd", "name": "show_cmd", "anchor": "function-show-cmd", "kind": "function"},
#     {"id": "version-cmd", "name": "version_cmd", "anchor": "function-version-cmd", "kind": "function"}
#   ]
# }
# === /NAVMAP ===

"""Command line interface for the provider mirror.

Example:
    $ tfmirror --config config.yaml plan
    $ tfmirror -v sync
    $ tfmirror show hashicorp/random --version 3.6.0
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import List, Optional

import typer
from rich.console import Console
from rich.markup import escape

from . import __version__
from .catalog import load_provider_index, load_version_index
from .errors import ConfigError, ProviderSyncError
from .formatters import (
    INDEX_TABLE_HEADERS,
    PLAN_TABLE_HEADERS,
    REPORT_TABLE_HEADERS,
    format_plan_rows,
    format_provider_index_rows,
    format_report_rows,
    format_table,
    format_version_index_rows,
)
from .logging_utils import setup_logging
from .settings import DEFAULT_CONFIG_PATH, ProviderConfiguration, ResolvedConfig, load_config
from .storage import MirrorLayout
from .sync import plan, run

_console = Console()


class CliContext:
    """Shared state for one CLI invocation."""

    def __init__(self, config_path: Path, verbosity: int = 0) -> None:
        self.config_path = config_path
        self.verbosity = verbosity
        self.console = _console
        self._config: Optional[ResolvedConfig] = None

    @property
    def config(self) -> ResolvedConfig:
        """Load the configuration on first use so ``version`` works without one."""

        if self._config is None:
            self._config = load_config(self.config_path)
        return self._config

    def log_level(self) -> str:
        if self.verbosity >= 2:
            return "DEBUG"
        if self.verbosity == 1:
            return "INFO"
        return self.config.client.log_level

    def init_logging(self) -> None:
        config = self.config
        setup_logging(
            level=self.log_level(),
            retention_days=config.logging.retention_days,
            max_log_size_mb=config.logging.max_log_size_mb,
            log_dir=config.log_dir(),
        )

    def selected_providers(self, names: Optional[List[str]]) -> List[ProviderConfiguration]:
        providers = self.config.providers
        if not names:
            return list(providers.values())
        unknown = [name for name in names if name not in providers]
        if unknown:
            raise ConfigError(f"Unknown provider(s): {', '.join(unknown)}")
        return [providers[name] for name in names]

    def fail(self, exc: Exception) -> typer.Exit:
        self.console.print(f"[red]Error: {escape(str(exc))}[/red]", soft_wrap=True)
        return typer.Exit(1)


app = typer.Typer(
    name="tfmirror",
    help="Mirror Terraform registry providers into a local directory",
    no_args_is_help=True,
)

_context: Optional[CliContext] = None


def get_context() -> CliContext:
    if _context is None:
        raise RuntimeError("CLI context not initialized")
    return _context


def _version_callback(value: bool) -> None:
    # eager, so it runs before click insists on a subcommand
    if value:
        typer.echo(f"tfmirror {__version__}")
        raise typer.Exit(0)


@app.callback(invoke_without_command=False)
def main(
    config: Path = typer.Option(
        DEFAULT_CONFIG_PATH,
        "--config",
        "-c",
        envvar="TFMIRROR_CONFIG",
        help="Path to the YAML configuration file",
    ),
    verbosity: int = typer.Option(
        0,
        "--verbose",
        "-v",
        count=True,
        help="Increase verbosity (-v for INFO, -vv for DEBUG)",
    ),
    version: bool = typer.Option(
        False,
        "--version",
        "-V",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit",
    ),
) -> None:
    """Mirror provider packages from a remote registry.

    Global options go before the subcommand:

        tfmirror --config mirror.yaml sync
    """
    global _context

    _context = CliContext(config_path=config, verbosity=verbosity)


ProvidersOption = typer.Option(
    None,
    "--provider",
    "-p",
    help="Only process the named provider (repeatable)",
)


@app.command("sync")
def sync_cmd(
    providers: Optional[List[str]] = ProvidersOption,
    dry_run: bool = typer.Option(
        False,
        "--dry-run",
        "-n",
        help="Resolve and print what would be mirrored without downloading",
    ),
) -> None:
    """Download missing provider archives and update the local indexes."""

    ctx = get_context()
    try:
        ctx.init_logging()
        selected = ctx.selected_providers(providers)
        if dry_run:
            ctx.console.print("[yellow]DRY-RUN MODE: No changes will be made[/yellow]")
            plans = plan(selected, config=ctx.config)
            typer.echo(format_table(PLAN_TABLE_HEADERS, format_plan_rows(plans)))
            return
        reports = run(selected, config=ctx.config)
    except ProviderSyncError as exc:
        raise ctx.fail(exc) from exc

    typer.echo(format_table(REPORT_TABLE_HEADERS, format_report_rows(reports)))
    downloaded = sum(len(report.downloaded) for report in reports)
    ctx.console.print(
        f"[green]Synchronized {len(reports)} version(s), downloaded {downloaded} archive(s)[/green]"
    )


@app.command("plan")
def plan_cmd(
    providers: Optional[List[str]] = ProvidersOption,
    as_json: bool = typer.Option(False, "--json", help="Emit the plan as JSON"),
) -> None:
    """Show the versions and platforms a sync would mirror."""

    ctx = get_context()
    try:
        ctx.init_logging()
        plans = plan(ctx.selected_providers(providers), config=ctx.config)
    except ProviderSyncError as exc:
        raise ctx.fail(exc) from exc

    if as_json:
        payload = [
            {
                "name": provider_plan.name,
                "source": provider_plan.source,
                "versions": {
                    planned.version: [artifact.platform.key for artifact in planned.artifacts]
                    for planned in provider_plan.versions
                },
            }
            for provider_plan in plans
        ]
        typer.echo(json.dumps(payload, indent=2))
        return
    typer.echo(format_table(PLAN_TABLE_HEADERS, format_plan_rows(plans)))


@app.command("show")
def show_cmd(
    source: str = typer.Argument(..., help="Provider source, e.g. hashicorp/random"),
    provider_version: Optional[str] = typer.Option(
        None, "--version", help="Show the archives recorded for this version"
    ),
) -> None:
    """Print what the local mirror has recorded for a provider."""

    ctx = get_context()
    try:
        client = ctx.config.client
        layout = MirrorLayout(client.work_dir, client.registry_host)
        if provider_version is None:
            index = load_provider_index(layout.provider_index_path(source))
            typer.echo(format_table(("version",), format_provider_index_rows(index)))
        else:
            version_index = load_version_index(layout.version_index_path(source, provider_version))
            typer.echo(format_table(INDEX_TABLE_HEADERS, format_version_index_rows(version_index)))
    except ProviderSyncError as exc:
        raise ctx.fail(exc) from exc


@app.command("version")
def version_cmd() -> None:
    """Show version information."""

    ctx = get_context()
    ctx.console.print(f"[bold]tfmirror[/bold] version {__version__}")


__all__ = ["app", "CliContext", "get_context", "main"]
