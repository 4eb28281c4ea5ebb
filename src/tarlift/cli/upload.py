"""
tarlift upload - Replicate a tar archive into the object store.
"""

from pathlib import Path

import typer
from rich.console import Console
from rich.table import Table

from tarlift.client.store import ConflictPolicy
from tarlift.config.loader import load_config
from tarlift.core.api import upload_archive
from tarlift.core.scheduler import RunResult
from tarlift.exceptions import TarliftError
from tarlift.utils.logging import get_logger, setup_logging

logger = get_logger("tarlift.cli.upload")

console = Console()


def upload(
    archive: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True, help="Tar archive to upload"),
    destination: str = typer.Argument(..., help="Store directory to extract into (e.g. /alice/stor/backup)"),
    concurrency: int | None = typer.Option(None, "--concurrency", "-c", min=1, help="Maximum uploads in flight"),
    config_file: Path | None = typer.Option(None, "--config", help="YAML configuration file"),
    insecure: bool = typer.Option(False, "--insecure", help="Skip TLS certificate verification"),
    strict: bool = typer.Option(False, "--strict", help="Fail symlinks and other unsupported entries"),
    no_overwrite: bool = typer.Option(False, "--no-overwrite", help="Fail entries whose object already exists"),
    fail_fast: bool = typer.Option(False, "--fail-fast", help="Stop after the first failed entry"),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Verbose output"),
    log_file: Path | None = typer.Option(None, "--log-file", help="Also write logs to this file"),
) -> None:
    """
    Upload every file and directory in ARCHIVE under DESTINATION.
    """
    overrides = {
        "concurrency": concurrency,
        "insecure": True if insecure else None,
        "strict": True if strict else None,
        "conflict_policy": ConflictPolicy.FAIL if no_overwrite else None,
    }

    try:
        config = load_config(config_file, overrides=overrides)
    except TarliftError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    setup_logging("DEBUG" if verbose else config.log_level, log_file=log_file)

    try:
        result = upload_archive(archive, destination, config, fail_fast=fail_fast)
    except (TarliftError, OSError) as e:
        logger.error(f"Upload failed: {e}")
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from e

    _print_summary(result, archive, destination)
    _print_failures(result, destination)

    if not result.ok:
        raise typer.Exit(1)


def _print_summary(result: RunResult, archive: Path, destination: str) -> None:
    table = Table(title=f"{archive.name} -> {destination}", show_header=True)
    table.add_column("Outcome", style="cyan")
    table.add_column("Entries", justify="right")
    table.add_column("Details", style="dim")

    table.add_row("Files", str(len(result.files)), f"{result.bytes_uploaded} bytes")
    table.add_row("Directories", str(len(result.directories)), "")
    table.add_row("Skipped", str(len(result.skipped)), ", ".join(o.entry_path for o in result.skipped[:5]))
    table.add_row("[red]Failed[/red]", str(len(result.failed)), "")

    console.print(table)
    console.print(f"[dim]{result.duration:.2f}s, peak concurrency {result.peak_concurrency}[/dim]")


def _print_failures(result: RunResult, destination: str) -> None:
    """One ``<remote path>: <ErrorKind>: <message>`` line per failure, on stderr."""
    for outcome in result.failed:
        typer.echo(f"{outcome.remote_path or outcome.entry_path}: {outcome.error_kind}: {outcome.error}", err=True)

    fatal = result.fatal_error
    if fatal is not None and all(o.error is not fatal for o in result.failed):
        typer.echo(f"{destination}: {type(fatal).__name__}: {fatal}", err=True)
