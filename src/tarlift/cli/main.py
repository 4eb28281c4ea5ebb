"""
Main CLI entry point.
"""

import typer

from tarlift import __version__
from tarlift.cli import upload


def version_callback(value: bool):
    """Callback to display version and exit."""
    if value:
        typer.echo(f"tarlift version {__version__}")
        raise typer.Exit()


app = typer.Typer(
    name="tarlift",
    help="tarlift - Replicate tar archives into a remote object store",
    add_completion=True,
)

app.command(name="upload")(upload.upload)


@app.callback(invoke_without_command=True)
def entrypoint(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
):
    """
    tarlift - Replicate tar archives into a remote object store.

    Run 'tarlift <command> --help' for help on a specific command.
    """
    if ctx.invoked_subcommand is None and not version:
        typer.echo(ctx.get_help())
        raise typer.Exit()


def main():
    """Main CLI entry point."""
    app()


if __name__ == "__main__":
    main()
