"""
ocx - OpenCode extension tooling.

Usage:
    ocx ghost init
    ocx ghost opencode [--profile NAME] [OPENCODE ARGS...]
    ocx ghost profile list|add|remove|use|show
    ocx ghost sweep
"""

import logging
from importlib.metadata import PackageNotFoundError, version

import typer
from rich.logging import RichHandler

from ocx_cli.cli.commands import ghost as ghost_commands

try:
    __version__ = version("ocx-cli")
except PackageNotFoundError:
    __version__ = "0.0.0"

app = typer.Typer(
    name="ocx",
    help="OpenCode extension tooling",
    add_completion=False,
    no_args_is_help=True,
)
app.add_typer(ghost_commands.app, name="ghost")


def _configure_logging(verbose: bool) -> None:
    root = logging.getLogger("ocx_cli")
    if not verbose or any(isinstance(h, RichHandler) for h in root.handlers):
        return
    handler = RichHandler(show_path=False, rich_tracebacks=True)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    root.addHandler(handler)
    root.setLevel(logging.DEBUG)


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"ocx {__version__}")
        raise typer.Exit()


@app.callback()
def callback(
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Show debug logs"),
    show_version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version and exit"
    ),
) -> None:
    """OpenCode extension tooling."""
    _configure_logging(verbose)


def main():
    app()


if __name__ == "__main__":
    main()
