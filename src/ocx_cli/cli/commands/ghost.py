"""``ocx ghost`` commands: run OpenCode in ghost mode and manage profiles."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional

import typer
from rich.console import Console
from rich.table import Table

from ocx_cli.errors import OCXError
from ocx_cli.farm.lifecycle import cleanup_orphaned_ghost_dirs
from ocx_cli.ghost.profiles import ProfileManager
from ocx_cli.ghost.session import GhostSession

console = Console()

app = typer.Typer(
    name="ghost",
    help="Run OpenCode with profile configuration, without touching project config files.",
    no_args_is_help=True,
)

profile_app = typer.Typer(
    name="profile",
    help="Manage ghost profiles.",
    no_args_is_help=True,
)
app.add_typer(profile_app, name="profile")


def _fail(exc: OCXError) -> typer.Exit:
    console.print(f"[red]Error:[/red] {exc}")
    return typer.Exit(exc.exit_code)


@app.command("init")
def init_cmd() -> None:
    """Create the profiles directory with a default profile."""
    manager = ProfileManager()
    already = manager.is_initialized()
    try:
        profile = manager.initialize()
    except OCXError as exc:
        raise _fail(exc)

    if already:
        console.print(f"[yellow]Profiles already initialized at {manager.profiles_dir}[/yellow]")
    else:
        console.print(f"[green]✓[/green] Initialized ghost profiles at {manager.profiles_dir}")
    console.print(f"  Edit [cyan]{profile.directory / 'ghost.yaml'}[/cyan] to change what the farm shows.")


@app.command(
    "opencode",
    context_settings={"allow_extra_args": True, "ignore_unknown_options": True},
)
def opencode_cmd(
    ctx: typer.Context,
    profile: Optional[str] = typer.Option(None, "--profile", "-p", help="Use a specific profile"),
) -> None:
    """Launch OpenCode in a ghost farm of the current directory.

    Extra arguments are passed to opencode unchanged.
    """
    try:
        manager = ProfileManager.require_initialized()
        selected = manager.get(manager.get_current(profile))
        if not selected.has_opencode_config:
            console.print(
                f"[yellow]No opencode.jsonc found at {selected.opencode_config}. "
                "Create one to customize OpenCode settings.[/yellow]"
            )
        session = GhostSession(Path.cwd(), selected)
        exit_code = session.run(ctx.args)
    except OCXError as exc:
        raise _fail(exc)

    raise typer.Exit(exit_code)


@app.command("sweep")
def sweep_cmd(
    json_output: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
) -> None:
    """Remove farms left behind by interrupted sessions."""
    removed = cleanup_orphaned_ghost_dirs()
    if json_output:
        typer.echo(json.dumps({"removed": removed}))
        return
    if removed:
        console.print(f"[green]✓[/green] Removed {removed} orphaned farm(s)")
    else:
        console.print("[dim]No orphaned farms found[/dim]")


@profile_app.command("list")
def profile_list_cmd(
    json_output: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
) -> None:
    """List profiles; the active one is marked."""
    try:
        manager = ProfileManager.require_initialized()
        names = manager.list()
        current = manager.get_current()
    except OCXError as exc:
        raise _fail(exc)

    if json_output:
        typer.echo(json.dumps({"profiles": names, "current": current}, indent=2))
        return

    table = Table(title="Ghost Profiles", show_header=True)
    table.add_column("", width=1)
    table.add_column("Profile", style="cyan")
    for name in names:
        table.add_row("*" if name == current else "", name)
    console.print(table)


@profile_app.command("add")
def profile_add_cmd(
    name: str = typer.Argument(..., help="Profile name"),
    clone_from: Optional[str] = typer.Option(None, "--from", help="Copy an existing profile"),
) -> None:
    """Create a profile."""
    try:
        profile = ProfileManager.require_initialized().add(name, clone_from=clone_from)
    except OCXError as exc:
        raise _fail(exc)
    console.print(f"[green]✓[/green] Created profile '{profile.name}' at {profile.directory}")


@profile_app.command("remove")
def profile_remove_cmd(
    name: str = typer.Argument(..., help="Profile name"),
) -> None:
    """Delete a profile."""
    try:
        ProfileManager.require_initialized().remove(name)
    except OCXError as exc:
        raise _fail(exc)
    console.print(f"[green]✓[/green] Removed profile '{name}'")


@profile_app.command("use")
def profile_use_cmd(
    name: str = typer.Argument(..., help="Profile name"),
) -> None:
    """Make a profile the active one."""
    try:
        ProfileManager.require_initialized().set_current(name)
    except OCXError as exc:
        raise _fail(exc)
    console.print(f"[green]✓[/green] Now using profile '{name}'")


@profile_app.command("show")
def profile_show_cmd(
    name: Optional[str] = typer.Argument(None, help="Profile name (default: active profile)"),
    json_output: bool = typer.Option(False, "--json", help="Output machine-readable JSON"),
) -> None:
    """Show a profile's settings."""
    try:
        manager = ProfileManager.require_initialized()
        profile = manager.get(name or manager.get_current())
    except OCXError as exc:
        raise _fail(exc)

    if json_output:
        typer.echo(json.dumps(profile.to_dict(), indent=2))
        return

    console.print(f"[bold]Profile:[/bold] {profile.name}")
    console.print(f"  Directory: {profile.directory}")
    console.print(f"  opencode.jsonc: {'yes' if profile.has_opencode_config else 'no'}")
    console.print(f"  AGENTS.md: {'yes' if profile.has_agents else 'no'}")
    console.print(f"  max_files: {profile.ghost.max_files}")
    for label, patterns in (("include", profile.ghost.include), ("exclude", profile.ghost.exclude)):
        console.print(f"  {label}:")
        if not patterns:
            console.print("    [dim](none)[/dim]")
        for pattern in patterns:
            console.print(f"    - {pattern}")
