"""
Profile management commands.
"""

import click

from sbox.cli.utils import handle_errors, load_workspace, workspace_option
from sbox.config import save_project_config
from sbox.errors import ConfigError
from sbox.profiles import get_profile, list_profiles


@click.group()
def profile() -> None:
    """Manage tool profiles baked into the template image."""
    pass


@profile.command("list")
@workspace_option
@click.pass_context
@handle_errors
def list_cmd(ctx: click.Context, workspace: str | None) -> None:
    """List available profiles and mark the ones this project uses."""
    ws = load_workspace(ctx, workspace)
    active = set(ws.project.profiles)

    click.echo("Available profiles:")
    click.echo()
    for name in list_profiles():
        entry = get_profile(name)
        mark = "[x]" if name in active else "[ ]"
        needs = f" (needs {', '.join(entry.dependencies)})" if entry and entry.dependencies else ""
        click.echo(f"  {mark} {name}{needs}")
        if entry:
            click.echo(f"      {entry.description}")

    if ws.project.profiles:
        click.echo()
        click.echo(f"Project profiles: {', '.join(ws.project.profiles)}")


@profile.command("add")
@click.argument("names", nargs=-1, required=True)
@workspace_option
@click.pass_context
@handle_errors
def add_cmd(ctx: click.Context, names: tuple[str, ...], workspace: str | None) -> None:
    """Add profiles to this project."""
    for name in names:
        if get_profile(name) is None:
            raise ConfigError(
                f"unknown profile: {name}\nAvailable profiles: {', '.join(list_profiles())}"
            )

    ws = load_workspace(ctx, workspace)
    added = []
    for name in names:
        if name in ws.stored.profiles:
            click.echo(f"Profile '{name}' is already added to this project")
            continue
        ws.stored.profiles.append(name)
        added.append(name)

    if not added:
        return
    save_project_config(ws.config, ws.workspace, ws.stored)
    for name in added:
        click.echo(f"Added profile '{name}' to project")
    click.echo("Run 'sbox run --recreate' to rebuild and recreate the unit with these profiles")


@profile.command("remove")
@click.argument("names", nargs=-1, required=True)
@workspace_option
@click.pass_context
@handle_errors
def remove_cmd(ctx: click.Context, names: tuple[str, ...], workspace: str | None) -> None:
    """Remove profiles from this project."""
    ws = load_workspace(ctx, workspace)
    removed = [name for name in names if name in ws.stored.profiles]
    for name in names:
        if name not in removed:
            click.echo(f"Profile '{name}' is not in this project")
    if not removed:
        return

    ws.stored.profiles = [p for p in ws.stored.profiles if p not in removed]
    save_project_config(ws.config, ws.workspace, ws.stored)
    for name in removed:
        click.echo(f"Removed profile '{name}' from project")
    click.echo("Run 'sbox run --recreate' to rebuild and recreate the unit without them")
