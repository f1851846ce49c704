"""
The stop command: stop, and optionally remove, the workspace's unit.
"""

from __future__ import annotations

import click

from sbox.cli.utils import backend_for, handle_errors, load_workspace, workspace_option
from sbox.config import remove_project_data
from sbox.config.models import BackendType


@click.command()
@workspace_option
@click.option("--rm", "remove", is_flag=True, help="Also remove the unit after stopping")
@click.option(
    "--all",
    "remove_all",
    is_flag=True,
    help="Also remove all project configuration and volumes (requires --rm)",
)
@click.option("--yes", "-y", is_flag=True, help="Skip the confirmation prompt")
@click.pass_context
@handle_errors
def stop(
    ctx: click.Context, workspace: str | None, remove: bool, remove_all: bool, yes: bool
) -> None:
    """
    Stop the unit for this workspace.

    Does nothing when no unit is running. Project configuration is kept
    unless --rm --all is given.
    """
    if remove_all and not remove:
        raise click.UsageError("--all requires --rm (use 'sbox stop --rm --all')")

    ws = load_workspace(ctx, workspace)
    unit_backend = backend_for(ctx, ws)
    label = unit_backend.backend_type

    if remove_all and not yes:
        extra = " and persistence volume" if label == BackendType.CONTAINER else ""
        if not click.confirm(
            f"This will remove the {label}{extra} AND all project configuration "
            f"for {ws.workspace}. Continue?"
        ):
            click.echo("Aborted.")
            return

    name = unit_backend.instance_name(ws.workspace, ws.project)
    info = unit_backend.stop(ws.workspace, remove=remove, name=name)
    if info is None:
        click.echo(f"No {label} was running for this project")
    else:
        if info.is_running:
            click.echo(f"{unit_backend.label} stopped: {info.name} ({info.short_id})")
        if remove:
            click.echo(f"{unit_backend.label} removed: {info.name}")

    if not remove_all:
        return

    unit_backend.cleanup(ws.workspace)
    remove_project_data(ws.config, ws.workspace)
    click.echo("Project configuration removed")
