"""
The shell command: open a shell in the workspace's running unit.
"""

import click

from sbox.cli.utils import backend_for, handle_errors, load_workspace, workspace_option


@click.command()
@workspace_option
@click.pass_context
@handle_errors
def shell(ctx: click.Context, workspace: str | None) -> None:
    """Open an interactive bash shell in the running unit."""
    ws = load_workspace(ctx, workspace)
    unit_backend = backend_for(ctx, ws)
    name = unit_backend.instance_name(ws.workspace, ws.project)
    returncode = unit_backend.shell(ws.workspace, name)
    ctx.exit(returncode)
