"""
Environment variable management commands.
"""

import click

from sbox.cli.utils import (
    echo_resolved_envs,
    get_config,
    handle_errors,
    load_workspace,
    workspace_option,
)
from sbox.config import save_config, save_project_config
from sbox.config.merge import remove_envs, upsert_envs

APPLY_HINT = "Environment changes will take effect on next 'sbox run' (no --recreate needed)."


@click.group()
def env() -> None:
    """Manage environment variables passed into the unit."""
    pass


@env.command("list")
@workspace_option
@click.pass_context
@handle_errors
def list_cmd(ctx: click.Context, workspace: str | None) -> None:
    """List the merged environment variables for this project."""
    ws = load_workspace(ctx, workspace)
    resolved = ws.resolved_envs()
    if not resolved:
        click.echo("No environment variables configured.")
        click.echo(
            "Use 'sbox env add NAME=VALUE' or 'sbox env add --global NAME' to add one."
        )
        return

    click.echo("Environment variables:")
    click.echo()
    echo_resolved_envs(resolved)


@env.command("add")
@click.argument("specs", nargs=-1, required=True)
@click.option("--global", "is_global", is_flag=True, help="Add to the global config")
@workspace_option
@click.pass_context
@handle_errors
def add_cmd(
    ctx: click.Context, specs: tuple[str, ...], is_global: bool, workspace: str | None
) -> None:
    """Add variables: NAME for host passthrough, NAME=VALUE for an explicit value."""
    if is_global:
        config = get_config(ctx)
        config.envs, changes = upsert_envs(config.envs, specs)
        save_config(config, ctx.obj.get("config_file"))
        scope = "global"
    else:
        ws = load_workspace(ctx, workspace)
        ws.stored.envs, changes = upsert_envs(ws.stored.envs, specs)
        save_project_config(ws.config, ws.workspace, ws.stored)
        scope = "project"

    for name, replaced in changes:
        click.echo(f"{'Updated' if replaced else 'Added'} '{name}' ({scope})")
    click.echo(APPLY_HINT)


@env.command("remove")
@click.argument("names", nargs=-1, required=True)
@click.option("--global", "is_global", is_flag=True, help="Remove from the global config")
@workspace_option
@click.pass_context
@handle_errors
def remove_cmd(
    ctx: click.Context, names: tuple[str, ...], is_global: bool, workspace: str | None
) -> None:
    """Remove variables by name."""
    if is_global:
        config = get_config(ctx)
        kept, removed = remove_envs(config.envs, names)
        scope = "global"
    else:
        ws = load_workspace(ctx, workspace)
        kept, removed = remove_envs(ws.stored.envs, names)
        scope = "project"

    if not removed:
        click.echo(f"No matching {scope} environment variables found.")
        return

    if is_global:
        config.envs = kept
        save_config(config, ctx.obj.get("config_file"))
    else:
        ws.stored.envs = kept
        save_project_config(ws.config, ws.workspace, ws.stored)

    for name in removed:
        click.echo(f"Removed '{name}' ({scope})")
    click.echo(APPLY_HINT)
