"""
The auth command: manage the API key passed into every unit.
"""

import click

from sbox.cli.utils import get_config, handle_errors
from sbox.config import env_name, save_config
from sbox.config.merge import remove_envs

API_KEY_ENV = "ANTHROPIC_API_KEY"


@click.command()
@click.option("--status", "show_status", is_flag=True, help="Show authentication status")
@click.option("--logout", is_flag=True, help="Remove the stored API key")
@click.pass_context
@handle_errors
def auth(ctx: click.Context, show_status: bool, logout: bool) -> None:
    """
    Configure the API key shared by all units.

    The key is stored in the global config as an ANTHROPIC_API_KEY
    environment entry.
    """
    config = get_config(ctx)
    current = next((spec for spec in config.envs if env_name(spec) == API_KEY_ENV), None)

    if show_status:
        if current is None:
            click.echo("Status: Not configured")
            click.echo("Run 'sbox auth' to configure your API key.")
        elif "=" in current:
            click.echo("Status: Configured")
            click.echo(f"{API_KEY_ENV} is set in global config and passed to all units.")
        else:
            click.echo("Status: Configured (passthrough from host)")
            click.echo(f"{API_KEY_ENV} is resolved from the host environment at launch time.")
        return

    if logout:
        if current is None:
            click.echo("No API key configured.")
            return
        config.envs, _ = remove_envs(config.envs, [API_KEY_ENV])
        save_config(config, ctx.obj.get("config_file"))
        click.echo("API key removed from global config.")
        return

    if current is not None:
        click.echo("API key is already configured. Use 'sbox auth --logout' first to reconfigure.")
        return

    api_key = click.prompt(
        "Enter your Anthropic API key (starts with sk-ant-)", hide_input=True
    ).strip()
    if not api_key:
        raise click.ClickException("API key cannot be empty")
    config.envs.append(f"{API_KEY_ENV}={api_key}")
    save_config(config, ctx.obj.get("config_file"))
    click.echo("API key configured successfully.")
    click.echo(f"{API_KEY_ENV} will be passed to all units.")
