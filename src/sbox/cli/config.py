"""
The config command: view or edit global settings.
"""

from __future__ import annotations

import click
from pydantic import ValidationError

from sbox.cli.utils import get_config, handle_errors
from sbox.config import GlobalConfig, save_config
from sbox.errors import ConfigError

READABLE_KEYS = (
    "claude_home",
    "sbox_data_dir",
    "docker_socket",
    "default_profiles",
    "default_backend",
)
WRITABLE_KEYS = ("claude_home", "docker_socket", "default_backend")


def _format(value: object) -> str:
    if isinstance(value, list):
        return ", ".join(value) if value else "(none)"
    return str(value) if value != "" else "(unset)"


@click.command("config")
@click.argument("key", required=False)
@click.argument("value", required=False)
@click.pass_context
@handle_errors
def config_cmd(ctx: click.Context, key: str | None, value: str | None) -> None:
    """
    View or edit global configuration.

    Without arguments, shows every setting. With KEY, shows that setting.
    With KEY and VALUE, sets it.
    """
    config = get_config(ctx)

    if key is None:
        click.echo("Global configuration:")
        for name in READABLE_KEYS:
            click.echo(f"  {name}: {_format(getattr(config, name))}")
        return

    if key not in READABLE_KEYS:
        raise ConfigError(f"unknown config key: {key}")

    if value is None:
        click.echo(_format(getattr(config, key)))
        return

    if key not in WRITABLE_KEYS:
        raise ConfigError(f"cannot set config key: {key} (read-only)")

    try:
        updated = GlobalConfig(**{**config.model_dump(), key: value})
    except ValidationError as e:
        raise ConfigError(f"invalid value for {key}: {e.errors()[0]['msg']}") from e
    save_config(updated, ctx.obj.get("config_file"))
    ctx.obj["config"] = updated
    click.echo(f"Set {key} = {getattr(updated, key)}")
