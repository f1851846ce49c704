"""
sbox CLI entry point.
"""

import click

from sbox import __version__
from sbox.cli.utils import setup_logging

from .auth import auth
from .clean import clean
from .config import config_cmd
from .entrypoint import entrypoint
from .env import env
from .info import info
from .profile import profile
from .run import run
from .shell import shell
from .stop import stop


@click.group(invoke_without_command=True)
@click.option(
    "--config",
    "config_file",
    type=click.Path(dir_okay=False),
    help="Path to custom configuration file",
)
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose logging")
@click.version_option(__version__, prog_name="sbox")
@click.pass_context
def cli(ctx: click.Context, config_file: str | None, verbose: bool) -> None:
    """sbox - Run Claude Code in a Docker sandbox with shared agents, plugins and profiles."""
    ctx.ensure_object(dict)
    ctx.obj.setdefault("config_file", config_file)
    setup_logging(verbose)

    # Bare `sbox` launches the workspace
    if ctx.invoked_subcommand is None:
        ctx.invoke(run)


cli.add_command(run)
cli.add_command(shell)
cli.add_command(stop)
cli.add_command(info)
cli.add_command(clean)
cli.add_command(profile)
cli.add_command(env)
cli.add_command(config_cmd)
cli.add_command(auth)
cli.add_command(entrypoint)
