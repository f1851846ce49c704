"""
The clean command: remove cached template images and project data.
"""

import click

from sbox.cli.utils import get_config, get_runner, handle_errors
from sbox.config.loader import remove_all_project_data
from sbox.template import clean_templates


@click.command()
@click.option("--images", is_flag=True, help="Remove cached template images only (default)")
@click.option("--all", "clean_all", is_flag=True, help="Also remove all stored project data")
@click.pass_context
@handle_errors
def clean(ctx: click.Context, images: bool, clean_all: bool) -> None:
    """Clean up cached template images and project data."""
    click.echo("Cleaning cached template images...")
    removed = clean_templates(get_runner(ctx))
    click.echo(f"Template images cleaned ({len(removed)} removed)")

    if clean_all:
        click.echo("Cleaning project data...")
        remove_all_project_data(get_config(ctx))
        click.echo("Project data cleaned")

    click.echo("Cleanup complete")
