"""
The run command: create or attach to the workspace's unit.
"""

from __future__ import annotations

import logging

import click

from sbox.backends import Backend, BackendOptions, InstanceInfo, generate_instance_name
from sbox.cli.utils import (
    WorkspaceContext,
    backend_for,
    handle_errors,
    load_workspace,
    workspace_option,
)
from sbox.config import save_project_config
from sbox.config.models import VALID_BACKENDS
from sbox.drift import MountDrift, MountDriftDetector
from sbox.errors import SboxError, UnknownProfileError
from sbox.profiles import get_profile

logger = logging.getLogger(__name__)


@click.command()
@workspace_option
@click.option(
    "--profile",
    "profiles",
    multiple=True,
    help="Additional profile for this session (repeatable)",
)
@click.option("--docker-socket", is_flag=True, help="Mount the host Docker socket")
@click.option(
    "--recreate",
    is_flag=True,
    help="Rebuild the template image and recreate the unit",
)
@click.option("--backend", type=click.Choice(VALID_BACKENDS), help="Backend to use")
@click.option("--debug", is_flag=True, help="Enable debug mode for docker sandbox commands")
@click.pass_context
@handle_errors
def run(
    ctx: click.Context,
    workspace: str | None,
    profiles: tuple[str, ...],
    docker_socket: bool,
    recreate: bool,
    backend: str | None,
    debug: bool,
) -> None:
    """Launch the agent in an isolated unit for this workspace."""
    for name in profiles:
        if get_profile(name) is None:
            raise UnknownProfileError(name)

    ws = load_workspace(ctx, workspace, backend)
    _save_project_state(ws)
    unit_backend = backend_for(ctx, ws)
    options = BackendOptions(
        workspace_dir=ws.workspace,
        config=ws.config,
        project=ws.project,
        checked_in=ws.checked_in,
        profiles=list(profiles),
        force_rebuild=recreate,
        debug=debug,
        mount_docker_socket=docker_socket,
    )

    name = unit_backend.instance_name(ws.workspace, ws.project)
    existing = unit_backend.find(ws.workspace, name)
    if recreate and existing is not None:
        _remove_for_recreate(unit_backend, ws.workspace, existing)
    elif existing is not None:
        _warn_on_drift(unit_backend, options, existing)

    unit_backend.run(options)


def _save_project_state(ws: WorkspaceContext) -> None:
    """Record the workspace in the stored config, pinning a generated unit name."""
    if not ws.stored.sandbox_name:
        ws.stored.sandbox_name = generate_instance_name(ws.workspace)
        logger.debug(f"Generated unit name {ws.stored.sandbox_name}")
    ws.project.sandbox_name = ws.stored.sandbox_name
    try:
        save_project_config(ws.config, ws.workspace, ws.stored)
    except OSError as e:
        logger.warning(f"Failed to save project config: {e}")


def _remove_for_recreate(backend: Backend, workspace: str, existing: InstanceInfo) -> None:
    if existing.is_running:
        backend.save_cache_quietly(workspace, existing.name)
    click.echo(f"Removing existing {backend.backend_type} '{existing.name}'...")
    backend.remove(existing.id)
    click.echo(f"Existing {backend.backend_type} removed")


def _warn_on_drift(backend: Backend, options: BackendOptions, existing: InstanceInfo) -> None:
    try:
        drift = MountDriftDetector(backend).check(options, existing)
    except SboxError as e:
        logger.debug(f"Mount drift check failed: {e}")
        return
    if drift.has_drift:
        echo_drift(backend, drift)


def echo_drift(backend: Backend, drift: MountDrift) -> None:
    label = backend.backend_type
    click.echo(err=True)
    click.echo(f"WARNING: {label} mount configuration has changed.", err=True)
    click.echo(f"The following mounts are missing from the running {label}:", err=True)
    for mount in drift.missing:
        suffix = " (read-only)" if mount.read_only else ""
        click.echo(f"  - {mount.source} -> {mount.destination}{suffix}", err=True)
    click.echo(err=True)
    click.echo(f"A {label} keeps the mounts it was created with.", err=True)
    click.echo("To apply new mounts, use: sbox run --recreate", err=True)
    click.echo(err=True)
