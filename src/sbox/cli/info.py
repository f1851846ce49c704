"""
The info command: show what sbox knows about a workspace.
"""

from __future__ import annotations

import os

import click

from sbox.backends import (
    Backend,
    BackendOptions,
    InstanceInfo,
    SandboxBackend,
    generate_instance_name,
    get_backend,
)
from sbox.cli.utils import (
    backend_for,
    echo_resolved_envs,
    format_docker_command,
    get_config,
    get_runner,
    handle_errors,
    load_workspace,
    workspace_option,
)
from sbox.config import (
    GlobalConfig,
    ProjectConfig,
    ResolvedEnv,
    list_projects,
    merge_envs,
    resolve_backend,
)
from sbox.config.merge import effective_socket_policy
from sbox.config.models import BackendType
from sbox.errors import SboxError


@click.command()
@workspace_option
@click.option("--all", "show_all", is_flag=True, help="List every known project")
@click.pass_context
@handle_errors
def info(ctx: click.Context, workspace: str | None, show_all: bool) -> None:
    """Show configuration and unit status for this workspace."""
    if show_all:
        _info_all(ctx)
        return

    ws = load_workspace(ctx, workspace)
    if not ws.is_known and ws.checked_in is None:
        click.echo("No sandbox has been run in this directory yet.")
        click.echo("Run 'sbox' or 'sbox run' to create one for this project.")
        click.echo()
        click.echo("Use 'sbox info --all' to list all known projects.")
        return

    click.echo(f"Project: {ws.workspace}")
    click.echo(f"  Hash:    {ws.project_hash}")
    click.echo(f"  Backend: {ws.backend_type}")
    if ws.checked_in is not None:
        click.echo(f"  Checked-in config: {ws.checked_in.path}")
    _echo_project(ws.config, ws.project, ws.resolved_envs(), prefix="  ")

    unit_backend = backend_for(ctx, ws)
    name = unit_backend.instance_name(ws.workspace, ws.project)
    try:
        unit = unit_backend.find(ws.workspace, name)
    except SboxError as e:
        click.echo(f"  {unit_backend.label}:")
        click.echo(f"    Name:   {name}")
        click.echo(f"    Status: error ({e})")
        return
    _echo_unit(unit_backend, name, unit, prefix="  ")

    if isinstance(unit_backend, SandboxBackend):
        options = BackendOptions(
            workspace_dir=ws.workspace,
            config=ws.config,
            project=ws.project,
            checked_in=ws.checked_in,
        )
        create_args, _ = unit_backend.build_commands(options)
        click.echo(f"  Command:\n    docker {format_docker_command(create_args)}")


def _info_all(ctx: click.Context) -> None:
    config = get_config(ctx)
    projects = list_projects(config)
    if not projects:
        click.echo("No known projects.")
        click.echo("Run 'sbox' or 'sbox run' in a directory to create a project.")
        return

    click.echo("Known projects:")
    click.echo()
    units: dict[BackendType, dict[str, InstanceInfo] | SboxError] = {}
    for project in projects:
        path = project.workspace_path
        display = path or "(unknown path)"
        if path and not os.path.isdir(path):
            display += " (missing)"
        backend_type = resolve_backend(None, None, project.config, config)

        click.echo(f"  {display}")
        click.echo(f"    Hash:    {project.hash}")
        click.echo(f"    Backend: {backend_type}")
        if not path:
            click.echo("    Status:  unknown (legacy project)")
        _, resolved = merge_envs(config.envs, project.config.envs, [])
        _echo_project(config, project.config, resolved, prefix="    ")

        if path:
            unit_backend = get_backend(backend_type, config, runner=get_runner(ctx))
            if backend_type not in units:
                units[backend_type] = _units_by_name(unit_backend)
            known = units[backend_type]
            name = project.config.sandbox_name or generate_instance_name(path)
            if isinstance(known, SboxError):
                click.echo(f"    {unit_backend.label}:")
                click.echo(f"      Name:   {name}")
                click.echo(f"      Status: error ({known})")
            else:
                _echo_unit(unit_backend, name, known.get(name), prefix="    ")
        click.echo()


def _units_by_name(backend: Backend) -> dict[str, InstanceInfo] | SboxError:
    try:
        return {unit.name: unit for unit in backend.list()}
    except SboxError as e:
        return e


def _echo_project(
    config: GlobalConfig, project: ProjectConfig, resolved: list[ResolvedEnv], prefix: str
) -> None:
    if project.profiles:
        click.echo(f"{prefix}Profiles:")
        for name in project.profiles:
            click.echo(f"{prefix}  - {name}")
    if project.volumes:
        click.echo(f"{prefix}Volumes:")
        for spec in project.volumes:
            click.echo(f"{prefix}  - {spec}")
    if resolved:
        click.echo(f"{prefix}Envs:")
        echo_resolved_envs(resolved, prefix=prefix + "  ")
    click.echo(f"{prefix}Docker:  {effective_socket_policy(project, config)}")


def _echo_unit(backend: Backend, name: str, unit: InstanceInfo | None, prefix: str) -> None:
    click.echo(f"{prefix}{backend.label}:")
    click.echo(f"{prefix}  Name:   {name}")
    if unit is None:
        click.echo(f"{prefix}  Status: not created")
        return
    click.echo(f"{prefix}  Status: {unit.status}")
    if unit.image:
        click.echo(f"{prefix}  Image:  {unit.image}")
