"""
Shared utilities for CLI commands.
"""

from __future__ import annotations

import functools
import logging
import os
from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, TypeVar

import click

from sbox.backends import Backend, get_backend
from sbox.commands import CommandRunner
from sbox.config import (
    CheckedInLocation,
    GlobalConfig,
    ProjectConfig,
    ResolvedEnv,
    find_checked_in_config,
    load_config,
    load_project_config,
    merge_envs,
    merge_project_config,
    resolve_backend,
)
from sbox.config.models import BackendType
from sbox.errors import SboxError

logger = logging.getLogger(__name__)

F = TypeVar("F", bound=Callable[..., Any])

LOG_LEVEL_ENV = "SBOX_LOG_LEVEL"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_DATEFMT = "%Y-%m-%d %H:%M:%S"

workspace_option = click.option(
    "--workspace",
    "-w",
    type=click.Path(file_okay=False),
    help="Workspace directory (default: current directory)",
)


def setup_logging(verbose: bool = False) -> None:
    """
    Configure logging for CLI.

    Args:
        verbose: If True, enable INFO level logging. SBOX_LOG_LEVEL overrides
            the level either way.
    """
    log_level: int | str = logging.INFO if verbose else logging.WARNING
    override = os.environ.get(LOG_LEVEL_ENV)
    if override:
        log_level = override.upper()
    logging.basicConfig(level=log_level, format=LOG_FORMAT, datefmt=LOG_DATEFMT)


def handle_errors(func: F) -> F:
    """Turn sbox and validation errors into click errors (exit code 1)."""

    @functools.wraps(func)
    def wrapper(*args: Any, **kwargs: Any) -> Any:
        try:
            return func(*args, **kwargs)
        except (SboxError, ValueError) as e:
            raise click.ClickException(str(e)) from e

    return wrapper  # type: ignore[return-value]


def get_config(ctx: click.Context) -> GlobalConfig:
    """Load the global config once per invocation and cache it on the context."""
    obj = ctx.ensure_object(dict)
    if obj.get("config") is None:
        obj["config"] = load_config(obj.get("config_file"))
    return obj["config"]


def get_runner(ctx: click.Context) -> CommandRunner:
    obj = ctx.ensure_object(dict)
    if obj.get("runner") is None:
        obj["runner"] = CommandRunner()
    return obj["runner"]


def resolve_workspace(workspace: str | None) -> str:
    path = os.path.abspath(workspace or os.getcwd())
    if not os.path.isdir(path):
        raise click.ClickException(f"workspace directory does not exist: {path}")
    return path


@dataclass
class WorkspaceContext:
    """Every config layer that applies to one workspace."""

    workspace: str
    config: GlobalConfig
    stored: ProjectConfig
    project_hash: str
    checked_in: CheckedInLocation | None
    project: ProjectConfig
    backend_type: BackendType

    @property
    def is_known(self) -> bool:
        """Whether sbox has stored config for this workspace."""
        return bool(self.stored.workspace_path)

    def resolved_envs(self) -> list[ResolvedEnv]:
        checked_in_envs = self.checked_in.config.envs if self.checked_in else []
        _, resolved = merge_envs(self.config.envs, self.stored.envs, checked_in_envs)
        return resolved


def load_workspace(
    ctx: click.Context, workspace: str | None, backend_flag: str | None = None
) -> WorkspaceContext:
    """
    Resolve the stored, checked-in and merged config for a workspace.

    Raises:
        ConfigError: If any config layer is invalid
    """
    config = get_config(ctx)
    path = resolve_workspace(workspace)
    stored, digest = load_project_config(config, path)
    checked_in = find_checked_in_config(path)
    merged = merge_project_config(stored, checked_in)
    backend_type = resolve_backend(backend_flag, checked_in, merged, config)
    logger.debug(f"Workspace {path}: backend {backend_type}, project {digest}")
    return WorkspaceContext(
        workspace=path,
        config=config,
        stored=stored,
        project_hash=digest,
        checked_in=checked_in,
        project=merged,
        backend_type=backend_type,
    )


def backend_for(ctx: click.Context, ws: WorkspaceContext) -> Backend:
    return get_backend(ws.backend_type, ws.config, runner=get_runner(ctx))


def format_docker_command(args: Iterable[str]) -> str:
    """
    Render docker arguments for display.

    Values following a ``--flag`` are shortened past 80 characters and quoted
    when they contain spaces.
    """
    args = list(args)
    parts = []
    i = 0
    while i < len(args):
        arg = args[i]
        if arg.startswith("--") and i + 1 < len(args):
            value = args[i + 1]
            if len(value) > 80:
                value = value[:77] + "..."
            if " " in value:
                value = f'"{value}"'
            parts += [arg, value]
            i += 2
        else:
            parts.append(arg)
            i += 1
    return " ".join(parts)


def echo_resolved_envs(
    resolved: Iterable[ResolvedEnv], prefix: str = "  ", environ: Mapping[str, str] | None = None
) -> None:
    """Print env entries with their source tags, resolving passthrough names from the host."""
    if environ is None:
        environ = os.environ
    from_host = unset = False
    for env in resolved:
        tag = f"  [{env.source}]"
        if not env.is_passthrough:
            click.echo(f"{prefix}{env.name}={env.value}{tag}")
        elif env.name in environ:
            click.echo(f"{prefix}{env.name}={environ[env.name]}  (from host*){tag}")
            from_host = True
        else:
            click.echo(f"{prefix}{env.name}  (not set on host, will be empty in sandbox){tag}")
            unset = True

    if from_host or unset:
        click.echo()
    if from_host:
        click.echo(
            f"{prefix}* Value resolved from the current host environment; may differ at run time."
        )
    if unset:
        click.echo(
            f"{prefix}Hint: set missing variables on your host or use "
            f"'sbox env add NAME=VALUE' to set an explicit value."
        )
