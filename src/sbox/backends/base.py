"""
Backend abstraction.

A backend drives one kind of unit (Docker sandbox or plain container)
through the same per-workspace state machine::

    absent --run--> running --stop--> stopped --run--> running
    stopped --remove--> removed, running --stop+remove--> removed

Subclasses only supply the external commands and how persistence works.
"""

from __future__ import annotations

import logging
import os
import re
import shutil
from abc import ABC, abstractmethod
from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

from sbox.commands import CommandRunner
from sbox.config.merge import VolumeMount, merge_profiles
from sbox.config.models import BackendType, CheckedInLocation, GlobalConfig, ProjectConfig
from sbox.entrypoint.manifest import handoff_dir
from sbox.entrypoint.preparer import Preparer
from sbox.errors import AlreadyInsideSandboxError, NotRunningError, SboxError

logger = logging.getLogger(__name__)

NAME_PREFIX = "sbox-claude-"
AGENT_HOME = "/home/agent"
AGENT_STATE_HOME = f"{AGENT_HOME}/.claude"

_NAME_UNSAFE = re.compile(r"[^a-zA-Z0-9_-]")
_DASH_RUN = re.compile(r"-{2,}")


class InstanceStatus(str, Enum):
    NOT_CREATED = "not-created"
    STOPPED = "stopped"
    RUNNING = "running"

    def __str__(self) -> str:
        return self.value

    @classmethod
    def from_docker(cls, raw: str) -> InstanceStatus:
        """Map a docker state string; anything that is not running counts as stopped."""
        return cls.RUNNING if raw.strip().lower() == "running" else cls.STOPPED


@dataclass
class InstanceInfo:
    """Backend-agnostic view of a unit. Recomputed on every query."""

    id: str
    name: str
    status: InstanceStatus
    backend: BackendType
    image: str = ""
    workspace: str = ""

    @property
    def is_running(self) -> bool:
        return self.status == InstanceStatus.RUNNING

    @property
    def short_id(self) -> str:
        return self.id[:12]


@dataclass
class BackendOptions:
    """Everything a backend needs to run a workspace."""

    workspace_dir: str
    config: GlobalConfig
    project: ProjectConfig
    checked_in: CheckedInLocation | None = None
    profiles: list[str] = field(default_factory=list)
    force_rebuild: bool = False
    debug: bool = False
    mount_docker_socket: bool = False

    def __post_init__(self) -> None:
        self.workspace_dir = os.path.abspath(self.workspace_dir)

    def all_profiles(self) -> list[str]:
        """Project profiles first, then profiles requested for this session."""
        return merge_profiles(self.project.profiles, self.profiles)

    def checked_in_envs(self) -> list[str]:
        return list(self.checked_in.config.envs) if self.checked_in else []


def generate_instance_name(workspace_dir: str | Path) -> str:
    """
    Derive a stable unit name from the workspace directory name.

    Unsafe characters become ``-``, dash runs collapse, edges are trimmed
    and an empty result falls back to ``workspace``.
    """
    basename = Path(os.path.abspath(str(workspace_dir))).name
    sanitized = _DASH_RUN.sub("-", _NAME_UNSAFE.sub("-", basename)).strip("-")
    return NAME_PREFIX + (sanitized or "workspace")


def is_inside_sandbox(
    environ: Mapping[str, str] | None = None, dockerenv: Path = Path("/.dockerenv")
) -> bool:
    """True when running inside a sandbox or container rather than on the host."""
    if environ is None:
        environ = os.environ
    if dockerenv.exists():
        return True
    return environ.get("USER") == "agent" or environ.get("HOME") == AGENT_HOME


def same_path(a: str, b: str) -> bool:
    """Compare two paths after resolving symlinks on both sides."""
    if a == b:
        return True
    return os.path.realpath(a) == os.path.realpath(b)


class Backend(ABC):
    """
    Drives units of one backend type.

    Args:
        config: Global configuration
        runner: Command runner for docker calls
        logger: Logger to report progress on
    """

    backend_type: BackendType
    label: str = "Unit"
    # Units keep the mount set they were created with
    remembers_mounts: bool = True

    def __init__(
        self,
        config: GlobalConfig,
        runner: CommandRunner | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.runner = runner or CommandRunner()
        self._logger = logger or logging.getLogger(type(self).__module__)

    def instance_name(self, workspace_dir: str, project: ProjectConfig | None = None) -> str:
        if project is not None and project.sandbox_name:
            return project.sandbox_name
        return generate_instance_name(workspace_dir)

    def prepare(self, options: BackendOptions) -> None:
        """Re-materialize the handoff directory; host config may have changed."""
        Preparer(self.config, logger=self._logger).prepare(
            options.workspace_dir,
            self.backend_type,
            project_envs=options.project.envs,
            checked_in_envs=options.checked_in_envs(),
        )

    # -- queries -----------------------------------------------------------

    @abstractmethod
    def find(self, workspace_dir: str, name: str | None = None) -> InstanceInfo | None:
        """
        Find the unit for a workspace in any state.

        Args:
            workspace_dir: Workspace directory
            name: Unit name override (default: derived from the workspace)

        Returns:
            InstanceInfo, or None when no unit exists
        """

    def find_running(self, workspace_dir: str, name: str | None = None) -> InstanceInfo | None:
        info = self.find(workspace_dir, name)
        if info is None or not info.is_running:
            return None
        return info

    @abstractmethod
    def list(self) -> list[InstanceInfo]:
        """List every unit this backend manages."""

    @abstractmethod
    def expected_mounts(self, options: BackendOptions) -> list[VolumeMount]:
        """Mounts a unit created now from ``options`` would have."""

    @abstractmethod
    def actual_mounts(self, info: InstanceInfo) -> list[VolumeMount]:
        """Mounts an existing unit actually has."""

    # -- lifecycle ---------------------------------------------------------

    @abstractmethod
    def run(self, options: BackendOptions) -> None:
        """Create the unit if needed, then attach the terminal to it."""

    @abstractmethod
    def remove(self, unit_id: str) -> None:
        """Delete a unit. Its persistent state outside the unit is kept."""

    @abstractmethod
    def save_cache(self, workspace_dir: str, name: str | None = None) -> None:
        """Copy the unit's live state-home to the workspace cache."""

    @abstractmethod
    def _shell_command(self, info: InstanceInfo) -> list[str]:
        """Command that opens an interactive shell in a running unit."""

    @abstractmethod
    def _stop_unit(self, info: InstanceInfo) -> None:
        """Stop a running unit."""

    def shell(self, workspace_dir: str, name: str | None = None) -> int:
        """
        Open an interactive shell in the workspace's running unit.

        Returns:
            Exit code of the shell

        Raises:
            AlreadyInsideSandboxError: If called from inside a unit
            NotRunningError: If no unit is running for the workspace
        """
        if is_inside_sandbox():
            raise AlreadyInsideSandboxError()
        info = self.find_running(workspace_dir, name)
        if info is None:
            raise NotRunningError(
                f"no {self.backend_type} is running for workspace: {workspace_dir}\n"
                f"Start one first with: sbox run"
            )
        return self.runner.run_interactive(self._shell_command(info))

    def stop(
        self, workspace_dir: str, remove: bool = False, name: str | None = None
    ) -> InstanceInfo | None:
        """
        Stop the workspace's unit, optionally removing it.

        The state cache is saved before a running unit goes down. With no
        running unit and no removal requested nothing is touched.

        Returns:
            The unit acted on, or None when there was nothing to do
        """
        info = self.find(workspace_dir, name)
        if info is None or (not info.is_running and not remove):
            self._logger.debug(f"No running {self.backend_type} for {workspace_dir}")
            return None

        if info.is_running:
            self.save_cache_quietly(workspace_dir, name)
            self._logger.info(f"Stopping {self.backend_type} {info.name}")
            self._stop_unit(info)
        if remove:
            self.remove(info.id)
        return info

    def save_cache_quietly(self, workspace_dir: str, name: str | None = None) -> bool:
        """Best-effort save_cache; failures are logged, never raised."""
        try:
            self.save_cache(workspace_dir, name)
            return True
        except SboxError as e:
            self._logger.warning(f"Failed to save state cache: {e}")
            return False

    def cleanup(self, workspace_dir: str) -> None:
        """Remove the workspace's handoff directory."""
        target = handoff_dir(workspace_dir)
        if target.exists():
            shutil.rmtree(target)
            self._logger.info(f"Removed {target}")
