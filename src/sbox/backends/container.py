"""Backend driving plain ``docker run`` containers.

Persistence comes from a named volume per workspace
(``sbox-claude-<hash>``) mounted at the agent's state-home. The volume is
created lazily on first run and only removed on full teardown.
"""

from __future__ import annotations

import json
import os
import sys
from collections.abc import Mapping
from pathlib import Path

from sbox.backends.base import (
    AGENT_HOME,
    AGENT_STATE_HOME,
    NAME_PREFIX,
    Backend,
    BackendOptions,
    InstanceInfo,
    InstanceStatus,
    same_path,
)
from sbox.config.loader import project_hash
from sbox.config.merge import (
    VolumeMount,
    effective_socket_policy,
    parse_volume_spec,
    should_mount_docker_socket,
)
from sbox.config.models import BackendType
from sbox.errors import ConfigError, ExternalToolError
from sbox.template import TemplateBuilder

DOCKER_SOCKET_ENV = "SBOX_DOCKER_SOCKET"
SOCKET_DESTINATION = "/var/run/docker.sock"
SETTINGS_FILES = ("settings.json", "settings.local.json")
_BIND_MOUNTS_FORMAT = (
    '{{range .Mounts}}{{if eq .Type "bind"}}{{.Source}}:{{.Destination}}\n{{end}}{{end}}'
)


def volume_name(workspace_dir: str) -> str:
    return NAME_PREFIX + project_hash(workspace_dir)


def docker_socket_path(
    environ: Mapping[str, str] | None = None, platform: str | None = None
) -> str:
    """Host Docker socket path, honoring SBOX_DOCKER_SOCKET and Docker Desktop on macOS."""
    if environ is None:
        environ = os.environ
    override = environ.get(DOCKER_SOCKET_ENV)
    if override:
        return override
    if (platform or sys.platform) == "darwin":
        desktop = Path.home() / ".docker" / "run" / "docker.sock"
        if desktop.exists():
            return str(desktop)
    return SOCKET_DESTINATION


def parse_ps_line(line: str, workspace: str = "") -> InstanceInfo:
    """
    Build an InstanceInfo from one ``docker ps --format {{json .}}`` line.

    Raises:
        ValueError: If the line is not a JSON object
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")
    return InstanceInfo(
        id=data.get("ID", ""),
        name=data.get("Names", ""),
        image=data.get("Image", ""),
        status=InstanceStatus.from_docker(data.get("State", "")),
        workspace=workspace,
        backend=BackendType.CONTAINER,
    )


def parse_inspect_mounts(output: str) -> list[VolumeMount]:
    """Parse ``docker inspect --format '{{json .Mounts}}'`` output."""
    output = output.strip()
    if not output or output == "null":
        return []
    mounts = []
    for m in json.loads(output):
        source = m.get("Name") if m.get("Type") == "volume" else m.get("Source")
        mounts.append(
            VolumeMount(source or "", m.get("Destination", ""), read_only=not m.get("RW", True))
        )
    return mounts


class ContainerBackend(Backend):
    """Runs the agent in a long-lived Docker container per workspace."""

    backend_type = BackendType.CONTAINER
    label = "Container"

    def _ps(self, name_filter: str, workspace: str = "") -> list[InstanceInfo]:
        """Containers matching the name filter; lines docker garbled are skipped."""
        cmd = ["docker", "ps", "-a", "--filter", f"name={name_filter}", "--format", "{{json .}}"]
        result = self.runner.check(cmd, "docker ps")
        units = []
        for line in result.stdout.splitlines():
            if not line.strip():
                continue
            try:
                units.append(parse_ps_line(line, workspace=workspace))
            except ValueError as e:
                self._logger.warning(f"Skipping unreadable docker ps line {line!r}: {e}")
        return units

    def find(self, workspace_dir: str, name: str | None = None) -> InstanceInfo | None:
        abs_path = os.path.abspath(workspace_dir)
        name = name or self.instance_name(abs_path)
        units = self._ps(f"^{name}$", workspace=abs_path)
        if units:
            return units[0]
        return self.find_by_workspace(abs_path)

    def list(self) -> list[InstanceInfo]:
        units = self._ps(f"^{NAME_PREFIX}")
        for info in units:
            info.workspace = self._workspace_of(info.id)
        return units

    def _workspace_of(self, unit_id: str) -> str:
        """The bind mount whose source and destination match is the workspace."""
        result = self.runner.run(["docker", "inspect", unit_id, "--format", _BIND_MOUNTS_FORMAT])
        if not result.ok:
            return ""
        for line in result.stdout.splitlines():
            source, _, dest = line.strip().partition(":")
            if source and source == dest and source.startswith("/"):
                return source
        return ""

    def find_by_workspace(self, workspace_dir: str) -> InstanceInfo | None:
        """Scan all sbox containers for one mounting this workspace, symlinks resolved."""
        abs_path = os.path.abspath(workspace_dir)
        for unit in self.list():
            if unit.workspace and same_path(unit.workspace, abs_path):
                return unit
        return None

    # -- mounts ------------------------------------------------------------

    def expected_mounts(self, options: BackendOptions) -> list[VolumeMount]:
        """
        Mounts for a new container, in ``docker run`` order.

        Project volumes that fail to parse or whose host path is missing are
        skipped with a warning.
        """
        ws = options.workspace_dir
        mounts = [
            VolumeMount(ws, ws),
            VolumeMount(volume_name(ws), AGENT_STATE_HOME),
        ]

        ssh_dir = Path.home() / ".ssh"
        if ssh_dir.is_dir():
            mounts.append(VolumeMount(str(ssh_dir), f"{AGENT_HOME}/.ssh", read_only=True))

        policy = effective_socket_policy(options.project, options.config)
        if should_mount_docker_socket(policy, options.mount_docker_socket, options.all_profiles()):
            mounts.append(VolumeMount(docker_socket_path(), SOCKET_DESTINATION))

        for spec in options.project.volumes:
            try:
                mount = parse_volume_spec(spec)
            except ConfigError as e:
                self._logger.warning(f"Skipping volume {spec!r}: {e}")
                continue
            if not os.path.exists(mount.source):
                self._logger.warning(f"Skipping volume {spec!r}: host path not found")
                continue
            mounts.append(mount)

        claude_home = Path(self.config.claude_home).expanduser()
        for filename in SETTINGS_FILES:
            settings = claude_home / filename
            if settings.is_file():
                mounts.append(
                    VolumeMount(str(settings), f"{AGENT_STATE_HOME}/{filename}", read_only=True)
                )
        return mounts

    def actual_mounts(self, info: InstanceInfo) -> list[VolumeMount]:
        result = self.runner.check(
            ["docker", "inspect", info.id, "--format", "{{json .Mounts}}"], "docker inspect"
        )
        return parse_inspect_mounts(result.stdout)

    def build_run_args(self, options: BackendOptions, image: str) -> list[str]:
        """Arguments for ``docker run`` (without the ``docker`` program)."""
        ws = options.workspace_dir
        args = ["run", "-it", "--name", self.instance_name(ws, options.project)]
        for mount in self.expected_mounts(options):
            args += ["-v", mount.to_spec()]
        args += ["-w", ws, "-e", f"WORKSPACE_DIR={ws}", image]
        return args

    # -- lifecycle ---------------------------------------------------------

    def ensure_volume(self, workspace_dir: str) -> str:
        name = volume_name(workspace_dir)
        if not self.runner.run(["docker", "volume", "inspect", name]).ok:
            self.runner.check(["docker", "volume", "create", name], "docker volume create")
            self._logger.info(f"Created state volume {name}")
        return name

    def remove_volume(self, workspace_dir: str) -> None:
        name = volume_name(workspace_dir)
        self.runner.check(["docker", "volume", "rm", name], "docker volume rm")
        self._logger.info(f"Removed state volume {name}")

    def run(self, options: BackendOptions) -> None:
        self.prepare(options)
        name = self.instance_name(options.workspace_dir, options.project)
        existing = self.find(options.workspace_dir, name)

        if existing is not None and existing.is_running:
            cmd = ["docker", "attach", name]
        elif existing is not None:
            cmd = ["docker", "start", "-ai", name]
        else:
            builder = TemplateBuilder(options.all_profiles(), self.runner, logger=self._logger)
            image = builder.build(options.force_rebuild)
            self.ensure_volume(options.workspace_dir)
            cmd = ["docker"] + self.build_run_args(options, image)

        returncode = self.runner.run_interactive(cmd)
        if returncode != 0:
            raise ExternalToolError(f"docker {cmd[1]}", command=cmd, returncode=returncode)

    def remove(self, unit_id: str) -> None:
        stopped = self.runner.run(["docker", "stop", unit_id])
        if not stopped.ok:
            self._logger.debug(f"docker stop {unit_id} failed: {stopped.stderr.strip()}")
        self.runner.check(["docker", "rm", unit_id], "docker rm")
        self._logger.info(f"Removed container {unit_id}")

    def _stop_unit(self, info: InstanceInfo) -> None:
        self.runner.check(["docker", "stop", info.id], "docker stop")

    def _shell_command(self, info: InstanceInfo) -> list[str]:
        return ["docker", "exec", "-it", info.id, "bash"]

    def save_cache(self, workspace_dir: str, name: str | None = None) -> None:
        # State already lives in the named volume
        self._logger.debug("Container backend persists state in its volume, no cache to save")

    def cleanup(self, workspace_dir: str) -> None:
        super().cleanup(workspace_dir)
        try:
            self.remove_volume(workspace_dir)
        except ExternalToolError as e:
            self._logger.warning(f"Failed to remove state volume: {e}")
