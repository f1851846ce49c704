"""Backend driving ``docker sandbox`` units.

The sandbox tool keeps its own persistent state, so a created sandbox
survives restarts without extra plumbing. Sandboxes are looked up by name
first and by recorded workspace path second, which also finds sandboxes
created under an older naming scheme.
"""

from __future__ import annotations

import os

from sbox.backends.base import (
    AGENT_STATE_HOME,
    Backend,
    BackendOptions,
    InstanceInfo,
    InstanceStatus,
    same_path,
)
from sbox.config.merge import VolumeMount
from sbox.config.models import BackendType
from sbox.errors import ExternalToolError, NotRunningError, SboxError
from sbox.state_sync import cache_dir, save_cache
from sbox.template import DEFAULT_TEMPLATE_IMAGE, TemplateBuilder

AGENT = "claude"
LS_COLUMNS = ("SANDBOX", "AGENT", "STATUS", "WORKSPACE")


def parse_sandbox_ls(output: str) -> list[InstanceInfo]:
    """
    Parse the fixed-width table printed by ``docker sandbox ls``.

    Column boundaries come from the header positions. A workspace of ``-``
    means none.

    Raises:
        SboxError: If an expected column is missing from the header
    """
    lines = output.rstrip("\n").split("\n")
    if len(lines) < 2:
        return []

    header = lines[0]
    starts = []
    for column in LS_COLUMNS:
        idx = header.find(column)
        if idx < 0:
            raise SboxError(f"docker sandbox ls: missing column {column!r} in header: {header}")
        starts.append(idx)

    def field_at(line: str, i: int) -> str:
        start = starts[i]
        end = starts[i + 1] if i + 1 < len(starts) else len(line)
        return line[start:end].strip()

    units = []
    for line in lines[1:]:
        if not line.strip():
            continue
        name = field_at(line, 0)
        workspace = field_at(line, 3)
        units.append(
            InstanceInfo(
                id=name,
                name=name,
                image=field_at(line, 1),
                status=InstanceStatus.from_docker(field_at(line, 2)),
                workspace="" if workspace == "-" else workspace,
                backend=BackendType.SANDBOX,
            )
        )
    return units


class SandboxBackend(Backend):
    """Runs the agent in a Docker sandbox (microVM) per workspace."""

    backend_type = BackendType.SANDBOX
    label = "Sandbox"

    def _docker_sandbox(self, *args: str, debug: bool = False) -> list[str]:
        cmd = ["docker", "sandbox"]
        if debug:
            cmd.append("--debug")
        return cmd + list(args)

    def list(self) -> list[InstanceInfo]:
        result = self.runner.check(self._docker_sandbox("ls"), "docker sandbox ls")
        return parse_sandbox_ls(result.stdout)

    def find_by_name(self, name: str) -> InstanceInfo | None:
        for unit in self.list():
            if unit.name == name:
                return unit
        return None

    def find(self, workspace_dir: str, name: str | None = None) -> InstanceInfo | None:
        abs_path = os.path.abspath(workspace_dir)
        expected = name or self.instance_name(abs_path)
        units = self.list()
        for unit in units:
            if unit.name == expected:
                return unit
        for unit in units:
            if unit.workspace and same_path(unit.workspace, abs_path):
                self._logger.debug(f"Found sandbox {unit.name} by workspace path")
                return unit
        return None

    def build_commands(
        self, options: BackendOptions, image: str | None = None
    ) -> tuple[list[str], list[str]]:
        """
        Build the create and run argument lists (without the ``docker`` program).

        Returns:
            Tuple of (create args, run args)
        """
        name = self.instance_name(options.workspace_dir, options.project)
        if image is None:
            image = TemplateBuilder(options.all_profiles(), self.runner).image_name()

        create = self._docker_sandbox("create", "--name", name, debug=options.debug)[1:]
        if image and image != DEFAULT_TEMPLATE_IMAGE:
            create += ["--load-local-template", "--template", image]
        create += [AGENT, options.workspace_dir]
        run = self._docker_sandbox("run", name, debug=options.debug)[1:]
        return create, run

    def create(self, options: BackendOptions, image: str) -> None:
        """
        Create the sandbox, with its output attached to the terminal.

        A non-zero exit is treated as success when the sandbox exists
        afterwards, which covers a concurrent creation that won the race.

        Raises:
            ExternalToolError: If creation failed and no sandbox exists
        """
        name = self.instance_name(options.workspace_dir, options.project)
        create_args, _ = self.build_commands(options, image)
        cmd = ["docker"] + create_args
        self._logger.info(f"Creating sandbox {name} for {options.workspace_dir}")
        returncode = self.runner.run_interactive(cmd)
        if returncode == 0:
            return
        if self.find_by_name(name) is not None:
            self._logger.info(f"Sandbox {name} already exists, attaching to it")
            return
        raise ExternalToolError("docker sandbox create", command=cmd, returncode=returncode)

    def run(self, options: BackendOptions) -> None:
        name = self.instance_name(options.workspace_dir, options.project)
        self.prepare(options)

        if self.find_by_name(name) is None:
            builder = TemplateBuilder(options.all_profiles(), self.runner, logger=self._logger)
            image = builder.build(options.force_rebuild)
            self.create(options, image)

        _, run_args = self.build_commands(options, image="")
        cmd = ["docker"] + run_args
        returncode = self.runner.run_interactive(cmd)
        if returncode != 0:
            raise ExternalToolError("docker sandbox run", command=cmd, returncode=returncode)

    def remove(self, unit_id: str) -> None:
        self.runner.check(self._docker_sandbox("rm", unit_id), "docker sandbox rm")
        self._logger.info(f"Removed sandbox {unit_id}")

    def _stop_unit(self, info: InstanceInfo) -> None:
        self.runner.check(self._docker_sandbox("stop", info.id), "docker sandbox stop")

    def _shell_command(self, info: InstanceInfo) -> list[str]:
        return self._docker_sandbox("exec", "-it", info.id, "bash")

    def save_cache(self, workspace_dir: str, name: str | None = None) -> None:
        info = self.find_running(workspace_dir, name)
        if info is None:
            raise NotRunningError("no running container found")
        save_cache(
            self.runner,
            self._docker_sandbox("exec", info.id),
            cache_dir(workspace_dir),
            AGENT_STATE_HOME,
        )

    def expected_mounts(self, options: BackendOptions) -> list[VolumeMount]:
        return [VolumeMount(options.workspace_dir, options.workspace_dir)]

    def actual_mounts(self, info: InstanceInfo) -> list[VolumeMount]:
        if not info.workspace:
            return []
        return [VolumeMount(info.workspace, info.workspace)]
