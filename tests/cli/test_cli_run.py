"""Tests for the run and shell commands."""

from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sbox.backends import BackendOptions, InstanceInfo, InstanceStatus
from sbox.config import (
    GlobalConfig,
    ProjectConfig,
    VolumeMount,
    load_project_config,
    save_project_config,
)
from sbox.config.models import BackendType
from sbox.errors import NotRunningError

pytestmark = pytest.mark.unit

NAME = "sbox-claude-my-project"


def _unit(status: InstanceStatus = InstanceStatus.RUNNING) -> InstanceInfo:
    return InstanceInfo(id="unit-1", name=NAME, status=status, backend=BackendType.SANDBOX)


@pytest.fixture
def backend() -> MagicMock:
    mock = MagicMock()
    mock.backend_type = BackendType.SANDBOX
    mock.label = "Sandbox"
    mock.remembers_mounts = True
    mock.instance_name.return_value = NAME
    mock.find.return_value = None
    return mock


class TestRunCommand:
    """Tests for sbox run."""

    def test_first_run_pins_instance_name(
        self, invoke, backend: MagicMock, global_config: GlobalConfig, workspace: Path
    ) -> None:
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace)])

        assert result.exit_code == 0, result.output
        stored, _ = load_project_config(global_config, str(workspace))
        assert stored.sandbox_name == NAME
        assert stored.workspace_path == str(workspace)
        options: BackendOptions = backend.run.call_args.args[0]
        assert options.workspace_dir == str(workspace)
        assert options.force_rebuild is False

    def test_known_project_config_saved_every_run(
        self, invoke, backend: MagicMock, global_config: GlobalConfig, workspace: Path
    ) -> None:
        path = save_project_config(
            global_config, str(workspace), ProjectConfig(sandbox_name="pinned-name")
        )
        path.write_text(path.read_text().replace(str(workspace), "/old/location"))

        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace)])

        assert result.exit_code == 0, result.output
        stored, _ = load_project_config(global_config, str(workspace))
        assert stored.sandbox_name == "pinned-name"
        assert stored.workspace_path == str(workspace)

    def test_second_run_saves_config_again(
        self, invoke, backend: MagicMock, global_config: GlobalConfig, workspace: Path
    ) -> None:
        with patch("sbox.cli.run.backend_for", return_value=backend):
            invoke(["run", "-w", str(workspace)])
            with patch("sbox.cli.run.save_project_config") as save:
                result = invoke(["run", "-w", str(workspace)])

        assert result.exit_code == 0, result.output
        save.assert_called_once()
        assert save.call_args.args[1] == str(workspace)

    def test_bare_invocation_runs(
        self, invoke, backend: MagicMock, workspace: Path, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.chdir(workspace)
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke([])

        assert result.exit_code == 0, result.output
        backend.run.assert_called_once()

    def test_session_profiles_and_flags(
        self, invoke, backend: MagicMock, global_config: GlobalConfig, workspace: Path
    ) -> None:
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(
                ["run", "-w", str(workspace), "--profile", "go", "--docker-socket", "--debug"]
            )

        assert result.exit_code == 0, result.output
        options: BackendOptions = backend.run.call_args.args[0]
        assert options.profiles == ["go"]
        assert options.mount_docker_socket
        assert options.debug
        stored, _ = load_project_config(global_config, str(workspace))
        assert "go" not in stored.profiles

    def test_unknown_profile_rejected(self, invoke, backend: MagicMock, workspace: Path) -> None:
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace), "--profile", "cobol"])

        assert result.exit_code == 1
        assert "unknown profile: cobol" in result.output
        backend.run.assert_not_called()

    def test_recreate_saves_cache_then_removes(
        self, invoke, backend: MagicMock, workspace: Path
    ) -> None:
        backend.find.return_value = _unit()
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace), "--recreate"])

        assert result.exit_code == 0, result.output
        backend.save_cache_quietly.assert_called_once_with(str(workspace), NAME)
        backend.remove.assert_called_once_with("unit-1")
        assert f"Removing existing sandbox '{NAME}'..." in result.output
        assert backend.run.call_args.args[0].force_rebuild

    def test_recreate_stopped_unit_skips_cache(
        self, invoke, backend: MagicMock, workspace: Path
    ) -> None:
        backend.find.return_value = _unit(InstanceStatus.STOPPED)
        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace), "--recreate"])

        assert result.exit_code == 0, result.output
        backend.save_cache_quietly.assert_not_called()
        backend.remove.assert_called_once_with("unit-1")

    def test_drift_warning(self, invoke, backend: MagicMock, workspace: Path) -> None:
        backend.find.return_value = _unit()
        backend.expected_mounts.return_value = [
            VolumeMount(str(workspace), str(workspace)),
            VolumeMount("/data", "/mnt/data", read_only=True),
        ]
        backend.actual_mounts.return_value = [VolumeMount(str(workspace), str(workspace))]

        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace)])

        assert result.exit_code == 0, result.output
        assert "WARNING: sandbox mount configuration has changed." in result.output
        assert "  - /data -> /mnt/data (read-only)" in result.output
        assert "sbox run --recreate" in result.output
        backend.run.assert_called_once()

    def test_no_warning_without_drift(self, invoke, backend: MagicMock, workspace: Path) -> None:
        backend.find.return_value = _unit()
        backend.expected_mounts.return_value = [VolumeMount(str(workspace), str(workspace))]
        backend.actual_mounts.return_value = [VolumeMount(str(workspace), str(workspace))]

        with patch("sbox.cli.run.backend_for", return_value=backend):
            result = invoke(["run", "-w", str(workspace)])

        assert "WARNING" not in result.output

    def test_backend_flag(self, invoke, workspace: Path) -> None:
        with patch("sbox.backends.container.ContainerBackend.run") as run:
            result = invoke(["run", "-w", str(workspace), "--backend", "container"])

        assert result.exit_code == 0, result.output
        run.assert_called_once()

    def test_missing_workspace(self, invoke, temp_dir: Path) -> None:
        result = invoke(["run", "-w", str(temp_dir / "nope")])
        assert result.exit_code != 0


class TestShellCommand:
    """Tests for sbox shell."""

    def test_exit_code_propagates(self, invoke, backend: MagicMock, workspace: Path) -> None:
        backend.shell.return_value = 3
        with patch("sbox.cli.shell.backend_for", return_value=backend):
            result = invoke(["shell", "-w", str(workspace)])

        assert result.exit_code == 3
        backend.shell.assert_called_once_with(str(workspace), NAME)

    def test_not_running(self, invoke, backend: MagicMock, workspace: Path) -> None:
        backend.shell.side_effect = NotRunningError("no sandbox is running for workspace")
        with patch("sbox.cli.shell.backend_for", return_value=backend):
            result = invoke(["shell", "-w", str(workspace)])

        assert result.exit_code == 1
        assert "no sandbox is running" in result.output
