"""Tests for the sandbox-side entrypoint."""

import errno
import os
from pathlib import Path
from unittest.mock import patch

import pytest
from conftest import FakeRunner

from sbox.entrypoint.manifest import (
    AgentEntry,
    EntrypointManifest,
    PluginEntry,
    handoff_dir,
    write_env_file,
    write_manifest,
)
from sbox.entrypoint.runner import (
    DEV_MARKER_ENV,
    EntrypointRunner,
    build_agent_argv,
    find_agent_binary,
    find_workspace,
    shell_quote_double,
)
from sbox.errors import ManifestVersionError, SboxError

pytestmark = pytest.mark.unit

AGENT = "/opt/agent/claude-real"


class Handoff(Exception):
    """Raised by the fake execve in place of replacing the process."""

    def __init__(self, path: str, argv: list[str], env: dict[str, str]):
        super().__init__(path)
        self.path = path
        self.argv = argv
        self.env = env


def fake_execve(path: str, argv: list[str], env: dict[str, str]) -> None:
    raise Handoff(path, argv, env)


@pytest.fixture
def state_home(temp_dir: Path) -> Path:
    path = temp_dir / "state-home"
    path.mkdir()
    return path


@pytest.fixture
def make_runner(temp_dir: Path, state_home: Path):
    def factory(environ: dict[str, str], execve=fake_execve) -> EntrypointRunner:
        return EntrypointRunner(
            environ=environ,
            runner=FakeRunner(),
            execve=execve,
            persistent_env_file=temp_dir / "sbox-env.sh",
            default_state_home=str(state_home),
        )

    return factory


@pytest.fixture(autouse=True)
def agent_binary():
    with patch("sbox.entrypoint.runner.find_agent_binary", return_value=AGENT):
        yield


class TestHelpers:
    """Tests for the module-level helpers."""

    def test_find_workspace_order(self) -> None:
        assert find_workspace({"WORKSPACE_DIR": "/a", "PWD": "/b"}) == "/a"
        assert find_workspace({"PWD": "/b"}) == "/b"
        assert find_workspace({}) == os.getcwd()

    def test_build_agent_argv(self) -> None:
        argv = build_agent_argv(["/p1", "/p2"], ["--resume"])
        assert argv == [
            "claude",
            "--dangerously-skip-permissions",
            "--plugin-dir",
            "/p1",
            "--plugin-dir",
            "/p2",
            "--resume",
        ]

    def test_shell_quote_double(self) -> None:
        assert shell_quote_double('a"b$c`d\\e') == 'a\\"b\\$c\\`d\\\\e'


class TestFindAgentBinary:
    """Tests for find_agent_binary."""

    def _executable(self, path: Path) -> Path:
        path.write_text("#!/bin/sh\n")
        path.chmod(0o755)
        return path

    def test_prefers_renamed_binary(self, temp_dir: Path) -> None:
        self._executable(temp_dir / "claude")
        real = self._executable(temp_dir / "claude-real")
        with patch("sbox.entrypoint.runner.AGENT_BINARY_DIRS", (str(temp_dir),)):
            assert find_agent_binary({"PATH": ""}) == str(real)

    def test_skips_wrapper(self, temp_dir: Path) -> None:
        wrapper = self._executable(temp_dir / "claude")
        with (
            patch("sbox.entrypoint.runner.AGENT_BINARY_DIRS", (str(temp_dir),)),
            patch("sbox.entrypoint.runner.WRAPPER_PATH", str(wrapper)),
        ):
            assert find_agent_binary({"PATH": ""}) is None


class TestEntrypointRunner:
    """Tests for EntrypointRunner.run."""

    def test_full_handoff(self, workspace: Path, state_home: Path, temp_dir: Path, make_runner):
        target = handoff_dir(workspace)
        (target / "plugins" / "tools").mkdir(parents=True)
        (target / "agents").mkdir()
        (target / "agents" / "reviewer.md").write_text("# reviewer")
        (target / "CLAUDE.md").write_text("context")
        write_manifest(
            workspace,
            EntrypointManifest(
                plugins=[
                    PluginEntry(name="tools", path="plugins/tools"),
                    PluginEntry(name="gone", path="plugins/gone"),
                ],
                agents=[AgentEntry(name="reviewer", path="agents/reviewer.md")],
            ),
        )
        write_env_file(workspace, ["TOKEN=s3cr$t"])
        environ = {"WORKSPACE_DIR": str(workspace)}

        with pytest.raises(Handoff) as exc:
            make_runner(environ).run(["--resume"])

        handoff = exc.value
        assert handoff.path == AGENT
        assert handoff.argv[-3:] == ["--plugin-dir", str(target / "plugins" / "tools"), "--resume"]
        assert handoff.env["TOKEN"] == "s3cr$t"
        assert (state_home / "CLAUDE.md").read_text() == "context"
        assert (state_home / "agents" / "reviewer.md").is_file()
        persisted = (temp_dir / "sbox-env.sh").read_text()
        assert 'export TOKEN="s3cr\\$t"' in persisted

    def test_missing_manifest_starts_agent_bare(self, workspace: Path, make_runner) -> None:
        with pytest.raises(Handoff) as exc:
            make_runner({"WORKSPACE_DIR": str(workspace)}).run(["-p", "hi"])
        assert exc.value.argv == ["claude", "--dangerously-skip-permissions", "-p", "hi"]

    def test_newer_manifest_fails(self, workspace: Path, make_runner) -> None:
        target = handoff_dir(workspace)
        target.mkdir()
        (target / "entrypoint.yaml").write_text("version: 99\n")
        with pytest.raises(ManifestVersionError):
            make_runner({"WORKSPACE_DIR": str(workspace)}).run([])

    def test_missing_agent_binary(self, workspace: Path, make_runner) -> None:
        with (
            patch("sbox.entrypoint.runner.find_agent_binary", return_value=None),
            pytest.raises(SboxError, match="could not find"),
        ):
            make_runner({"WORKSPACE_DIR": str(workspace)}).run([])


class TestDevBinary:
    """Tests for handing over to a development build."""

    def _dev_binary(self, workspace: Path) -> Path:
        binary = handoff_dir(workspace) / "sbox-dev"
        binary.parent.mkdir(parents=True)
        binary.write_text("binary")
        return binary

    def test_execs_dev_binary_with_marker(self, workspace: Path, make_runner) -> None:
        binary = self._dev_binary(workspace)
        with pytest.raises(Handoff) as exc:
            make_runner({"WORKSPACE_DIR": str(workspace)}).run(["x"])
        assert exc.value.path == str(binary)
        assert exc.value.argv == ["sbox-dev", "entrypoint", "x"]
        assert exc.value.env[DEV_MARKER_ENV] == "1"

    def test_marker_prevents_loop(self, workspace: Path, make_runner) -> None:
        self._dev_binary(workspace)
        environ = {"WORKSPACE_DIR": str(workspace), DEV_MARKER_ENV: "1"}
        with pytest.raises(Handoff) as exc:
            make_runner(environ).run([])
        assert exc.value.path == AGENT

    def test_wrong_architecture(self, workspace: Path, make_runner) -> None:
        self._dev_binary(workspace)

        def bad_exec(path: str, argv: list[str], env: dict[str, str]) -> None:
            raise OSError(errno.ENOEXEC, "Exec format error")

        with pytest.raises(SboxError, match="wrong architecture"):
            make_runner({"WORKSPACE_DIR": str(workspace)}, execve=bad_exec).run([])

    def test_other_exec_failure_continues(self, workspace: Path, make_runner) -> None:
        self._dev_binary(workspace)
        calls = []

        def flaky_exec(path: str, argv: list[str], env: dict[str, str]) -> None:
            calls.append(path)
            if len(calls) == 1:
                raise OSError(errno.EACCES, "Permission denied")
            raise Handoff(path, argv, env)

        with pytest.raises(Handoff) as exc:
            make_runner({"WORKSPACE_DIR": str(workspace)}, execve=flaky_exec).run([])
        assert exc.value.path == AGENT
