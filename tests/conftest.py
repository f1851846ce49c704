"""Pytest configuration and shared fixtures for sbox tests."""

import os
import tempfile
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path
from unittest.mock import patch

import pytest
from click.testing import CliRunner, Result

from sbox.cli import cli
from sbox.commands import CommandResult, CommandRunner
from sbox.config import GlobalConfig


class FakeRunner(CommandRunner):
    """
    CommandRunner that records commands instead of spawning them.

    Responses are registered per argv prefix; the most recently registered
    matching prefix wins and unmatched commands succeed with empty output.
    """

    def __init__(self, interactive_returncode: int = 0):
        super().__init__()
        self.calls: list[list[str]] = []
        self.interactive_calls: list[list[str]] = []
        self.interactive_returncode = interactive_returncode
        self._responses: list[tuple[list[str], CommandResult]] = []

    def on(
        self, prefix: Sequence[str], stdout: str = "", stderr: str = "", returncode: int = 0
    ) -> "FakeRunner":
        self._responses.append((list(prefix), CommandResult(returncode, stdout, stderr)))
        return self

    def run(self, cmd: list[str], timeout: float | None = None) -> CommandResult:
        self.calls.append(list(cmd))
        for prefix, result in reversed(self._responses):
            if cmd[: len(prefix)] == prefix:
                return result
        return CommandResult(0)

    def run_interactive(self, cmd: list[str]) -> int:
        self.interactive_calls.append(list(cmd))
        return self.interactive_returncode

    @property
    def all_calls(self) -> list[list[str]]:
        return self.calls + self.interactive_calls

    def called(self, *prefix: str) -> bool:
        """True if any recorded command starts with ``prefix``."""
        return any(cmd[: len(prefix)] == list(prefix) for cmd in self.all_calls)


@pytest.fixture(autouse=True)
def isolated_sbox_home(tmp_path: Path) -> Iterator[Path]:
    """Point SBOX_HOME at a temp dir so no test reads the real config."""
    home = tmp_path / "sbox-home"
    with patch.dict(os.environ, {"SBOX_HOME": str(home)}):
        yield home


@pytest.fixture
def temp_dir() -> Iterator[Path]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def claude_home(temp_dir: Path) -> Path:
    path = temp_dir / "claude"
    path.mkdir()
    return path


@pytest.fixture
def global_config(temp_dir: Path, claude_home: Path) -> GlobalConfig:
    """GlobalConfig whose paths all live under the temp dir."""
    return GlobalConfig(claude_home=str(claude_home), sbox_data_dir=str(temp_dir / "data"))


@pytest.fixture
def workspace(temp_dir: Path) -> Path:
    path = temp_dir / "my-project"
    path.mkdir()
    return path


@pytest.fixture
def invoke(global_config: GlobalConfig, fake_runner: FakeRunner) -> Callable[..., Result]:
    """Invoke the CLI with the test config and fake runner injected."""
    runner = CliRunner()

    def _invoke(args: list[str], **kwargs) -> Result:
        obj = {"config": global_config, "runner": fake_runner}
        obj.update(kwargs.pop("obj", {}))
        return runner.invoke(cli, args, obj=obj, **kwargs)

    return _invoke
