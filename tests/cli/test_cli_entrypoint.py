"""Tests for the hidden entrypoint command."""

import logging
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from sbox.cli.entrypoint import setup_entrypoint_logging, touch_marker
from sbox.errors import ManifestVersionError

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def no_tmp_files():
    with (
        patch("sbox.cli.entrypoint.setup_entrypoint_logging"),
        patch("sbox.cli.entrypoint.touch_marker"),
    ):
        yield


class TestEntrypointCommand:
    """Tests for sbox entrypoint."""

    def test_forwards_agent_args_untouched(self, invoke) -> None:
        runner = MagicMock()

        result = invoke(
            ["entrypoint", "--resume", "-p", "hello", "--help"],
            obj={"entrypoint_runner": runner},
        )

        assert result.exit_code == 0, result.output
        runner.run.assert_called_once_with(["--resume", "-p", "hello", "--help"])

    def test_manifest_version_error_exits(self, invoke) -> None:
        runner = MagicMock()
        runner.run.side_effect = ManifestVersionError(2, 1)

        result = invoke(["entrypoint"], obj={"entrypoint_runner": runner})

        assert result.exit_code == 1
        assert "please update sbox" in result.output

    def test_hidden_from_help(self, invoke) -> None:
        result = invoke(["--help"])
        assert "entrypoint" not in result.output
        assert "run" in result.output


class TestEntrypointHelpers:
    """Tests for the entrypoint log and marker files."""

    def test_touch_marker(self, temp_dir: Path) -> None:
        marker = temp_dir / "ran"
        touch_marker(marker)
        assert marker.read_text().strip()

    def test_logging_to_file(self, temp_dir: Path) -> None:
        log_file = temp_dir / "entrypoint.log"
        root = logging.getLogger()
        before = list(root.handlers)
        level = root.level
        try:
            setup_entrypoint_logging(log_file)
            logging.getLogger("sbox.test").info("hello from entrypoint")
            for handler in root.handlers:
                handler.flush()
            assert "hello from entrypoint" in log_file.read_text()
        finally:
            for handler in root.handlers[:]:
                if handler not in before:
                    root.removeHandler(handler)
                    handler.close()
            root.setLevel(level)

    def test_unwritable_log_file_ignored(self, temp_dir: Path) -> None:
        before = list(logging.getLogger().handlers)
        setup_entrypoint_logging(temp_dir / "missing" / "entrypoint.log")
        assert logging.getLogger().handlers == before
