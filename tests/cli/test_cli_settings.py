"""Tests for the env, profile, config and auth commands."""

from pathlib import Path
from unittest.mock import patch

import pytest

from sbox.config import (
    GlobalConfig,
    ProjectConfig,
    load_config,
    load_project_config,
    save_project_config,
)

pytestmark = pytest.mark.unit


class TestEnvCommands:
    """Tests for sbox env."""

    def test_list_empty(self, invoke, workspace: Path) -> None:
        result = invoke(["env", "list", "-w", str(workspace)])
        assert "No environment variables configured." in result.output

    def test_add_project_then_update(
        self, invoke, global_config: GlobalConfig, workspace: Path
    ) -> None:
        result = invoke(["env", "add", "-w", str(workspace), "MODE=dev", "TOKEN"])
        assert result.exit_code == 0, result.output
        assert "Added 'MODE' (project)" in result.output
        assert "Added 'TOKEN' (project)" in result.output

        result = invoke(["env", "add", "-w", str(workspace), "MODE=prod"])
        assert "Updated 'MODE' (project)" in result.output

        stored, _ = load_project_config(global_config, str(workspace))
        assert stored.envs == ["MODE=prod", "TOKEN"]

    def test_add_global(self, invoke) -> None:
        result = invoke(["env", "add", "--global", "HTTP_PROXY"])

        assert result.exit_code == 0, result.output
        assert "Added 'HTTP_PROXY' (global)" in result.output
        assert load_config().envs == ["HTTP_PROXY"]

    def test_add_invalid(self, invoke, workspace: Path) -> None:
        result = invoke(["env", "add", "-w", str(workspace), "=oops"])
        assert result.exit_code == 1
        assert "invalid environment variable" in result.output

    def test_remove(self, invoke, global_config: GlobalConfig, workspace: Path) -> None:
        save_project_config(global_config, str(workspace), ProjectConfig(envs=["A=1", "B"]))

        result = invoke(["env", "remove", "-w", str(workspace), "A"])

        assert "Removed 'A' (project)" in result.output
        stored, _ = load_project_config(global_config, str(workspace))
        assert stored.envs == ["B"]

    def test_remove_no_match(self, invoke) -> None:
        result = invoke(["env", "remove", "--global", "MISSING"])
        assert "No matching global environment variables found." in result.output

    def test_list_shows_sources_and_host_values(
        self, invoke, global_config: GlobalConfig, workspace: Path
    ) -> None:
        global_config.envs = ["FROM_HOST", "UNSET_VAR"]
        save_project_config(global_config, str(workspace), ProjectConfig(envs=["MODE=dev"]))

        with patch.dict("os.environ", {"FROM_HOST": "hello"}):
            result = invoke(["env", "list", "-w", str(workspace)])

        assert "FROM_HOST=hello  (from host*)  [global]" in result.output
        assert "UNSET_VAR  (not set on host, will be empty in sandbox)  [global]" in result.output
        assert "MODE=dev  [project]" in result.output
        assert "Hint:" in result.output


class TestProfileCommands:
    """Tests for sbox profile."""

    def test_list_marks_active(self, invoke, global_config: GlobalConfig, workspace: Path) -> None:
        save_project_config(global_config, str(workspace), ProjectConfig(profiles=["go"]))

        result = invoke(["profile", "list", "-w", str(workspace)])

        assert "  [x] go" in result.output
        assert "  [ ] rust" in result.output
        assert "  [ ] substreams (needs rust)" in result.output
        assert "Project profiles: go" in result.output

    def test_add_and_remove(self, invoke, global_config: GlobalConfig, workspace: Path) -> None:
        result = invoke(["profile", "add", "-w", str(workspace), "go", "rust"])
        assert result.exit_code == 0, result.output
        assert "Added profile 'go' to project" in result.output

        result = invoke(["profile", "add", "-w", str(workspace), "go"])
        assert "already added" in result.output

        result = invoke(["profile", "remove", "-w", str(workspace), "go", "docker"])
        assert "Removed profile 'go' from project" in result.output
        assert "Profile 'docker' is not in this project" in result.output

        stored, _ = load_project_config(global_config, str(workspace))
        assert stored.profiles == ["rust"]

    def test_add_unknown(self, invoke, workspace: Path) -> None:
        result = invoke(["profile", "add", "-w", str(workspace), "cobol"])
        assert result.exit_code == 1
        assert "unknown profile: cobol" in result.output
        assert "Available profiles:" in result.output


class TestConfigCommand:
    """Tests for sbox config."""

    def test_show_all(self, invoke, global_config: GlobalConfig) -> None:
        result = invoke(["config"])

        assert result.exit_code == 0, result.output
        assert f"claude_home: {global_config.claude_home}" in result.output
        assert "default_profiles: (none)" in result.output
        assert "default_backend: (unset)" in result.output

    def test_get_single_key(self, invoke) -> None:
        result = invoke(["config", "docker_socket"])
        assert result.output.strip() == "auto"

    def test_set_key(self, invoke) -> None:
        result = invoke(["config", "default_backend", "container"])

        assert result.exit_code == 0, result.output
        assert "Set default_backend = container" in result.output
        assert load_config().default_backend == "container"

    def test_set_invalid_value(self, invoke) -> None:
        result = invoke(["config", "docker_socket", "sometimes"])
        assert result.exit_code == 1
        assert "invalid value for docker_socket" in result.output

    def test_read_only_key(self, invoke) -> None:
        result = invoke(["config", "sbox_data_dir", "/elsewhere"])
        assert result.exit_code == 1
        assert "read-only" in result.output

    def test_unknown_key(self, invoke) -> None:
        result = invoke(["config", "colour"])
        assert result.exit_code == 1
        assert "unknown config key: colour" in result.output


class TestAuthCommand:
    """Tests for sbox auth."""

    def test_status_not_configured(self, invoke) -> None:
        result = invoke(["auth", "--status"])
        assert "Status: Not configured" in result.output

    def test_login_status_logout(self, invoke) -> None:
        result = invoke(["auth"], input="sk-ant-test\n")
        assert result.exit_code == 0, result.output
        assert "API key configured successfully." in result.output
        assert "ANTHROPIC_API_KEY=sk-ant-test" in load_config().envs

        result = invoke(["auth", "--status"])
        assert "Status: Configured" in result.output

        result = invoke(["auth"])
        assert "already configured" in result.output

        result = invoke(["auth", "--logout"])
        assert "API key removed from global config." in result.output
        assert load_config().envs == []

    def test_passthrough_status(self, invoke, global_config: GlobalConfig) -> None:
        global_config.envs = ["ANTHROPIC_API_KEY"]
        result = invoke(["auth", "--status"])
        assert "Status: Configured (passthrough from host)" in result.output

    def test_empty_key_rejected(self, invoke) -> None:
        result = invoke(["auth"], input="   \n")
        assert result.exit_code == 1
        assert "API key cannot be empty" in result.output

    def test_logout_without_key(self, invoke) -> None:
        result = invoke(["auth", "--logout"])
        assert "No API key configured." in result.output
