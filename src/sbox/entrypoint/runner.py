"""
Sandbox side of the handoff.

``sbox entrypoint`` replaces the agent binary inside the image. It installs
what the host prepared in ``.sbox/`` and then replaces its own process image
with the real agent, so the agent keeps the process slot and signal
handling the sandbox tool set up.
"""

from __future__ import annotations

import errno
import glob
import logging
import os
import shutil
from collections.abc import Callable, MutableMapping
from pathlib import Path
from typing import NoReturn

from sbox.commands import CommandRunner
from sbox.entrypoint.manifest import (
    CONTEXT_FILENAME,
    EntrypointManifest,
    handoff_dir,
    read_env_file,
    read_manifest,
)
from sbox.errors import SboxError
from sbox.state_sync import cache_dir, restore_cache

logger = logging.getLogger(__name__)

DEFAULT_STATE_HOME = "/home/agent/.claude"
PERSISTENT_ENV_FILE = "/etc/profile.d/sbox-env.sh"
DEV_BINARY_NAME = "sbox-dev"
DEV_MARKER_ENV = "SBOX_DEV_ENTRYPOINT"
AGENT_BINARY = "claude"
REAL_AGENT_BINARY = "claude-real"
WRAPPER_PATH = "/usr/local/bin/claude-wrapper"
AGENT_BINARY_DIRS = ("/home/agent/.local/bin", "/usr/local/bin", "/usr/bin")
AGENT_FLAGS = ("--dangerously-skip-permissions",)

ExecFn = Callable[[str, list[str], dict[str, str]], None]


def find_workspace(environ: MutableMapping[str, str]) -> str | None:
    """Workspace path from WORKSPACE_DIR, then PWD, then the current directory."""
    for key in ("WORKSPACE_DIR", "PWD"):
        if environ.get(key):
            return environ[key]
    try:
        return os.getcwd()
    except OSError:
        return None


def find_state_home(environ: MutableMapping[str, str], default: str = DEFAULT_STATE_HOME) -> Path:
    """
    Locate the agent's state-home directory.

    Checked in order: CLAUDE_CONFIG_DIR, the conventional default, then
    ``/Users/*/.claude`` and ``/home/*/.claude`` where bind-mounted homes
    tend to land. Falls back to the default even if it does not exist.
    """
    override = environ.get("CLAUDE_CONFIG_DIR")
    if override and Path(override).is_dir():
        return Path(override)
    if Path(default).is_dir():
        return Path(default)
    for pattern in ("/Users/*/.claude", "/home/*/.claude"):
        for candidate in sorted(glob.glob(pattern)):
            if candidate != default and Path(candidate).is_dir():
                return Path(candidate)
    return Path(default)


def find_agent_binary(environ: MutableMapping[str, str]) -> str | None:
    """
    Locate the real agent binary.

    ``claude-real`` wins because the image renames the installed binary and
    puts the wrapper in its place. The wrapper itself is never returned.
    """
    wrapper = os.path.realpath(WRAPPER_PATH)
    candidates = [os.path.join(d, REAL_AGENT_BINARY) for d in AGENT_BINARY_DIRS]
    candidates += [os.path.join(d, AGENT_BINARY) for d in AGENT_BINARY_DIRS]
    search_path = environ.get("PATH")
    for name in (REAL_AGENT_BINARY, AGENT_BINARY):
        found = shutil.which(name, path=search_path)
        if found:
            candidates.append(found)

    for candidate in candidates:
        if not (os.path.isfile(candidate) and os.access(candidate, os.X_OK)):
            continue
        if os.path.realpath(candidate) == wrapper:
            continue
        return candidate
    return None


def build_agent_argv(plugin_dirs: list[str], args: list[str]) -> list[str]:
    argv = [AGENT_BINARY, *AGENT_FLAGS]
    for plugin_dir in plugin_dirs:
        argv += ["--plugin-dir", plugin_dir]
    return argv + list(args)


def shell_quote_double(value: str) -> str:
    """Escape a value for use inside double quotes in a POSIX shell."""
    for ch in ("\\", '"', "$", "`"):
        value = value.replace(ch, "\\" + ch)
    return value


class EntrypointRunner:
    """
    Consumes the handoff directory and hands over to the agent.

    Args:
        environ: Environment to read and extend (default: os.environ)
        runner: Command runner for rsync
        execve: Process-replacement function (default: os.execve)
        persistent_env_file: Login-shell file the environment is persisted to
        default_state_home: Conventional state-home location
    """

    def __init__(
        self,
        environ: MutableMapping[str, str] | None = None,
        runner: CommandRunner | None = None,
        execve: ExecFn | None = None,
        persistent_env_file: str | Path = PERSISTENT_ENV_FILE,
        default_state_home: str = DEFAULT_STATE_HOME,
    ):
        self.environ = os.environ if environ is None else environ
        self.runner = runner or CommandRunner()
        self.execve = execve or os.execve
        self.persistent_env_file = Path(persistent_env_file)
        self.default_state_home = default_state_home

    def run(self, args: list[str]) -> NoReturn:
        """
        Set up the sandbox and exec the agent. Never returns on success.

        Raises:
            ManifestVersionError: If the manifest was written by a newer sbox
            ConfigError: If the manifest is malformed
            SboxError: If no agent binary can be found or exec fails
        """
        workspace = find_workspace(self.environ)
        if not workspace:
            logger.warning("Workspace unknown, starting agent without setup")
            self.handoff([], args)

        self.maybe_exec_dev_binary(workspace, args)

        manifest = read_manifest(workspace)
        if manifest is None:
            logger.info(f"No manifest in {handoff_dir(workspace)}, starting agent without setup")
            self.handoff([], args)

        state_home = find_state_home(self.environ, self.default_state_home)
        logger.info(f"Using state-home {state_home}")

        try:
            restore_cache(self.runner, cache_dir(workspace), state_home)
        except (OSError, SboxError) as e:
            logger.warning(f"Failed to restore state cache: {e}")

        self.install_context_document(workspace, state_home)
        self.install_agents(workspace, manifest, state_home)
        self.load_environment(workspace)
        self.handoff(self.plugin_dirs(workspace, manifest), args)

    def maybe_exec_dev_binary(self, workspace: str, args: list[str]) -> None:
        """Hand over to ``.sbox/sbox-dev`` when present, unless we are that binary."""
        dev_binary = handoff_dir(workspace) / DEV_BINARY_NAME
        if self.environ.get(DEV_MARKER_ENV) == "1" or not dev_binary.is_file():
            return

        env = dict(self.environ)
        env[DEV_MARKER_ENV] = "1"
        logger.info(f"Handing over to development binary {dev_binary}")
        try:
            self.execve(str(dev_binary), [DEV_BINARY_NAME, "entrypoint", *args], env)
        except OSError as e:
            if e.errno == errno.ENOEXEC:
                raise SboxError(
                    f"{dev_binary} cannot be executed here; it was probably built for "
                    f"the wrong architecture"
                ) from e
            logger.warning(f"Failed to exec development binary, continuing: {e}")

    def install_context_document(self, workspace: str, state_home: Path) -> None:
        source = handoff_dir(workspace) / CONTEXT_FILENAME
        if not source.is_file():
            return
        try:
            state_home.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(source, state_home / CONTEXT_FILENAME)
        except OSError as e:
            logger.warning(f"Failed to install {CONTEXT_FILENAME}: {e}")

    def install_agents(self, workspace: str, manifest: EntrypointManifest, state_home: Path) -> int:
        """Copy manifest-listed agents into the state-home. Returns how many were installed."""
        agents_dir = state_home / "agents"
        installed = 0
        for agent in manifest.agents:
            source = handoff_dir(workspace) / agent.path
            try:
                agents_dir.mkdir(parents=True, exist_ok=True)
                shutil.copyfile(source, agents_dir / source.name)
                installed += 1
            except OSError as e:
                logger.warning(f"Skipping agent {agent.name}: {e}")
        return installed

    def load_environment(self, workspace: str) -> list[tuple[str, str]]:
        """Export the resolved env file into this process and persist it for login shells."""
        pairs = read_env_file(workspace)
        for name, value in pairs:
            self.environ[name] = value

        body = "\n# sbox entrypoint environment variables\n"
        body += "".join(f'export {name}="{shell_quote_double(value)}"\n' for name, value in pairs)
        try:
            self.persistent_env_file.write_text(body)
        except OSError as e:
            logger.warning(f"Failed to write {self.persistent_env_file}: {e}")
        return pairs

    def plugin_dirs(self, workspace: str, manifest: EntrypointManifest) -> list[str]:
        dirs = []
        for plugin in manifest.plugins:
            path = handoff_dir(workspace) / plugin.path
            if path.is_dir():
                dirs.append(str(path))
            else:
                logger.warning(f"Plugin {plugin.name} missing at {path}, skipping")
        return dirs

    def handoff(self, plugin_dirs: list[str], args: list[str]) -> NoReturn:
        """Replace this process with the agent."""
        binary = find_agent_binary(self.environ)
        if binary is None:
            raise SboxError(f"could not find the {AGENT_BINARY} binary")
        argv = build_agent_argv(plugin_dirs, args)
        logger.info(f"Starting {binary} with {len(plugin_dirs)} plugin dirs")
        try:
            self.execve(binary, argv, dict(self.environ))
        except OSError as e:
            raise SboxError(f"failed to exec {binary}: {e}") from e
        raise SboxError(f"exec of {binary} returned unexpectedly")
