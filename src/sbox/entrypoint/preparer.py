"""
Host side of the handoff.

Before every run the host rewrites ``<workspace>/.sbox/`` with:

1. the project-context document,
2. copies of shareable plugins and agents from the host state-home,
3. the manifest listing them,
4. the resolved environment file.

Steps 1 and 2 are best effort; the manifest and env file are always written.
"""

from __future__ import annotations

import json
import logging
import os
import shutil
from collections.abc import Callable, Iterable, Mapping
from pathlib import Path

from sbox.config.merge import merge_envs, resolve_envs
from sbox.config.models import BackendType, GlobalConfig
from sbox.entrypoint.context_docs import concatenate_context, discover_context_files
from sbox.entrypoint.manifest import (
    CONTEXT_FILENAME,
    AgentEntry,
    EntrypointManifest,
    PluginEntry,
    handoff_dir,
    write_env_file,
    write_manifest,
)
from sbox.errors import SboxError

logger = logging.getLogger(__name__)

PLUGINS_DIRNAME = "plugins"
AGENTS_DIRNAME = "agents"
INSTALLED_PLUGINS_FILE = "installed_plugins.json"
AGENT_SUFFIXES = (".md", ".json")


class Preparer:
    """
    Materializes the handoff directory for a workspace.

    Args:
        config: Global configuration (provides the host state-home and global envs)
        environ: Environment used to resolve passthrough variables
            (default: the current process environment)
        logger: Logger to report progress on
    """

    def __init__(
        self,
        config: GlobalConfig,
        environ: Mapping[str, str] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.config = config
        self.environ = os.environ if environ is None else environ
        self._logger = logger or logging.getLogger(__name__)

    @property
    def claude_home(self) -> Path:
        return Path(self.config.claude_home).expanduser()

    def prepare(
        self,
        workspace_dir: str | Path,
        backend: BackendType,
        project_envs: Iterable[str] = (),
        checked_in_envs: Iterable[str] = (),
    ) -> EntrypointManifest:
        """
        Rewrite the handoff directory.

        Returns:
            The manifest that was written

        Raises:
            OSError: If the handoff directory, manifest or env file cannot be written
        """
        workspace = Path(workspace_dir)
        target = handoff_dir(workspace)
        target.mkdir(parents=True, exist_ok=True)

        try:
            self.write_context_document(workspace, backend)
        except (OSError, SboxError) as e:
            self._logger.warning(f"Failed to prepare {CONTEXT_FILENAME}: {e}")

        manifest = EntrypointManifest(
            plugins=self._collect(self.collect_plugins, target, "plugins"),
            agents=self._collect(self.collect_agents, target, "agents"),
        )
        write_manifest(workspace, manifest)

        merged, _ = merge_envs(self.config.envs, project_envs, checked_in_envs)
        write_env_file(workspace, resolve_envs(merged, self.environ))

        self._logger.debug(
            f"Prepared {target}: {len(manifest.plugins)} plugins, {len(manifest.agents)} agents"
        )
        return manifest

    def _collect(self, collector: Callable[[Path], list], target: Path, what: str) -> list:
        try:
            return collector(target)
        except (OSError, SboxError) as e:
            self._logger.warning(f"Failed to share {what}: {e}")
            return []

    def write_context_document(self, workspace: Path, backend: BackendType) -> Path:
        content = concatenate_context(discover_context_files(workspace), backend)
        path = handoff_dir(workspace) / CONTEXT_FILENAME
        path.write_text(content)
        return path

    def collect_plugins(self, target: Path) -> list[PluginEntry]:
        """
        Copy installed plugins into ``<target>/plugins``.

        Only install paths under ``<claude_home>/plugins/cache`` are shared;
        anything else (local development checkouts) stays on the host.
        """
        plugins_root = self.claude_home / PLUGINS_DIRNAME
        registry = plugins_root / INSTALLED_PLUGINS_FILE
        dest_root = target / PLUGINS_DIRNAME
        _reset_dir(dest_root)

        if not registry.is_file():
            self._logger.debug(f"No plugin registry at {registry}")
            return []
        try:
            data = json.loads(registry.read_text())
        except (OSError, json.JSONDecodeError) as e:
            self._logger.warning(f"Failed to read {registry}: {e}")
            return []

        cache_root = (plugins_root / "cache").resolve()
        entries = []
        plugins = data.get("plugins", {}) if isinstance(data, dict) else None
        if not isinstance(plugins, dict):
            self._logger.warning(f"Ignoring {registry}: \"plugins\" is not an object")
            return []
        for name, installs in plugins.items():
            if not isinstance(installs, list):
                self._logger.debug(f"Plugin {name} has no install list")
                continue
            for install in installs:
                entry = self._copy_plugin(name, install, cache_root, dest_root)
                if entry is not None:
                    entries.append(entry)
        return entries

    def _copy_plugin(
        self, name: str, install: dict, cache_root: Path, dest_root: Path
    ) -> PluginEntry | None:
        install_path = install.get("installPath") if isinstance(install, dict) else None
        if not install_path:
            return None
        source = Path(install_path).resolve()
        if not source.is_dir():
            self._logger.debug(f"Plugin {name} install path missing: {source}")
            return None
        try:
            rel = source.relative_to(cache_root)
        except ValueError:
            self._logger.debug(f"Plugin {name} is outside the plugin cache, not shared")
            return None

        dest = dest_root / rel
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            shutil.copytree(source, dest, symlinks=True, dirs_exist_ok=True)
        except OSError as e:
            self._logger.warning(f"Failed to copy plugin {name}: {e}")
            return None

        return PluginEntry(
            name=name,
            path=f"{PLUGINS_DIRNAME}/{rel.as_posix()}",
            version=install.get("version") or None,
            package_version=install.get("gitCommitSha") or None,
        )

    def collect_agents(self, target: Path) -> list[AgentEntry]:
        """Copy ``<claude_home>/agents/*.md|*.json`` into ``<target>/agents``."""
        source_dir = self.claude_home / AGENTS_DIRNAME
        dest_dir = target / AGENTS_DIRNAME
        _reset_dir(dest_dir)
        if not source_dir.is_dir():
            return []

        entries = []
        for source in sorted(source_dir.iterdir()):
            if not source.is_file() or source.suffix not in AGENT_SUFFIXES:
                continue
            try:
                shutil.copy2(source, dest_dir / source.name)
            except OSError as e:
                self._logger.warning(f"Failed to copy agent {source.name}: {e}")
                continue
            entries.append(AgentEntry(name=source.stem, path=f"{AGENTS_DIRNAME}/{source.name}"))
        return entries


def _reset_dir(path: Path) -> None:
    if path.exists():
        shutil.rmtree(path)
    path.mkdir(parents=True)
