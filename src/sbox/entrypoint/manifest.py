"""
Handoff directory formats.

``<workspace>/.sbox/`` is visible from the host and from inside the unit:

- ``entrypoint.yaml``: versioned manifest of plugins and agents
- ``env``: resolved ``NAME=value`` lines
- ``CLAUDE.md``: concatenated project-context document
- ``plugins/``, ``agents/``: copied artifacts referenced by the manifest
"""

from __future__ import annotations

import logging
from pathlib import Path

import yaml
from pydantic import BaseModel, Field, ValidationError

from sbox.errors import ConfigError, ManifestVersionError

logger = logging.getLogger(__name__)

HANDOFF_DIRNAME = ".sbox"
MANIFEST_FILENAME = "entrypoint.yaml"
ENV_FILENAME = "env"
CONTEXT_FILENAME = "CLAUDE.md"

# Bump when the manifest layout changes incompatibly
MANIFEST_VERSION = 1


def handoff_dir(workspace_dir: str | Path) -> Path:
    return Path(workspace_dir) / HANDOFF_DIRNAME


class PluginEntry(BaseModel):
    name: str
    path: str = Field(description="Path relative to the handoff directory")
    version: str | None = None
    package_version: str | None = None


class AgentEntry(BaseModel):
    name: str
    path: str = Field(description="Path relative to the handoff directory")


class EntrypointManifest(BaseModel):
    """What the sandbox-side runner installs before starting the agent."""

    version: int = MANIFEST_VERSION
    plugins: list[PluginEntry] = Field(default_factory=list)
    agents: list[AgentEntry] = Field(default_factory=list)


def write_manifest(workspace_dir: str | Path, manifest: EntrypointManifest) -> Path:
    """Write the manifest stamped with the current schema version."""
    manifest.version = MANIFEST_VERSION
    path = handoff_dir(workspace_dir) / MANIFEST_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(
            manifest.model_dump(mode="python", exclude_none=True),
            f,
            default_flow_style=False,
            sort_keys=False,
        )
    return path


def read_manifest(workspace_dir: str | Path) -> EntrypointManifest | None:
    """
    Read the manifest.

    Returns:
        The manifest, or None when the file does not exist

    Raises:
        ManifestVersionError: If the manifest is newer than this sbox
        ConfigError: If the manifest is malformed or has no version
    """
    path = handoff_dir(workspace_dir) / MANIFEST_FILENAME
    if not path.exists():
        return None
    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid manifest {path}: expected a mapping")

    version = data.get("version")
    if not isinstance(version, int) or isinstance(version, bool) or version < 1:
        raise ConfigError(f"Invalid manifest {path}: missing version field")
    if version > MANIFEST_VERSION:
        raise ManifestVersionError(version, MANIFEST_VERSION)

    try:
        return EntrypointManifest(**data)
    except ValidationError as e:
        raise ConfigError(f"Invalid manifest {path}: {e}") from e


def write_env_file(workspace_dir: str | Path, pairs: list[str]) -> Path:
    """Write resolved ``NAME=value`` lines. The file is rewritten even when empty."""
    path = handoff_dir(workspace_dir) / ENV_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    body = "# Generated by sbox, resolved environment for the sandbox\n"
    body += "".join(f"{pair}\n" for pair in pairs)
    path.write_text(body)
    return path


def parse_env_lines(text: str) -> list[tuple[str, str]]:
    """Parse ``NAME=value`` lines, skipping blanks, comments and lines without ``=``."""
    pairs = []
    for line in text.splitlines():
        line = line.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        name, value = line.split("=", 1)
        if name:
            pairs.append((name, value))
    return pairs


def read_env_file(workspace_dir: str | Path) -> list[tuple[str, str]]:
    path = handoff_dir(workspace_dir) / ENV_FILENAME
    if not path.exists():
        return []
    return parse_env_lines(path.read_text())
