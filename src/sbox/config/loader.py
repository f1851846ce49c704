"""
File-backed configuration storage.

Layout under the data directory::

    <sbox_data_dir>/projects/<hash>/config.yaml

where ``<hash>`` is the first 12 hex chars of sha256 over the workspace's
absolute path.
"""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ValidationError

from sbox.config.models import (
    CheckedInConfig,
    CheckedInLocation,
    GlobalConfig,
    ProjectConfig,
    ProjectInfo,
)
from sbox.errors import ConfigError

logger = logging.getLogger(__name__)

CHECKED_IN_FILENAME = "sbox.yaml"
LEGACY_CHECKED_IN_FILENAME = ".sbox"
CONFIG_FILENAME = "config.yaml"


def get_sbox_home() -> Path:
    """Get sbox home directory, respecting SBOX_HOME env var.

    Returns:
        Path to sbox home (~/.config/sbox by default, or SBOX_HOME if set)
    """
    sbox_home = os.environ.get("SBOX_HOME")
    if sbox_home:
        return Path(sbox_home).expanduser()
    return Path.home() / ".config" / "sbox"


def get_config_path() -> Path:
    return get_sbox_home() / CONFIG_FILENAME


def project_hash(workspace_dir: str | Path) -> str:
    """Stable short hash of a workspace's absolute path."""
    abs_path = os.path.abspath(str(workspace_dir))
    return hashlib.sha256(abs_path.encode()).hexdigest()[:12]


def load_yaml(path: Path) -> dict[str, Any]:
    """
    Load a YAML mapping.

    Args:
        path: File to read

    Returns:
        Parsed mapping, or {} if the file is missing or empty

    Raises:
        ConfigError: If the YAML is malformed or not a mapping
    """
    if not path.exists():
        return {}
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(
            f"Invalid config in {path}: expected a mapping, got {type(data).__name__}"
        )
    return data


def _validate(model: type[BaseModel], data: dict[str, Any], path: Path) -> Any:
    try:
        return model(**data)
    except ValidationError as e:
        raise ConfigError(
            f"Configuration validation failed: {e}\n"
            f"Please check your configuration file at {path}"
        ) from e


def _save_yaml(model: BaseModel, path: Path) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w") as f:
        yaml.safe_dump(model.model_dump(), f, default_flow_style=False, sort_keys=False)
    path.chmod(0o600)


# ---------------------------------------------------------------------------
# Global config
# ---------------------------------------------------------------------------


def load_config(config_file: str | Path | None = None) -> GlobalConfig:
    """
    Load the global configuration, falling back to defaults.

    Args:
        config_file: Path to YAML config file (default: <sbox home>/config.yaml)

    Returns:
        Validated GlobalConfig instance

    Raises:
        ConfigError: If the file is malformed or contains invalid values
    """
    path = Path(config_file).expanduser() if config_file else get_config_path()
    return _validate(GlobalConfig, load_yaml(path), path)


def save_config(config: GlobalConfig, config_file: str | Path | None = None) -> None:
    """
    Save the global configuration.

    Raises:
        OSError: If file operations fail
    """
    path = Path(config_file).expanduser() if config_file else get_config_path()
    _save_yaml(config, path)


# ---------------------------------------------------------------------------
# Project config
# ---------------------------------------------------------------------------


def project_dir(config: GlobalConfig, workspace_dir: str | Path) -> Path:
    return config.projects_dir / project_hash(workspace_dir)


def load_project_config(
    config: GlobalConfig, workspace_dir: str | Path
) -> tuple[ProjectConfig, str]:
    """
    Load the stored config for a workspace.

    A workspace seen for the first time gets defaults, with the global
    default profiles pre-filled.

    Returns:
        Tuple of (ProjectConfig, project hash)
    """
    digest = project_hash(workspace_dir)
    path = config.projects_dir / digest / CONFIG_FILENAME
    if not path.exists():
        logger.debug(f"No project config for {workspace_dir}, using defaults")
        return ProjectConfig(profiles=list(config.default_profiles)), digest
    return _validate(ProjectConfig, load_yaml(path), path), digest


def save_project_config(
    config: GlobalConfig, workspace_dir: str | Path, project: ProjectConfig
) -> Path:
    """
    Persist a project's config, recording its absolute workspace path.

    Returns:
        Path of the written file
    """
    project.workspace_path = os.path.abspath(str(workspace_dir))
    path = project_dir(config, workspace_dir) / CONFIG_FILENAME
    _save_yaml(project, path)
    logger.debug(f"Saved project config to {path}")
    return path


def remove_project_data(config: GlobalConfig, workspace_dir: str | Path) -> None:
    """Delete everything stored for a workspace. Missing data is not an error."""
    target = project_dir(config, workspace_dir)
    if target.exists():
        shutil.rmtree(target)
        logger.info(f"Removed project data at {target}")


def list_projects(config: GlobalConfig) -> list[ProjectInfo]:
    """List every project with a readable stored config, skipping broken ones."""
    projects_dir = config.projects_dir
    if not projects_dir.is_dir():
        return []

    projects = []
    for entry in sorted(projects_dir.iterdir()):
        path = entry / CONFIG_FILENAME
        if not path.is_file():
            continue
        try:
            project = _validate(ProjectConfig, load_yaml(path), path)
        except ConfigError as e:
            logger.debug(f"Skipping unreadable project config {path}: {e}")
            continue
        projects.append(
            ProjectInfo(hash=entry.name, workspace_path=project.workspace_path, config=project)
        )
    return projects


# ---------------------------------------------------------------------------
# Checked-in config
# ---------------------------------------------------------------------------


def _checked_in_candidate(directory: Path) -> Path | None:
    primary = directory / CHECKED_IN_FILENAME
    if primary.is_file():
        return primary
    # A .sbox directory is the handoff directory, only a regular file counts
    legacy = directory / LEGACY_CHECKED_IN_FILENAME
    if legacy.is_file():
        return legacy
    return None


def find_checked_in_config(workspace_dir: str | Path) -> CheckedInLocation | None:
    """
    Walk up from the workspace looking for a checked-in config file.

    Returns:
        The nearest CheckedInLocation, or None when no file exists up to
        the filesystem root

    Raises:
        ConfigError: If the file found is malformed
    """
    start = Path(os.path.abspath(str(workspace_dir)))
    for directory in [start] + list(start.parents):
        path = _checked_in_candidate(directory)
        if path is None:
            continue
        cfg = _validate(CheckedInConfig, load_yaml(path), path)
        logger.debug(f"Found checked-in config at {path}")
        return CheckedInLocation(path=path, dir=directory, config=cfg)

    logger.debug(f"No checked-in config found from {start}")
    return None


def remove_all_project_data(config: GlobalConfig) -> None:
    """Delete the stored data of every project."""
    if config.projects_dir.exists():
        shutil.rmtree(config.projects_dir)
        logger.info(f"Removed all project data at {config.projects_dir}")
