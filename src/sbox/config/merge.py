"""
Pure configuration merging.

Nothing in this module touches the filesystem except ``~`` expansion, so
every function can be exercised with plain values.

Precedence, highest first: CLI flag, checked-in config, project config,
global config, hardcoded default.
"""

from __future__ import annotations

import os
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from pathlib import Path

from sbox.config.models import (
    DEFAULT_BACKEND,
    VALID_BACKENDS,
    VALID_SOCKET_POLICIES,
    BackendType,
    CheckedInLocation,
    GlobalConfig,
    ProjectConfig,
)
from sbox.errors import ConfigError

SOURCE_GLOBAL = "global"
SOURCE_PROJECT = "project"
SOURCE_CHECKED_IN = "checked-in"

DOCKER_PROFILE = "docker"


# ---------------------------------------------------------------------------
# Environment specs
# ---------------------------------------------------------------------------


def env_name(spec: str) -> str:
    """Return the variable name of an env spec (``NAME`` or ``NAME=value``)."""
    return spec.split("=", 1)[0]


@dataclass(frozen=True)
class ResolvedEnv:
    """One merged env entry and the layer it came from."""

    spec: str
    source: str

    @property
    def name(self) -> str:
        return env_name(self.spec)

    @property
    def value(self) -> str | None:
        """Explicit value, or None for a host passthrough entry."""
        if "=" not in self.spec:
            return None
        return self.spec.split("=", 1)[1]

    @property
    def is_passthrough(self) -> bool:
        return "=" not in self.spec


def merge_envs(
    global_envs: Iterable[str] | None,
    project_envs: Iterable[str] | None,
    checked_in_envs: Iterable[str] | None,
) -> tuple[list[str], list[ResolvedEnv]]:
    """
    Merge the three env lists by variable name.

    Layers are applied global, then checked-in, then project. The last layer
    to mention a name decides its value and source tag; the name keeps the
    position where it was first seen.

    Returns:
        Tuple of (merged spec list, resolved entries with source tags)
    """
    merged: dict[str, ResolvedEnv] = {}
    layers = (
        (SOURCE_GLOBAL, global_envs),
        (SOURCE_CHECKED_IN, checked_in_envs),
        (SOURCE_PROJECT, project_envs),
    )
    for source, specs in layers:
        for spec in specs or ():
            name = env_name(spec)
            if not name:
                continue
            merged[name] = ResolvedEnv(spec=spec, source=source)

    resolved = list(merged.values())
    return [r.spec for r in resolved], resolved


def resolve_envs(specs: Iterable[str], environ: Mapping[str, str] | None = None) -> list[str]:
    """
    Turn env specs into concrete ``NAME=value`` pairs.

    Passthrough names are looked up in ``environ`` (the current process
    environment by default) and dropped when unset or empty.
    """
    if environ is None:
        environ = os.environ
    result = []
    for spec in specs:
        if "=" in spec:
            result.append(spec)
            continue
        value = environ.get(spec, "")
        if value:
            result.append(f"{spec}={value}")
    return result


def upsert_envs(
    specs: list[str], additions: Iterable[str]
) -> tuple[list[str], list[tuple[str, bool]]]:
    """
    Add or replace env specs by name, keeping each existing entry's position.

    Returns:
        Tuple of (new spec list, [(name, replaced)] per addition)

    Raises:
        ConfigError: If an addition has no variable name
    """
    result = list(specs)
    index = {env_name(spec): i for i, spec in enumerate(result)}
    changes = []
    for spec in additions:
        name = env_name(spec)
        if not name:
            raise ConfigError(f"invalid environment variable: {spec!r}")
        if name in index:
            result[index[name]] = spec
            changes.append((name, True))
        else:
            index[name] = len(result)
            result.append(spec)
            changes.append((name, False))
    return result, changes


def remove_envs(specs: Iterable[str], names: Iterable[str]) -> tuple[list[str], list[str]]:
    """
    Drop every spec whose variable name is in ``names``.

    Returns:
        Tuple of (kept specs, removed names)
    """
    drop = set(names)
    kept, removed = [], []
    for spec in specs:
        if env_name(spec) in drop:
            removed.append(env_name(spec))
        else:
            kept.append(spec)
    return kept, removed


# ---------------------------------------------------------------------------
# Volumes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class VolumeMount:
    """A host path (or named volume) mounted at a destination inside a unit."""

    source: str
    destination: str
    read_only: bool = False

    def to_spec(self) -> str:
        spec = f"{self.source}:{self.destination}"
        return f"{spec}:ro" if self.read_only else spec


def parse_volume_spec(spec: str) -> VolumeMount:
    """
    Parse ``host:dest`` or ``host:dest:ro``.

    Raises:
        ConfigError: If the spec has the wrong shape or an unknown option
    """
    parts = spec.split(":")
    if len(parts) == 2 and all(parts):
        return VolumeMount(parts[0], parts[1])
    if len(parts) == 3 and parts[0] and parts[1]:
        if parts[2] != "ro":
            raise ConfigError(f"invalid volume option {parts[2]!r} (expected 'ro')")
        return VolumeMount(parts[0], parts[1], read_only=True)
    raise ConfigError(f"invalid volume specification: {spec!r} (expected host:dest[:ro])")


def resolve_volume_path(path: str, base_dir: str | Path) -> str:
    """Expand ``~`` and resolve ``./`` or ``../`` against ``base_dir``."""
    if path == "~" or path.startswith("~/"):
        return str(Path(path).expanduser())
    if path.startswith("./") or path.startswith("../"):
        return os.path.normpath(os.path.join(str(base_dir), path))
    return path


# ---------------------------------------------------------------------------
# Project merge
# ---------------------------------------------------------------------------


def merge_profiles(*lists: Iterable[str] | None) -> list[str]:
    """Concatenate profile lists keeping the first occurrence of each name."""
    seen: set[str] = set()
    result = []
    for names in lists:
        for name in names or ():
            if name not in seen:
                seen.add(name)
                result.append(name)
    return result


def merge_project_config(
    project: ProjectConfig, checked_in: CheckedInLocation | None
) -> ProjectConfig:
    """
    Fold a checked-in config into a project config.

    The input is not modified. Profiles and volumes from the checked-in file
    are appended when absent; env entries are appended only for names the
    project does not already define; a checked-in socket policy overrides
    the project's.

    Raises:
        ConfigError: If a checked-in volume or socket value is invalid,
            naming the file it came from
    """
    merged = project.model_copy(deep=True)
    if checked_in is None:
        return merged

    cfg = checked_in.config
    merged.profiles = merge_profiles(merged.profiles, cfg.profiles)

    for spec in cfg.volumes:
        try:
            mount = parse_volume_spec(spec)
        except ConfigError as e:
            raise ConfigError(f"{checked_in.path}: volumes: {e}") from e
        resolved = VolumeMount(
            resolve_volume_path(mount.source, checked_in.dir),
            mount.destination,
            mount.read_only,
        ).to_spec()
        if resolved not in merged.volumes:
            merged.volumes.append(resolved)

    if cfg.docker_socket:
        if cfg.docker_socket not in VALID_SOCKET_POLICIES:
            raise ConfigError(
                f"{checked_in.path}: docker_socket: invalid value {cfg.docker_socket!r}, "
                f"valid values: {', '.join(VALID_SOCKET_POLICIES)}"
            )
        merged.docker_socket = cfg.docker_socket

    existing = {env_name(e) for e in merged.envs}
    for spec in cfg.envs:
        name = env_name(spec)
        if name and name not in existing:
            merged.envs.append(spec)
            existing.add(name)

    return merged


def validate_backend(value: str) -> None:
    """Accept an empty value or a known backend tag."""
    if value and value not in VALID_BACKENDS:
        raise ConfigError(f"invalid backend {value!r}, valid values: {', '.join(VALID_BACKENDS)}")


def resolve_backend(
    cli_flag: str | None,
    checked_in: CheckedInLocation | None,
    project: ProjectConfig | None,
    global_config: GlobalConfig | None,
) -> BackendType:
    """Pick the backend by precedence: CLI, checked-in, project, global, default."""
    candidates = [
        cli_flag or "",
        checked_in.config.backend if checked_in else "",
        project.backend if project else "",
        global_config.default_backend if global_config else "",
    ]
    for value in candidates:
        if value:
            validate_backend(value)
            return BackendType(value)
    return DEFAULT_BACKEND


def effective_socket_policy(project: ProjectConfig, global_config: GlobalConfig) -> str:
    return project.docker_socket or global_config.docker_socket


def should_mount_docker_socket(policy: str, explicit: bool, profiles: Iterable[str]) -> bool:
    """
    Decide whether the host Docker socket is mounted.

    An explicit request always wins. ``auto`` mounts only when the docker
    CLI profile is part of the image.
    """
    if explicit:
        return True
    if policy == "always":
        return True
    if policy == "never":
        return False
    return DOCKER_PROFILE in set(profiles)
