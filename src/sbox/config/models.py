"""
Configuration models.

Three layers feed the effective configuration of a run:
- GlobalConfig: ``<sbox home>/config.yaml``, shared by every project
- ProjectConfig: stored per workspace under the data directory
- CheckedInConfig: ``sbox.yaml`` committed next to the code
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator


class BackendType(str, Enum):
    """Which external tool drives a unit."""

    SANDBOX = "sandbox"
    CONTAINER = "container"

    def __str__(self) -> str:
        return self.value


DEFAULT_BACKEND = BackendType.SANDBOX
VALID_SOCKET_POLICIES = ("auto", "always", "never")
VALID_BACKENDS = tuple(b.value for b in BackendType)


def _check_socket_policy(v: str, allow_empty: bool) -> str:
    if v == "" and allow_empty:
        return v
    if v not in VALID_SOCKET_POLICIES:
        raise ValueError(
            f"invalid docker_socket {v!r}, valid values: {', '.join(VALID_SOCKET_POLICIES)}"
        )
    return v


def _check_backend(v: str) -> str:
    if v and v not in VALID_BACKENDS:
        raise ValueError(f"invalid backend {v!r}, valid values: {', '.join(VALID_BACKENDS)}")
    return v


class GlobalConfig(BaseModel):
    """Process-wide settings shared by all projects."""

    model_config = ConfigDict(validate_default=True)

    claude_home: str = Field(
        default="~/.claude",
        description="Host directory holding the agent's settings, agents and plugins",
    )
    sbox_data_dir: str = Field(
        default="~/.config/sbox",
        description="Root directory for per-project data",
    )
    docker_socket: str = Field(
        default="auto",
        description="Docker socket mount policy: auto, always or never",
    )
    default_profiles: list[str] = Field(
        default_factory=list,
        description="Profiles applied to projects that have no profile list yet",
    )
    default_backend: str = Field(
        default="",
        description="Backend used when nothing more specific is configured",
    )
    envs: list[str] = Field(
        default_factory=list,
        description="Environment specs (NAME=value or NAME for host passthrough)",
    )

    @field_validator("docker_socket")
    @classmethod
    def validate_socket(cls, v: str) -> str:
        return _check_socket_policy(v, allow_empty=False)

    @field_validator("default_backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        return _check_backend(v)

    @field_validator("claude_home", "sbox_data_dir")
    @classmethod
    def expand_path(cls, v: str) -> str:
        return str(Path(v).expanduser())

    @property
    def projects_dir(self) -> Path:
        return Path(self.sbox_data_dir) / "projects"


class ProjectConfig(BaseModel):
    """Locally stored settings for one workspace."""

    workspace_path: str = ""
    profiles: list[str] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    docker_socket: str = Field(default="", description="Empty inherits the global policy")
    envs: list[str] = Field(default_factory=list)
    backend: str = ""
    sandbox_name: str = ""

    @field_validator("docker_socket")
    @classmethod
    def validate_socket(cls, v: str) -> str:
        return _check_socket_policy(v, allow_empty=True)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        return _check_backend(v)


class CheckedInConfig(BaseModel):
    """Project settings committed to the repository (``sbox.yaml``)."""

    profiles: list[str] = Field(default_factory=list)
    volumes: list[str] = Field(default_factory=list)
    docker_socket: str = ""
    envs: list[str] = Field(default_factory=list)
    backend: str = ""

    @field_validator("docker_socket")
    @classmethod
    def validate_socket(cls, v: str) -> str:
        return _check_socket_policy(v, allow_empty=True)

    @field_validator("backend")
    @classmethod
    def validate_backend(cls, v: str) -> str:
        return _check_backend(v)


@dataclass
class CheckedInLocation:
    """A discovered checked-in config and where it lives."""

    path: Path
    dir: Path
    config: CheckedInConfig


@dataclass
class ProjectInfo:
    """A known project as listed from the data directory."""

    hash: str
    workspace_path: str
    config: ProjectConfig
