"""Configuration loading and merging."""

from sbox.config.loader import (
    find_checked_in_config,
    get_sbox_home,
    list_projects,
    load_config,
    load_project_config,
    project_hash,
    remove_project_data,
    save_config,
    save_project_config,
)
from sbox.config.merge import (
    ResolvedEnv,
    VolumeMount,
    env_name,
    merge_envs,
    merge_profiles,
    merge_project_config,
    parse_volume_spec,
    resolve_backend,
    resolve_envs,
    resolve_volume_path,
)
from sbox.config.models import (
    BackendType,
    CheckedInConfig,
    CheckedInLocation,
    GlobalConfig,
    ProjectConfig,
    ProjectInfo,
)

__all__ = [
    "BackendType",
    "CheckedInConfig",
    "CheckedInLocation",
    "GlobalConfig",
    "ProjectConfig",
    "ProjectInfo",
    "ResolvedEnv",
    "VolumeMount",
    "env_name",
    "find_checked_in_config",
    "get_sbox_home",
    "list_projects",
    "load_config",
    "load_project_config",
    "merge_envs",
    "merge_profiles",
    "merge_project_config",
    "parse_volume_spec",
    "project_hash",
    "remove_project_data",
    "resolve_backend",
    "resolve_envs",
    "resolve_volume_path",
    "save_config",
    "save_project_config",
]
