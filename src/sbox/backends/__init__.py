"""Unit backends and the factory that picks one."""

from __future__ import annotations

import logging

from sbox.backends.base import (
    Backend,
    BackendOptions,
    InstanceInfo,
    InstanceStatus,
    generate_instance_name,
    is_inside_sandbox,
)
from sbox.backends.container import ContainerBackend
from sbox.backends.sandbox import SandboxBackend
from sbox.commands import CommandRunner
from sbox.config.merge import validate_backend
from sbox.config.models import DEFAULT_BACKEND, BackendType, GlobalConfig

_BACKENDS: dict[BackendType, type[Backend]] = {
    BackendType.SANDBOX: SandboxBackend,
    BackendType.CONTAINER: ContainerBackend,
}


def get_backend(
    backend_type: BackendType | str,
    config: GlobalConfig,
    runner: CommandRunner | None = None,
    logger: logging.Logger | None = None,
) -> Backend:
    """
    Create the backend for a tag. An empty tag selects the default backend.

    Raises:
        ConfigError: If the tag is unknown
    """
    if not backend_type:
        backend_type = DEFAULT_BACKEND
    validate_backend(str(backend_type))
    return _BACKENDS[BackendType(backend_type)](config, runner=runner, logger=logger)


__all__ = [
    "Backend",
    "BackendOptions",
    "ContainerBackend",
    "InstanceInfo",
    "InstanceStatus",
    "SandboxBackend",
    "generate_instance_name",
    "get_backend",
    "is_inside_sandbox",
]
