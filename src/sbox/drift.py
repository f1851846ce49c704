"""
Mount drift detection.

Units remember the mounts they were created with. When the configuration
changes afterwards, the running unit silently lacks the new mounts until it
is recreated. This module compares the two sets.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field

from sbox.backends.base import Backend, BackendOptions, InstanceInfo, same_path
from sbox.config.merge import VolumeMount

logger = logging.getLogger(__name__)


@dataclass
class MountDrift:
    """Mounts the configuration expects but the unit does not have."""

    missing: list[VolumeMount] = field(default_factory=list)

    @property
    def has_drift(self) -> bool:
        return bool(self.missing)


def diff_mounts(expected: Iterable[VolumeMount], actual: Iterable[VolumeMount]) -> MountDrift:
    """
    Report expected mounts that are absent from ``actual``.

    A destination counts as present when the actual source resolves to the
    same path as the expected one. Extra actual mounts are ignored.
    """
    actual_sources: dict[str, list[str]] = {}
    for mount in actual:
        actual_sources.setdefault(mount.destination, []).append(mount.source)

    missing = []
    for mount in expected:
        sources = actual_sources.get(mount.destination, [])
        if not any(same_path(src, mount.source) for src in sources):
            missing.append(mount)
    return MountDrift(missing=missing)


class MountDriftDetector:
    """Compares a unit's mounts against what the current configuration would create."""

    def __init__(self, backend: Backend):
        self.backend = backend

    def check(self, options: BackendOptions, info: InstanceInfo) -> MountDrift:
        """
        Check a unit for drift.

        Backends whose units re-derive mounts on every start never drift,
        and only running units are inspected.
        """
        if not self.backend.remembers_mounts or not info.is_running:
            return MountDrift()
        expected = self.backend.expected_mounts(options)
        actual = self.backend.actual_mounts(info)
        drift = diff_mounts(expected, actual)
        if drift.has_drift:
            logger.debug(f"{info.name} is missing {len(drift.missing)} mounts")
        return drift
