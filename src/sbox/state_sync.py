"""
State cache synchronization.

The agent's state-home inside a unit (credentials, settings, history) is
mirrored to ``<workspace>/.sbox/claude-cache`` so it outlives unit
recreation. Saving runs rsync inside the unit in mirror mode; restoring runs
inside the unit at entrypoint time without deletion.
"""

from __future__ import annotations

import logging
from pathlib import Path

from sbox.commands import CommandRunner
from sbox.entrypoint.manifest import handoff_dir

logger = logging.getLogger(__name__)

CACHE_DIRNAME = "claude-cache"


def cache_dir(workspace_dir: str | Path) -> Path:
    return handoff_dir(workspace_dir) / CACHE_DIRNAME


def save_cache(
    runner: CommandRunner,
    exec_prefix: list[str],
    cache_path: Path,
    state_home: str,
) -> None:
    """
    Mirror a unit's state-home onto the cache directory.

    Args:
        runner: Command runner
        exec_prefix: Command that executes inside the unit, e.g.
            ``["docker", "exec", "<id>"]``
        cache_path: Cache directory; the workspace is mounted at the same
            path inside the unit
        state_home: State-home path inside the unit

    Raises:
        ExternalToolError: If rsync fails
    """
    cache_path.mkdir(parents=True, exist_ok=True)
    cmd = exec_prefix + ["rsync", "-a", "--delete", f"{state_home.rstrip('/')}/", f"{cache_path}/"]
    runner.check(cmd, "state cache save")
    logger.info(f"Saved state cache to {cache_path}")


def restore_cache(runner: CommandRunner, cache_path: Path, state_home: Path) -> bool:
    """
    Copy a saved cache onto the live state-home, keeping newer local files.

    Returns:
        True if a cache was restored, False if there was nothing to restore

    Raises:
        ExternalToolError: If rsync fails
    """
    if not cache_path.is_dir() or not any(cache_path.iterdir()):
        logger.debug(f"No state cache at {cache_path}")
        return False
    state_home.mkdir(parents=True, exist_ok=True)
    runner.check(["rsync", "-a", f"{cache_path}/", f"{state_home}/"], "state cache restore")
    logger.info(f"Restored state cache from {cache_path} to {state_home}")
    return True
