"""Narrow wrapper around external processes.

Every docker/rsync invocation goes through a ``CommandRunner`` so callers can
substitute a fake in tests and so a timeout policy lives in one place.
"""

from __future__ import annotations

import logging
import subprocess  # nosec B404 - subprocess needed to drive docker and rsync
from dataclasses import dataclass

from sbox.errors import ExternalToolError

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Captured result of a non-interactive command."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == 0


class CommandRunner:
    """Runs external commands.

    Args:
        timeout: Default timeout in seconds for captured commands. ``None``
            waits indefinitely. Interactive commands never time out.
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout

    def run(self, cmd: list[str], timeout: float | None = None) -> CommandResult:
        """
        Run a command and capture its output.

        Args:
            cmd: Full argument vector, program first
            timeout: Per-call timeout overriding the runner default

        Returns:
            CommandResult with exit code and decoded output. A missing
            program is reported as exit code 127.
        """
        logger.debug(f"Running: {' '.join(cmd)}")
        try:
            proc = subprocess.run(  # nosec B603 - argv built by sbox, no shell
                cmd,
                capture_output=True,
                text=True,
                timeout=timeout if timeout is not None else self.timeout,
                check=False,
            )
        except FileNotFoundError as e:
            return CommandResult(returncode=127, stderr=str(e))
        except subprocess.TimeoutExpired:
            logger.error(f"Command timed out: {' '.join(cmd)}")
            raise
        return CommandResult(returncode=proc.returncode, stdout=proc.stdout, stderr=proc.stderr)

    def run_interactive(self, cmd: list[str]) -> int:
        """
        Run a command with the terminal's stdin/stdout/stderr attached.

        Args:
            cmd: Full argument vector, program first

        Returns:
            The command's exit code
        """
        logger.debug(f"Running interactively: {' '.join(cmd)}")
        try:
            proc = subprocess.run(cmd, check=False)  # nosec B603 - argv built by sbox
        except FileNotFoundError as e:
            raise ExternalToolError(cmd[0], command=cmd, returncode=127, stderr=str(e)) from e
        return proc.returncode

    def check(self, cmd: list[str], what: str) -> CommandResult:
        """Run a captured command and raise ExternalToolError on failure."""
        result = self.run(cmd)
        if not result.ok:
            raise ExternalToolError(
                what, command=cmd, returncode=result.returncode, stderr=result.stderr
            )
        return result
