"""Exception types raised by sbox."""

from __future__ import annotations


class SboxError(Exception):
    """Base class for all sbox errors."""


class ConfigError(SboxError, ValueError):
    """Raised when a configuration file or value is invalid."""


class UnknownProfileError(ConfigError):
    """Raised when a profile name is not in the catalog."""

    def __init__(self, name: str) -> None:
        super().__init__(f"unknown profile: {name}")
        self.name = name


class ProfileCycleError(ConfigError):
    """Raised when profile dependencies form a cycle."""

    def __init__(self, chain: list[str]) -> None:
        super().__init__(f"profile dependency cycle: {' -> '.join(chain)}")
        self.chain = chain


class ExternalToolError(SboxError, RuntimeError):
    """Raised when an external command (docker, rsync) exits non-zero."""

    def __init__(
        self,
        what: str,
        command: list[str] | None = None,
        returncode: int | None = None,
        stderr: str = "",
    ) -> None:
        detail = stderr.strip()
        message = f"{what} failed: {detail}" if detail else f"{what} failed"
        if returncode is not None and not detail:
            message = f"{message} (exit code {returncode})"
        super().__init__(message)
        self.command = command or []
        self.returncode = returncode
        self.stderr = stderr


class ManifestVersionError(SboxError):
    """Raised when the entrypoint manifest was written by a newer sbox."""

    def __init__(self, version: int, supported: int) -> None:
        super().__init__(
            f"entrypoint config version {version} is newer than supported version "
            f"{supported}; please update sbox"
        )
        self.version = version
        self.supported = supported


class NotRunningError(SboxError):
    """Raised when an operation needs a running unit and none exists."""


class AlreadyInsideSandboxError(SboxError):
    """Raised when a host-only command is invoked from inside a sandbox."""

    def __init__(self) -> None:
        super().__init__(
            "you are already inside a sandbox container\n"
            "Use 'bash' to open a new shell, or exit and run 'sbox shell' from the host"
        )
