"""
Template image builder.

Turns a resolved profile list into a Dockerfile and a content-addressed
image tag (``sbox-template:<hash>``). An image with the same tag is reused
unless a rebuild is forced.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sys
import tempfile
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from sbox import __version__
from sbox.commands import CommandRunner
from sbox.errors import ExternalToolError, SboxError, UnknownProfileError
from sbox.profiles import BUILTIN_PROFILES, Profile, resolve_profiles

logger = logging.getLogger(__name__)

DEFAULT_TEMPLATE_IMAGE = "docker/sandbox-templates:claude-code"
SBOX_PACKAGE = "sbox"
SBOX_VENV = "/opt/sbox"
DEV_WHEEL_DIR = "/tmp/sbox-dist"
TEMPLATE_REPOSITORY = "sbox-template"
DEV_VERSION = "dev"
HASH_LENGTH = 12


@dataclass(frozen=True)
class TargetArch:
    """Architecture names as each downloaded tool spells them."""

    goarch: str
    platform: str
    go_arch: str
    yq_arch: str
    protoc_arch: str


ARCH_AMD64 = TargetArch("amd64", "linux/amd64", "amd64", "amd64", "x86_64")
ARCH_ARM64 = TargetArch("arm64", "linux/arm64", "arm64", "arm64", "aarch_64")

_ARCH_ALIASES = {
    "aarch64": ARCH_ARM64,
    "arm64": ARCH_ARM64,
    "x86_64": ARCH_AMD64,
    "amd64": ARCH_AMD64,
}


def detect_target_arch(runner: CommandRunner) -> TargetArch:
    """
    Ask the Docker daemon which architecture it runs containers on.

    Falls back to amd64 when the query fails.

    Raises:
        SboxError: If Docker reports an architecture sbox has no table for
    """
    result = runner.run(["docker", "info", "--format", "{{.Architecture}}"])
    if not result.ok or not result.stdout.strip():
        logger.warning("Failed to detect Docker architecture, defaulting to amd64")
        return ARCH_AMD64

    arch = result.stdout.strip()
    logger.debug(f"Detected Docker architecture: {arch}")
    target = _ARCH_ALIASES.get(arch)
    if target is None:
        raise SboxError(f"unsupported Docker architecture: {arch}")
    return target


def sbox_version() -> str:
    """Version baked into template tags, ``dev`` when SBOX_DEV=1."""
    if os.environ.get("SBOX_DEV") == "1":
        return DEV_VERSION
    return __version__


def find_source_dir() -> Path:
    """
    Locate the sbox source tree a development image is built from.

    Checks the current directory first, then the directories above this
    module.

    Raises:
        SboxError: If no directory holds both pyproject.toml and src/sbox
    """
    candidates = [Path.cwd(), *Path(__file__).resolve().parents]
    for candidate in candidates:
        if (candidate / "pyproject.toml").is_file() and (
            candidate / "src" / "sbox" / "__init__.py"
        ).is_file():
            return candidate
    raise SboxError(
        "SBOX_DEV=1 requires the sbox source tree; run from the repository root"
    )


class TemplateBuilder:
    """
    Builds the sandbox template image for a set of profiles.

    Args:
        profiles: Requested profile names, dependencies are added automatically
        runner: Command runner used for docker calls
        version: Version string mixed into the tag (default: installed sbox version)
        catalog: Profile catalog (default: built-in profiles)
        logger: Logger to report progress on
    """

    def __init__(
        self,
        profiles: Iterable[str],
        runner: CommandRunner | None = None,
        version: str | None = None,
        catalog: dict[str, Profile] | None = None,
        logger: logging.Logger | None = None,
    ):
        self.profiles = list(profiles)
        self.runner = runner or CommandRunner()
        self.version = version or sbox_version()
        self.catalog = BUILTIN_PROFILES if catalog is None else catalog
        self._logger = logger or logging.getLogger(__name__)

    def resolved_profiles(self) -> list[str]:
        return resolve_profiles(self.profiles, self.catalog)

    def template_hash(self) -> str:
        """Hash of the sorted resolved profiles and the sbox version."""
        combined = ",".join(sorted(self.resolved_profiles())) + ";" + self.version
        return hashlib.sha256(combined.encode()).hexdigest()[:HASH_LENGTH]

    def image_name(self) -> str:
        return f"{TEMPLATE_REPOSITORY}:{self.template_hash()}"

    def image_exists(self) -> bool:
        return self.runner.run(["docker", "image", "inspect", self.image_name()]).ok

    @property
    def dev_mode(self) -> bool:
        """True when sbox is installed from a locally built wheel."""
        return self.version == DEV_VERSION

    def _install_lines(self) -> list[str]:
        if self.dev_mode:
            target = f"{DEV_WHEEL_DIR}/*.whl"
            copy = [f"COPY {SBOX_PACKAGE}-*.whl {DEV_WHEEL_DIR}/"]
        else:
            target = f'"{SBOX_PACKAGE}=={self.version}"'
            copy = []
        return [
            "# sbox itself, installed into its own virtualenv",
            "RUN apt-get update && \\",
            "    apt-get install -y --no-install-recommends python3 python3-venv && \\",
            "    rm -rf /var/lib/apt/lists/*",
            *copy,
            f"RUN python3 -m venv {SBOX_VENV} && \\",
            f"    {SBOX_VENV}/bin/pip install --no-cache-dir {target} && \\",
            f"    ln -sf {SBOX_VENV}/bin/sbox /usr/local/bin/sbox",
            "",
        ]

    def generate_dockerfile(self, arch: TargetArch | None = None) -> str:
        """
        Assemble the Dockerfile text.

        Order: header, base image, architecture arguments, sbox package,
        one block per resolved profile, env file, agent wrapper. Release
        builds install the matching sbox version from the package index;
        dev builds install the wheel placed next to the Dockerfile.

        Raises:
            UnknownProfileError: If a resolved profile is not in the catalog
        """
        lines = [
            "# Auto-generated by sbox",
            f"FROM {DEFAULT_TEMPLATE_IMAGE}",
            "",
        ]
        if arch is not None:
            lines += [
                "# Architecture variables for multi-arch support",
                f"ARG TARGETARCH={arch.goarch}",
                f"ARG GO_ARCH={arch.go_arch}",
                f"ARG YQ_ARCH={arch.yq_arch}",
                f"ARG PROTOC_ARCH={arch.protoc_arch}",
                "",
            ]
        lines += ["USER root", ""]
        lines += self._install_lines()

        for name in self.resolved_profiles():
            profile = self.catalog.get(name)
            if profile is None:
                raise UnknownProfileError(name)
            lines += [f"# Profile: {name}", f"# {profile.description}", profile.snippet]

        lines += [
            "# Persistent env file, written by the entrypoint as the agent user",
            "RUN touch /etc/profile.d/sbox-env.sh && chmod 666 /etc/profile.d/sbox-env.sh",
            "",
            "# Route the agent binary through the sbox entrypoint",
            "COPY <<'WRAPPER_EOF' /usr/local/bin/claude-wrapper",
            "#!/bin/bash",
            "exec /usr/local/bin/sbox entrypoint \"$@\"",
            "WRAPPER_EOF",
            "RUN chmod +x /usr/local/bin/claude-wrapper",
            "RUN CLAUDE_PATH=$(which claude) && \\",
            "    if [ -n \"$CLAUDE_PATH\" ]; then \\",
            "        mv \"$CLAUDE_PATH\" \"${CLAUDE_PATH}-real\" && \\",
            "        ln -s /usr/local/bin/claude-wrapper \"$CLAUDE_PATH\"; \\",
            "    fi",
            "USER agent",
            "",
            'CMD ["sbox", "entrypoint"]',
        ]
        return "\n".join(lines) + "\n"

    def build(self, force_rebuild: bool = False) -> str:
        """
        Build the template image unless an identical one exists.

        Args:
            force_rebuild: Build even if the tag already exists

        Returns:
            Image reference to create units from

        Raises:
            ExternalToolError: If docker build fails
        """
        image = self.image_name()
        if not force_rebuild and self.image_exists():
            self._logger.debug(f"Using existing template image {image}")
            return image

        arch = detect_target_arch(self.runner)
        dockerfile = self.generate_dockerfile(arch)
        self._logger.info(
            f"Building template image {image} for {arch.platform} "
            f"(profiles: {', '.join(self.resolved_profiles()) or 'none'})"
        )

        with tempfile.TemporaryDirectory(prefix="sbox-template-") as tmpdir:
            if self.dev_mode:
                self.build_dev_wheel(Path(tmpdir))
            dockerfile_path = Path(tmpdir) / "Dockerfile"
            dockerfile_path.write_text(dockerfile)
            cmd = [
                "docker", "build",
                "--platform", arch.platform,
                "-t", image,
                "-f", str(dockerfile_path),
                tmpdir,
            ]  # fmt: skip
            returncode = self.runner.run_interactive(cmd)
            if returncode != 0:
                raise ExternalToolError("docker build", command=cmd, returncode=returncode)

        self._logger.info(f"Template image {image} built")
        return image

    def build_dev_wheel(self, context_dir: Path) -> Path:
        """
        Build a wheel of the local sbox source into the build context.

        Raises:
            SboxError: If the source tree is missing or pip produced no wheel
            ExternalToolError: If pip wheel fails
        """
        source = find_source_dir()
        self._logger.info(f"Building sbox wheel from {source}")
        cmd = [
            sys.executable, "-m", "pip", "wheel",
            "--no-deps",
            "--wheel-dir", str(context_dir),
            str(source),
        ]  # fmt: skip
        returncode = self.runner.run_interactive(cmd)
        if returncode != 0:
            raise ExternalToolError("pip wheel", command=cmd, returncode=returncode)

        wheels = sorted(context_dir.glob(f"{SBOX_PACKAGE}-*.whl"))
        if not wheels:
            raise SboxError(f"pip wheel produced no {SBOX_PACKAGE} wheel in {context_dir}")
        return wheels[-1]


def clean_templates(runner: CommandRunner | None = None) -> list[str]:
    """
    Remove every cached template image.

    Returns:
        Image references that were removed

    Raises:
        ExternalToolError: If listing or removing an image fails
    """
    runner = runner or CommandRunner()
    listing = runner.check(
        [
            "docker", "images",
            "--filter", f"reference={TEMPLATE_REPOSITORY}:*",
            "--format", "{{.Repository}}:{{.Tag}}",
        ],
        "docker images",
    )  # fmt: skip
    removed = []
    for image in listing.stdout.splitlines():
        image = image.strip()
        if not image:
            continue
        runner.check(["docker", "rmi", image], f"docker rmi {image}")
        logger.info(f"Removed template image {image}")
        removed.append(image)
    return removed
