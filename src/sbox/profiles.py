"""
Built-in tool profiles.

A profile is a named Dockerfile snippet plus the profiles it needs first.
Snippets may use the ``${GO_ARCH}``, ``${YQ_ARCH}`` and ``${PROTOC_ARCH}``
build arguments declared by the generated Dockerfile.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass, field

from sbox.errors import ProfileCycleError


@dataclass(frozen=True)
class Profile:
    """A named bundle of tool-installation steps."""

    name: str
    description: str
    snippet: str
    dependencies: tuple[str, ...] = field(default_factory=tuple)


_GO = """\
# Go toolchain
RUN apt-get update && apt-get install -y wget && \\
    wget -q https://go.dev/dl/go1.24.4.linux-${GO_ARCH}.tar.gz && \\
    tar -C /usr/local -xzf go1.24.4.linux-${GO_ARCH}.tar.gz && \\
    rm go1.24.4.linux-${GO_ARCH}.tar.gz && \\
    apt-get clean && rm -rf /var/lib/apt/lists/*

ENV PATH="/usr/local/go/bin:${PATH}"
ENV GOPATH="/workspace/.go"
ENV PATH="${GOPATH}/bin:${PATH}"
"""

_RUST = """\
# Rust toolchain, installed system-wide
ENV RUSTUP_HOME="/usr/local/rustup"
ENV CARGO_HOME="/usr/local/cargo"
ENV PATH="/usr/local/cargo/bin:${PATH}"

RUN apt-get update && apt-get install -y curl build-essential && \\
    curl --proto '=https' --tlsv1.2 -sSf https://sh.rustup.rs | sh -s -- -y --no-modify-path && \\
    chmod -R a+rwx /usr/local/rustup /usr/local/cargo && \\
    apt-get clean && rm -rf /var/lib/apt/lists/*
"""

_DOCKER = """\
# Docker CLI and compose plugin
RUN apt-get update && apt-get install -y ca-certificates curl gnupg lsb-release && \\
    mkdir -p /etc/apt/keyrings && \\
    curl -fsSL https://download.docker.com/linux/debian/gpg | gpg --dearmor -o /etc/apt/keyrings/docker.gpg && \\
    echo "deb [arch=$(dpkg --print-architecture) signed-by=/etc/apt/keyrings/docker.gpg] \\
    https://download.docker.com/linux/debian $(lsb_release -cs) stable" \\
    > /etc/apt/sources.list.d/docker.list && \\
    apt-get update && apt-get install -y docker-ce-cli docker-compose-plugin && \\
    apt-get clean && rm -rf /var/lib/apt/lists/*
"""

_BASH_UTILS = """\
# Shell utilities
RUN apt-get update && apt-get install -y jq curl wget git vim nano htop tree zip unzip && \\
    wget -qO /usr/local/bin/yq https://github.com/mikefarah/yq/releases/latest/download/yq_linux_${YQ_ARCH} && \\
    chmod +x /usr/local/bin/yq && \\
    apt-get clean && rm -rf /var/lib/apt/lists/*
"""

_SUBSTREAMS = """\
# Substreams and Firehose Core CLIs
COPY --from=ghcr.io/streamingfast/substreams:latest /app/substreams /usr/local/bin/substreams
COPY --from=ghcr.io/streamingfast/firehose-core:latest /app/firecore /usr/local/bin/firecore

# buf and protoc
RUN apt-get update && apt-get install -y curl unzip && \\
    curl -sSL "https://github.com/bufbuild/buf/releases/latest/download/buf-$(uname -s)-$(uname -m)" \\
    -o /usr/local/bin/buf && chmod +x /usr/local/bin/buf && \\
    PROTOC_VERSION=$(curl -sSL https://api.github.com/repos/protocolbuffers/protobuf/releases/latest \\
    | grep '"tag_name"' | sed 's/.*"v\\(.*\\)".*/\\1/') && \\
    curl -sSL "https://github.com/protocolbuffers/protobuf/releases/download/v${PROTOC_VERSION}/protoc-${PROTOC_VERSION}-linux-${PROTOC_ARCH}.zip" \\
    -o /tmp/protoc.zip && \\
    unzip -o /tmp/protoc.zip -d /usr/local bin/protoc 'include/*' && rm /tmp/protoc.zip && \\
    apt-get clean && rm -rf /var/lib/apt/lists/*
"""

_JAVASCRIPT = """\
# pnpm and yarn (node and npm ship with the base image)
RUN npm install -g pnpm yarn
"""

BUILTIN_PROFILES: dict[str, Profile] = {
    p.name: p
    for p in (
        Profile("go", "Go programming language toolchain", _GO),
        Profile("rust", "Rust programming language toolchain (stable)", _RUST),
        Profile("docker", "Docker CLI tools for container management", _DOCKER),
        Profile("bash-utils", "Common shell utilities (jq, yq, curl, wget, git)", _BASH_UTILS),
        Profile(
            "substreams",
            "Substreams and Firehose Core CLI tools for blockchain data",
            _SUBSTREAMS,
            dependencies=("rust",),
        ),
        Profile("javascript", "JavaScript/TypeScript package managers (pnpm, yarn)", _JAVASCRIPT),
    )
}


def get_profile(name: str, catalog: dict[str, Profile] | None = None) -> Profile | None:
    return (BUILTIN_PROFILES if catalog is None else catalog).get(name)


def list_profiles(catalog: dict[str, Profile] | None = None) -> list[str]:
    return sorted(BUILTIN_PROFILES if catalog is None else catalog)


def resolve_profiles(
    requested: Iterable[str], catalog: dict[str, Profile] | None = None
) -> list[str]:
    """
    Expand requested profiles into a dependency-ordered build list.

    Dependencies are placed before their dependents and nothing is listed
    twice. Unknown names are kept in place so the build step can report
    them.

    Args:
        requested: Profile names in the order the user asked for them
        catalog: Profile catalog (default: built-in profiles)

    Returns:
        Ordered, deduplicated profile names

    Raises:
        ProfileCycleError: If the dependency graph has a cycle
    """
    if catalog is None:
        catalog = BUILTIN_PROFILES

    placed: set[str] = set()
    result: list[str] = []
    visiting: list[str] = []

    def visit(name: str) -> None:
        if name in placed:
            return
        if name in visiting:
            raise ProfileCycleError(visiting[visiting.index(name) :] + [name])
        visiting.append(name)
        profile = catalog.get(name)
        if profile is not None:
            for dep in profile.dependencies:
                visit(dep)
        visiting.pop()
        placed.add(name)
        result.append(name)

    for name in requested:
        visit(name)
    return result
