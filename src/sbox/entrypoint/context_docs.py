"""
Project-context document assembly.

Collects every ``CLAUDE.md`` and ``AGENTS.md`` from the workspace up to the
filesystem root and concatenates them root-first, behind a block of
backend-specific guidance.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from pathlib import Path

from sbox.config.models import BackendType

logger = logging.getLogger(__name__)

CONTEXT_FILENAMES = ("CLAUDE.md", "AGENTS.md")
DATA_DIR = Path(__file__).parent.parent / "data"
BANNER = "# " + "=" * 77


def discover_context_files(start_dir: str | Path) -> list[Path]:
    """
    Find context files from ``start_dir`` up to the root.

    Returns:
        Paths ordered root directory first; within a directory CLAUDE.md
        comes before AGENTS.md
    """
    start = Path(start_dir).resolve()
    per_dir = []
    for directory in [start] + list(start.parents):
        found = [directory / n for n in CONTEXT_FILENAMES if (directory / n).is_file()]
        if found:
            per_dir.append(found)
    return [path for group in reversed(per_dir) for path in group]


def backend_guidance(backend: BackendType) -> str:
    return (DATA_DIR / f"{BackendType(backend).value}_backend.md").read_text()


def _source_block(source: str) -> str:
    return f"{BANNER}\n# Source: {source}\n{BANNER}\n\n"


def concatenate_context(files: Iterable[Path], backend: BackendType) -> str:
    """
    Concatenate context files behind the backend guidance.

    Each part is preceded by a banner naming its source. Unreadable files
    are skipped with a warning.
    """
    parts = [_source_block(f"sbox (embedded {BackendType(backend).value} backend instructions)")]
    parts.append(backend_guidance(backend))

    for path in files:
        try:
            content = path.read_text()
        except OSError as e:
            logger.warning(f"Skipping unreadable context file {path}: {e}")
            continue
        parts.append("\n\n" + _source_block(str(path)) + content)

    text = "".join(parts)
    if not text.endswith("\n"):
        text += "\n"
    return text
