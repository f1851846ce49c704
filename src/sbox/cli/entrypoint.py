"""
The entrypoint command, run inside the unit in place of the agent binary.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime
from pathlib import Path

import click

from sbox.cli.utils import LOG_DATEFMT, LOG_FORMAT, handle_errors
from sbox.entrypoint.runner import EntrypointRunner

logger = logging.getLogger(__name__)

ENTRYPOINT_LOG_FILE = Path("/tmp/sbox-entrypoint.log")
ENTRYPOINT_MARKER_FILE = Path("/tmp/sbox-entrypoint-ran")


def setup_entrypoint_logging(log_file: Path = ENTRYPOINT_LOG_FILE) -> None:
    """Also log to a file; stderr of the entrypoint is rarely visible."""
    try:
        handler = logging.FileHandler(log_file)
    except OSError as e:
        logger.debug(f"Cannot open entrypoint log {log_file}: {e}")
        return
    handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
    root = logging.getLogger()
    root.addHandler(handler)
    if root.level > logging.INFO or root.level == logging.NOTSET:
        root.setLevel(logging.INFO)


def touch_marker(marker: Path = ENTRYPOINT_MARKER_FILE) -> None:
    try:
        marker.write_text(datetime.now(UTC).isoformat() + "\n")
    except OSError as e:
        logger.debug(f"Cannot write entrypoint marker {marker}: {e}")


@click.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False},
    hidden=True,
    add_help_option=False,
)
@click.argument("args", nargs=-1, type=click.UNPROCESSED)
@click.pass_context
@handle_errors
def entrypoint(ctx: click.Context, args: tuple[str, ...]) -> None:
    """Install the prepared handoff and exec the agent (runs inside the unit)."""
    setup_entrypoint_logging()
    touch_marker()
    logger.info(f"sbox entrypoint starting with args {list(args)}")
    runner = ctx.ensure_object(dict).get("entrypoint_runner") or EntrypointRunner()
    runner.run(list(args))
