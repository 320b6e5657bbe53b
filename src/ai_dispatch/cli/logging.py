"""CLI logging setup.

Logs go to stderr so stdout carries only the JSON envelope.
"""

import logging
import sys


def configure_logging(level: str = "INFO", *, verbose: bool = False) -> None:
    """Configure the root handler once per process."""
    effective = logging.DEBUG if verbose else getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=effective,
        stream=sys.stderr,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        force=True,
    )


def get_cli_logger() -> logging.Logger:
    return logging.getLogger("ai_dispatch.cli")
