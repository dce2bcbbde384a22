"""Logging setup for fluxbridge entry points.

Library modules only call ``logging.getLogger(__name__)``; the CLI calls
``configure_logging`` once at startup.
"""

from __future__ import annotations

import logging


def configure_logging(level: str | int = logging.INFO, *, force: bool = False) -> None:
    """Initialise the root logger with a terse CLI-friendly format."""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
