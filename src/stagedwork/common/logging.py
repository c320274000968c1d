"""Shared logging helpers for stagedwork."""

from __future__ import annotations

import logging


def configure_logging(*, level: int = logging.INFO, force: bool = False) -> None:
    """Initialise the root logger once with a terse format.

    Library code only logs through module loggers; entry points (scripts, workers,
    tests) call this once. Pass ``force=True`` to reconfigure an already configured
    root logger.
    """

    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        datefmt="%H:%M:%S",
        force=force,
    )
