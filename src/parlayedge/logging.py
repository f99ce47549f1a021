"""Logging helpers for the probability engine."""

from __future__ import annotations

import logging
from typing import Iterable

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
PACKAGE_LOGGER = "parlayedge"


def _resolve_level(level: int | str) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    if not isinstance(resolved, int):
        raise ValueError(f"Unknown log level: {level}")
    return resolved


def configure_logging(
    level: int | str = logging.INFO,
    handlers: Iterable[logging.Handler] | None = None,
) -> None:
    """Configure root logging for command line and embedded use.

    Matrix regularisation and degenerate distributions are reported as
    warnings on the ``parlayedge`` logger.  Its level is set explicitly so the
    requested verbosity applies even when the root logger was configured
    earlier by the host application.
    """

    numeric = _resolve_level(level)
    logging.basicConfig(
        level=numeric,
        format=LOG_FORMAT,
        handlers=list(handlers) if handlers else None,
    )
    logging.getLogger(PACKAGE_LOGGER).setLevel(numeric)
