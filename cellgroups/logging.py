"""Logging helpers for cellgroups."""

from __future__ import annotations

import logging
import os

from .constants import LOG_LEVEL_ENV


def resolve_level(level: int | str | None = None) -> int:
    """Return a numeric log level from *level* or the environment."""

    if level is None:
        level = os.environ.get(LOG_LEVEL_ENV, "WARNING")
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).strip().upper())
    if not isinstance(value, int):
        raise ValueError(f"unknown log level: {level}")
    return value


def setup_logging(level: int | str | None = None) -> None:
    """Configure the root logger to emit JSON formatted messages."""

    logging.basicConfig(
        level=resolve_level(level),
        format='{"timestamp": "%(asctime)s", "level": "%(levelname)s", '
               '"component": "%(name)s", "message": "%(message)s"}',
    )


__all__ = ["resolve_level", "setup_logging"]
