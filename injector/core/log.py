"""Logger construction for the command line.

Library components never configure logging themselves; they take a logger
argument and fall back to their module logger. Only the CLI builds a
configured logger, and it does so without touching the root logger.
"""

from __future__ import annotations

import logging

from rich.console import Console
from rich.logging import RichHandler

from injector.core.settings import Settings

LOGGER_NAME = "injector"
DEFAULT_LEVEL = logging.WARNING


def _resolve_level(level: str | int | None, logger: logging.Logger) -> int:
    if level is None or level == "":
        level = Settings.from_env().log_level
    if isinstance(level, int):
        return level

    resolved = logging.getLevelName(level.strip().upper())
    if isinstance(resolved, int):
        return resolved
    logger.warning("Unknown log level %r, using %s", level, logging.getLevelName(DEFAULT_LEVEL))
    return DEFAULT_LEVEL


def get_logger(level: str | int | None = None, name: str = LOGGER_NAME) -> logging.Logger:
    """Build a logger that writes to stderr through rich.

    Args:
        level: Level name or number. Falls back to LOG_LEVEL, then WARNING.
        name: Logger name.

    Returns:
        A non-propagating logger with a single RichHandler.
    """
    logger = logging.getLogger(name)
    logger.propagate = False
    if not any(isinstance(h, RichHandler) for h in logger.handlers):
        handler = RichHandler(console=Console(stderr=True), show_path=False, rich_tracebacks=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
    logger.setLevel(DEFAULT_LEVEL)
    logger.setLevel(_resolve_level(level, logger))
    return logger
