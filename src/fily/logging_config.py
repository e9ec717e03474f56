"""Logging setup for the command line.

Library modules only create module loggers; handlers are attached here, to
the ``fily`` logger, by the CLI.
"""

from __future__ import annotations

import logging
from pathlib import Path

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

LOG_LEVELS: dict[str, int | None] = {
    "off": None,
    "trace": TRACE,
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "error": logging.ERROR,
}

LOG_FORMAT = "%(asctime)s[%(name)s][%(levelname)s] %(message)s"

_HANDLER_NAME = "fily-file"


def _remove_handlers(logger: logging.Logger) -> None:
    for handler in list(logger.handlers):
        if handler.get_name() == _HANDLER_NAME:
            logger.removeHandler(handler)
            handler.close()


def setup_logging(level: str, log_file: Path | None = None) -> logging.Logger:
    """Configure the ``fily`` logger.

    Args:
        level: One of LOG_LEVELS. "off" silences all fily log output.
        log_file: File the log is appended to; required unless level is "off".

    Returns:
        The configured ``fily`` logger.

    Raises:
        ValueError: If the level is unknown or log_file is missing.
        OSError: If the log file cannot be opened.
    """
    if level not in LOG_LEVELS:
        raise ValueError(f"Unknown log level: {level}")

    logger = logging.getLogger("fily")
    _remove_handlers(logger)

    numeric = LOG_LEVELS[level]
    if numeric is None:
        logger.setLevel(logging.CRITICAL + 1)
        return logger

    if log_file is None:
        raise ValueError("A log file is required when logging is enabled")

    handler = logging.FileHandler(log_file, encoding="utf-8")
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(numeric)
    return logger
