"""
Logging setup for Second Opinion.

The MCP stdio transport owns stdout, so every handler here writes to
stderr (or to a file when LOG_PATH is set).
"""

import logging
import sys
from typing import Optional, TextIO

BASE_LOGGER = "second_opinion"

LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warn": logging.WARNING,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


def parse_level(value: Optional[str], default: int = logging.INFO) -> int:
    if not value:
        return default
    return LEVELS.get(value.strip().lower(), default)


def setup_logging(
    level: int = logging.INFO,
    enabled: bool = True,
    log_path: Optional[str] = None,
    stream: Optional[TextIO] = None,
) -> logging.Logger:
    """
    Configure the package logger once and return it.

    Calling it again replaces the previous handler, so the server can
    reconfigure after the environment has been loaded.
    """
    logger = logging.getLogger(BASE_LOGGER)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)

    if not enabled:
        logger.addHandler(logging.NullHandler())
        logger.propagate = False
        return logger

    if log_path:
        handler: logging.Handler = logging.FileHandler(log_path, encoding="utf-8")
    else:
        handler = logging.StreamHandler(stream or sys.stderr)
    handler.setFormatter(
        logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s")
    )
    logger.addHandler(handler)
    logger.setLevel(level)
    logger.propagate = False
    return logger
