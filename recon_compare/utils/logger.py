"""Utilities for logging.

All modules share one named logger writing to stdout with UTC timestamps:
    "2025-10-28 00:00:45 [align.py] INFO: message"

Authors: Ayush Baid, John Lambert
"""

import logging
import sys
from datetime import datetime, timezone

LOGGER_NAME = "recon-compare"


class UTCFormatter(logging.Formatter):
    """Formatter which renders record timestamps in UTC."""

    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created, tz=timezone.utc)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.strftime("%Y-%m-%d %H:%M:%S")


def get_logger() -> logging.Logger:
    """Get the main logger, attaching the stdout handler on first use.

    Returns:
        Configured logger instance.
    """
    logger = logging.getLogger(LOGGER_NAME)

    if not logger.handlers:
        logger.setLevel(logging.INFO)
        handler = logging.StreamHandler(sys.stdout)
        fmt = "%(asctime)s [%(filename)s] %(levelname)s: %(message)s"
        handler.setFormatter(UTCFormatter(fmt, datefmt="%Y-%m-%d %H:%M:%S"))
        logger.addHandler(handler)

    return logger


def set_level(level_name: str) -> None:
    """Set the level of the main logger from a name such as `debug` or `INFO`.

    Raises:
        ValueError: If the name is not a logging level.
    """
    level = getattr(logging, level_name.upper(), None)
    if not isinstance(level, int):
        raise ValueError(f"Unknown log level: {level_name}")
    get_logger().setLevel(level)
