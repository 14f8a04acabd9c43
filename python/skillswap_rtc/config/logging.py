"""
Logging configuration for the signaling service and call client.

Environment Variables:
    SKILLSWAP_LOG_LEVEL - Log level (DEBUG, INFO, WARNING, ERROR). Default: INFO
"""

import logging
import os
import sys
from typing import Optional

ROOT_LOGGER = "skillswap"


def setup_logging(
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    name: str = ROOT_LOGGER
) -> logging.Logger:
    """
    Setup logging for the service.

    Args:
        level: Log level. Default from SKILLSWAP_LOG_LEVEL or INFO.
        format_string: Custom format. Default: timestamp + level + name + message.
        name: Logger name.

    Returns:
        Configured logger instance.
    """
    if level is None:
        level = os.getenv("SKILLSWAP_LOG_LEVEL", "INFO").upper()

    if format_string is None:
        format_string = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

    logger = logging.getLogger(name)
    logger.setLevel(getattr(logging, level, logging.INFO))

    logger.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setLevel(getattr(logging, level, logging.INFO))
    handler.setFormatter(logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S"))

    logger.addHandler(handler)

    # aiortc and aioice are chatty at INFO
    if level != "DEBUG":
        for noisy in ("aiortc", "aioice"):
            logging.getLogger(noisy).setLevel(logging.WARNING)

    return logger


def get_logger(name: str = ROOT_LOGGER) -> logging.Logger:
    """
    Get or create a logger.

    Args:
        name: Logger name (prefixed with 'skillswap.' if not already)

    Returns:
        Logger instance.
    """
    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"

    logger = logging.getLogger(name)

    if not logger.handlers and not logging.getLogger(ROOT_LOGGER).handlers:
        setup_logging()

    return logger
