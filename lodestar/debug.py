"""
Debug logging for lodestar.

Setting ``LODESTAR_DEBUG=true`` attaches a stream handler to the ``lodestar``
logger and makes every CDPConnection log the frames it sends (``-->``) and
receives (``<--``).
"""

import logging
import sys
from typing import Optional

from lodestar.config.env import get_env_settings

LOGGER_NAME = "lodestar"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

_handler: Optional[logging.Handler] = None


def is_debug_enabled() -> bool:
    """Whether debug output was requested through the environment."""
    return get_env_settings().debug


def enable_debug_logging(level: int = logging.DEBUG) -> logging.Handler:
    """Attach a stderr handler to the ``lodestar`` logger.

    Calling this more than once reuses the same handler.

    Args:
        level: Level for both the logger and the handler.

    Returns:
        The installed handler.
    """
    global _handler

    logger = logging.getLogger(LOGGER_NAME)
    if _handler is None:
        _handler = logging.StreamHandler(sys.stderr)
        _handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(_handler)
    _handler.setLevel(level)
    logger.setLevel(level)
    return _handler


def disable_debug_logging() -> None:
    """Remove the handler installed by enable_debug_logging."""
    global _handler

    if _handler is not None:
        logging.getLogger(LOGGER_NAME).removeHandler(_handler)
        _handler = None
    logging.getLogger(LOGGER_NAME).setLevel(logging.NOTSET)


def configure_from_env() -> bool:
    """Enable debug logging when ``LODESTAR_DEBUG`` is set.

    Returns:
        Whether debug logging is on.
    """
    if is_debug_enabled():
        enable_debug_logging()
        return True
    return False


__all__ = [
    "configure_from_env",
    "disable_debug_logging",
    "enable_debug_logging",
    "is_debug_enabled",
]
