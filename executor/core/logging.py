"""Logging setup for the executor process."""
from __future__ import annotations

import logging
import sys

LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"
ROOT_LOGGER = "executor"

_HANDLER_NAME = "executor-stream"


def get_logger(area: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{area}")


def configure_logging(level: str | int = "INFO") -> logging.Logger:
    """Attach a single stream handler to the ``executor`` logger.

    Safe to call repeatedly: the handler is installed once and later calls
    only adjust the level.
    """

    logger = logging.getLogger(ROOT_LOGGER)
    logger.setLevel(level)
    if not any(handler.get_name() == _HANDLER_NAME for handler in logger.handlers):
        handler = logging.StreamHandler(sys.stderr)
        handler.set_name(_HANDLER_NAME)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
    return logger
