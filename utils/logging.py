"""Logging helpers for ProxWatch."""

from __future__ import annotations

import logging
import sys

from config import LOG_FORMAT, LOG_LEVEL


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger with the project handler attached.

    Loggers are named after their area, e.g. 'proxwatch.session'. A stream
    handler is attached once per logger, so repeated calls are cheap.
    """
    logger = logging.getLogger(name)
    if not logger.handlers:
        handler = logging.StreamHandler(sys.stderr)
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(handler)
        logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
        logger.propagate = False
    return logger
