"""Logging helpers for the emtscribe pipeline."""

from __future__ import annotations

import logging
from typing import Optional

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

_LOGGER_CONFIGURED = False


def configure_logging(level: int = logging.INFO, force: bool = False) -> None:
    """Install the root handler once; ``force`` re-applies a new level."""

    global _LOGGER_CONFIGURED
    if _LOGGER_CONFIGURED and not force:
        return

    logging.basicConfig(level=level, format=LOG_FORMAT, force=force)
    _LOGGER_CONFIGURED = True


def get_logger(name: Optional[str] = None) -> logging.Logger:
    configure_logging()
    return logging.getLogger(name or "emtscribe")


__all__ = ["LOG_FORMAT", "configure_logging", "get_logger"]
