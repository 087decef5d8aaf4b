"""Logging configuration utilities."""

from __future__ import annotations

import logging
import sys
from typing import Optional

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"

_NOISY_LOGGERS = ("httpx", "httpcore")


def configure_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """Configure process wide logging handlers."""
    handlers: list[logging.Handler] = [logging.StreamHandler(sys.stdout)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))

    resolved = getattr(logging, level.upper(), logging.INFO)
    logging.basicConfig(
        level=resolved,
        format=LOG_FORMAT,
        handlers=handlers,
        force=True,
    )
    # httpx logs every request at INFO; adapters already emit api.dependency events.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(max(resolved, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)
