"""Logging helpers."""

from __future__ import annotations

import logging
import os
from logging.handlers import RotatingFileHandler
from typing import Union

LOG_FILE_NAME = "callscribe.log"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s %(message)s"


def resolve_level(level: Union[int, str]) -> int:
    """Accept ``logging`` constants or names such as ``"debug"``."""
    if isinstance(level, str):
        value = logging.getLevelName(level.strip().upper())
        if not isinstance(value, int):
            raise ValueError(f"Unknown log level: {level}")
        return value
    return int(level)


def setup_logging(
    log_dir: str = "logs",
    level: Union[int, str] = logging.INFO,
    console: bool = True,
    max_bytes: int = 2_000_000,
    backup_count: int = 3,
) -> tuple[logging.Logger, str]:
    """Route the ``callscribe`` logger tree to a rotating file.

    Safe to call more than once: a file handler pointing at another
    directory is replaced, and at most one console handler is kept.
    """
    os.makedirs(log_dir, exist_ok=True)
    log_path = os.path.abspath(os.path.join(log_dir, LOG_FILE_NAME))

    logger = logging.getLogger("callscribe")
    logger.setLevel(resolve_level(level))
    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")

    file_handlers = [h for h in logger.handlers if isinstance(h, RotatingFileHandler)]
    for handler in file_handlers:
        if handler.baseFilename != log_path:
            logger.removeHandler(handler)
            handler.close()
    if not any(h.baseFilename == log_path for h in file_handlers):
        handler = RotatingFileHandler(log_path, maxBytes=max_bytes, backupCount=backup_count)
        handler.setFormatter(formatter)
        logger.addHandler(handler)

    # RotatingFileHandler is itself a StreamHandler subclass.
    has_console = any(type(h) is logging.StreamHandler for h in logger.handlers)
    if console and not has_console:
        stream = logging.StreamHandler()
        stream.setFormatter(formatter)
        stream.setLevel(logging.INFO)
        logger.addHandler(stream)

    return logger, log_path
