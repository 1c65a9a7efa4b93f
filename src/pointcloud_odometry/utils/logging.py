"""
Logging Utilities

This module sets up logging for the project with a consistent format for
console and file output.
"""

import logging
import sys
from pathlib import Path
from typing import Optional, Union

PACKAGE_LOGGER = "pointcloud_odometry"

_CONSOLE_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
_FILE_FORMAT = '%(asctime)s | %(levelname)s | %(processName)s[%(process)d] | %(name)s | %(message)s'
_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _resolve_level(level: Union[int, str]) -> int:
    if isinstance(level, str):
        resolved = logging.getLevelName(level.upper())
        if not isinstance(resolved, int):
            raise ValueError(f"Unknown logging level: {level}")
        return resolved
    return level


def setup_logger(name: str,
                 level: Union[int, str] = logging.INFO,
                 log_file: Optional[str] = None) -> logging.Logger:
    """
    Set up a logger with consistent formatting.

    Args:
        name: Logger name (usually __name__)
        level: Logging level as int or name (default: logging.INFO)
        log_file: Optional log file path. If provided, logs will be written to this file

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)

    # Avoid adding multiple handlers
    if logger.handlers:
        return logger

    level = _resolve_level(level)
    logger.setLevel(level)

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(logging.Formatter(_CONSOLE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(console_handler)

    if log_file:
        _add_file_handler(logger, log_file, level)

    return logger


def _add_file_handler(logger: logging.Logger, log_file: str, level: int) -> None:
    log_path = Path(log_file)
    log_path.parent.mkdir(parents=True, exist_ok=True)

    file_handler = logging.FileHandler(log_path)
    file_handler.setLevel(level)
    file_handler.setFormatter(logging.Formatter(_FILE_FORMAT, datefmt=_DATE_FORMAT))
    logger.addHandler(file_handler)


def set_package_log_level(level: Union[int, str], log_file: Optional[str] = None) -> None:
    """
    Apply a level (and optional log file) to every logger of this package
    that has already been created with ``setup_logger``.

    Module loggers are created at import time with the default level, so
    scripts call this after loading their configuration.
    """
    level = _resolve_level(level)
    manager = logging.root.manager
    for name, logger in list(manager.loggerDict.items()):
        if not isinstance(logger, logging.Logger):
            continue
        if name != PACKAGE_LOGGER and not name.startswith(PACKAGE_LOGGER + "."):
            continue
        logger.setLevel(level)
        for handler in logger.handlers:
            handler.setLevel(level)
        has_file = any(isinstance(h, logging.FileHandler) for h in logger.handlers)
        if log_file and logger.handlers and not has_file:
            _add_file_handler(logger, log_file, level)
