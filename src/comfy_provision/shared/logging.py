"""Centralized logging utilities."""

import logging
import sys
from typing import Optional
from pathlib import Path

ROOT_LOGGER = "comfy_provision"
DEFAULT_FORMAT = '[%(asctime)s] [%(name)s] [%(levelname)s] %(message)s'


def setup_logger(
    name: str = ROOT_LOGGER,
    level: int = logging.INFO,
    log_file: Optional[Path] = None,
    format_string: Optional[str] = None
) -> logging.Logger:
    """
    Set up a logger with console and optional file output.

    Args:
        name: Logger name
        level: Logging level
        log_file: Optional file to write logs to
        format_string: Custom format string

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.setLevel(level)

    # Remove existing handlers
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(format_string or DEFAULT_FORMAT, datefmt='%H:%M:%S')

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(level)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        add_file_handler(logger, log_file, level=level, format_string=format_string)

    return logger


def add_file_handler(
    logger: logging.Logger,
    log_file: Path,
    level: Optional[int] = None,
    format_string: Optional[str] = None
) -> logging.FileHandler:
    """Attach a UTF-8 file handler to ``logger`` and return it."""
    log_file.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(log_file, encoding='utf-8')
    file_handler.setLevel(level if level is not None else logger.level)
    file_handler.setFormatter(logging.Formatter(format_string or DEFAULT_FORMAT, datefmt='%H:%M:%S'))
    logger.addHandler(file_handler)
    return file_handler


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger below the package root logger.

    The root package logger is configured on first use so modules can log
    before the CLI has called setup_logger().
    """
    root = logging.getLogger(ROOT_LOGGER)
    if not root.handlers:
        setup_logger(ROOT_LOGGER)
    if name == ROOT_LOGGER or name.startswith(ROOT_LOGGER + "."):
        return logging.getLogger(name)
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
