"""Logging setup for the rank tracker."""

import sys
from pathlib import Path
from typing import Optional

from loguru import logger

from .config import LoggingConfig

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
    "<cyan>{name}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}"


def setup_logging(settings: LoggingConfig, level: Optional[str] = None) -> Optional[Path]:
    """Route loguru output to stderr and, when configured, a rotating file.

    Args:
        settings: The ``logging`` section of the merged config
        level: Overrides ``settings.level`` (e.g. from a CLI flag)

    Returns:
        Path of the log file, or None when file logging is off
    """
    level = (level or settings.level).upper()

    logger.remove()
    logger.add(sys.stderr, format=CONSOLE_FORMAT, level=level, colorize=True)

    log_path = None
    if settings.file:
        log_path = Path(settings.file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_path,
            format=FILE_FORMAT,
            level=level,
            rotation="10 MB",
            retention="30 days",
            compression="zip",
        )

    logger.debug(f"Logging to stderr{f' and {log_path}' if log_path else ''} at {level}")
    return log_path
