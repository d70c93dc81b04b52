"""Logger configuration for the enrollment client."""

import sys
from typing import Optional

from loguru import logger

from .settings import HikEnrollConfig, get_current_config


def setup_logging(config: Optional[HikEnrollConfig] = None) -> None:
    """Configure loguru logger for both console and file output.

    Sets up structured logging with:
    - Console output on stderr with colored output
    - File output with rotation and retention based on settings
    - Configurable log level from settings
    """
    settings = (config or get_current_config()).logging

    # Remove default loguru handler
    logger.remove()

    if settings.to_console:
        logger.add(
            sink=sys.stderr,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>",
            level=settings.level,
            colorize=True,
        )

    # Add file handler if enabled
    if settings.to_file:
        settings.file_path.parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            sink=str(settings.file_path),
            format="{time:YYYY-MM-DD HH:mm:ss} | {level: <8} | {name}:{function}:{line} - {message}",
            level=settings.level,
            rotation=settings.rotation,
            retention=settings.retention,
            compression="gz",  # Compress rotated logs
            enqueue=True,  # Thread-safe logging
        )

        logger.info(f"File logging enabled: {settings.file_path}")
        logger.info(f"Log level: {settings.level}")
