"""
Logging setup for the collection runner.

Configures the loguru logger once per process from the runner configuration.
"""

from __future__ import annotations

import os
import sys
from typing import Optional

from loguru import logger

from .config_loader import ConfigLoader


DEFAULT_LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<level>{message}</level>"
)

_logger_initialized = False


def init_logger(
    config: Optional[ConfigLoader] = None,
    level: Optional[str] = None,
    format_string: Optional[str] = None,
    log_file: Optional[str] = None,
    force: bool = False,
) -> None:
    """
    Initializes the loguru logger with standard settings.

    Args:
        config: Runner configuration supplying ``logging.*`` defaults.
        level: Log level (DEBUG, INFO, WARNING, ERROR). Defaults to config value.
        format_string: Log format string. Uses default if not provided.
        log_file: Optional file path to write logs to.
        force: Reconfigure even if the logger was already initialized.

    Example:
        init_logger(config)
        init_logger(level="DEBUG", log_file="logs/runner.log")
    """
    global _logger_initialized

    if _logger_initialized and not force:
        return

    def setting(key: str, default=None):
        return config.get(key, default) if config is not None else default

    logger.remove()

    level = (level or setting("logging.level", "INFO")).upper()
    format_string = format_string or setting("logging.format", DEFAULT_LOG_FORMAT)

    logger.add(
        sys.stderr,
        format=format_string,
        level=level,
        colorize=True,
    )

    log_file = log_file or setting("logging.file")
    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)

        logger.add(
            log_file,
            format=format_string,
            level=level,
            rotation=setting("logging.rotation", "10 MB"),
            retention=setting("logging.retention", "7 days"),
        )

    _logger_initialized = True
    logger.debug(f"Logger initialized with level: {level}")


__all__ = ["init_logger", "DEFAULT_LOG_FORMAT"]
