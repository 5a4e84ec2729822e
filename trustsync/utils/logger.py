"""Logging configuration."""

import logging
from pathlib import Path
from typing import Optional

from trustsync.models.config import AppConfig

LOGGER_NAME = "trustsync"


def setup_logger(config: Optional[AppConfig] = None) -> logging.Logger:
    """
    Configure application logger.

    Args:
        config: Application configuration

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(LOGGER_NAME)

    # Prevent duplicate handlers
    if logger.handlers:
        return logger

    level = logging.INFO
    if config and hasattr(config, "logging"):
        level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logger.setLevel(level)

    # Console handler
    console_handler = logging.StreamHandler()
    console_handler.setLevel(level)
    console_formatter = logging.Formatter("%(asctime)s %(levelname)s: %(message)s")
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # File handler (only when a log file is configured)
    if config and config.logging.file:
        log_file = Path(config.logging.file)
        log_file.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file)
        file_handler.setLevel(level)
        file_formatter = logging.Formatter(config.logging.format)
        file_handler.setFormatter(file_formatter)
        logger.addHandler(file_handler)

    return logger
