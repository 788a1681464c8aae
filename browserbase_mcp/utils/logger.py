"""
Logging utility for the continuity server.
"""

import logging
import sys
from typing import Optional
from pathlib import Path

from ..config import settings


ROOT_LOGGER_NAME = "browserbase_mcp"


class Logger:
    """Centralized logging configuration."""

    _instance: Optional[logging.Logger] = None

    @staticmethod
    def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
        """
        Get or create a logger instance.

        The package root logger is configured once; every module logger
        (``browserbase_mcp.<module>``) propagates to it.

        Args:
            name: Logger name

        Returns:
            Configured logger instance
        """
        if Logger._instance is not None:
            return logging.getLogger(name)

        root = logging.getLogger(ROOT_LOGGER_NAME)
        level = getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO)
        root.setLevel(logging.DEBUG)

        # Console handler
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(level)
        console_formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )
        console_handler.setFormatter(console_formatter)
        root.addHandler(console_handler)

        # File handler (disabled with LOG_DIR="")
        if settings.LOG_DIR:
            log_dir = Path(settings.LOG_DIR)
            log_dir.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(log_dir / "continuity.log")
            file_handler.setLevel(logging.DEBUG)
            file_formatter = logging.Formatter(
                "%(asctime)s - %(name)s - %(levelname)s - %(funcName)s:%(lineno)d - %(message)s"
            )
            file_handler.setFormatter(file_formatter)
            root.addHandler(file_handler)

        Logger._instance = root
        return logging.getLogger(name)


def get_logger(name: str = ROOT_LOGGER_NAME) -> logging.Logger:
    """Convenience function to get a logger."""
    return Logger.get_logger(name)
