"""
Logging configuration for the position engine.

Provides structured, readable log output with colors and timestamps.

Usage:
    from app.utils.logger import get_logger
    logger = get_logger(__name__)

    # At process start:
    from app.utils.logger import setup_logging
    setup_logging(level="INFO")
"""

import logging
import sys
from typing import Optional
from datetime import datetime, timezone

ROOT_LOGGER_NAME = "fxengine"


class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors and clean structure"""

    # ANSI color codes
    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m',      # Reset
    }

    def format(self, record: logging.LogRecord) -> str:
        timestamp = datetime.now(timezone.utc).strftime('%Y-%m-%d %H:%M:%S')

        level_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset_color = self.COLORS['RESET']

        # fxengine.app.services.x -> services.x
        module_name = record.name
        for prefix in (f"{ROOT_LOGGER_NAME}.app.", f"{ROOT_LOGGER_NAME}."):
            if module_name.startswith(prefix):
                module_name = module_name[len(prefix):]
                break

        formatted_message = (
            f"{level_color}[{timestamp}] {record.levelname:<8} "
            f"[{module_name:<28}] {record.getMessage()}{reset_color}"
        )

        if record.exc_info:
            formatted_message += f"\n{self.formatException(record.exc_info)}"

        return formatted_message


def setup_logging(
    level: str = "INFO",
    format_type: str = "colored",
    log_file: Optional[str] = None
) -> logging.Logger:
    """
    Configure engine logging.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        format_type: "colored" for console with colors, "simple" or "detailed"
        log_file: Optional file path to also log to file

    Returns:
        logging.Logger: The configured engine root logger
    """
    logger = logging.getLogger(ROOT_LOGGER_NAME)
    numeric_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(numeric_level)

    # Prevent duplicate handlers on repeated setup
    logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(numeric_level)

    if format_type == "colored":
        formatter: logging.Formatter = ColoredFormatter()
    elif format_type == "simple":
        formatter = logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter(
            '[%(asctime)s] [%(levelname)s] [%(name)s:%(funcName)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setLevel(numeric_level)
        file_handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s [%(name)s:%(lineno)d] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        logger.addHandler(file_handler)

    # Suppress noisy third-party logs
    logging.getLogger('httpx').setLevel(logging.WARNING)
    logging.getLogger('socketio').setLevel(logging.WARNING)
    logging.getLogger('engineio').setLevel(logging.WARNING)
    logging.getLogger('uvicorn.access').setLevel(logging.WARNING)

    return logger


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a specific module.

    Args:
        name: Logger name (typically __name__ of the module)

    Returns:
        logging.Logger: Logger under the engine root logger

    Example:
        >>> logger = get_logger(__name__)
        >>> logger.info("Position closed")
    """
    return logging.getLogger(f"{ROOT_LOGGER_NAME}.{name}")
