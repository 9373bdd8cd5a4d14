"""
Centralized logging configuration for the application.
"""
import logging
import sys
from src.core import config

LOG_FORMAT = '%(asctime)s | %(levelname)s | %(name)s | %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def get_logger(name: str) -> logging.Logger:
    """
    Get a configured logger instance.

    Args:
        name: Logger name (usually __name__)

    Returns:
        Logger writing to stdout at the configured level
    """
    logger = logging.getLogger(name)

    # Don't add handlers multiple times
    if logger.handlers:
        return logger

    logger.setLevel(getattr(logging, config.settings.log_level.upper(), logging.INFO))

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    logger.addHandler(handler)

    return logger
