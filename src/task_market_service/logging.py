"""Service logging helpers built on the shared JSON logging setup."""

from __future__ import annotations

import logging

from service_commons.logging import get_named_logger
from service_commons.logging import setup_logging as setup_service_logging

# Module loggers (``task_market_service.*``) are children of this logger.
LOGGER_ROOT = "task_market_service"


def setup_logging(level: str, service_name: str, log_directory: str) -> logging.Logger:
    """Configure JSON logging for the service and tag it with its name."""
    logger = setup_service_logging(level, LOGGER_ROOT, log_directory)
    logger.debug("Logging configured", extra={"service": service_name})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the service namespace."""
    return get_named_logger(LOGGER_ROOT, name)
