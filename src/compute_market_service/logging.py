"""Service logging entry points."""

from __future__ import annotations

import logging

from service_commons.logging import get_named_logger
from service_commons.logging import setup_logging as setup_service_logging

LOGGER_NAMESPACE = "compute_market_service"


def setup_logging(level: str, service_name: str, log_directory: str | None) -> logging.Logger:
    """Configure JSON logging for the service package namespace."""
    logger = setup_service_logging(level, LOGGER_NAMESPACE, log_directory)
    logger.debug("Logging configured", extra={"service": service_name})
    return logger


def get_logger(name: str) -> logging.Logger:
    """Get a logger under the service namespace (pass __name__)."""
    if name == LOGGER_NAMESPACE or name.startswith(LOGGER_NAMESPACE + "."):
        return logging.getLogger(name)
    return get_named_logger(LOGGER_NAMESPACE, name)
