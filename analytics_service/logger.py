"""Logger module for the analytics service."""

import os

from logging_utils import setup_service_logger

logger = setup_service_logger(
    "analytics-service",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE"),
)
