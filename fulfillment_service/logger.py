"""Logger module for the fulfillment service."""

import os

from logging_utils import get_kafka_logger, setup_service_logger

logger = setup_service_logger(
    "fulfillment-service",
    log_level=os.getenv("LOG_LEVEL", "INFO"),
    log_file=os.getenv("LOG_FILE"),
)

kafka_logger = get_kafka_logger("fulfillment-service")

__all__ = ["logger", "kafka_logger"]
