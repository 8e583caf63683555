"""Logging utilities shared by the order pipeline services."""

from .config import get_kafka_logger, record_context, setup_service_logger

__all__ = [
    "setup_service_logger",
    "get_kafka_logger",
    "record_context",
]
