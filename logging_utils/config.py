"""Logging configuration module for all order pipeline services."""

import sys
import threading
from typing import Optional

from loguru import logger as loguru_logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss.SSS}</green> | "
    "<level>{level: <8}</level> | "
    "<magenta>{extra[service]}</magenta> | "
    "<cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - "
    "<level>{message}</level>"
)
FILE_FORMAT = "{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {extra[service]} | {name}:{function}:{line} - {message}"

_lock = threading.Lock()
_configured: dict[str, object] = {}


def setup_service_logger(
    service_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
) -> loguru_logger:
    """Configure a logger for a service with standardized settings.

    Sinks are installed once per process; later calls with the same settings
    only bind a new service name. A call with a different level or log file
    replaces the sinks.

    Args:
        service_name: Name of the service (e.g., 'fulfillment-service')
        log_level: Logging level (default: INFO)
        log_file: Optional path to log file

    Returns:
        logger: Configured loguru logger bound to the service name
    """
    with _lock:
        wanted = {"level": log_level, "file": log_file}
        if _configured != wanted:
            # Remove any existing handlers
            loguru_logger.remove()
            loguru_logger.configure(extra={"service": "-"})

            loguru_logger.add(
                sys.stderr,
                level=log_level,
                format=CONSOLE_FORMAT,
                colorize=True,
                enqueue=True,
                backtrace=True,
                diagnose=False,
            )

            if log_file:
                loguru_logger.add(
                    log_file,
                    level=log_level,
                    format=FILE_FORMAT,
                    rotation="10 MB",
                    retention="1 week",
                    compression="gz",
                    enqueue=True,
                )
            _configured.clear()
            _configured.update(wanted)

    return loguru_logger.bind(service=service_name)


def get_kafka_logger(service_name: str) -> loguru_logger:
    """Get a logger for Kafka plumbing of a service.

    Args:
        service_name: Name of the service

    Returns:
        logger: Logger bound to ``<service_name>.kafka``
    """
    return loguru_logger.bind(service=f"{service_name}.kafka")


def record_context(msg) -> str:
    """Format topic/partition/offset of a consumed Kafka message for log lines."""
    return f"topic={msg.topic()} | partition={msg.partition()} | offset={msg.offset()}"
