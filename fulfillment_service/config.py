"""Topic names, consumer groups and environment-driven settings."""

import os
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, Field

# Topics
ORDER_CREATED = "order.created"
ORDER_VALIDATED = "order.validated"
ORDER_INVENTORY = "order.inventory"
ORDER_PAYMENT = "order.payment"
ORDER_SHIPPED = "order.shipped"
ORDER_EVENTS = "order.events"
ORDER_NOTIFICATIONS = "order.notifications"
ORDER_ANALYTICS = "order.analytics"
ORDER_DEAD_LETTER = "order.dead-letter"
ORDER_RETRY = "order.retry"  # reserved, unused

# Consumer groups
ORDER_PROCESSING_GROUP = "order-processing-group"
VALIDATION_GROUP = "validation-group"
INVENTORY_GROUP = "inventory-group"
PAYMENT_GROUP = "payment-group"
SHIPPING_GROUP = "shipping-group"
EVENT_LOGGING_GROUP = "event-logging-group"
NOTIFICATION_GROUP = "notification-group"
ANALYTICS_GROUP = "analytics-group"


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


class Settings(BaseModel):
    """Runtime settings of the order pipeline services.

    Attributes:
        bootstrap_servers: Kafka bootstrap servers
        log_level: Loguru level for the service logger
        log_file: Optional path of a rotating log file
        high_value_threshold: Amount above which payments need manual approval
        inventory_approval_rate: Probability the default inventory check approves
        payment_approval_rate: Probability the default payment processor approves
        random_seed: Seed of the shared random source (None = nondeterministic)
        max_handler_attempts: Handler attempts before a record is dead-lettered
        retry_backoff_seconds: First retry delay, doubled on every attempt
        simulate_latency: Whether stages wait to mimic external systems
        sms_api_url: SMS gateway endpoint; SMS notifications are only logged when unset
        sms_api_key: Bearer token of the SMS gateway
        analytics_punctuate_seconds: Wall-clock interval at which analytics windows are closed (0 disables)
    """

    bootstrap_servers: str = "kafka:9092"
    log_level: str = "INFO"
    log_file: Optional[str] = None
    high_value_threshold: Decimal = Decimal("10000")
    inventory_approval_rate: float = Field(0.9, ge=0, le=1)
    payment_approval_rate: float = Field(0.9, ge=0, le=1)
    random_seed: Optional[int] = None
    max_handler_attempts: int = Field(3, ge=1)
    retry_backoff_seconds: float = Field(0.5, ge=0)
    simulate_latency: bool = True
    sms_api_url: Optional[str] = None
    sms_api_key: str = ""
    analytics_punctuate_seconds: float = Field(30.0, ge=0)


def load_settings() -> Settings:
    """Build ``Settings`` from environment variables."""
    values = {
        "bootstrap_servers": os.getenv("KAFKA_BOOTSTRAP_SERVERS", "kafka:9092"),
        "log_level": os.getenv("LOG_LEVEL", "INFO"),
        "log_file": os.getenv("LOG_FILE"),
        "high_value_threshold": os.getenv("HIGH_VALUE_THRESHOLD", "10000"),
        "inventory_approval_rate": os.getenv("INVENTORY_APPROVAL_RATE", "0.9"),
        "payment_approval_rate": os.getenv("PAYMENT_APPROVAL_RATE", "0.9"),
        "random_seed": os.getenv("RANDOM_SEED"),
        "max_handler_attempts": os.getenv("MAX_HANDLER_ATTEMPTS", "3"),
        "retry_backoff_seconds": os.getenv("RETRY_BACKOFF_SECONDS", "0.5"),
        "simulate_latency": _env_bool("SIMULATE_LATENCY", True),
        "sms_api_url": os.getenv("SMS_API_URL"),
        "sms_api_key": os.getenv("SMS_API_KEY", ""),
        "analytics_punctuate_seconds": os.getenv("ANALYTICS_PUNCTUATE_SECONDS", "30"),
    }
    return Settings(**values)
