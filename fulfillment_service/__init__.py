"""Order fulfillment saga: message-driven stages over Kafka topics."""

__version__ = "0.1.0"
