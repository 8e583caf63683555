"""Exceptions raised by the fulfillment stages and their Kafka plumbing."""


class FulfillmentError(Exception):
    """Base class for fulfillment errors."""


class InvalidTransitionError(FulfillmentError):
    """Raised when an order is asked to move along an edge outside the status graph."""

    def __init__(self, order_id: str, current, requested):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Order {order_id} cannot move from {getattr(current, 'value', current)} "
            f"to {getattr(requested, 'value', requested)}"
        )


class DeserializationError(FulfillmentError):
    """Raised when a consumed record cannot be decoded into its topic's schema."""

    def __init__(self, topic: str, reason: str):
        self.topic = topic
        self.reason = reason
        super().__init__(f"Cannot decode record from {topic}: {reason}")


class PublishError(FulfillmentError):
    """Raised when a message could not be handed to the producer."""
