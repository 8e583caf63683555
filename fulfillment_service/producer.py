"""Kafka producers for orders, audit events, notifications and dead letters."""

import threading
from concurrent.futures import Future
from dataclasses import dataclass
from typing import Optional, Union

from confluent_kafka import KafkaException, Producer
from pydantic import BaseModel

from . import config
from .logger import kafka_logger as logger
from .schemas import Notification, Order, OrderEvent


@dataclass(frozen=True)
class Ok:
    """Broker acknowledged the message."""

    topic: str
    partition: int
    offset: int

    ok = True


@dataclass(frozen=True)
class Err:
    """The message was not delivered."""

    topic: str
    reason: str

    ok = False


DeliveryResult = Union[Ok, Err]


class KafkaPublisher:
    """Non-blocking Kafka publisher.

    Every send returns a ``Future`` that the delivery callback resolves to
    ``Ok`` or ``Err``. Callers decide whether to wait on it; stages only attach
    logging callbacks so their throughput does not depend on broker round trips.

    Attributes:
        _producer: The underlying Kafka producer instance.
    """

    def __init__(
        self,
        bootstrap_servers: str = "kafka:9092",
        client_id: str = "fulfillment-service",
        acks: str = "all",
        producer: Optional[Producer] = None,
    ):
        """Initialize the publisher.

        Args:
            bootstrap_servers: Comma-separated list of Kafka broker addresses.
            client_id: Producer client ID
            acks: The number of acknowledgments the producer requires
            producer: Pre-built producer (tests inject a fake here)
        """
        if producer is None:
            producer = Producer(
                {
                    "bootstrap.servers": bootstrap_servers,
                    "client.id": client_id,
                    "acks": acks,
                    "enable.idempotence": True,
                    "message.timeout.ms": 5000,
                    "partitioner": "consistent_random",  # Same key → same partition
                }
            )
        self._producer = producer
        self._poller: Optional[threading.Thread] = None
        self._running = threading.Event()

    @property
    def producer(self):
        """Get the underlying Kafka producer instance."""
        return self._producer

    def publish(
        self,
        topic: str,
        key: Optional[Union[str, bytes]],
        value: Union[str, bytes],
        headers: Optional[dict[str, str]] = None,
    ) -> "Future[DeliveryResult]":
        """Publish a raw message.

        Args:
            topic: Kafka topic to send the message to
            key: Partition key (order id for every order-scoped topic); bytes are sent as is
            value: Serialized payload
            headers: Optional string headers

        Returns:
            Future resolving to ``Ok`` or ``Err``.
        """
        future: "Future[DeliveryResult]" = Future()

        def on_delivery(err, msg):
            if err:
                logger.error(f"Message delivery failed | topic={topic} | key={key} | error={err}")
                future.set_result(Err(topic, str(err)))
            else:
                logger.debug(f"Message delivered to {msg.topic()} [p:{msg.partition()}] | offset={msg.offset()}")
                future.set_result(Ok(msg.topic(), msg.partition(), msg.offset()))

        kwargs = {
            "topic": topic,
            "key": key.encode("utf-8") if isinstance(key, str) else key,
            "value": value.encode("utf-8") if isinstance(value, str) else value,
            "on_delivery": on_delivery,
        }
        if headers:
            kwargs["headers"] = [(name, str(header).encode("utf-8")) for name, header in headers.items()]

        try:
            try:
                self._producer.produce(**kwargs)
            except BufferError:
                logger.warning("Producer buffer full, polling before retrying once...")
                self._producer.poll(1.0)
                self._producer.produce(**kwargs)
            self._producer.poll(0)  # Trigger delivery callbacks
        except (BufferError, KafkaException) as e:
            logger.error(f"Failed to produce message | topic={topic} | key={key} | error={e}")
            if not future.done():
                future.set_result(Err(topic, str(e)))
        return future

    def publish_model(
        self, topic: str, key: Optional[str], model: BaseModel, headers: Optional[dict[str, str]] = None
    ) -> "Future[DeliveryResult]":
        """Serialize a pydantic model to JSON and publish it."""
        return self.publish(topic, key, model.model_dump_json(), headers)

    def start_polling(self, interval: float = 0.5) -> None:
        """Serve delivery callbacks from a background thread."""
        if self._poller is not None:
            return
        self._running.set()

        def _poll_loop():
            while self._running.is_set():
                self._producer.poll(interval)

        self._poller = threading.Thread(target=_poll_loop, name="producer-poller", daemon=True)
        self._poller.start()

    def flush(self, timeout: float = 10.0) -> None:
        """Wait for all messages to be delivered.

        Args:
            timeout: Maximum time to wait in seconds
        """
        remaining = self._producer.flush(timeout)
        if remaining > 0:
            logger.warning(f"{remaining} messages still pending delivery")

    def close(self) -> None:
        """Stop the poller and flush pending messages."""
        self._running.clear()
        if self._poller is not None:
            self._poller.join(timeout=5)
            self._poller = None
        self.flush()
        logger.info("Producer closed")


def _log_outcome(future: "Future[DeliveryResult]", what: str) -> None:
    def _done(f):
        result = f.result()
        if result.ok:
            logger.info(f"{what} published | topic={result.topic} | partition={result.partition} | offset={result.offset}")
        else:
            logger.error(f"Failed to publish {what} | topic={result.topic} | reason={result.reason}")

    future.add_done_callback(_done)


class OrderRelay:
    """Publishes ``Order`` messages to stage-input topics, keyed by order id."""

    def __init__(self, publisher: KafkaPublisher):
        self._publisher = publisher

    def relay(self, topic: str, order: Order, headers: Optional[dict[str, str]] = None) -> "Future[DeliveryResult]":
        """Publish ``order`` to ``topic`` with optional routing headers."""
        logger.info(f"Sending order | topic={topic} | order_id={order.order_id} | status={order.status.value}")
        future = self._publisher.publish_model(topic, order.order_id, order, headers)
        _log_outcome(future, f"order {order.order_id}")
        return future

    def send_order_created(self, order: Order) -> "Future[DeliveryResult]":
        headers = {
            "event-type": "ORDER_CREATED",
            "priority": order.priority.value,
            "customer-id": order.customer_id or "",
        }
        return self.relay(config.ORDER_CREATED, order, headers)

    def send_order_validated(self, order: Order) -> "Future[DeliveryResult]":
        return self.relay(config.ORDER_VALIDATED, order)

    def send_to_inventory(self, order: Order) -> "Future[DeliveryResult]":
        return self.relay(config.ORDER_INVENTORY, order)

    def send_to_payment(self, order: Order) -> "Future[DeliveryResult]":
        return self.relay(config.ORDER_PAYMENT, order)

    def send_order_shipped(self, order: Order) -> "Future[DeliveryResult]":
        return self.relay(config.ORDER_SHIPPED, order, {"tracking-enabled": "true"})


class EventPublisher:
    """Appends ``OrderEvent`` audit records to the event log topic."""

    def __init__(self, publisher: KafkaPublisher):
        self._publisher = publisher

    def publish_event(self, event: OrderEvent) -> "Future[DeliveryResult]":
        previous = event.previous_status.value if event.previous_status else None
        logger.info(
            f"Publishing event | type={event.event_type} | order_id={event.order_id} | "
            f"status: {previous} -> {event.new_status.value}"
        )
        future = self._publisher.publish_model(config.ORDER_EVENTS, event.order_id, event)
        _log_outcome(future, f"event {event.event_id}")
        return future


class NotificationDispatcher:
    """Sends ``Notification`` requests to the notification topic."""

    def __init__(self, publisher: KafkaPublisher):
        self._publisher = publisher

    def send_notification(self, notification: Notification) -> "Future[DeliveryResult]":
        logger.info(
            f"Sending notification | type={notification.type.value} | recipient={notification.recipient} | "
            f"order_id={notification.order_id}"
        )
        future = self._publisher.publish_model(
            config.ORDER_NOTIFICATIONS, notification.notification_id, notification
        )
        _log_outcome(future, f"notification {notification.notification_id}")
        return future


class DeadLetterPublisher:
    """Moves records that could not be processed to the dead-letter topic.

    The original key and value bytes are preserved so the record can be
    replayed by hand; the failure is described in ``dlq-*`` headers.
    """

    def __init__(self, publisher: KafkaPublisher, topic: str = config.ORDER_DEAD_LETTER):
        self._publisher = publisher
        self.topic = topic

    def send(self, msg, reason: str, attempts: int, error_type: str) -> "Future[DeliveryResult]":
        headers = {
            "dlq-source-topic": msg.topic(),
            "dlq-partition": str(msg.partition()),
            "dlq-offset": str(msg.offset()),
            "dlq-attempts": str(attempts),
            "dlq-reason": reason[:500],
            "dlq-error-type": error_type,
        }
        logger.warning(
            f"Dead-lettering record | topic={msg.topic()} | partition={msg.partition()} | "
            f"offset={msg.offset()} | attempts={attempts} | reason={reason}"
        )
        future = self._publisher.publish(self.topic, msg.key(), msg.value() or b"", headers)
        _log_outcome(future, "dead letter")
        return future
