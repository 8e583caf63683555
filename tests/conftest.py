"""Shared fixtures for the order pipeline tests."""

import json
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from unittest.mock import MagicMock

import pytest
from confluent_kafka import TIMESTAMP_CREATE_TIME, TIMESTAMP_NOT_AVAILABLE

from fulfillment_service.config import Settings
from fulfillment_service.policies import NoDelay, PaymentDecision, SeededRandom
from fulfillment_service.producer import EventPublisher, KafkaPublisher, NotificationDispatcher, OrderRelay
from fulfillment_service.schemas import Address, Order, OrderItem, PaymentInfo


@dataclass
class ProducedMessage:
    topic: str
    key: Optional[str]
    value: bytes
    headers: dict = field(default_factory=dict)
    raw_key: Optional[bytes] = None

    def json(self) -> dict:
        return json.loads(self.value)


class FakeProducer:
    """Stands in for ``confluent_kafka.Producer``; acknowledges or fails every message at once."""

    def __init__(self, error=None):
        self.error = error
        self.messages: list[ProducedMessage] = []
        self.polls = 0

    def produce(self, topic, key=None, value=None, on_delivery=None, headers=None):
        offset = len(self.messages)
        self.messages.append(
            ProducedMessage(
                topic=topic,
                key=key.decode("utf-8", errors="replace") if key is not None else None,
                value=value,
                headers={name: header.decode("utf-8") for name, header in (headers or [])},
                raw_key=key,
            )
        )
        delivered = MagicMock()
        delivered.topic.return_value = topic
        delivered.partition.return_value = 0
        delivered.offset.return_value = offset
        if on_delivery is not None:
            on_delivery(self.error, delivered)

    def poll(self, timeout=None):
        self.polls += 1
        return 0

    def flush(self, timeout=None):
        return 0

    def on(self, topic: str) -> list[ProducedMessage]:
        return [m for m in self.messages if m.topic == topic]

    def events(self) -> list[dict]:
        return [m.json() for m in self.on("order.events")]


def make_message(
    value,
    topic: str = "order.created",
    key: Optional[str] = None,
    partition: int = 0,
    offset: int = 0,
    timestamp_ms: Optional[int] = None,
):
    """Mock of a consumed ``confluent_kafka.Message``; pydantic models are serialized to JSON."""
    if hasattr(value, "model_dump_json"):
        value = value.model_dump_json()
    if isinstance(value, str):
        value = value.encode("utf-8")

    msg = MagicMock()
    msg.error.return_value = None
    msg.value.return_value = value
    msg.topic.return_value = topic
    msg.partition.return_value = partition
    msg.offset.return_value = offset
    msg.key.return_value = key.encode("utf-8") if key is not None else None
    if timestamp_ms is None:
        msg.timestamp.return_value = (TIMESTAMP_NOT_AVAILABLE, 0)
    else:
        msg.timestamp.return_value = (TIMESTAMP_CREATE_TIME, timestamp_ms)
    return msg


class FixedAvailability:
    def __init__(self, available: bool = True):
        self.available = available
        self.checked: list[str] = []

    def is_available(self, order: Order) -> bool:
        self.checked.append(order.order_id)
        return self.available


class FixedProcessor:
    def __init__(self, decision: PaymentDecision = PaymentDecision(True)):
        self.decision = decision
        self.charged: list[str] = []

    def charge(self, order: Order) -> PaymentDecision:
        self.charged.append(order.order_id)
        return self.decision


@pytest.fixture
def fake_producer():
    return FakeProducer()


@pytest.fixture
def publisher(fake_producer):
    return KafkaPublisher(producer=fake_producer)


@pytest.fixture
def relay(publisher):
    return OrderRelay(publisher)


@pytest.fixture
def events(publisher):
    return EventPublisher(publisher)


@pytest.fixture
def notifications(publisher):
    return NotificationDispatcher(publisher)


@pytest.fixture
def rng():
    return SeededRandom(42)


@pytest.fixture
def no_delay():
    return NoDelay()


@pytest.fixture
def settings():
    return Settings(bootstrap_servers="localhost:9092", random_seed=42, simulate_latency=False)


@pytest.fixture
def sample_order():
    """A valid order: subtotal 200, tax 40, shipping 10, total 250.

    Returns:
        Order: A ``PENDING`` order with two lines.
    """
    address = Address(street="1 Main St", city="Springfield", postal_code="12345", country="US")
    return Order(
        order_id="order-1",
        customer_id="cust-1",
        customer_name="Ada Lovelace",
        customer_email="ada@example.com",
        items=[
            OrderItem(product_id="P1", quantity=2, unit_price=Decimal("50.00")),
            OrderItem(product_id="P2", quantity=1, unit_price=Decimal("100.00")),
        ],
        subtotal=Decimal("200.00"),
        tax_amount=Decimal("40.00"),
        shipping_cost=Decimal("10.00"),
        total_amount=Decimal("250.00"),
        shipping_address=address,
        billing_address=address,
        payment_info=PaymentInfo(payment_method="CREDIT_CARD"),
    )
