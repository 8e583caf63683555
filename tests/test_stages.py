"""Tests for the confirmation, inventory, payment and shipment stages and the audit log."""

from decimal import Decimal
from unittest.mock import MagicMock

import pytest

from fulfillment_service.audit import AuditLogConsumer
from fulfillment_service.confirmation import ConfirmationStage
from fulfillment_service.inventory import InventoryStage, reserved_quantities
from fulfillment_service.payment import PaymentStage
from fulfillment_service.policies import (
    Latency,
    NoDelay,
    PaymentDecision,
    RandomAvailabilityPolicy,
    RandomPaymentProcessor,
    SeededRandom,
)
from fulfillment_service.registry import build_pipeline
from fulfillment_service.schemas import (
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    is_allowed_transition,
)
from fulfillment_service.shipment import ShipmentStage

from conftest import FixedAvailability, FixedProcessor, make_message


class RecordingDelay:
    def __init__(self):
        self.calls: list[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def _at(order, status):
    order.status = status
    return order


# Confirmation


def test_confirmation_records_pending_to_confirmed(relay, events, sample_order, fake_producer):
    stage = ConfirmationStage(relay, events)
    msg = make_message(sample_order, partition=2, offset=17, timestamp_ms=1_700_000_000_000)

    stage.handle(sample_order, msg)

    assert sample_order.status == OrderStatus.CONFIRMED
    event = fake_producer.events()[0]
    assert event["event_type"] == "ORDER_CONFIRMED"
    assert event["previous_status"] == "PENDING"
    assert event["new_status"] == "CONFIRMED"
    assert event["metadata"] == {"items_count": 2, "partition": 2, "offset": 17, "timestamp": 1_700_000_000_000}
    assert fake_producer.on("order.events")[0].key == "order-1"
    # Confirmation does not republish the order
    assert [m.topic for m in fake_producer.messages] == ["order.events"]


# Inventory


def test_reserved_quantities_sums_lines_per_product(sample_order):
    sample_order.items.append(OrderItem(product_id="P1", quantity=3, unit_price=Decimal("1")))
    assert reserved_quantities(sample_order) == {"P1": 5, "P2": 1}


def test_inventory_reserves_and_forwards_to_payment(relay, events, notifications, rng, sample_order, fake_producer):
    delay = RecordingDelay()
    stage = InventoryStage(relay, events, notifications, FixedAvailability(True), rng, delay)

    stage.handle(_at(sample_order, OrderStatus.VALIDATED))

    assert sample_order.status == OrderStatus.INVENTORY_RESERVED
    assert [m.key for m in fake_producer.on("order.payment")] == ["order-1"]
    event = fake_producer.events()[0]
    assert event["event_type"] == "INVENTORY_RESERVED"
    assert event["metadata"] == {"P1": 2, "P2": 1}
    assert len(delay.calls) == 1
    assert 0.5 <= delay.calls[0] <= 1.5


def test_inventory_unavailable_cancels_and_notifies(relay, events, notifications, rng, no_delay, sample_order,
                                                    fake_producer):
    stage = InventoryStage(relay, events, notifications, FixedAvailability(False), rng, no_delay)

    stage.handle(_at(sample_order, OrderStatus.VALIDATED))

    assert sample_order.status == OrderStatus.CANCELLED
    assert fake_producer.on("order.payment") == []
    assert fake_producer.events()[0]["event_type"] == "INVENTORY_UNAVAILABLE"
    assert fake_producer.on("order.notifications")[0].json()["type"] == "ORDER_CANCELLED"


def test_random_availability_is_reproducible_with_a_seed(sample_order):
    first = RandomAvailabilityPolicy(SeededRandom(7), approval_rate=0.5)
    second = RandomAvailabilityPolicy(SeededRandom(7), approval_rate=0.5)

    assert [first.is_available(sample_order) for _ in range(20)] == [
        second.is_available(sample_order) for _ in range(20)
    ]


def test_availability_rate_bounds(sample_order):
    assert all(RandomAvailabilityPolicy(SeededRandom(1), 1.0).is_available(sample_order) for _ in range(50))
    assert not any(RandomAvailabilityPolicy(SeededRandom(1), 0.0).is_available(sample_order) for _ in range(50))


# Payment


@pytest.fixture
def reserved_order(sample_order):
    return _at(sample_order, OrderStatus.INVENTORY_RESERVED)


def test_payment_success_captures_and_ships(relay, events, notifications, rng, no_delay, reserved_order,
                                            fake_producer):
    stage = PaymentStage(relay, events, notifications, FixedProcessor(), rng, no_delay)

    stage.handle(reserved_order)

    assert reserved_order.status == OrderStatus.PAYMENT_COMPLETED
    assert reserved_order.payment_info.payment_status == PaymentStatus.CAPTURED
    assert reserved_order.payment_info.transaction_id.startswith("TXN-")

    shipped = fake_producer.on("order.shipped")
    assert [m.key for m in shipped] == ["order-1"]
    assert shipped[0].headers == {"tracking-enabled": "true"}

    assert [e["event_type"] for e in fake_producer.events()] == ["PAYMENT_PROCESSING", "PAYMENT_COMPLETED"]
    completed = fake_producer.events()[1]
    assert completed["metadata"]["transaction_id"] == reserved_order.payment_info.transaction_id
    assert Decimal(completed["metadata"]["amount"]) == Decimal("250")
    assert fake_producer.on("order.notifications")[0].json()["type"] == "PAYMENT_SUCCESS"


def test_payment_decline_fails_order(relay, events, notifications, rng, no_delay, reserved_order, fake_producer):
    processor = FixedProcessor(PaymentDecision(False, "Card declined"))
    stage = PaymentStage(relay, events, notifications, processor, rng, no_delay)

    stage.handle(reserved_order)

    assert reserved_order.status == OrderStatus.PAYMENT_FAILED
    assert reserved_order.payment_info.payment_status == PaymentStatus.DECLINED
    assert reserved_order.payment_info.transaction_id is None
    assert fake_producer.on("order.shipped") == []
    failed = fake_producer.events()[-1]
    assert failed["event_type"] == "PAYMENT_FAILED"
    assert failed["metadata"]["reason"] == "Card declined"
    assert fake_producer.on("order.notifications")[0].json()["type"] == "PAYMENT_FAILED"


def test_payment_processor_exception_is_a_failed_payment(relay, events, notifications, rng, no_delay,
                                                         reserved_order, fake_producer):
    processor = MagicMock()
    processor.charge.side_effect = ConnectionError("gateway down")
    stage = PaymentStage(relay, events, notifications, processor, rng, no_delay)

    stage.handle(reserved_order)

    assert reserved_order.status == OrderStatus.PAYMENT_FAILED
    assert "gateway down" in fake_producer.events()[-1]["metadata"]["reason"]


def test_high_value_payment_requires_manual_approval(reserved_order):
    processor = RandomPaymentProcessor(SeededRandom(3), approval_rate=1.0, high_value_threshold=Decimal("10000"))

    reserved_order.total_amount = Decimal("10000.01")
    decision = processor.charge(reserved_order)
    assert not decision.approved
    assert decision.reason == "High-value transaction requires manual approval"

    reserved_order.total_amount = Decimal("10000")
    assert processor.charge(reserved_order).approved


def test_high_value_order_fails_payment_end_to_end(relay, events, notifications, no_delay, reserved_order,
                                                   fake_producer):
    rng = SeededRandom(11)
    processor = RandomPaymentProcessor(rng, approval_rate=1.0)
    stage = PaymentStage(relay, events, notifications, processor, rng, no_delay)
    reserved_order.total_amount = Decimal("12000.00")

    stage.handle(reserved_order)

    assert reserved_order.status == OrderStatus.PAYMENT_FAILED
    assert fake_producer.events()[-1]["metadata"]["reason"] == "High-value transaction requires manual approval"


def test_payment_waits_simulated_latency(relay, events, notifications, rng, reserved_order):
    delay = RecordingDelay()
    stage = PaymentStage(relay, events, notifications, FixedProcessor(), rng, delay, latency=Latency(1, 3))

    stage.handle(reserved_order)

    assert len(delay.calls) == 1
    assert 1 <= delay.calls[0] <= 3


def test_unexpected_error_releases_the_order_for_retry(events, notifications, rng, no_delay, reserved_order):
    relay = MagicMock()
    relay.send_order_shipped.side_effect = RuntimeError("producer closed")
    stage = PaymentStage(relay, events, notifications, FixedProcessor(), rng, no_delay)

    with pytest.raises(RuntimeError):
        stage.handle(reserved_order)

    assert reserved_order.order_id not in stage.guard


# Shipment


def test_shipment_marks_ready_then_shipped(relay, events, notifications, sample_order, fake_producer):
    stage = ShipmentStage(relay, events, notifications)

    stage.handle(_at(sample_order, OrderStatus.PAYMENT_COMPLETED))

    assert sample_order.status == OrderStatus.SHIPPED
    ready, tracking = fake_producer.events()
    assert (ready["event_type"], ready["new_status"]) == ("READY_TO_SHIP", "READY_TO_SHIP")
    assert (tracking["event_type"], tracking["new_status"]) == ("ORDER_TRACKING_READY", "SHIPPED")
    assert tracking["metadata"]["tracking_number"].startswith("TRK-")

    notification = fake_producer.on("order.notifications")[0].json()
    assert notification["type"] == "SHIPMENT_CREATED"
    assert tracking["metadata"]["tracking_number"] in notification["message"]


def test_shipment_skips_order_that_was_not_paid(relay, events, notifications, sample_order, fake_producer):
    stage = ShipmentStage(relay, events, notifications)

    stage.handle(_at(sample_order, OrderStatus.PAYMENT_FAILED))

    assert sample_order.status == OrderStatus.PAYMENT_FAILED
    assert fake_producer.messages == []


# Audit log


def _event(event_id="evt-1", order_id="order-1"):
    return OrderEvent(
        event_id=event_id,
        order_id=order_id,
        event_type="ORDER_VALIDATED",
        previous_status=OrderStatus.CONFIRMED,
        new_status=OrderStatus.VALIDATED,
        triggered_by="ValidationConsumer",
    )


def test_audit_logs_batches_without_publishing(fake_producer):
    audit = AuditLogConsumer()
    batch = [_event("e1"), _event("e2"), _event("e3")]

    audit.log_events(batch, [make_message(e, topic="order.events", partition=1) for e in batch])

    assert audit.stats == {"events_logged": 3, "duplicates": 0}
    assert fake_producer.messages == []


def test_audit_replay_is_logged_again_but_counted_as_duplicate():
    audit = AuditLogConsumer()
    event = _event()

    audit.log_events([event], [make_message(event, topic="order.events")])
    audit.log_events([event], [make_message(event, topic="order.events")])

    assert audit.stats == {"events_logged": 2, "duplicates": 1}
    assert event.new_status == OrderStatus.VALIDATED


# Whole saga


def _deliver(fake_producer, topic, seen):
    """Return orders published to ``topic`` since the last call."""
    published = fake_producer.on(topic)
    new = published[seen.get(topic, 0):]
    seen[topic] = len(published)
    return [(Order.model_validate_json(m.value), make_message(m.value, topic=topic, key=m.key)) for m in new]


def test_full_saga_ships_a_valid_order(publisher, fake_producer, settings, sample_order):
    pipeline = build_pipeline(
        publisher,
        settings,
        delay=NoDelay(),
        availability=FixedAvailability(True),
        processor=FixedProcessor(),
    )
    created = make_message(sample_order, key=sample_order.order_id, timestamp_ms=1_700_000_000_000)
    seen: dict = {}

    pipeline.confirmation.handle(sample_order.model_copy(deep=True), created)
    pipeline.validation.handle(sample_order.model_copy(deep=True), created)
    for order, msg in _deliver(fake_producer, "order.inventory", seen):
        pipeline.inventory.handle(order, msg)
    for order, msg in _deliver(fake_producer, "order.payment", seen):
        pipeline.payment.handle(order, msg)
    for order, msg in _deliver(fake_producer, "order.shipped", seen):
        pipeline.shipment.handle(order, msg)

    events = [OrderEvent.model_validate_json(m.value) for m in fake_producer.on("order.events")]
    assert [e.event_type for e in events] == [
        "ORDER_CONFIRMED",
        "ORDER_VALIDATED",
        "INVENTORY_RESERVED",
        "PAYMENT_PROCESSING",
        "PAYMENT_COMPLETED",
        "READY_TO_SHIP",
        "ORDER_TRACKING_READY",
    ]
    for event in events:
        assert is_allowed_transition(event.previous_status, event.new_status)

    completed = events[4]
    assert Decimal(str(completed.metadata["amount"])) == Decimal("250")

    validated = Order.model_validate_json(fake_producer.on("order.validated")[0].value)
    assert validated.subtotal == Decimal("200.00")
    assert validated.total_amount == Decimal("250.00")

    notifications = [m.json()["type"] for m in fake_producer.on("order.notifications")]
    assert notifications == ["PAYMENT_SUCCESS", "SHIPMENT_CREATED"]
    assert {m.key for m in fake_producer.messages if m.topic != "order.notifications"} == {"order-1"}
