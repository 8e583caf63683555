"""Tests for order validation rules and the validation stage."""

from decimal import Decimal

import pytest

from fulfillment_service.schemas import Address, OrderItem, OrderStatus
from fulfillment_service.validation import ValidationStage, validate_order

from conftest import make_message


@pytest.fixture
def stage(relay, events, notifications):
    return ValidationStage(relay, events, notifications)


def test_valid_order_passes(sample_order):
    result = validate_order(sample_order)
    assert result.valid
    assert result.reason is None


def test_empty_order_is_rejected(sample_order):
    sample_order.items = []
    assert validate_order(sample_order).reason == "Order must contain at least one item"


@pytest.mark.parametrize("email", [None, "", "not-an-email"])
def test_invalid_email_is_rejected(sample_order, email):
    sample_order.customer_email = email
    assert validate_order(sample_order).reason == "Invalid customer email address"


@pytest.mark.parametrize("address", [None, Address(street="   "), Address(city="Springfield")])
def test_missing_street_is_rejected(sample_order, address):
    sample_order.shipping_address = address
    assert validate_order(sample_order).reason == "Shipping address is required"


def test_subtotal_mismatch_is_rejected(sample_order):
    sample_order.subtotal = Decimal("199.99")
    assert validate_order(sample_order).reason == "Subtotal mismatch"


def test_non_positive_quantity_is_rejected(sample_order):
    sample_order.items = [
        OrderItem(product_id="P1", quantity=0, unit_price=Decimal("50.00"), total_price=Decimal("200.00")),
    ]
    sample_order.subtotal = Decimal("0")
    assert validate_order(sample_order).reason == "Invalid item quantity"


def test_non_positive_total_is_rejected(sample_order):
    sample_order.total_amount = Decimal("0")
    assert validate_order(sample_order).reason == "Total amount must be positive"


def test_total_mismatch_is_rejected(sample_order):
    sample_order.total_amount = Decimal("260.00")
    assert validate_order(sample_order).reason == "Total amount mismatch"


def test_first_failing_rule_wins(sample_order):
    sample_order.customer_email = None
    sample_order.subtotal = Decimal("1")
    assert validate_order(sample_order).reason == "Invalid customer email address"


def test_decimal_comparison_is_exact(sample_order):
    sample_order.items = [OrderItem(product_id="P1", quantity=3, unit_price=Decimal("0.10"))]
    sample_order.subtotal = Decimal("0.3")
    sample_order.tax_amount = Decimal("0")
    sample_order.shipping_cost = Decimal("0")
    sample_order.total_amount = Decimal("0.30")

    assert validate_order(sample_order).valid


def test_stage_forwards_valid_order(stage, sample_order, fake_producer):
    sample_order.status = OrderStatus.CONFIRMED
    stage.handle(sample_order, make_message(sample_order))

    assert sample_order.status == OrderStatus.VALIDATED
    assert [m.key for m in fake_producer.on("order.validated")] == ["order-1"]
    assert [m.key for m in fake_producer.on("order.inventory")] == ["order-1"]
    assert fake_producer.on("order.inventory")[0].json()["status"] == "VALIDATED"

    events = fake_producer.events()
    assert len(events) == 1
    assert events[0]["event_type"] == "ORDER_VALIDATED"
    assert events[0]["previous_status"] == "CONFIRMED"
    assert events[0]["new_status"] == "VALIDATED"
    assert events[0]["triggered_by"] == "ValidationConsumer"
    assert fake_producer.on("order.notifications") == []


def test_stage_accepts_pending_order_straight_from_ingress(stage, sample_order, fake_producer):
    stage.handle(sample_order)

    assert sample_order.status == OrderStatus.VALIDATED
    assert [e["event_type"] for e in fake_producer.events()] == ["ORDER_VALIDATED"]


def test_stage_cancels_invalid_order(stage, sample_order, fake_producer):
    sample_order.items = []
    stage.handle(sample_order)

    assert sample_order.status == OrderStatus.CANCELLED
    assert fake_producer.on("order.validated") == []
    assert fake_producer.on("order.inventory") == []

    event = fake_producer.events()[0]
    assert event["event_type"] == "ORDER_VALIDATION_FAILED"
    assert event["new_status"] == "CANCELLED"
    assert event["description"] == "Validation failed: Order must contain at least one item"
    assert event["metadata"]["reason"] == "Order must contain at least one item"

    notification = fake_producer.on("order.notifications")[0].json()
    assert notification["type"] == "ORDER_CANCELLED"
    assert notification["recipient"] == "ada@example.com"


def test_stage_ignores_redelivery(stage, sample_order, fake_producer):
    stage.handle(sample_order.model_copy(deep=True))
    stage.handle(sample_order.model_copy(deep=True))

    assert len(fake_producer.on("order.inventory")) == 1
    assert len(fake_producer.events()) == 1


def test_stage_skips_order_past_validation(stage, sample_order, fake_producer):
    sample_order.status = OrderStatus.SHIPPED
    stage.handle(sample_order)

    assert sample_order.status == OrderStatus.SHIPPED
    assert fake_producer.messages == []
