"""Tests for the order models and the status graph."""

from decimal import Decimal

import pytest
from pydantic import ValidationError

from fulfillment_service.errors import InvalidTransitionError
from fulfillment_service.schemas import (
    ALLOWED_TRANSITIONS,
    TERMINAL_STATUSES,
    Notification,
    NotificationType,
    Order,
    OrderEvent,
    OrderItem,
    OrderStatus,
    is_allowed_transition,
)

HAPPY_PATH = [
    OrderStatus.PENDING,
    OrderStatus.CONFIRMED,
    OrderStatus.VALIDATED,
    OrderStatus.INVENTORY_RESERVED,
    OrderStatus.PAYMENT_PROCESSING,
    OrderStatus.PAYMENT_COMPLETED,
    OrderStatus.READY_TO_SHIP,
    OrderStatus.SHIPPED,
]


def test_item_total_price_defaults_to_quantity_times_unit_price():
    item = OrderItem(product_id="P1", quantity=3, unit_price=Decimal("19.99"))
    assert item.total_price == Decimal("59.97")


def test_sent_item_total_price_is_replaced_by_derived_total():
    item = OrderItem(product_id="P1", quantity=3, unit_price=Decimal("10"), total_price=Decimal("25"))
    assert item.total_price == Decimal("30")

    decoded = OrderItem.model_validate_json('{"product_id": "P1", "quantity": 2, "unit_price": "100", "total_price": "1"}')
    assert decoded.total_price == Decimal("200")


def test_order_totals(sample_order):
    assert sample_order.items_subtotal() == Decimal("200.00")
    assert sample_order.expected_total() == Decimal("250.00")


def test_decimal_amounts_survive_json(sample_order):
    """Money is serialized as strings and decoded back exactly."""
    payload = sample_order.model_dump_json()
    assert '"total_amount":"250.00"' in payload

    decoded = Order.model_validate_json(payload)
    assert decoded.total_amount == Decimal("250.00")
    assert decoded.items[0].unit_price == Decimal("50.00")


def test_unknown_status_is_rejected():
    with pytest.raises(ValidationError):
        Order.model_validate({"status": "LOST"})


def test_happy_path_is_allowed():
    for previous, new in zip(HAPPY_PATH, HAPPY_PATH[1:]):
        assert is_allowed_transition(previous, new)


def test_only_pending_can_start_a_lifecycle():
    assert is_allowed_transition(None, OrderStatus.PENDING)
    assert not is_allowed_transition(None, OrderStatus.CONFIRMED)


def test_cancellation_allowed_from_every_non_terminal_state():
    for status in OrderStatus:
        if status in TERMINAL_STATUSES:
            assert OrderStatus.CANCELLED not in ALLOWED_TRANSITIONS[status]
        else:
            assert OrderStatus.CANCELLED in ALLOWED_TRANSITIONS[status]


def test_terminal_states_have_no_exit():
    assert ALLOWED_TRANSITIONS[OrderStatus.SHIPPED] == frozenset()
    assert ALLOWED_TRANSITIONS[OrderStatus.CANCELLED] == frozenset()


def test_skipping_a_stage_is_not_allowed():
    assert not is_allowed_transition(OrderStatus.CONFIRMED, OrderStatus.PAYMENT_COMPLETED)
    assert not is_allowed_transition(OrderStatus.VALIDATED, OrderStatus.SHIPPED)


def test_transition_to_returns_previous_status(sample_order):
    previous = sample_order.transition_to(OrderStatus.CONFIRMED)
    assert previous == OrderStatus.PENDING
    assert sample_order.status == OrderStatus.CONFIRMED


def test_transition_to_rejects_unknown_edge(sample_order):
    with pytest.raises(InvalidTransitionError) as exc_info:
        sample_order.transition_to(OrderStatus.SHIPPED)

    assert exc_info.value.current == OrderStatus.PENDING
    assert exc_info.value.requested == OrderStatus.SHIPPED
    assert sample_order.status == OrderStatus.PENDING


def test_order_event_is_immutable():
    event = OrderEvent(order_id="o-1", event_type="ORDER_CONFIRMED", new_status=OrderStatus.CONFIRMED, triggered_by="t")
    with pytest.raises(ValidationError):
        event.description = "changed"


def test_notification_for_order_addresses_the_customer(sample_order):
    notification = Notification.for_order(sample_order, NotificationType.PAYMENT_SUCCESS, "Subject", "Body")

    assert notification.order_id == sample_order.order_id
    assert notification.customer_id == "cust-1"
    assert notification.recipient == "ada@example.com"
    assert notification.channel == "EMAIL"
    assert notification.status.value == "PENDING"
