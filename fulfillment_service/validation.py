"""Business-rule validation of confirmed orders."""

from dataclasses import dataclass
from typing import Callable, Optional

from .logger import logger
from .schemas import ZERO, NotificationType, Order, OrderStatus
from .stage import OrderStage


@dataclass(frozen=True)
class ValidationResult:
    valid: bool
    reason: Optional[str] = None


def _has_items(order: Order) -> bool:
    return bool(order.items)


def _has_valid_email(order: Order) -> bool:
    return bool(order.customer_email) and "@" in order.customer_email


def _has_shipping_street(order: Order) -> bool:
    address = order.shipping_address
    return address is not None and bool(address.street and address.street.strip())


def _subtotal_matches(order: Order) -> bool:
    return order.subtotal == order.items_subtotal()


def _quantities_positive(order: Order) -> bool:
    return all(item.quantity > 0 for item in order.items)


def _total_positive(order: Order) -> bool:
    return order.total_amount > ZERO


def _total_matches(order: Order) -> bool:
    return order.total_amount == order.expected_total()


# Checked in order; the first failing rule decides the reason.
RULES: list[tuple[Callable[[Order], bool], str]] = [
    (_has_items, "Order must contain at least one item"),
    (_has_valid_email, "Invalid customer email address"),
    (_has_shipping_street, "Shipping address is required"),
    (_subtotal_matches, "Subtotal mismatch"),
    (_quantities_positive, "Invalid item quantity"),
    (_total_positive, "Total amount must be positive"),
    (_total_matches, "Total amount mismatch"),
]


def validate_order(order: Order) -> ValidationResult:
    """Apply the business rules to ``order``.

    Decimal amounts are compared exactly.

    Returns:
        ValidationResult: ``valid`` with the reason of the first failing rule.
    """
    for rule, reason in RULES:
        if not rule(order):
            return ValidationResult(False, reason)
    return ValidationResult(True)


class ValidationStage(OrderStage):
    """Validates orders from ``order.created`` and forwards them to inventory."""

    name = "ValidationConsumer"

    def process(self, order: Order, msg=None) -> None:
        logger.info(f"Validating order | order_id={order.order_id}")

        # Confirmation is recorded by the confirmation stage reading the same topic.
        if order.status == OrderStatus.PENDING:
            order.transition_to(OrderStatus.CONFIRMED)

        result = validate_order(order)

        if result.valid:
            previous = order.transition_to(OrderStatus.VALIDATED)
            logger.info(f"Order validation PASSED | order_id={order.order_id}")

            self.relay.send_order_validated(order)
            self.relay.send_to_inventory(order)
            self.emit(order, "ORDER_VALIDATED", previous, "Order validation successful")
        else:
            previous = order.transition_to(OrderStatus.CANCELLED)
            logger.warning(f"Order validation FAILED | order_id={order.order_id} | reason={result.reason}")

            self.emit(
                order,
                "ORDER_VALIDATION_FAILED",
                previous,
                f"Validation failed: {result.reason}",
                {"reason": result.reason},
            )
            self.notify(
                order,
                NotificationType.ORDER_CANCELLED,
                "Order Cancelled - Validation Failed",
                f"Your order {order.order_id} was cancelled: {result.reason}",
            )
