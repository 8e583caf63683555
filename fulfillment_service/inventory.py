"""Inventory reservation for validated orders."""

from typing import Optional

from .idempotency import IdempotencyGuard
from .logger import logger
from .policies import INVENTORY_LATENCY, AvailabilityPolicy, Delay, Latency, RandomSource
from .producer import EventPublisher, NotificationDispatcher, OrderRelay
from .schemas import NotificationType, Order, OrderStatus
from .stage import OrderStage


def reserved_quantities(order: Order) -> dict[str, int]:
    """Quantity reserved per product id, summed over the order's lines."""
    reserved: dict[str, int] = {}
    for item in order.items:
        reserved[item.product_id] = reserved.get(item.product_id, 0) + item.quantity
    return reserved


class InventoryStage(OrderStage):
    """Reserves stock through an availability policy and forwards to payment."""

    name = "InventoryConsumer"

    def __init__(
        self,
        relay: OrderRelay,
        events: EventPublisher,
        notifications: Optional[NotificationDispatcher],
        policy: AvailabilityPolicy,
        rng: RandomSource,
        delay: Delay,
        latency: Latency = INVENTORY_LATENCY,
        guard: Optional[IdempotencyGuard] = None,
    ):
        super().__init__(relay, events, notifications, guard)
        self.policy = policy
        self.rng = rng
        self.delay = delay
        self.latency = latency

    def process(self, order: Order, msg=None) -> None:
        logger.info(f"Checking inventory | order_id={order.order_id} | items={len(order.items)}")

        self.latency.wait(self.delay, self.rng)

        if self.policy.is_available(order):
            previous = order.transition_to(OrderStatus.INVENTORY_RESERVED)
            logger.info(f"Inventory RESERVED | order_id={order.order_id}")

            self.relay.send_to_payment(order)
            self.emit(
                order,
                "INVENTORY_RESERVED",
                previous,
                "Inventory reserved successfully",
                reserved_quantities(order),
            )
        else:
            previous = order.transition_to(OrderStatus.CANCELLED)
            logger.warning(f"Inventory NOT AVAILABLE | order_id={order.order_id}")

            self.emit(order, "INVENTORY_UNAVAILABLE", previous, "Inventory not available for order items")
            self.notify(
                order,
                NotificationType.ORDER_CANCELLED,
                "Order Cancelled - Out of Stock",
                f"Your order {order.order_id} was cancelled because some items are out of stock.",
            )
