"""Shipment hand-off for paid orders."""

import uuid

from .logger import logger
from .schemas import NotificationType, Order, OrderStatus
from .stage import OrderStage


class ShipmentStage(OrderStage):
    """Consumes ``order.shipped``; marks the order ready and then shipped."""

    name = "ShippingConsumer"

    def process(self, order: Order, msg=None) -> None:
        logger.info(f"Order shipped notification received | order_id={order.order_id} | customer={order.customer_name}")

        previous = order.transition_to(OrderStatus.READY_TO_SHIP)
        self.emit(order, "READY_TO_SHIP", previous, "Order packed and ready to ship")

        tracking_number = f"TRK-{uuid.uuid4().hex[:10].upper()}"
        previous = order.transition_to(OrderStatus.SHIPPED)
        self.emit(
            order,
            "ORDER_TRACKING_READY",
            previous,
            "Order shipped and tracking available",
            {"tracking_number": tracking_number},
        )
        self.notify(
            order,
            NotificationType.SHIPMENT_CREATED,
            "Your Order Has Shipped",
            f"Your order {order.order_id} is on its way. Tracking number: {tracking_number}",
        )
