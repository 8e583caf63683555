"""Order confirmation: acknowledges newly created orders in the audit log."""

from .logger import logger
from .schemas import Order, OrderStatus
from .stage import OrderStage


class ConfirmationStage(OrderStage):
    """Consumes ``order.created`` and records ``PENDING -> CONFIRMED``.

    The order itself is not republished; validation reads ``order.created``
    under its own consumer group.
    """

    name = "OrderConsumer"

    def process(self, order: Order, msg=None) -> None:
        logger.info(
            f"Received order | order_id={order.order_id} | customer={order.customer_name} | "
            f"priority={order.priority.value}"
        )
        previous = order.transition_to(OrderStatus.CONFIRMED)

        metadata = {"items_count": len(order.items)}
        if msg is not None:
            metadata["partition"] = msg.partition()
            metadata["offset"] = msg.offset()
            _, timestamp = msg.timestamp()
            metadata["timestamp"] = timestamp

        self.emit(order, "ORDER_CONFIRMED", previous, "Order received and confirmed", metadata)
        logger.info(f"Order confirmed successfully | order_id={order.order_id}")
