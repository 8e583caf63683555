"""Payment processing for orders with reserved inventory."""

import uuid
from typing import Optional

from .idempotency import IdempotencyGuard
from .logger import logger
from .policies import PAYMENT_LATENCY, Delay, Latency, PaymentDecision, PaymentProcessor, RandomSource
from .producer import EventPublisher, NotificationDispatcher, OrderRelay
from .schemas import NotificationType, Order, OrderStatus, PaymentStatus
from .stage import OrderStage


def new_transaction_id() -> str:
    """Transaction id unique per payment attempt."""
    return f"TXN-{uuid.uuid4().hex[:12].upper()}"


class PaymentStage(OrderStage):
    """Charges the order and hands it to shipment, or fails it.

    ``INVENTORY_RESERVED -> PAYMENT_PROCESSING -> PAYMENT_COMPLETED | PAYMENT_FAILED``.
    Any exception raised by the processor is a failed payment, never a retry:
    retrying a charge that may have gone through would risk charging twice.
    """

    name = "PaymentConsumer"

    def __init__(
        self,
        relay: OrderRelay,
        events: EventPublisher,
        notifications: Optional[NotificationDispatcher],
        processor: PaymentProcessor,
        rng: RandomSource,
        delay: Delay,
        latency: Latency = PAYMENT_LATENCY,
        guard: Optional[IdempotencyGuard] = None,
    ):
        super().__init__(relay, events, notifications, guard)
        self.processor = processor
        self.rng = rng
        self.delay = delay
        self.latency = latency

    def process(self, order: Order, msg=None) -> None:
        logger.info(
            f"Processing payment | order_id={order.order_id} | amount={order.total_amount} | "
            f"method={order.payment_info.payment_method}"
        )
        previous = order.transition_to(OrderStatus.PAYMENT_PROCESSING)
        self.emit(order, "PAYMENT_PROCESSING", previous, "Payment processing started")

        try:
            self.latency.wait(self.delay, self.rng)
            decision = self.processor.charge(order)
        except Exception as e:
            logger.error(f"Error processing payment | order_id={order.order_id} | error={e}")
            decision = PaymentDecision(False, f"Payment processing error: {e}")

        if decision.approved:
            self._handle_success(order)
        else:
            self._handle_failure(order, decision.reason)

    def _handle_success(self, order: Order) -> None:
        previous = order.transition_to(OrderStatus.PAYMENT_COMPLETED)
        payment_info = order.payment_info
        payment_info.payment_status = PaymentStatus.CAPTURED
        payment_info.transaction_id = new_transaction_id()

        logger.info(f"Payment SUCCESSFUL | order_id={order.order_id} | transaction_id={payment_info.transaction_id}")

        self.relay.send_order_shipped(order)
        self.emit(
            order,
            "PAYMENT_COMPLETED",
            previous,
            "Payment processed successfully",
            {
                "transaction_id": payment_info.transaction_id,
                "amount": order.total_amount,
                "payment_method": payment_info.payment_method,
            },
        )
        self.notify(
            order,
            NotificationType.PAYMENT_SUCCESS,
            "Payment Successful",
            f"Your payment of {order.total_amount} has been processed successfully.",
        )

    def _handle_failure(self, order: Order, reason: str) -> None:
        previous = order.transition_to(OrderStatus.PAYMENT_FAILED)
        order.payment_info.payment_status = PaymentStatus.DECLINED

        logger.warning(f"Payment FAILED | order_id={order.order_id} | reason={reason}")

        self.emit(
            order,
            "PAYMENT_FAILED",
            previous,
            "Payment processing failed",
            {"reason": reason, "amount": order.total_amount},
        )
        self.notify(
            order,
            NotificationType.PAYMENT_FAILED,
            "Payment Failed",
            f"Payment processing failed for order {order.order_id}",
        )
