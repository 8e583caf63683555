"""Common plumbing of the order-consuming fulfillment stages."""

from typing import Any, Optional

from .errors import InvalidTransitionError
from .idempotency import IdempotencyGuard
from .logger import logger
from .producer import EventPublisher, NotificationDispatcher, OrderRelay
from .schemas import Notification, NotificationType, Order, OrderEvent, OrderStatus


class OrderStage:
    """Base class of a stage that owns an order between receipt and forwarding.

    Subclasses implement ``process``. ``handle`` is what the consumer runtime
    calls: it drops redeliveries already handled by this stage, skips stale
    deliveries whose status no longer allows the stage's transition, and
    re-raises anything unexpected so the runtime can retry or dead-letter the
    record.
    """

    name = "OrderStage"

    def __init__(
        self,
        relay: OrderRelay,
        events: EventPublisher,
        notifications: Optional[NotificationDispatcher] = None,
        guard: Optional[IdempotencyGuard] = None,
    ):
        self.relay = relay
        self.events = events
        self.notifications = notifications
        self.guard = guard if guard is not None else IdempotencyGuard()

    def handle(self, order: Order, msg=None) -> None:
        if not self.guard.claim(order.order_id):
            logger.warning(f"{self.name} already handled order, skipping redelivery | order_id={order.order_id}")
            return
        try:
            self.process(order, msg)
        except InvalidTransitionError as e:
            logger.warning(f"{self.name} skipping stale delivery | order_id={order.order_id} | {e}")
        except Exception:
            self.guard.release(order.order_id)
            raise

    def process(self, order: Order, msg=None) -> None:
        raise NotImplementedError

    def emit(
        self,
        order: Order,
        event_type: str,
        previous_status: Optional[OrderStatus],
        description: str,
        metadata: Optional[dict[str, Any]] = None,
    ) -> OrderEvent:
        """Publish the audit event of the transition the order just made."""
        event = OrderEvent(
            order_id=order.order_id,
            event_type=event_type,
            previous_status=previous_status,
            new_status=order.status,
            description=description,
            triggered_by=self.name,
            metadata=metadata or {},
        )
        self.events.publish_event(event)
        return event

    def notify(self, order: Order, notification_type: NotificationType, subject: str, message: str) -> Optional[Notification]:
        if self.notifications is None:
            return None
        notification = Notification.for_order(order, notification_type, subject, message)
        self.notifications.send_notification(notification)
        return notification
