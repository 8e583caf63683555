"""Consumer-side delivery of notification requests."""

import threading
from collections import OrderedDict
from typing import Optional

from fulfillment_service import config
from fulfillment_service.consumer import Subscription
from fulfillment_service.policies import NOTIFICATION_LATENCY, Delay, Latency, RandomSource
from fulfillment_service.schemas import Notification, NotificationStatus, utcnow

from .handler import NotificationHandler
from .logger import logger


class NotificationStore:
    """In-memory record of handled notifications, keyed by id.

    The least recently stored notifications are evicted once ``max_notifications`` is reached.
    """

    def __init__(self, max_notifications: int = 10_000):
        self.max_notifications = max_notifications
        self._notifications: "OrderedDict[str, Notification]" = OrderedDict()
        self._lock = threading.Lock()

    def store_notification(self, notification: Notification) -> None:
        with self._lock:
            self._notifications[notification.notification_id] = notification
            self._notifications.move_to_end(notification.notification_id)
            if len(self._notifications) > self.max_notifications:
                self._notifications.popitem(last=False)

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        with self._lock:
            return self._notifications.get(notification_id)

    def list_notifications(
        self, customer_id: Optional[str] = None, notification_type: Optional[str] = None
    ) -> list[Notification]:
        """Get all notifications, optionally filtered.

        Args:
            customer_id: Optional customer ID to filter by
            notification_type: Optional notification type to filter by

        Returns:
            List of matching notifications
        """
        with self._lock:
            notifications = list(self._notifications.values())

        if customer_id:
            notifications = [n for n in notifications if n.customer_id == customer_id]
        if notification_type:
            notifications = [n for n in notifications if n.type.value == notification_type]
        return notifications


class NotificationConsumer:
    """Delivers notifications from ``order.notifications`` and records the outcome.

    Delivery failures are terminal: the notification is marked ``FAILED`` and
    logged, never retried. A redelivered notification that was already sent is
    not sent again.
    """

    def __init__(
        self,
        handler: NotificationHandler,
        rng: RandomSource,
        delay: Delay,
        latency: Latency = NOTIFICATION_LATENCY,
        store: Optional[NotificationStore] = None,
    ):
        self.handler = handler
        self.rng = rng
        self.delay = delay
        self.latency = latency
        self.store = store if store is not None else NotificationStore()

    def deliver(self, notification: Notification, msg=None) -> Notification:
        previous = self.store.get_notification(notification.notification_id)
        if previous is not None and previous.status == NotificationStatus.SENT:
            logger.warning(f"Notification already sent, skipping | notification_id={notification.notification_id}")
            return previous

        logger.info(
            f"Sending notification | type={notification.type.value} | channel={notification.channel} | "
            f"recipient={notification.recipient}"
        )
        try:
            self.latency.wait(self.delay, self.rng)
            sent = self.handler.send_notification(notification)
        except Exception as e:
            logger.error(f"Failed to send notification | notification_id={notification.notification_id} | error={e}")
            sent = False

        if sent:
            notification.status = NotificationStatus.SENT
            notification.sent_at = utcnow()
            logger.info(
                f"Notification SENT | notification_id={notification.notification_id} | "
                f"type={notification.type.value} | recipient={notification.recipient}"
            )
        else:
            notification.status = NotificationStatus.FAILED
            logger.error(f"Notification FAILED | notification_id={notification.notification_id}")

        self.store.store_notification(notification)
        return notification

    def subscriptions(self) -> list[Subscription]:
        """Registration table of the notification service."""
        return [
            Subscription(
                "notification",
                config.ORDER_NOTIFICATIONS,
                config.NOTIFICATION_GROUP,
                Notification,
                self.deliver,
                concurrency=2,
            )
        ]
