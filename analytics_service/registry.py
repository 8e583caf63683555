"""Registration table of the analytics service."""

from fulfillment_service import config
from fulfillment_service.consumer import Subscription
from fulfillment_service.producer import KafkaPublisher
from fulfillment_service.schemas import Order, OrderEvent

from .engine import AnalyticsEngine, Publish
from .schemas import AnalyticsRecord


def analytics_publisher(publisher: KafkaPublisher) -> Publish:
    """Publish analytics records to ``order.analytics`` keyed by their aggregation key."""

    def publish(record: AnalyticsRecord) -> None:
        publisher.publish_model(config.ORDER_ANALYTICS, record.key, record)

    return publish


def build_subscriptions(engine: AnalyticsEngine) -> list[Subscription]:
    """Both analytics inputs read under ``analytics-group`` with a single worker each.

    One worker per topic keeps stream time monotonic across the topic's partitions.
    """
    return [
        Subscription("analytics-orders", config.ORDER_CREATED, config.ANALYTICS_GROUP, Order,
                     engine.on_order_created),
        Subscription("analytics-events", config.ORDER_EVENTS, config.ANALYTICS_GROUP, OrderEvent,
                     engine.on_order_event),
    ]
