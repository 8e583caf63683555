"""Registration table of the fulfillment service: topic -> handler -> group -> concurrency."""

from dataclasses import dataclass
from typing import Optional

from . import config
from .audit import AuditLogConsumer
from .config import Settings
from .confirmation import ConfirmationStage
from .consumer import Subscription
from .inventory import InventoryStage
from .payment import PaymentStage
from .policies import (
    AvailabilityPolicy,
    Delay,
    NoDelay,
    PaymentProcessor,
    RandomAvailabilityPolicy,
    RandomPaymentProcessor,
    RandomSource,
    SeededRandom,
    SystemDelay,
)
from .producer import EventPublisher, KafkaPublisher, NotificationDispatcher, OrderRelay
from .schemas import Order, OrderEvent
from .shipment import ShipmentStage
from .validation import ValidationStage


@dataclass
class FulfillmentPipeline:
    """The stages of the saga, wired to their relays but not yet to Kafka consumers."""

    confirmation: ConfirmationStage
    validation: ValidationStage
    inventory: InventoryStage
    payment: PaymentStage
    shipment: ShipmentStage
    audit: AuditLogConsumer

    def subscriptions(self) -> list[Subscription]:
        return [
            Subscription("order-confirmation", config.ORDER_CREATED, config.ORDER_PROCESSING_GROUP, Order,
                         self.confirmation.handle, concurrency=3),
            Subscription("validation", config.ORDER_CREATED, config.VALIDATION_GROUP, Order,
                         self.validation.handle, concurrency=2),
            Subscription("inventory", config.ORDER_INVENTORY, config.INVENTORY_GROUP, Order,
                         self.inventory.handle, concurrency=3),
            Subscription("payment", config.ORDER_PAYMENT, config.PAYMENT_GROUP, Order,
                         self.payment.handle, concurrency=2),
            Subscription("shipment", config.ORDER_SHIPPED, config.SHIPPING_GROUP, Order,
                         self.shipment.handle, concurrency=2),
            Subscription("audit-log", config.ORDER_EVENTS, config.EVENT_LOGGING_GROUP, OrderEvent,
                         self.audit.log_events, concurrency=2, batch=True, batch_size=100),
        ]


def build_pipeline(
    publisher: KafkaPublisher,
    settings: Settings,
    rng: Optional[RandomSource] = None,
    delay: Optional[Delay] = None,
    availability: Optional[AvailabilityPolicy] = None,
    processor: Optional[PaymentProcessor] = None,
) -> FulfillmentPipeline:
    """Wire the saga stages.

    Args:
        publisher: Kafka publisher shared by every relay
        settings: Service settings (approval rates, threshold, seed, latency)
        rng: Random source shared by the policies; seeded from settings by default
        delay: Latency simulator; ``NoDelay`` when latency simulation is disabled
        availability: Inventory policy override
        processor: Payment processor override

    Returns:
        FulfillmentPipeline: The wired stages.
    """
    rng = rng if rng is not None else SeededRandom(settings.random_seed)
    if delay is None:
        delay = SystemDelay() if settings.simulate_latency else NoDelay()
    availability = availability or RandomAvailabilityPolicy(rng, settings.inventory_approval_rate)
    processor = processor or RandomPaymentProcessor(
        rng, settings.payment_approval_rate, settings.high_value_threshold
    )

    relay = OrderRelay(publisher)
    events = EventPublisher(publisher)
    notifications = NotificationDispatcher(publisher)

    return FulfillmentPipeline(
        confirmation=ConfirmationStage(relay, events),
        validation=ValidationStage(relay, events, notifications),
        inventory=InventoryStage(relay, events, notifications, availability, rng, delay),
        payment=PaymentStage(relay, events, notifications, processor, rng, delay),
        shipment=ShipmentStage(relay, events, notifications),
        audit=AuditLogConsumer(),
    )
