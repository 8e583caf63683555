"""Pydantic models for orders, audit events and notifications."""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator

from .errors import InvalidTransitionError

ZERO = Decimal("0")


def utcnow() -> datetime:
    """Timezone-aware current time."""
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    """Lifecycle states of an order."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    VALIDATED = "VALIDATED"
    INVENTORY_RESERVED = "INVENTORY_RESERVED"
    PAYMENT_PROCESSING = "PAYMENT_PROCESSING"
    PAYMENT_COMPLETED = "PAYMENT_COMPLETED"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    CANCELLED = "CANCELLED"
    READY_TO_SHIP = "READY_TO_SHIP"
    SHIPPED = "SHIPPED"


TERMINAL_STATUSES = frozenset({OrderStatus.CANCELLED, OrderStatus.SHIPPED})

# Forward edges of the status graph; CANCELLED is added for every non-terminal state below.
_FORWARD_EDGES = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED},
    OrderStatus.CONFIRMED: {OrderStatus.VALIDATED},
    OrderStatus.VALIDATED: {OrderStatus.INVENTORY_RESERVED},
    OrderStatus.INVENTORY_RESERVED: {OrderStatus.PAYMENT_PROCESSING},
    OrderStatus.PAYMENT_PROCESSING: {OrderStatus.PAYMENT_COMPLETED, OrderStatus.PAYMENT_FAILED},
    OrderStatus.PAYMENT_COMPLETED: {OrderStatus.READY_TO_SHIP},
    OrderStatus.PAYMENT_FAILED: set(),
    OrderStatus.READY_TO_SHIP: {OrderStatus.SHIPPED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.SHIPPED: set(),
}

ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    status: frozenset(edges | ({OrderStatus.CANCELLED} if status not in TERMINAL_STATUSES else set()))
    for status, edges in _FORWARD_EDGES.items()
}


def is_allowed_transition(previous: Optional[OrderStatus], new: OrderStatus) -> bool:
    """Check whether ``previous -> new`` is an edge of the status graph."""
    if previous is None:
        return new == OrderStatus.PENDING
    return new in ALLOWED_TRANSITIONS[previous]


class OrderPriority(str, Enum):
    """Order handling priority."""

    NORMAL = "NORMAL"
    EXPRESS = "EXPRESS"


class PaymentStatus(str, Enum):
    """Payment-specific status carried inside ``PaymentInfo``."""

    PENDING = "PENDING"
    AUTHORIZED = "AUTHORIZED"
    CAPTURED = "CAPTURED"
    DECLINED = "DECLINED"
    REFUNDED = "REFUNDED"
    PARTIALLY_REFUNDED = "PARTIALLY_REFUNDED"
    FAILED = "FAILED"


class NotificationType(str, Enum):
    """Kinds of customer notifications."""

    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    ORDER_CANCELLED = "ORDER_CANCELLED"
    PAYMENT_SUCCESS = "PAYMENT_SUCCESS"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    SHIPMENT_CREATED = "SHIPMENT_CREATED"
    ORDER_DELIVERED = "ORDER_DELIVERED"
    REFUND_PROCESSED = "REFUND_PROCESSED"


class NotificationStatus(str, Enum):
    """Delivery status of a notification."""

    PENDING = "PENDING"
    SENT = "SENT"
    FAILED = "FAILED"


class Address(BaseModel):
    """Postal address used for shipping and billing."""

    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    postal_code: Optional[str] = None
    country: Optional[str] = None
    phone_number: Optional[str] = None


class PaymentInfo(BaseModel):
    """Payment details of an order.

    Attributes:
        payment_method: How the customer pays (e.g. CREDIT_CARD).
        transaction_id: Processor transaction id, assigned only on capture.
        payment_status: Payment-specific status.
        card_last_four: Last four digits of the card, if any.
        payment_processor: Name of the processor (e.g. Stripe).
    """

    payment_method: str = "CREDIT_CARD"
    transaction_id: Optional[str] = None
    payment_status: PaymentStatus = PaymentStatus.PENDING
    card_last_four: Optional[str] = None
    payment_processor: Optional[str] = None


class OrderItem(BaseModel):
    """A single line of an order.

    ``quantity`` is not constrained here: non-positive quantities are a business
    rule failure reported by validation, not a decoding failure.
    """

    item_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    product_id: str
    product_name: Optional[str] = None
    sku: Optional[str] = None
    quantity: int
    unit_price: Decimal
    total_price: Optional[Decimal] = None
    category: Optional[str] = None
    weight: Optional[float] = None

    @model_validator(mode="after")
    def derive_total_price(self):
        """Set ``total_price`` to ``unit_price * quantity``, replacing any value sent."""
        self.total_price = self.unit_price * self.quantity
        return self


class Order(BaseModel):
    """A customer order travelling through the fulfillment stages.

    Monetary fields are decimals and are serialized as JSON strings.
    """

    order_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    phone_number: Optional[str] = None
    items: list[OrderItem] = Field(default_factory=list)
    subtotal: Decimal = ZERO
    tax_amount: Decimal = ZERO
    shipping_cost: Decimal = ZERO
    total_amount: Decimal = ZERO
    discount_amount: Decimal = ZERO
    status: OrderStatus = OrderStatus.PENDING
    priority: OrderPriority = OrderPriority.NORMAL
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
    shipping_address: Optional[Address] = None
    billing_address: Optional[Address] = None
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    notes: Optional[str] = None
    coupon_code: Optional[str] = None

    def items_subtotal(self) -> Decimal:
        """Sum of the item totals."""
        return sum((item.total_price for item in self.items), ZERO)

    def expected_total(self) -> Decimal:
        """``subtotal + tax + shipping - discount``."""
        return self.subtotal + self.tax_amount + self.shipping_cost - self.discount_amount

    def transition_to(self, new_status: OrderStatus) -> OrderStatus:
        """Move the order to ``new_status`` and return the previous status.

        Raises:
            InvalidTransitionError: If the edge is not part of the status graph.
        """
        previous = self.status
        if not is_allowed_transition(previous, new_status):
            raise InvalidTransitionError(self.order_id, previous, new_status)
        self.status = new_status
        self.updated_at = utcnow()
        return previous


MetadataValue = Union[bool, int, Decimal, float, str, None]


class OrderEvent(BaseModel):
    """Immutable audit record of one order status transition."""

    model_config = ConfigDict(frozen=True)

    event_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    event_type: str
    previous_status: Optional[OrderStatus] = None
    new_status: OrderStatus
    description: str = ""
    triggered_by: str
    timestamp: datetime = Field(default_factory=utcnow)
    metadata: dict[str, MetadataValue] = Field(default_factory=dict)


class Notification(BaseModel):
    """Outbound customer notification request.

    Created by a stage with status ``PENDING``; the notification consumer sets
    the terminal ``SENT`` or ``FAILED`` status.
    """

    notification_id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    order_id: str
    customer_id: Optional[str] = None
    recipient: Optional[str] = None
    type: NotificationType
    channel: str = "EMAIL"
    subject: str
    message: str
    status: NotificationStatus = NotificationStatus.PENDING
    created_at: datetime = Field(default_factory=utcnow)
    sent_at: Optional[datetime] = None

    @classmethod
    def for_order(cls, order: Order, notification_type: NotificationType, subject: str, message: str):
        """Build an email notification addressed to the order's customer."""
        return cls(
            order_id=order.order_id,
            customer_id=order.customer_id,
            recipient=order.customer_email,
            type=notification_type,
            channel="EMAIL",
            subject=subject,
            message=message,
        )
