"""Ingress-side order pricing and sample orders."""

import uuid
from decimal import Decimal

from .schemas import (
    Address,
    Order,
    OrderItem,
    OrderPriority,
    OrderStatus,
    PaymentInfo,
    PaymentStatus,
    utcnow,
)

DEFAULT_TAX_RATE = Decimal("0.20")
DEFAULT_SHIPPING_COST = Decimal("10.00")
CENTS = Decimal("0.01")


def price_order(order: Order, tax_given: bool = True, shipping_given: bool = True) -> Order:
    """Assign identity and amounts to an order received by the ingress.

    The subtotal is always recomputed from the items. Tax defaults to 20 % of
    the subtotal and shipping to 10.00 when the caller did not provide them.

    Args:
        order: The order as received
        tax_given: Whether the request carried ``tax_amount``
        shipping_given: Whether the request carried ``shipping_cost``

    Returns:
        Order: The same order, ``PENDING`` with a fresh ``order_id``.
    """
    order.order_id = str(uuid.uuid4())
    order.status = OrderStatus.PENDING
    order.created_at = order.updated_at = utcnow()

    order.subtotal = order.items_subtotal()
    if not tax_given:
        order.tax_amount = (order.subtotal * DEFAULT_TAX_RATE).quantize(CENTS)
    if not shipping_given:
        order.shipping_cost = DEFAULT_SHIPPING_COST
    order.total_amount = order.expected_total()
    return order


def _address(street: str, city: str, state: str, postal_code: str, phone: str) -> Address:
    return Address(street=street, city=city, state=state, postal_code=postal_code, country="France", phone_number=phone)


def example_order() -> Order:
    """A typical three-line order."""
    address = _address("42 Avenue des Champs-Élysées", "Paris", "Île-de-France", "75008", "+33 6 12 34 56 78")
    return Order(
        customer_id=f"CUST-{uuid.uuid4().hex[:8]}",
        customer_name="Marie Dubois",
        customer_email="marie.dubois@example.com",
        phone_number="+33 6 12 34 56 78",
        priority=OrderPriority.NORMAL,
        items=[
            OrderItem(product_id="PROD-001", product_name='MacBook Pro 14"', sku="MBP14-256-SG", quantity=1,
                      unit_price=Decimal("2499.99"), category="Electronics", weight=1.6),
            OrderItem(product_id="PROD-002", product_name="Magic Mouse", sku="MM-WHT", quantity=1,
                      unit_price=Decimal("99.99"), category="Accessories", weight=0.1),
            OrderItem(product_id="PROD-003", product_name="USB-C Cable", sku="USBC-2M", quantity=2,
                      unit_price=Decimal("19.99"), category="Accessories", weight=0.05),
        ],
        shipping_address=address,
        billing_address=address,
        payment_info=PaymentInfo(payment_method="CREDIT_CARD", card_last_four="1234", payment_processor="Stripe",
                                 payment_status=PaymentStatus.PENDING),
        notes="Please deliver during business hours",
    )


def high_value_order() -> Order:
    """An order above the manual-approval payment threshold."""
    address = _address("15 Rue de la Paix", "Lyon", "Auvergne-Rhône-Alpes", "69001", "+33 6 98 76 54 32")
    return Order(
        customer_id=f"CUST-VIP-{uuid.uuid4().hex[:6]}",
        customer_name="Jean Dupont",
        customer_email="jean.dupont@example.com",
        phone_number="+33 6 98 76 54 32",
        priority=OrderPriority.EXPRESS,
        items=[
            OrderItem(product_id="PROD-PREMIUM-001", product_name='MacBook Pro 16" Max', sku="MBP16-1TB-MAX",
                      quantity=3, unit_price=Decimal("3999.99"), category="Electronics", weight=2.1),
        ],
        shipping_address=address,
        billing_address=address,
        payment_info=PaymentInfo(payment_method="CREDIT_CARD", card_last_four="9876", payment_processor="Stripe",
                                 payment_status=PaymentStatus.PENDING),
        coupon_code="VIP20",
    )
