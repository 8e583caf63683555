"""Schemas of the records published to the analytics topic."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Optional

from fulfillment_service.schemas import utcnow
from pydantic import BaseModel, ConfigDict, Field


class AnalyticsType(str, Enum):
    """Kinds of analytics records."""

    STATUS_COUNT = "STATUS_COUNT"
    HIGH_VALUE_ORDER = "HIGH_VALUE_ORDER"
    TOTAL_REVENUE = "TOTAL_REVENUE"
    LOYAL_CUSTOMER = "LOYAL_CUSTOMER"
    POPULAR_PRODUCT = "POPULAR_PRODUCT"


class AnalyticsRecord(BaseModel):
    """One derived analytics record.

    Attributes:
        type: Which aggregation produced the record
        key: Aggregation key (status, product id, customer id, order id or ``TOTAL_REVENUE``)
        window_start: Start of the tumbling window, for windowed aggregations
        window_end: End of the tumbling window (exclusive)
        count: Count aggregate, where applicable
        amount: Monetary aggregate or order amount, where applicable
        order_id: Order of a high-value alert
        customer_id: Customer of a high-value alert or loyalty signal
        customer_name: Customer name of a high-value alert
        emitted_at: When the record was produced
    """

    model_config = ConfigDict(frozen=True)

    type: AnalyticsType
    key: str
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    count: Optional[int] = None
    amount: Optional[Decimal] = None
    order_id: Optional[str] = None
    customer_id: Optional[str] = None
    customer_name: Optional[str] = None
    emitted_at: datetime = Field(default_factory=utcnow)
