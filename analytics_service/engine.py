"""Streaming aggregations over ``order.created`` and ``order.events``."""

import threading
from collections import deque
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Callable, Optional

from confluent_kafka import TIMESTAMP_NOT_AVAILABLE
from fulfillment_service.idempotency import IdempotencyGuard
from fulfillment_service.policies import Clock, SystemClock
from fulfillment_service.schemas import ZERO, Order, OrderEvent, utcnow

from .logger import logger
from .schemas import AnalyticsRecord, AnalyticsType
from .windows import ClosedWindow, KeyValueStore, TumblingWindowStore

STATUS_WINDOW = timedelta(minutes=5)
REVENUE_WINDOW = timedelta(minutes=10)
PRODUCT_WINDOW = timedelta(minutes=15)

HIGH_VALUE_AMOUNT = Decimal("1000")
LOYALTY_MIN_ORDERS = 3
POPULARITY_MIN_ORDERS = 3

REVENUE_KEY = "TOTAL_REVENUE"

Publish = Callable[[AnalyticsRecord], None]


def event_time(msg, fallback: datetime) -> datetime:
    """Kafka record timestamp of ``msg``, or ``fallback`` when the record carries none."""
    if msg is not None:
        ts_type, ts = msg.timestamp()
        if ts_type != TIMESTAMP_NOT_AVAILABLE and ts and ts > 0:
            return datetime.fromtimestamp(ts / 1000, tz=timezone.utc)
    return fallback if fallback.tzinfo else fallback.replace(tzinfo=timezone.utc)


def _count(aggregate: int, _) -> int:
    return aggregate + 1


def _sum(aggregate: Decimal, amount: Decimal) -> Decimal:
    return aggregate + amount


def _windowed(record_type: AnalyticsType, closed: ClosedWindow, **fields) -> AnalyticsRecord:
    return AnalyticsRecord(
        type=record_type,
        key=str(closed.key),
        window_start=closed.window.start,
        window_end=closed.window.end,
        **fields,
    )


class AnalyticsEngine:
    """Owns the analytics state stores and turns incoming records into analytics records.

    All five aggregations share one lock, so the engine can be fed from any
    number of consumer threads. Every produced record is handed to ``publish``
    and kept in a bounded list of recent records. Input records are counted
    once: a redelivered order or event id is skipped.
    """

    def __init__(self, publish: Optional[Publish] = None, history: int = 500, max_seen: int = 100_000):
        """Initialize the engine.

        Args:
            publish: Called with every produced record, e.g. to send it to ``order.analytics``
            history: Number of recent records kept for the read side
            max_seen: Number of order and event ids remembered to skip redeliveries
        """
        self.publish = publish
        self.seen = IdempotencyGuard(max_seen)
        self._lock = threading.Lock()
        self._recent: deque[AnalyticsRecord] = deque(maxlen=history)

        self.status_counts = TumblingWindowStore("order-status-counts", STATUS_WINDOW, int, _count)
        self.revenue = TumblingWindowStore(
            "total-revenue", REVENUE_WINDOW, lambda: ZERO, _sum, encode=str, decode=Decimal
        )
        self.customer_orders = KeyValueStore("orders-by-customer", int, _count)
        self.product_popularity = TumblingWindowStore("product-popularity", PRODUCT_WINDOW, int, _count)

    def on_order_event(self, event: OrderEvent, msg=None) -> list[AnalyticsRecord]:
        """Count the event's new status in its 5-minute window, once per ``event_id``."""
        return self._once(f"event:{event.event_id}", self._count_status, event, msg)

    def on_order_created(self, order: Order, msg=None) -> list[AnalyticsRecord]:
        """Feed a new order to the high-value, revenue, loyalty and popularity aggregations, once per ``order_id``."""
        return self._once(f"order:{order.order_id}", self._aggregate_order, order, msg)

    def _once(self, key: str, aggregate, value, msg) -> list[AnalyticsRecord]:
        if not self.seen.claim(key):
            logger.warning(f"Analytics already counted record, skipping redelivery | key={key}")
            return []
        try:
            records = aggregate(value, msg)
        except Exception:
            self.seen.release(key)
            raise
        return self._emit(records)

    def _count_status(self, event: OrderEvent, msg) -> list[AnalyticsRecord]:
        ts = event_time(msg, event.timestamp)
        with self._lock:
            return self._status_records(self.status_counts.add(event.new_status.value, 1, ts))

    def _aggregate_order(self, order: Order, msg) -> list[AnalyticsRecord]:
        ts = event_time(msg, order.created_at)
        records = []
        with self._lock:
            if order.total_amount > HIGH_VALUE_AMOUNT:
                records.append(
                    AnalyticsRecord(
                        type=AnalyticsType.HIGH_VALUE_ORDER,
                        key=order.order_id,
                        amount=order.total_amount,
                        order_id=order.order_id,
                        customer_id=order.customer_id,
                        customer_name=order.customer_name,
                    )
                )

            records.extend(self._revenue_records(self.revenue.add(REVENUE_KEY, order.total_amount, ts)))

            if order.customer_id:
                orders = self.customer_orders.add(order.customer_id, 1)
                if orders >= LOYALTY_MIN_ORDERS:
                    records.append(
                        AnalyticsRecord(
                            type=AnalyticsType.LOYAL_CUSTOMER,
                            key=order.customer_id,
                            count=orders,
                            customer_id=order.customer_id,
                        )
                    )

            closed = []
            for item in order.items:
                closed.extend(self.product_popularity.add(item.product_id, 1, ts))
            if not order.items:
                closed.extend(self.product_popularity.advance(ts))
            records.extend(self._popularity_records(closed))
        return records

    def advance(self, now: Optional[datetime] = None) -> list[AnalyticsRecord]:
        """Punctuate every windowed store with wall-clock time, closing windows without new data."""
        now = now or utcnow()
        with self._lock:
            records = (
                self._status_records(self.status_counts.advance(now))
                + self._revenue_records(self.revenue.advance(now))
                + self._popularity_records(self.product_popularity.advance(now))
            )
        return self._emit(records)

    def recent_records(self, record_type: Optional[AnalyticsType] = None, limit: int = 100) -> list[AnalyticsRecord]:
        """Most recent records first, optionally of one type."""
        with self._lock:
            records = list(reversed(self._recent))
        if record_type is not None:
            records = [r for r in records if r.type == record_type]
        return records[:limit]

    def snapshot(self) -> dict:
        """JSON-compatible checkpoint of every store."""
        with self._lock:
            return {
                "status_counts": self.status_counts.snapshot(),
                "revenue": self.revenue.snapshot(),
                "customer_orders": self.customer_orders.snapshot(),
                "product_popularity": self.product_popularity.snapshot(),
            }

    def restore(self, snapshot: dict) -> None:
        """Load a checkpoint taken by ``snapshot``."""
        with self._lock:
            self.status_counts.restore(snapshot["status_counts"])
            self.revenue.restore(snapshot["revenue"])
            self.customer_orders.restore(snapshot["customer_orders"])
            self.product_popularity.restore(snapshot["product_popularity"])
        logger.info(f"Analytics state restored | customers={len(self.customer_orders)}")

    def _status_records(self, closed: list[ClosedWindow]) -> list[AnalyticsRecord]:
        return [_windowed(AnalyticsType.STATUS_COUNT, c, count=c.value) for c in closed]

    def _revenue_records(self, closed: list[ClosedWindow]) -> list[AnalyticsRecord]:
        return [_windowed(AnalyticsType.TOTAL_REVENUE, c, amount=c.value) for c in closed]

    def _popularity_records(self, closed: list[ClosedWindow]) -> list[AnalyticsRecord]:
        return [
            _windowed(AnalyticsType.POPULAR_PRODUCT, c, count=c.value)
            for c in closed
            if c.value >= POPULARITY_MIN_ORDERS
        ]

    def _emit(self, records: list[AnalyticsRecord]) -> list[AnalyticsRecord]:
        for record in records:
            logger.info(
                f"Analytics | type={record.type.value} | key={record.key} | count={record.count} | "
                f"amount={record.amount}"
                + (f" | window={record.window_start.isoformat()}..{record.window_end.isoformat()}"
                   if record.window_start else "")
            )
            with self._lock:
                self._recent.append(record)
            if self.publish is not None:
                self.publish(record)
        return records


class Punctuator:
    """Periodically advances an engine with wall-clock time from a daemon thread."""

    def __init__(self, engine: AnalyticsEngine, interval: float, clock: Optional[Clock] = None):
        self.engine = engine
        self.interval = interval
        self.clock = clock or SystemClock()
        self._stop = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def start(self) -> None:
        self._thread = threading.Thread(target=self._run, name="analytics-punctuator", daemon=True)
        self._thread.start()

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.engine.advance(self.clock.now())
            except Exception as e:
                logger.opt(exception=e).error(f"Punctuation failed: {e}")

    def stop(self, timeout: float = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout=timeout)
