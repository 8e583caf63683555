"""Audit log sink for the order event topic."""

import threading
from typing import Optional

from .idempotency import IdempotencyGuard
from .logger import logger
from .schemas import OrderEvent


class AuditLogConsumer:
    """Logs batches of ``OrderEvent`` records with their source partition.

    Purely observational: nothing is forwarded and no order state is touched.
    Redelivered events produce another log line and are counted as duplicates.
    """

    def __init__(self, seen: Optional[IdempotencyGuard] = None):
        self._seen = seen if seen is not None else IdempotencyGuard(max_keys=50_000)
        self._lock = threading.Lock()
        self.stats = {"events_logged": 0, "duplicates": 0}

    def log_events(self, events: list[OrderEvent], messages: list) -> None:
        logger.info(f"Batch processing {len(events)} events from order.events")

        for event, msg in zip(events, messages):
            partition = msg.partition() if msg is not None else None
            duplicate = not self._seen.claim(event.event_id)

            previous = event.previous_status.value if event.previous_status else None
            logger.info(
                f"Event Log | event_id={event.event_id} | type={event.event_type} | order_id={event.order_id} | "
                f"status: {previous} -> {event.new_status.value} | partition={partition}"
                + (" | duplicate=true" if duplicate else "")
            )
            with self._lock:
                self.stats["events_logged"] += 1
                if duplicate:
                    self.stats["duplicates"] += 1

        logger.info(f"Successfully logged {len(events)} events")
