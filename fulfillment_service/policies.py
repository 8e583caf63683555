"""Pluggable outcome policies, randomness, delays and clocks used by the stages."""

import random
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Protocol

from .schemas import Order


class RandomSource(Protocol):
    """Source of randomness shared by the policies of a stage."""

    def random(self) -> float:
        """Return a float in [0.0, 1.0)."""
        ...

    def uniform(self, low: float, high: float) -> float:
        """Return a float in [low, high]."""
        ...


class SeededRandom:
    """Thread-safe ``random.Random`` wrapper.

    One instance may be shared by all worker threads of a stage.
    """

    def __init__(self, seed: Optional[int] = None):
        self._rng = random.Random(seed)
        self._lock = threading.Lock()

    def random(self) -> float:
        with self._lock:
            return self._rng.random()

    def uniform(self, low: float, high: float) -> float:
        with self._lock:
            return self._rng.uniform(low, high)


class Delay(Protocol):
    """Waits for a number of seconds."""

    def __call__(self, seconds: float) -> None:
        ...


class SystemDelay:
    """Blocks the calling thread with ``time.sleep``."""

    def __call__(self, seconds: float) -> None:
        if seconds > 0:
            time.sleep(seconds)


class NoDelay:
    """Returns immediately."""

    def __call__(self, seconds: float) -> None:
        return None


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Latency:
    """Range of simulated processing time of an external system, in seconds."""

    low: float
    high: float

    def wait(self, delay: Delay, rng: RandomSource) -> None:
        delay(rng.uniform(self.low, self.high))


INVENTORY_LATENCY = Latency(0.5, 1.5)
PAYMENT_LATENCY = Latency(1.0, 3.0)
NOTIFICATION_LATENCY = Latency(0.2, 0.7)


class AvailabilityPolicy(Protocol):
    """Decides whether stock can be reserved for an order."""

    def is_available(self, order: Order) -> bool:
        ...


class RandomAvailabilityPolicy:
    """Approves a fixed share of orders at random."""

    def __init__(self, rng: RandomSource, approval_rate: float = 0.9):
        self._rng = rng
        self.approval_rate = approval_rate

    def is_available(self, order: Order) -> bool:
        return self._rng.random() < self.approval_rate


@dataclass(frozen=True)
class PaymentDecision:
    approved: bool
    reason: str = ""


class PaymentProcessor(Protocol):
    """Executes one payment attempt for an order."""

    def charge(self, order: Order) -> PaymentDecision:
        ...


class RandomPaymentProcessor:
    """Reference processor.

    Amounts above ``high_value_threshold`` are always declined pending manual
    approval; smaller amounts are approved with ``approval_rate``.
    """

    def __init__(
        self,
        rng: RandomSource,
        approval_rate: float = 0.9,
        high_value_threshold: Decimal = Decimal("10000"),
    ):
        self._rng = rng
        self.approval_rate = approval_rate
        self.high_value_threshold = high_value_threshold

    def charge(self, order: Order) -> PaymentDecision:
        if order.total_amount > self.high_value_threshold:
            return PaymentDecision(False, "High-value transaction requires manual approval")
        if self._rng.random() < self.approval_rate:
            return PaymentDecision(True)
        return PaymentDecision(False, "Payment declined by processor")
