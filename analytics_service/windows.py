"""Keyed state stores backing the analytics aggregations."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, Hashable, Optional, TypeVar

from .logger import logger

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

V = TypeVar("V")


def as_utc(ts: datetime) -> datetime:
    """Naive timestamps are taken to be UTC."""
    return ts.replace(tzinfo=timezone.utc) if ts.tzinfo is None else ts.astimezone(timezone.utc)


def window_start(ts: datetime, size: timedelta) -> datetime:
    """Start of the epoch-aligned tumbling window of ``size`` containing ``ts``."""
    ts = as_utc(ts)
    return ts - (ts - EPOCH) % size


@dataclass(frozen=True)
class Window:
    """Half-open interval ``[start, end)``."""

    start: datetime
    end: datetime


@dataclass(frozen=True)
class ClosedWindow(Generic[V]):
    """Final aggregate of one key in a window that closed."""

    window: Window
    key: Hashable
    value: V


class TumblingWindowStore(Generic[V]):
    """Per-key aggregates over fixed, non-overlapping event-time windows.

    Stream time is the largest event time seen so far. A window is final once
    stream time reaches its end: its aggregates are returned exactly once and
    dropped from the store. A record whose window is already final is late and
    is dropped. A window that never received a record never produces anything.

    The store is not thread-safe; the owning engine serialises access.
    """

    def __init__(
        self,
        name: str,
        size: timedelta,
        initializer: Callable[[], V],
        aggregator: Callable[[V, Any], V],
        encode: Callable[[V], Any] = lambda value: value,
        decode: Callable[[Any], V] = lambda value: value,
    ):
        """Initialize the store.

        Args:
            name: Store name used in logs and snapshots
            size: Window length
            initializer: Produces the empty aggregate of a new key
            aggregator: ``aggregator(aggregate, value)`` returns the new aggregate
            encode: Converts an aggregate to a JSON-compatible value for snapshots
            decode: Inverse of ``encode``
        """
        self.name = name
        self.size = size
        self.initializer = initializer
        self.aggregator = aggregator
        self.encode = encode
        self.decode = decode
        self.stream_time: Optional[datetime] = None
        self.late_records = 0
        self._windows: dict[datetime, dict[Hashable, V]] = {}

    def add(self, key: Hashable, value: Any, ts: datetime) -> list[ClosedWindow[V]]:
        """Fold ``value`` into the window of ``ts`` under ``key``.

        Returns:
            list[ClosedWindow]: Windows that became final because stream time advanced to ``ts``.
        """
        ts = as_utc(ts)
        start = window_start(ts, self.size)
        if self.stream_time is not None and start + self.size <= self.stream_time:
            self.late_records += 1
            logger.warning(
                f"Dropping late record | store={self.name} | key={key} | event_time={ts.isoformat()} | "
                f"stream_time={self.stream_time.isoformat()}"
            )
            return []

        bucket = self._windows.setdefault(start, {})
        current = bucket.get(key)
        bucket[key] = self.aggregator(self.initializer() if current is None else current, value)
        return self.advance(ts)

    def advance(self, now: datetime) -> list[ClosedWindow[V]]:
        """Move stream time forward to ``now`` and return every window that became final.

        Stream time never moves backwards; an earlier ``now`` is a no-op.
        """
        now = as_utc(now)
        if self.stream_time is None or now > self.stream_time:
            self.stream_time = now

        closed = []
        for start in sorted(self._windows):
            end = start + self.size
            if end > self.stream_time:
                break
            window = Window(start, end)
            for key, value in self._windows.pop(start).items():
                closed.append(ClosedWindow(window, key, value))
        return closed

    def open_windows(self) -> dict[Window, dict[Hashable, V]]:
        """Copy of the aggregates of windows that are not final yet."""
        return {Window(start, start + self.size): dict(bucket) for start, bucket in sorted(self._windows.items())}

    def snapshot(self) -> dict:
        """JSON-compatible checkpoint of the store."""
        return {
            "stream_time": self.stream_time.isoformat() if self.stream_time else None,
            "windows": {
                start.isoformat(): {str(key): self.encode(value) for key, value in bucket.items()}
                for start, bucket in self._windows.items()
            },
        }

    def restore(self, snapshot: dict) -> None:
        """Replace the store's state with a checkpoint taken by ``snapshot``."""
        stream_time = snapshot.get("stream_time")
        self.stream_time = datetime.fromisoformat(stream_time) if stream_time else None
        self._windows = {
            datetime.fromisoformat(start): {key: self.decode(value) for key, value in bucket.items()}
            for start, bucket in snapshot.get("windows", {}).items()
        }


class KeyValueStore(Generic[V]):
    """Unbounded per-key aggregate, never closed."""

    def __init__(
        self,
        name: str,
        initializer: Callable[[], V],
        aggregator: Callable[[V, Any], V],
    ):
        self.name = name
        self.initializer = initializer
        self.aggregator = aggregator
        self._values: dict[str, V] = {}

    def add(self, key: str, value: Any) -> V:
        """Fold ``value`` into ``key`` and return the updated aggregate."""
        current = self._values.get(key)
        updated = self.aggregator(self.initializer() if current is None else current, value)
        self._values[key] = updated
        return updated

    def get(self, key: str) -> Optional[V]:
        return self._values.get(key)

    def __len__(self) -> int:
        return len(self._values)

    def snapshot(self) -> dict:
        return dict(self._values)

    def restore(self, snapshot: dict) -> None:
        self._values = dict(snapshot)
