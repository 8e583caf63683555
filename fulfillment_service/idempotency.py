"""Stage-local memory of processed keys, used to make handlers idempotent."""

import threading
from collections import OrderedDict


class IdempotencyGuard:
    """Bounded, thread-safe set of keys a stage has already handled.

    ``claim`` atomically records a key and reports whether it was new, so two
    redeliveries racing on different workers cannot both proceed. The oldest
    keys are evicted once ``max_keys`` is reached.
    """

    def __init__(self, max_keys: int = 100_000):
        self.max_keys = max_keys
        self._keys: "OrderedDict[str, None]" = OrderedDict()
        self._lock = threading.Lock()

    def claim(self, key: str) -> bool:
        """Record ``key``; return False if it had been claimed before."""
        with self._lock:
            if key in self._keys:
                self._keys.move_to_end(key)
                return False
            self._keys[key] = None
            if len(self._keys) > self.max_keys:
                self._keys.popitem(last=False)
            return True

    def release(self, key: str) -> None:
        """Forget ``key`` so a retry of a failed attempt can claim it again."""
        with self._lock:
            self._keys.pop(key, None)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._keys

    def __len__(self) -> int:
        with self._lock:
            return len(self._keys)
