"""Thread-safe token bucket used for the passive and active request rates."""

import threading
import time
from typing import Callable, Optional

from webprobe.core.exceptions import ScanCancelled


class RateLimiter:
    """
    Token bucket: starts full at `capacity`, refills `rate` tokens per second.
    A non-positive rate disables limiting.

    acquire() blocks until a token is available. When a cancel event is
    passed, the wait is interruptible and raises ScanCancelled.
    """

    def __init__(self, rate: float, capacity: Optional[float] = None,
                 clock: Callable[[], float] = time.monotonic, name: str = "default"):
        self.rate = float(rate)
        self.capacity = float(capacity if capacity is not None else max(1.0, self.rate))
        self.name = name
        self.clock = clock
        self._tokens = self.capacity
        self._last = clock()
        self._lock = threading.Lock()
        self.total_waits = 0

    @property
    def unlimited(self) -> bool:
        return self.rate <= 0

    def _refill(self, now: float):
        elapsed = now - self._last
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.rate)
            self._last = now

    def try_acquire(self) -> bool:
        if self.unlimited:
            return True
        with self._lock:
            self._refill(self.clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return True
            return False

    def _wait_time(self) -> float:
        with self._lock:
            self._refill(self.clock())
            if self._tokens >= 1.0:
                self._tokens -= 1.0
                return 0.0
            self.total_waits += 1
            return (1.0 - self._tokens) / self.rate

    def acquire(self, cancel: Optional[threading.Event] = None):
        if self.unlimited:
            if cancel is not None and cancel.is_set():
                raise ScanCancelled(details={"limiter": self.name})
            return
        while True:
            if cancel is not None and cancel.is_set():
                raise ScanCancelled(details={"limiter": self.name})
            delay = self._wait_time()
            if delay <= 0:
                return
            # short slices so a cancel is noticed promptly
            delay = min(delay, 0.05)
            if cancel is not None:
                if cancel.wait(delay):
                    raise ScanCancelled(details={"limiter": self.name})
            else:
                time.sleep(delay)
