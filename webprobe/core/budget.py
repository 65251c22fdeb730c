"""Probe budget for one planner run."""

import threading
import time
from typing import Callable


class BudgetGate:
    """
    Caps probe attempts and wall-clock seconds.

    try_consume() hands out at most max_probes permits while the deadline
    has not passed. Once it returns False it keeps returning False; the
    budget is never replenished.
    """

    def __init__(self, max_probes: int, max_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.max_probes = max(1, int(max_probes))
        self.max_seconds = max(1.0, float(max_seconds))
        self.clock = clock
        self._deadline = clock() + self.max_seconds
        self._used = 0
        self._exhausted = False
        self._lock = threading.Lock()

    def try_consume(self) -> bool:
        with self._lock:
            if self._exhausted:
                return False
            if self._used >= self.max_probes or self.clock() >= self._deadline:
                self._exhausted = True
                return False
            self._used += 1
            return True

    @property
    def used(self) -> int:
        with self._lock:
            return self._used

    @property
    def remaining(self) -> int:
        with self._lock:
            return 0 if self._exhausted else self.max_probes - self._used

    @property
    def exhausted(self) -> bool:
        with self._lock:
            return self._exhausted
