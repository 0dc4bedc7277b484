"""Wall-clock budget for deadline-bound handlers"""

import time
from typing import Callable


class Deadline:
    """Tracks elapsed time against a fixed budget.

    The clock is injectable so tests can drive time explicitly. Callers
    check the deadline before starting each unit of work; nothing here
    interrupts work already in flight.
    """

    def __init__(self, budget_ms: float, clock: Callable[[], float] = time.monotonic):
        self.budget_ms = budget_ms
        self._clock = clock
        self._started = clock()

    def elapsed_ms(self) -> float:
        return (self._clock() - self._started) * 1000.0

    def remaining_ms(self) -> float:
        return max(0.0, self.budget_ms - self.elapsed_ms())

    def expired(self) -> bool:
        return self.elapsed_ms() > self.budget_ms

    def has_at_least(self, ms: float) -> bool:
        """True when strictly more than `ms` milliseconds remain."""
        return self.remaining_ms() > ms
