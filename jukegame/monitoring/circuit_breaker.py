"""Circuit breaker pattern for resilient catalog calls"""

import logging
import threading
import time
from enum import Enum
from typing import Any, Callable, Dict, Optional

from jukegame.errors import UpstreamUnavailable


logger = logging.getLogger(__name__)


class CircuitState(Enum):
    """Circuit breaker states"""
    CLOSED = "closed"      # Normal operation
    OPEN = "open"          # Failing, reject requests
    HALF_OPEN = "half_open"  # Testing recovery


class CircuitBreaker:
    """Circuit breaker to prevent cascading failures.

    Tracks failures and opens the circuit after a threshold; while open,
    calls fail fast with UpstreamUnavailable. Shared by all request threads.
    """

    def __init__(
        self,
        name: str,
        failure_threshold: int = 5,
        timeout: int = 60,
        half_open_attempts: int = 1,
        is_failure: Optional[Callable[[Exception], bool]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize circuit breaker.

        Args:
            name: Name of the circuit for logging
            failure_threshold: Number of failures before opening circuit
            timeout: Seconds to wait before attempting recovery
            half_open_attempts: Number of successful calls needed to close circuit
            is_failure: Predicate deciding whether an exception counts as a failure
            clock: Time source
        """
        self.name = name
        self.failure_threshold = failure_threshold
        self.timeout = timeout
        self.half_open_attempts = half_open_attempts
        self._is_failure = is_failure or (lambda e: True)
        self._clock = clock
        self._lock = threading.Lock()

        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0
        self.last_failure_time: Optional[float] = None

    def call(self, func: Callable, *args, **kwargs) -> Any:
        """Execute function through circuit breaker.

        Raises:
            UpstreamUnavailable: If the circuit is open
        """
        self.before_call()

        try:
            result = func(*args, **kwargs)
        except Exception as e:
            if self._is_failure(e):
                self.on_failure()
            else:
                self.on_success()
            raise
        self.on_success()
        return result

    def before_call(self) -> None:
        """Fail fast when open; move to half-open once the timeout elapsed."""
        with self._lock:
            if self.state != CircuitState.OPEN:
                return
            if self._should_attempt_reset():
                logger.info("Circuit breaker %s: OPEN -> HALF_OPEN (attempting recovery)", self.name)
                self.state = CircuitState.HALF_OPEN
                self.success_count = 0
                return
        raise UpstreamUnavailable(f"Circuit breaker {self.name} is OPEN")

    def _should_attempt_reset(self) -> bool:
        if self.last_failure_time is None:
            return False
        return self._clock() - self.last_failure_time >= self.timeout

    def on_success(self) -> None:
        with self._lock:
            if self.state == CircuitState.HALF_OPEN:
                self.success_count += 1
                if self.success_count >= self.half_open_attempts:
                    logger.info("Circuit breaker %s: HALF_OPEN -> CLOSED (recovered)", self.name)
                    self._close()
            elif self.state == CircuitState.CLOSED:
                self.failure_count = 0

    def on_failure(self) -> None:
        with self._lock:
            self.failure_count += 1
            self.last_failure_time = self._clock()

            if self.state == CircuitState.HALF_OPEN or (
                self.state == CircuitState.CLOSED and self.failure_count >= self.failure_threshold
            ):
                logger.warning(
                    "Circuit breaker %s: %s -> OPEN (%d failures)",
                    self.name, self.state.value, self.failure_count
                )
                self.state = CircuitState.OPEN

    def _close(self) -> None:
        self.state = CircuitState.CLOSED
        self.failure_count = 0
        self.success_count = 0

    def reset(self) -> None:
        """Manually reset circuit breaker to CLOSED state"""
        with self._lock:
            logger.info("Circuit breaker %s: Manual reset to CLOSED", self.name)
            self._close()
            self.last_failure_time = None

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "name": self.name,
                "state": self.state.value,
                "failure_count": self.failure_count,
            }
