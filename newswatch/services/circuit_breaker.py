"""
CircuitBreaker - Stops calling a remote dependency once it keeps failing.

States:
- CLOSED: Normal operation, calls pass through
- OPEN: Dependency is failing, calls are rejected with CircuitOpenError
- HALF_OPEN: A limited number of trial calls test for recovery

Transitions:
- CLOSED → OPEN: When failure_threshold consecutive failures are recorded
- OPEN → HALF_OPEN: After reset_timeout expires
- HALF_OPEN → CLOSED: After success_threshold successful trial calls
- HALF_OPEN → OPEN: On any failed trial call
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Awaitable, Callable, TypeVar

from loguru import logger

from newswatch.services.errors import CircuitOpenError

T = TypeVar("T")


class CircuitState(str, Enum):
    """Circuit breaker states."""

    CLOSED = "CLOSED"
    OPEN = "OPEN"
    HALF_OPEN = "HALF_OPEN"


@dataclass
class CircuitBreakerConfig:
    """Configuration for circuit breaker."""

    failure_threshold: int = 3
    reset_timeout: timedelta = timedelta(seconds=30)
    half_open_max_requests: int = 1
    success_threshold: int = 1


class CircuitBreaker:
    """
    Circuit breaker around one unreliable dependency.

    Usage:
        breaker = CircuitBreaker("embedding-oracle")
        vectors = await breaker.call(lambda: client.embed(texts))

    ``call`` raises CircuitOpenError without invoking the operation while
    the circuit is open. The lower level ``can_request`` /
    ``record_success`` / ``record_failure`` methods are available for
    callers that manage the call themselves.
    """

    def __init__(
        self,
        service_id: str,
        config: CircuitBreakerConfig | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.service_id = service_id
        self.config = config or CircuitBreakerConfig()
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._last_failure_time: datetime | None = None
        self._opened_at: datetime | None = None
        self._half_open_requests = 0

    @property
    def state(self) -> CircuitState:
        """Current state, applying the timed OPEN → HALF_OPEN transition."""
        if self._state == CircuitState.OPEN and self._opened_at:
            if self._clock() >= self._opened_at + self.config.reset_timeout:
                self._state = CircuitState.HALF_OPEN
                self._half_open_requests = 0
                self._success_count = 0
                logger.info(
                    f"Circuit breaker '{self.service_id}' transitioned to HALF_OPEN"
                )
        return self._state

    def can_request(self) -> bool:
        """Check if a request is allowed."""
        current_state = self.state

        if current_state == CircuitState.CLOSED:
            return True
        if current_state == CircuitState.HALF_OPEN:
            return self._half_open_requests < self.config.half_open_max_requests
        return False

    async def call(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker, recording its outcome."""
        if not self.can_request():
            raise CircuitOpenError(self.service_id, self.get_time_until_reset() or 0)

        if self._state == CircuitState.HALF_OPEN:
            self._half_open_requests += 1

        try:
            result = await operation()
        except Exception:
            self.record_failure()
            raise

        self.record_success()
        return result

    def record_success(self) -> None:
        """Record a successful request."""
        if self._state == CircuitState.HALF_OPEN:
            self._success_count += 1
            if self._success_count >= self.config.success_threshold:
                self._close()
        elif self._state == CircuitState.CLOSED:
            self._failure_count = 0

    def record_failure(self) -> None:
        """Record a failed request."""
        self._failure_count += 1
        self._last_failure_time = self._clock()

        if self._state == CircuitState.HALF_OPEN:
            self._open()
        elif self._state == CircuitState.CLOSED:
            if self._failure_count >= self.config.failure_threshold:
                self._open()

    def _open(self) -> None:
        self._state = CircuitState.OPEN
        self._opened_at = self._clock()
        logger.warning(
            f"Circuit breaker '{self.service_id}' OPENED after {self._failure_count} failures"
        )

    def _close(self) -> None:
        self._state = CircuitState.CLOSED
        self._failure_count = 0
        self._success_count = 0
        self._opened_at = None
        self._half_open_requests = 0
        logger.info(f"Circuit breaker '{self.service_id}' CLOSED (recovered)")

    def get_time_until_reset(self) -> float | None:
        """Seconds until the circuit transitions to half-open."""
        if self._state != CircuitState.OPEN or not self._opened_at:
            return None

        reset_at = self._opened_at + self.config.reset_timeout
        return max(0.0, (reset_at - self._clock()).total_seconds())

    def get_status(self) -> dict[str, Any]:
        return {
            "service_id": self.service_id,
            "state": self.state.value,
            "failure_count": self._failure_count,
            "last_failure": (
                self._last_failure_time.isoformat() if self._last_failure_time else None
            ),
            "time_until_reset": self.get_time_until_reset(),
        }
