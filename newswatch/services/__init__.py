"""
Service layer infrastructure - resilience patterns for external calls.

Provides:
- CircuitBreaker: Stops calling a dependency that keeps failing
- with_exponential_backoff: Retries with exponential backoff and jitter
- SignalDeduplicator: Time-windowed suppression of repeated signals
- ServiceClient: HTTP client combining breaker and backoff
"""

from newswatch.services.errors import (
    CircuitOpenError,
    OracleUnavailableError,
    RequestTimeoutError,
    ServiceError,
    WorkerError,
    WorkerReadyTimeoutError,
    WorkerResetError,
    WorkerTerminatedError,
    WorkerTimeoutError,
    WorkerUnavailableError,
)
from newswatch.services.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitState,
)
from newswatch.services.retry import BackoffConfig, RetryContext, with_exponential_backoff
from newswatch.services.deduplicator import SignalDeduplicator
from newswatch.services.client import ServiceClient, ServiceConfig

__all__ = [
    # Errors
    "CircuitOpenError",
    "OracleUnavailableError",
    "RequestTimeoutError",
    "ServiceError",
    "WorkerError",
    "WorkerReadyTimeoutError",
    "WorkerResetError",
    "WorkerTerminatedError",
    "WorkerTimeoutError",
    "WorkerUnavailableError",
    # Circuit Breaker
    "CircuitBreaker",
    "CircuitBreakerConfig",
    "CircuitState",
    # Retry
    "BackoffConfig",
    "RetryContext",
    "with_exponential_backoff",
    # Deduplicator
    "SignalDeduplicator",
    # Client
    "ServiceClient",
    "ServiceConfig",
]
