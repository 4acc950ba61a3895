"""
Service layer exceptions.
"""


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, service_id: str | None = None):
        self.service_id = service_id
        super().__init__(message)


class CircuitOpenError(ServiceError):
    """Circuit breaker is open, request blocked."""

    def __init__(self, service_id: str, reset_after_seconds: float):
        self.reset_after_seconds = reset_after_seconds
        super().__init__(
            f"Circuit breaker open for service '{service_id}', "
            f"retry after {reset_after_seconds:.1f}s",
            service_id=service_id,
        )


class RequestTimeoutError(ServiceError):
    """Request timed out."""

    def __init__(self, service_id: str, timeout: float):
        self.timeout = timeout
        super().__init__(
            f"Request to service '{service_id}' timed out after {timeout}s",
            service_id=service_id,
        )


class OracleUnavailableError(ServiceError):
    """Semantic similarity oracle is not configured or not reachable."""

    pass


# Analysis worker errors


class WorkerError(ServiceError):
    """The analysis worker faulted while handling a request."""

    def __init__(self, message: str):
        super().__init__(message, service_id="analysis-worker")


class WorkerUnavailableError(WorkerError):
    """Offloaded execution is not possible; callers should fall back."""

    pass


class WorkerReadyTimeoutError(WorkerUnavailableError):
    """The worker did not complete its ready handshake in time."""

    def __init__(self, timeout: float):
        self.timeout = timeout
        super().__init__(f"Worker failed to become ready within {timeout}s")


class WorkerTimeoutError(WorkerError):
    """A single offloaded request did not get a response in time."""

    def __init__(self, kind: str, timeout: float):
        self.kind = kind
        self.timeout = timeout
        super().__init__(f"{kind.capitalize()} request timed out after {timeout}s")


class WorkerResetError(WorkerError):
    """Pending request dropped because the manager was reset."""

    def __init__(self):
        super().__init__("Worker reset")


class WorkerTerminatedError(WorkerError):
    """Pending request dropped because the worker was terminated."""

    def __init__(self):
        super().__init__("Worker terminated")
