"""
ServiceClient - Async HTTP client with resilience patterns.

Combines:
- CircuitBreaker for failure protection
- Exponential backoff with jitter for transient failures
"""

from dataclasses import dataclass, field
from typing import Any

import httpx
from loguru import logger

from newswatch.services.circuit_breaker import CircuitBreaker, CircuitBreakerConfig
from newswatch.services.errors import RequestTimeoutError, ServiceError
from newswatch.services.retry import (
    BackoffConfig,
    is_retryable_error,
    with_exponential_backoff,
)


@dataclass
class ServiceConfig:
    """Configuration for a remote service."""

    service_id: str
    base_url: str
    timeout: float = 10.0
    headers: dict[str, str] | None = None
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    circuit_breaker_config: CircuitBreakerConfig | None = None


class ServiceClient:
    """
    JSON-over-HTTP client for one service, guarded by a circuit breaker.

    Usage:
        client = ServiceClient(ServiceConfig("embedding-oracle", base_url))
        data = await client.post_json("/embed", {"texts": texts})
    """

    def __init__(
        self,
        config: ServiceConfig,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.config = config
        self.breaker = CircuitBreaker(config.service_id, config.circuit_breaker_config)
        self._transport = transport
        self._http_client: httpx.AsyncClient | None = None

    def _get_http_client(self) -> httpx.AsyncClient:
        if self._http_client is None:
            self._http_client = httpx.AsyncClient(
                base_url=self.config.base_url,
                timeout=httpx.Timeout(self.config.timeout),
                headers=self.config.headers,
                transport=self._transport,
                follow_redirects=True,
            )
        return self._http_client

    @property
    def is_available(self) -> bool:
        return self.breaker.can_request()

    async def post_json(self, path: str, payload: dict[str, Any]) -> Any:
        """
        POST ``payload`` and return the decoded JSON response.

        Raises:
            CircuitOpenError: If the circuit breaker is open
            RequestTimeoutError: If the last attempt timed out
            ServiceError: For other failures
        """

        async def attempt() -> Any:
            return await self.breaker.call(lambda: self._execute_request(path, payload))

        def should_retry(error: BaseException, failed: int, max_attempts: int) -> bool:
            if isinstance(error, ServiceError) and isinstance(
                error.__cause__, httpx.HTTPError
            ):
                return is_retryable_error(error.__cause__)
            return is_retryable_error(error)

        return await with_exponential_backoff(
            attempt, config=self.config.backoff, should_retry=should_retry
        )

    async def _execute_request(self, path: str, payload: dict[str, Any]) -> Any:
        client = self._get_http_client()
        service_id = self.config.service_id

        try:
            response = await client.post(path, json=payload)
            response.raise_for_status()
            return response.json()

        except httpx.TimeoutException as e:
            raise RequestTimeoutError(service_id, self.config.timeout) from e

        except httpx.HTTPStatusError as e:
            raise ServiceError(
                f"HTTP {e.response.status_code}: {e.response.text[:200]}",
                service_id=service_id,
            ) from e

        except httpx.RequestError as e:
            raise ServiceError(str(e), service_id=service_id) from e

        except ValueError as e:
            raise ServiceError(f"Invalid JSON response: {e}", service_id=service_id) from e

    async def close(self) -> None:
        if self._http_client:
            await self._http_client.aclose()
            self._http_client = None
        logger.debug(f"ServiceClient '{self.config.service_id}' closed")

    async def __aenter__(self) -> "ServiceClient":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()
