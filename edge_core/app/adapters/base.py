"""
Base HTTP client for the external authorities.
"""

from typing import Any, Dict, Optional

import httpx

from edge_shared.circuit_breaker import CircuitBreaker, CircuitBreakerOpenException
from edge_shared.errors import DependencyTimeoutError, DependencyUnavailableError
from edge_shared.logging import get_logger, get_request_id
from edge_shared.retry import RetryConfig, retry_on_exception


class UpstreamServerError(Exception):
    """5xx answer from an authority; counted by the circuit breaker."""

    def __init__(self, response: httpx.Response):
        self.response = response
        super().__init__(f"HTTP {response.status_code}")


TRANSIENT_ERRORS = (httpx.TransportError, UpstreamServerError)


class AuthorityClient:
    """httpx client with a bounded timeout, circuit breaker and error classification.

    Timeouts surface as ``DependencyTimeoutError`` (504); connection failures,
    5xx answers and an open breaker surface as ``DependencyUnavailableError``
    (503). 4xx answers are returned to the subclass, which maps them to domain
    errors.
    """

    service_name = "authority"

    def __init__(
        self,
        base_url: str,
        *,
        timeout_seconds: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        circuit_breaker: Optional[CircuitBreaker] = None,
        retry_config: Optional[RetryConfig] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self._client = client
        self._owns_client = client is None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(
            failure_threshold=3,
            recovery_timeout=30.0,
            expected_exception=TRANSIENT_ERRORS,
            name=self.service_name,
        )
        self.retry_config = retry_config or RetryConfig(max_attempts=3)
        self.logger = get_logger(f"edge.{self.service_name}_client")

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=httpx.Timeout(self.timeout_seconds),
                headers={"User-Agent": "edge-core/1.0"},
            )
        return self._client

    def _headers(self, token: Optional[str] = None, tenant_id: Optional[str] = None) -> Dict[str, str]:
        headers = {}
        request_id = get_request_id()
        if request_id:
            headers["X-Request-ID"] = request_id
        if token:
            headers["Authorization"] = f"Bearer {token}"
        if tenant_id:
            headers["X-Tenant-ID"] = tenant_id
        return headers

    async def _send(self, method: str, path: str, **kwargs) -> httpx.Response:
        response = await self.client.request(method, path, **kwargs)
        if response.status_code >= 500:
            raise UpstreamServerError(response)
        return response

    async def _guarded_send(self, method: str, path: str, **kwargs) -> httpx.Response:
        return await self.circuit_breaker.call(self._send, method, path, **kwargs)

    async def request(
        self,
        method: str,
        path: str,
        *,
        idempotent: bool = False,
        token: Optional[str] = None,
        tenant_id: Optional[str] = None,
        **kwargs,
    ) -> httpx.Response:
        """Send a request; only idempotent calls are retried."""
        kwargs["headers"] = {**self._headers(token, tenant_id), **kwargs.get("headers", {})}
        send = self._guarded_send
        if idempotent:
            send = retry_on_exception(TRANSIENT_ERRORS, config=self.retry_config)(self._guarded_send)

        try:
            return await send(method, path, **kwargs)
        except httpx.TimeoutException as exc:
            self.logger.error("Authority request timed out", service=self.service_name, path=path)
            raise DependencyTimeoutError(self.service_name) from exc
        except httpx.TransportError as exc:
            self.logger.error("Authority unreachable", service=self.service_name, path=path, error=str(exc))
            raise DependencyUnavailableError(self.service_name, "connection failed") from exc
        except UpstreamServerError as exc:
            self.logger.error(
                "Authority server error",
                service=self.service_name,
                path=path,
                status_code=exc.response.status_code,
            )
            raise DependencyUnavailableError(
                self.service_name,
                details={"statusCode": exc.response.status_code},
            ) from exc
        except CircuitBreakerOpenException as exc:
            self.logger.warning("Authority circuit open", service=self.service_name, path=path)
            raise DependencyUnavailableError(self.service_name, "circuit breaker open") from exc

    @staticmethod
    def payload(response: httpx.Response) -> Any:
        """Response body, unwrapping a ``{"data": ...}`` envelope when present."""
        body = response.json()
        if isinstance(body, dict) and set(body.keys()) <= {"data", "meta"} and "data" in body:
            return body["data"]
        return body

    async def health_check(self) -> bool:
        try:
            response = await self.request("GET", "/health", idempotent=False)
        except (DependencyTimeoutError, DependencyUnavailableError):
            return False
        return response.status_code == 200

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
