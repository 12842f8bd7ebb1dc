"""
REST transport for the compliance API.
"""

import time
from typing import Any, Dict, Optional

import httpx

from shared.circuit_breaker import CircuitBreaker
from shared.errors import ApplicationError, ComplianceClientError, TransportError
from shared.logging import get_logger, request_context


class ApiClient:
    """Thin JSON client used by the resource fetchers and mutations.

    Success/failure is the only thing the cache layer cares about: any 2xx is
    success, anything else becomes an ``ApplicationError`` and anything that
    never produced a usable response becomes a ``TransportError``.
    """

    def __init__(self,
                 base_url: str,
                 *,
                 token: Optional[str] = None,
                 timeout: float = 30.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 circuit_breaker: Optional[CircuitBreaker] = None,
                 metrics: Optional[Any] = None):
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.metrics = metrics
        self.logger = get_logger("compliance_client.api_client")
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self.circuit_breaker = circuit_breaker or CircuitBreaker(name="compliance_api")

    async def __aenter__(self) -> "ApiClient":
        await self.open()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def open(self) -> None:
        """Keep one pooled connection open until ``close``."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("GET", path, params=params)

    async def post(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("POST", path, payload=payload)

    async def put(self, path: str, payload: Optional[Dict[str, Any]] = None) -> Any:
        return await self._request("PUT", path, payload=payload)

    async def delete(self, path: str) -> None:
        await self._request("DELETE", path)

    def _headers(self, request_id: str) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "X-Request-ID": request_id}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(self, method: str, path: str,
                       params: Optional[Dict[str, Any]] = None,
                       payload: Optional[Dict[str, Any]] = None) -> Any:
        url = f"{self.base_url}{path}"
        if params:
            params = {name: value for name, value in params.items() if value is not None}

        async def _send(headers: Dict[str, str]):
            start = time.perf_counter()
            try:
                if self._client is not None:
                    response = await self._client.request(
                        method, url, params=params, json=payload, headers=headers
                    )
                else:
                    async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
                        response = await client.request(
                            method, url, params=params, json=payload, headers=headers
                        )
            except httpx.HTTPError as exc:
                self.logger.error("API request failed", method=method, url=url, error=str(exc))
                if self.metrics:
                    self.metrics.record_error("transport")
                raise TransportError(
                    f"{method} {path} failed: {exc}",
                    details={"method": method, "path": path}
                )

            duration = time.perf_counter() - start
            if self.metrics:
                self.metrics.record_api_request(method, response.status_code, duration)
            return self._handle_response(method, path, response, duration)

        with request_context() as request_id:
            try:
                return await self.circuit_breaker.call(_send, self._headers(request_id))
            except ComplianceClientError:
                raise
            except Exception as exc:
                self.logger.error("Unexpected API client error", method=method, url=url, error=str(exc))
                raise TransportError(str(exc), details={"method": method, "path": path})

    def _handle_response(self, method: str, path: str, response: httpx.Response, duration: float) -> Any:
        if 200 <= response.status_code < 300:
            self.logger.debug(
                "API request succeeded",
                method=method,
                path=path,
                status_code=response.status_code,
                duration_ms=round(duration * 1000, 2)
            )
            if response.status_code == 204 or not response.content:
                return None
            try:
                return response.json()
            except ValueError:
                raise TransportError(
                    f"{method} {path} returned a malformed body",
                    details={"status_code": response.status_code, "body": response.text[:500]}
                )

        body: Any = None
        try:
            body = response.json()
        except ValueError:
            body = response.text
        message = None
        if isinstance(body, dict):
            message = body.get("message") or body.get("error")
        message = message or f"Unexpected status {response.status_code}"

        if response.status_code == 401:
            self.logger.warning("Unauthorized API request", method=method, path=path)
        else:
            self.logger.error(
                "API request rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message
            )
        if self.metrics:
            self.metrics.record_error("application")
        raise ApplicationError(
            response.status_code,
            message,
            details={"method": method, "path": path, "body": body}
        )
