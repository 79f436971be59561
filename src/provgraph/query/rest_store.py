"""🌐 REST Event Store - Provenance requests over HTTP.

Posts the wire body to `<uri>/provenance` and reads back
`{"records": [...]}`. Record keys are lower-cased by the contract.

Example:
    async with RestEventStore("http://prov-backend:3000") as store:
        response = await store.query(ProvenanceRequest.build("WORKFLOWS"))
"""

from __future__ import annotations

from typing import Any

import httpx
from rich.console import Console

from ..core.timeutil import DEFAULT_EPSILON_MS
from ..errors import QueryError
from .contract import EventStore, ProvenanceRequest, RetryPolicy


class RestEventStore(EventStore):
    """Client for a remote provenance endpoint."""

    def __init__(
        self,
        uri: str,
        timeout: float = 30.0,
        epsilon_ms: int = DEFAULT_EPSILON_MS,
        retry: RetryPolicy | None = None,
        console: Console | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the REST store.

        Args:
            uri: Backend base URI (e.g., "http://localhost:3000")
            timeout: Request timeout in seconds
            epsilon_ms: Clock skew the backend is expected to apply
            retry: Retry policy for failed requests
            console: Console for diagnostics
            transport: Custom httpx transport (mock transports in tests)
        """
        super().__init__(epsilon_ms=epsilon_ms, retry=retry, console=console)
        self.uri = uri.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    @classmethod
    def from_settings(cls, settings=None, **kwargs) -> "RestEventStore":
        """Create a store from environment settings."""
        from ..config import get_settings

        settings = settings or get_settings()
        return cls(
            settings.rest_uri,
            timeout=settings.rest_timeout,
            epsilon_ms=settings.epsilon_ms,
            **kwargs,
        )

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def _execute(self, request: ProvenanceRequest) -> list[dict[str, Any]]:
        name = request.request_type.value
        response = await self.client.post(f"{self.uri}/provenance", json=request.to_body())

        if response.status_code >= 400:
            error_msg = response.text
            try:
                error_msg = response.json().get("message", error_msg)
            except (ValueError, AttributeError):
                pass
            raise QueryError(
                f"Provenance API error ({response.status_code}): {error_msg}",
                request_type=name,
            )

        try:
            body = response.json()
        except ValueError as e:
            raise QueryError(f"{name}: response is not JSON", request_type=name) from e
        if not isinstance(body, dict) or not isinstance(body.get("records"), list):
            raise QueryError(f"{name}: response has no records list", request_type=name)
        return body["records"]

    async def aclose(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    def __repr__(self) -> str:
        return f"RestEventStore(uri={self.uri})"
