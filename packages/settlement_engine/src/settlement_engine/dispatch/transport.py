"""
Delivery transport.

The dispatcher's only network dependency: POST a JSON body to a URL and
report the HTTP status. Retries live in the dispatcher, not here.
"""

import logging
from abc import ABC, abstractmethod
from typing import Any

import httpx

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 15.0


class DeliveryTransport(ABC):
    """POST(url, headers, json_body) -> HTTP status."""

    @abstractmethod
    async def post(self, url: str, headers: dict[str, str], json_body: dict[str, Any]) -> int:
        """
        Deliver one request.

        Raises:
            httpx.HTTPError: transport failure (connection, timeout)
        """
        ...

    async def close(self) -> None:
        return None


class HttpxDeliveryTransport(DeliveryTransport):
    """Transport backed by a shared httpx.AsyncClient with a per-request timeout."""

    def __init__(
        self,
        timeout: float = DEFAULT_TIMEOUT_SECONDS,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                follow_redirects=False,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client and not self._client.is_closed:
            await self._client.aclose()

    async def post(self, url: str, headers: dict[str, str], json_body: dict[str, Any]) -> int:
        client = await self._get_client()
        response = await client.post(url, headers=headers, json=json_body)
        return response.status_code
