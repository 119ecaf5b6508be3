"""
Shared HTTP Client

One lazily created httpx.AsyncClient per router, so every backend call
reuses the same connection pool.
"""

from typing import Any, Optional

import httpx


class HttpClient:
    """
    Thin wrapper over httpx.AsyncClient

    The transport is swappable so tests can answer requests in-process.
    """

    def __init__(
        self,
        timeout: float,
        headers: Optional[dict[str, str]] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._timeout = httpx.Timeout(timeout)
        self._headers = headers or {}
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                timeout=self._timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def get(self, url: str, **kwargs: Any) -> httpx.Response:
        return await self.client.get(url, **kwargs)

    async def post(
        self,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ) -> httpx.Response:
        return await self.client.post(url, headers=headers, json=json)

    def stream(
        self,
        method: str,
        url: str,
        headers: Optional[dict[str, str]] = None,
        json: Optional[dict[str, Any]] = None,
    ):
        """
        Open a streaming request

        Use as an async context manager; the response and its connection are
        released on exit, including when the consumer stops early.
        """
        return self.client.stream(method, url, headers=headers, json=json)

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
