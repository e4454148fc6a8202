"""Shared HTTP plumbing for remote provider backends."""

from __future__ import annotations

import httpx


class ProviderError(Exception):
    """A backend call failed (transport, non-2xx status, or malformed response)."""


def raise_for_status(response: httpx.Response, service: str) -> None:
    if response.is_success:
        return
    detail = response.text.strip()[:200]
    message = f"{service} error: {response.status_code} {response.reason_phrase}"
    if detail:
        message += f" - {detail}"
    raise ProviderError(message)


class HTTPClientMixin:
    """Lazily-created `httpx.AsyncClient`, or an injected shared one.

    Injected clients belong to the caller and are never closed here.
    """

    _client: httpx.AsyncClient | None
    _owns_client: bool
    _timeout: float

    def _init_client(self, client: httpx.AsyncClient | None, timeout: float) -> None:
        self._client = client
        self._owns_client = client is None
        self._timeout = timeout

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self._timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
