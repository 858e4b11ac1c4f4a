from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Dict, Optional, Protocol

import httpx

from doof.core.config import get_settings
from doof.models.bulk_add import ListAppendRequest

logger = logging.getLogger(__name__)


class ListAppendError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class ListAppender(Protocol):
    async def append(self, request: ListAppendRequest) -> Dict[str, Any]:
        ...


class ListClient:
    """Appends single items to a user list through the list service. No batch endpoint is used."""

    def __init__(
        self,
        base_url: str,
        *,
        token: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.token = token
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            headers = {"Authorization": f"Bearer {self.token}"} if self.token else {}
            self._client = httpx.AsyncClient(timeout=self.timeout, headers=headers, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def append(self, request: ListAppendRequest) -> Dict[str, Any]:
        url = f"{self.base_url}/lists/{request.list_id}/items"
        try:
            client = await self._get_client()
            response = await client.post(url, json=request.to_payload())
        except httpx.HTTPError as exc:
            raise ListAppendError(f"List append request failed: {exc}") from exc

        if response.status_code >= 400:
            try:
                payload = response.json()
            except ValueError:
                payload = {"error": response.text or response.reason_phrase}
            message = payload.get("message") or payload.get("error") or "List append failed"
            raise ListAppendError(f"{response.status_code} {message}", status_code=response.status_code)

        try:
            return response.json()
        except ValueError:
            return {}


@lru_cache
def get_list_client() -> ListClient:
    settings = get_settings()
    return ListClient(settings.list_api_base_url, token=settings.list_api_token)
