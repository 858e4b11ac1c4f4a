from __future__ import annotations

import logging
import re
from functools import lru_cache
from typing import Any, Optional, Protocol

import httpx

from doof.core.config import get_settings
from doof.models.bulk_add import Neighborhood

logger = logging.getLogger(__name__)

ZIPCODE_PATTERN = re.compile(r"^\d{5}$")


class NeighborhoodLookupError(RuntimeError):
    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class NeighborhoodLookup(Protocol):
    async def by_zipcode(self, zipcode: str) -> Optional[Neighborhood]:
        ...


class NeighborhoodClient:
    """Finds the neighborhood covering a zipcode. The first match wins; no match is None."""

    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(timeout=self.timeout, transport=self._transport)
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def by_zipcode(self, zipcode: str) -> Optional[Neighborhood]:
        if not ZIPCODE_PATTERN.match(zipcode or ""):
            logger.debug("Skipping neighborhood lookup for invalid zipcode %r", zipcode)
            return None

        url = f"{self.base_url}/neighborhoods/by-zipcode/{zipcode}"
        try:
            client = await self._get_client()
            response = await client.get(url)
        except httpx.HTTPError as exc:
            raise NeighborhoodLookupError(f"Neighborhood lookup failed: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code >= 400:
            raise NeighborhoodLookupError(
                f"Neighborhood lookup failed: {response.status_code}", status_code=response.status_code
            )

        try:
            payload: Any = response.json()
        except ValueError as exc:
            raise NeighborhoodLookupError("Neighborhood lookup returned invalid JSON") from exc

        if isinstance(payload, dict):
            payload = payload.get("data", payload)
        rows = payload if isinstance(payload, list) else [payload]
        for row in rows:
            if isinstance(row, dict) and row.get("id") is not None:
                return Neighborhood(
                    neighborhood_id=int(row["id"]),
                    name=row.get("name") or "",
                    city_name=row.get("city_name") or "",
                )
        return None


@lru_cache
def get_neighborhood_client() -> Optional[NeighborhoodClient]:
    settings = get_settings()
    if not settings.neighborhood_api_base_url:
        return None
    return NeighborhoodClient(settings.neighborhood_api_base_url, timeout=settings.places_timeout_seconds)
