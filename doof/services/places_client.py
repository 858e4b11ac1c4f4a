"""
Places proxy client

Talks to the backend proxy that fronts the Google Places API:
- GET /places/autocomplete?input=...  -> predictions
- GET /places/details?placeId=...     -> place details

The client only classifies failures; retrying is the resolver's job.
Transient failures (timeouts, connection errors, 5xx, 429, OVER_QUERY_LIMIT)
raise ``PlacesTransientError``; everything else raises ``PlacesClientError``.
"""

from __future__ import annotations

import logging
from functools import lru_cache
from typing import Any, Optional, Protocol

import httpx

from doof.core.config import get_settings
from doof.models.bulk_add import Candidate, ResolvedDetails, SearchResult

logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {408, 429, 500, 502, 503, 504}
RETRYABLE_PROVIDER_STATUSES = {"OVER_QUERY_LIMIT", "UNKNOWN_ERROR"}


class PlacesClientError(RuntimeError):
    """Non-retryable places failure (bad request, denied, unknown place id)."""

    def __init__(self, message: str, status_code: Optional[int] = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class PlacesTransientError(PlacesClientError):
    """Retryable places failure."""


class PlaceSearchProvider(Protocol):
    async def search(self, query: str) -> SearchResult:
        ...

    async def details(self, candidate_id: str) -> ResolvedDetails:
        ...


class PlacesClient:
    def __init__(
        self,
        base_url: str,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        if not base_url:
            raise PlacesClientError("Places proxy base URL required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                transport=self._transport,
                headers={"X-Places-Api-Request": "true"},
                limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    async def search(self, query: str) -> SearchResult:
        payload = await self._request(
            "/places/autocomplete",
            params={"input": query, "types": "establishment"},
        )
        status = payload.get("status") or "UNKNOWN_STATUS"
        if status == "ZERO_RESULTS":
            return SearchResult()
        self._raise_for_provider_status(status, "autocomplete")

        predictions = payload.get("predictions") or payload.get("data") or []
        candidates = []
        for raw in predictions:
            candidate_id = raw.get("place_id") or raw.get("candidateId")
            if not candidate_id:
                logger.warning("Skipping prediction without a place id: %s", raw)
                continue
            candidates.append(
                Candidate(
                    candidate_id=str(candidate_id),
                    display_description=raw.get("description") or "",
                )
            )
        return SearchResult(candidates=tuple(candidates))

    async def details(self, candidate_id: str) -> ResolvedDetails:
        payload = await self._request("/places/details", params={"placeId": candidate_id})
        self._raise_for_provider_status(payload.get("status") or "UNKNOWN_STATUS", "details")

        result = payload.get("result") or payload.get("data") or {}
        if not result:
            raise PlacesClientError(f"Place details missing for {candidate_id}")
        return ResolvedDetails(
            candidate_id=str(result.get("place_id") or result.get("candidateId") or candidate_id),
            display_name=result.get("name") or "",
            formatted_address=result.get("formatted_address") or result.get("formattedAddress") or "",
        )

    def _raise_for_provider_status(self, status: str, operation: str) -> None:
        if status == "OK":
            return
        if status in RETRYABLE_PROVIDER_STATUSES:
            raise PlacesTransientError(f"Places {operation} returned {status}")
        raise PlacesClientError(f"Places {operation} returned {status}")

    async def _request(self, path: str, params: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        url = f"{self.base_url}{path}"
        try:
            client = await self._get_client()
            response = await client.get(url, params=params)
        except httpx.TimeoutException as exc:
            raise PlacesTransientError(f"Places request timeout: {exc}") from exc
        except httpx.TransportError as exc:
            raise PlacesTransientError(f"Places connection error: {exc}") from exc

        if response.status_code in RETRYABLE_STATUS_CODES:
            raise PlacesTransientError(
                f"Places {path} failed: {response.status_code}", status_code=response.status_code
            )
        if response.status_code >= 400:
            raise PlacesClientError(
                f"Places {path} failed: {response.status_code} {response.text}",
                status_code=response.status_code,
            )

        try:
            return response.json()
        except ValueError as exc:
            raise PlacesClientError(f"Places {path} returned invalid JSON") from exc


@lru_cache
def get_places_client() -> PlacesClient:
    settings = get_settings()
    return PlacesClient(settings.places_base_url, timeout=settings.places_timeout_seconds)
