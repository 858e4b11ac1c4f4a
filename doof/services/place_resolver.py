"""
Place resolver for bulk-add entries.

Searches the places proxy for one draft entry and settles its resolution
state: one match is resolved through a details call, several matches wait for
the user's choice, none (or a search that keeps failing) is a failure.
A resolved place is tagged with the neighborhood covering its zipcode when a
lookup is configured; a missing neighborhood only adds a note.

Both calls share the same policy: at most ``max_retries`` attempts with a
fixed delay between them, and only transient failures are retried.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, replace
from typing import Awaitable, Callable, Optional, TypeVar

from doof.core.config import Settings
from doof.models.bulk_add import (
    DraftEntry,
    ResolutionErrorKind,
    ResolutionState,
    ResolvedDetails,
    SearchResult,
)
from doof.services.neighborhood_client import NeighborhoodLookup, NeighborhoodLookupError
from doof.services.places_client import PlaceSearchProvider, PlacesClientError, PlacesTransientError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class DetailsUnavailableError(RuntimeError):
    """Details could not be fetched for a candidate."""


@dataclass
class ResolverOptions:
    max_retries: int = 3
    retry_delay_ms: int = 1000

    @classmethod
    def from_settings(cls, settings: Settings) -> "ResolverOptions":
        return cls(
            max_retries=settings.bulk_add_max_retries,
            retry_delay_ms=settings.bulk_add_retry_delay_ms,
        )


def build_query(entry: DraftEntry) -> str:
    return ", ".join(part for part in (entry.name, entry.location_hint) if part)


class PlaceResolver:
    def __init__(
        self,
        provider: PlaceSearchProvider,
        options: Optional[ResolverOptions] = None,
        neighborhoods: Optional[NeighborhoodLookup] = None,
    ) -> None:
        self.provider = provider
        self.neighborhoods = neighborhoods
        self.options = options or ResolverOptions()
        self.max_attempts = max(1, self.options.max_retries)

    async def resolve(self, entry: DraftEntry) -> ResolutionState:
        state = ResolutionState()
        query = build_query(entry)

        try:
            result: SearchResult = await self._call_with_retry(
                lambda: self.provider.search(query), state, f"search {query!r}"
            )
        except PlacesClientError as exc:
            logger.info("Search failed for %r after %d attempts: %s", query, state.attempts, exc)
            state.mark_failed(ResolutionErrorKind.NOT_FOUND, str(exc))
            return state

        candidates = result.candidates
        if not candidates:
            logger.info("No places found for %r", query)
            state.mark_failed(ResolutionErrorKind.NOT_FOUND, "No places found")
            return state

        if len(candidates) > 1:
            logger.debug("%d candidates for %r, waiting for a choice", len(candidates), query)
            state.mark_needs_choice(candidates)
            return state

        try:
            details = await self.fetch_details(candidates[0].candidate_id, state)
        except DetailsUnavailableError as exc:
            state.mark_failed(ResolutionErrorKind.DETAILS_UNAVAILABLE, str(exc))
            return state

        state.mark_resolved(details)
        return state

    async def fetch_details(self, candidate_id: str, state: ResolutionState) -> ResolvedDetails:
        """Fetch details for one candidate, counting attempts on ``state``.

        Raises ``DetailsUnavailableError`` once retries are exhausted or the
        candidate is rejected by the provider. ``state`` is not transitioned.
        """
        try:
            details = await self._call_with_retry(
                lambda: self.provider.details(candidate_id), state, f"details {candidate_id}"
            )
        except PlacesClientError as exc:
            logger.info("Details unavailable for %s after %d attempts: %s", candidate_id, state.attempts, exc)
            raise DetailsUnavailableError(str(exc)) from exc
        return await self.attach_neighborhood(details)

    async def attach_neighborhood(self, details: ResolvedDetails) -> ResolvedDetails:
        """Add the neighborhood for the place's zipcode, or a note saying why there is none."""
        if self.neighborhoods is None:
            return details

        zipcode = details.address.zipcode
        if not zipcode:
            return replace(details, note="no zipcode to look up a neighborhood")
        try:
            neighborhood = await self.neighborhoods.by_zipcode(zipcode)
        except NeighborhoodLookupError as exc:
            logger.warning("Neighborhood lookup failed for %s (%s): %s", details.candidate_id, zipcode, exc)
            return replace(details, note=f"neighborhood lookup failed: {exc}")
        if neighborhood is None:
            return replace(details, note=f"no neighborhood assigned for zipcode {zipcode}")
        return replace(details, neighborhood=neighborhood)

    async def _call_with_retry(
        self,
        call: Callable[[], Awaitable[T]],
        state: ResolutionState,
        label: str,
    ) -> T:
        delay_seconds = self.options.retry_delay_ms / 1000.0
        for attempt in range(self.max_attempts):
            state.attempts += 1
            try:
                return await call()
            except PlacesTransientError as exc:
                if attempt + 1 >= self.max_attempts:
                    raise
                logger.warning(
                    "Places %s failed (attempt %d/%d), retrying in %.1fs: %s",
                    label,
                    attempt + 1,
                    self.max_attempts,
                    delay_seconds,
                    exc,
                )
                await asyncio.sleep(delay_seconds)

        raise PlacesClientError(f"Max retries exceeded for {label}")
