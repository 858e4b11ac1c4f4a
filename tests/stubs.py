"""Stub collaborators shared by the bulk-add tests."""

import asyncio
from typing import Dict, List, Optional, Sequence, Union

from doof.models.bulk_add import Candidate, ListAppendRequest, Neighborhood, ResolvedDetails, SearchResult
from doof.services.bulk_add_orchestrator import BulkAddOptions, BulkAddOrchestrator
from doof.services.list_client import ListAppendError
from doof.services.neighborhood_client import NeighborhoodLookupError
from doof.services.place_resolver import PlaceResolver, ResolverOptions
from doof.services.places_client import PlacesClientError


def make_candidates(*ids: str) -> List[Candidate]:
    return [Candidate(candidate_id=cid, display_description=f"{cid} description") for cid in ids]


def make_details(candidate_id: str, name: Optional[str] = None, address: str = "") -> ResolvedDetails:
    return ResolvedDetails(
        candidate_id=candidate_id,
        display_name=name or candidate_id.title(),
        formatted_address=address or "1 Main St, New York, NY 10001, USA",
    )


SearchOutcome = Union[Sequence[Candidate], Exception]


class StubPlacesProvider:
    """Search/details stub keyed by query and candidate id.

    A list value in ``searches`` is returned on every call; a list of outcomes
    in ``search_sequences`` is consumed one call at a time.
    """

    def __init__(
        self,
        searches: Optional[Dict[str, SearchOutcome]] = None,
        details: Optional[Dict[str, Union[ResolvedDetails, Exception]]] = None,
        *,
        search_sequences: Optional[Dict[str, List[SearchOutcome]]] = None,
        delays: Optional[Dict[str, float]] = None,
    ) -> None:
        self.searches = searches or {}
        self.details_by_id = details or {}
        self.search_sequences = search_sequences or {}
        self.delays = delays or {}
        self.search_calls: List[str] = []
        self.details_calls: List[str] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def search(self, query: str) -> SearchResult:
        self.search_calls.append(query)
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            delay = self.delays.get(query, 0.0)
            if delay:
                await asyncio.sleep(delay)
            if query in self.search_sequences and self.search_sequences[query]:
                outcome = self.search_sequences[query].pop(0)
            else:
                outcome = self.searches.get(query, [])
        finally:
            self.in_flight -= 1
        if isinstance(outcome, Exception):
            raise outcome
        return SearchResult(candidates=tuple(outcome))

    async def details(self, candidate_id: str) -> ResolvedDetails:
        self.details_calls.append(candidate_id)
        delay = self.delays.get(candidate_id, 0.0)
        if delay:
            await asyncio.sleep(delay)
        outcome = self.details_by_id.get(candidate_id)
        if outcome is None:
            raise PlacesClientError(f"Places details returned NOT_FOUND for {candidate_id}")
        if isinstance(outcome, Exception):
            raise outcome
        return outcome


class StubListAppender:
    def __init__(self, fail_names: Sequence[str] = (), delay: float = 0.0) -> None:
        self.fail_names = set(fail_names)
        self.delay = delay
        self.requests: List[ListAppendRequest] = []

    async def append(self, request: ListAppendRequest) -> dict:
        if self.delay:
            await asyncio.sleep(self.delay)
        if request.name in self.fail_names:
            raise ListAppendError(f"500 could not add {request.name}", status_code=500)
        self.requests.append(request)
        return {"id": len(self.requests), "name": request.name}


class StubNeighborhoodLookup:
    """Neighborhoods keyed by zipcode; zipcodes in ``failing`` raise a lookup error."""

    def __init__(self, by_zipcode: Optional[Dict[str, Neighborhood]] = None, failing: Sequence[str] = ()) -> None:
        self.neighborhoods = by_zipcode or {}
        self.failing = set(failing)
        self.calls: List[str] = []

    async def by_zipcode(self, zipcode: str) -> Optional[Neighborhood]:
        self.calls.append(zipcode)
        if zipcode in self.failing:
            raise NeighborhoodLookupError(f"503 lookup unavailable for {zipcode}", status_code=503)
        return self.neighborhoods.get(zipcode)


def build_orchestrator(
    provider: StubPlacesProvider,
    appender: Optional[StubListAppender] = None,
    *,
    max_retries: int = 3,
    retry_delay_ms: int = 0,
    max_concurrent_resolutions: int = 5,
    max_items_per_list: int = 50,
    neighborhoods: Optional[StubNeighborhoodLookup] = None,
) -> BulkAddOrchestrator:
    resolver = PlaceResolver(
        provider,
        ResolverOptions(max_retries=max_retries, retry_delay_ms=retry_delay_ms),
        neighborhoods=neighborhoods,
    )
    return BulkAddOrchestrator(
        resolver,
        appender or StubListAppender(),
        BulkAddOptions(
            max_concurrent_resolutions=max_concurrent_resolutions,
            max_items_per_list=max_items_per_list,
        ),
    )


