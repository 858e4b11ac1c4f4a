from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, List, Optional, Sequence, Tuple

from doof.core.config import DEFAULT_FIELD_ORDER


class ResolutionStatus(str, Enum):
    PENDING = "pending"
    RESOLVED = "resolved"
    NEEDS_CHOICE = "needs_choice"
    FAILED = "failed"


class ResolutionErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    DETAILS_UNAVAILABLE = "details_unavailable"


class SubmissionStatus(str, Enum):
    SUBMITTED = "submitted"
    SKIPPED_DUE_TO_FAILURE = "skipped_due_to_failure"
    SKIPPED_DUE_TO_LIMIT = "skipped_due_to_limit"


class InvalidStateTransition(RuntimeError):
    """Raised when a resolution state is moved along an edge the state machine does not allow."""


_ALLOWED_TRANSITIONS = {
    ResolutionStatus.PENDING: {
        ResolutionStatus.RESOLVED,
        ResolutionStatus.NEEDS_CHOICE,
        ResolutionStatus.FAILED,
    },
    ResolutionStatus.NEEDS_CHOICE: {ResolutionStatus.RESOLVED, ResolutionStatus.FAILED},
    ResolutionStatus.RESOLVED: set(),
    ResolutionStatus.FAILED: set(),
}


@dataclass(frozen=True)
class DraftEntry:
    """One parsed, unresolved line segment of a bulk-add paste."""

    raw_text: str
    name: str
    description_hint: str = ""
    location_hint: str = ""
    tags: FrozenSet[str] = frozenset()
    line_number: int = 0

    def render(self, field_order: Sequence[str] = DEFAULT_FIELD_ORDER) -> str:
        text = ", ".join(getattr(self, name) for name in field_order)
        if self.tags:
            text = f"{text} " + " ".join(f"#{tag}" for tag in sorted(self.tags))
        return text

    def to_dict(self) -> Dict[str, Any]:
        return {
            "raw_text": self.raw_text,
            "name": self.name,
            "description_hint": self.description_hint,
            "location_hint": self.location_hint,
            "tags": sorted(self.tags),
            "line_number": self.line_number,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DraftEntry":
        return cls(
            raw_text=data.get("raw_text", ""),
            name=data.get("name", ""),
            description_hint=data.get("description_hint", ""),
            location_hint=data.get("location_hint", ""),
            tags=frozenset(data.get("tags") or []),
            line_number=int(data.get("line_number") or 0),
        )


@dataclass(frozen=True)
class Candidate:
    candidate_id: str
    display_description: str


@dataclass(frozen=True)
class AddressComponents:
    street_number: str = ""
    route: str = ""
    city: str = ""
    state: str = ""
    zipcode: str = ""


@dataclass(frozen=True)
class Neighborhood:
    neighborhood_id: int
    name: str
    city_name: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {"neighborhood_id": self.neighborhood_id, "name": self.name, "city_name": self.city_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Neighborhood":
        return cls(
            neighborhood_id=int(data["neighborhood_id"]),
            name=data.get("name", ""),
            city_name=data.get("city_name", ""),
        )


@dataclass(frozen=True)
class ResolvedDetails:
    """Confirmed place. ``note`` explains a missing neighborhood; it never fails the entry."""

    candidate_id: str
    display_name: str
    formatted_address: str = ""
    neighborhood: Optional[Neighborhood] = None
    note: Optional[str] = None

    @property
    def address(self) -> AddressComponents:
        return parse_address(self.formatted_address)


def parse_address(formatted_address: str) -> AddressComponents:
    """Split a "123 Main St, City, ST 12345, Country" style address into parts.

    Missing parts come back empty; the country segment is ignored.
    """
    if not formatted_address:
        return AddressComponents()

    parts = [part.strip() for part in formatted_address.split(",")]
    street_number, _, route = parts[0].partition(" ")
    city = parts[1] if len(parts) > 1 else ""
    state = zipcode = ""
    if len(parts) > 2:
        state_parts = parts[2].split()
        state = state_parts[0] if state_parts else ""
        zipcode = state_parts[1] if len(state_parts) > 1 else ""
    return AddressComponents(
        street_number=street_number,
        route=route.strip(),
        city=city,
        state=state,
        zipcode=zipcode,
    )


@dataclass
class ResolutionState:
    """Mutable per-entry resolution record.

    Exactly one of ``candidates``/``resolved``/``last_error`` is populated,
    matching ``status``. ``PENDING`` populates none of them.
    """

    status: ResolutionStatus = ResolutionStatus.PENDING
    candidates: Optional[Tuple[Candidate, ...]] = None
    resolved: Optional[ResolvedDetails] = None
    attempts: int = 0
    last_error: Optional[ResolutionErrorKind] = None
    error_detail: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (ResolutionStatus.RESOLVED, ResolutionStatus.FAILED)

    def _transition(self, target: ResolutionStatus) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.status]:
            raise InvalidStateTransition(f"cannot move from {self.status.value} to {target.value}")
        self.status = target

    def mark_resolved(self, details: ResolvedDetails) -> None:
        self._transition(ResolutionStatus.RESOLVED)
        self.resolved = details
        self.candidates = None
        self.last_error = None
        self.error_detail = None

    def mark_needs_choice(self, candidates: Sequence[Candidate]) -> None:
        if len(candidates) < 2:
            raise InvalidStateTransition("a choice needs at least two candidates")
        self._transition(ResolutionStatus.NEEDS_CHOICE)
        self.candidates = tuple(candidates)

    def mark_failed(self, kind: ResolutionErrorKind, detail: Optional[str] = None) -> None:
        self._transition(ResolutionStatus.FAILED)
        self.last_error = kind
        self.error_detail = detail
        self.candidates = None
        self.resolved = None

    def find_candidate(self, candidate_id: str) -> Optional[Candidate]:
        for candidate in self.candidates or ():
            if candidate.candidate_id == candidate_id:
                return candidate
        return None

    def copy(self) -> "ResolutionState":
        return ResolutionState(
            status=self.status,
            candidates=self.candidates,
            resolved=self.resolved,
            attempts=self.attempts,
            last_error=self.last_error,
            error_detail=self.error_detail,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "candidates": [
                {"candidate_id": c.candidate_id, "display_description": c.display_description}
                for c in self.candidates
            ]
            if self.candidates is not None
            else None,
            "resolved": {
                "candidate_id": self.resolved.candidate_id,
                "display_name": self.resolved.display_name,
                "formatted_address": self.resolved.formatted_address,
                "neighborhood": self.resolved.neighborhood.to_dict()
                if self.resolved.neighborhood is not None
                else None,
                "note": self.resolved.note,
            }
            if self.resolved is not None
            else None,
            "attempts": self.attempts,
            "last_error": self.last_error.value if self.last_error else None,
            "error_detail": self.error_detail,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResolutionState":
        candidates = data.get("candidates")
        resolved = data.get("resolved")
        last_error = data.get("last_error")
        return cls(
            status=ResolutionStatus(data.get("status", ResolutionStatus.PENDING.value)),
            candidates=tuple(Candidate(**c) for c in candidates) if candidates is not None else None,
            resolved=_resolved_from_dict(resolved) if resolved is not None else None,
            attempts=int(data.get("attempts") or 0),
            last_error=ResolutionErrorKind(last_error) if last_error else None,
            error_detail=data.get("error_detail"),
        )


def _resolved_from_dict(data: Dict[str, Any]) -> ResolvedDetails:
    neighborhood = data.get("neighborhood")
    return ResolvedDetails(
        candidate_id=data["candidate_id"],
        display_name=data.get("display_name", ""),
        formatted_address=data.get("formatted_address", ""),
        neighborhood=Neighborhood.from_dict(neighborhood) if neighborhood else None,
        note=data.get("note"),
    )


@dataclass(frozen=True)
class SearchResult:
    """Parsed autocomplete response. ``candidates`` keeps provider order."""

    candidates: Tuple[Candidate, ...] = ()


@dataclass(frozen=True)
class ListAppendRequest:
    list_id: str
    name: str
    description: str
    location: str
    source_candidate_id: str
    tags: Tuple[str, ...] = ()
    neighborhood_id: Optional[int] = None

    def to_payload(self) -> Dict[str, Any]:
        return {
            "listId": self.list_id,
            "name": self.name,
            "description": self.description,
            "location": self.location,
            "sourceCandidateId": self.source_candidate_id,
            "tags": list(self.tags),
            "neighborhoodId": self.neighborhood_id,
        }


@dataclass(frozen=True)
class EntryOutcome:
    index: int
    entry: DraftEntry
    status: SubmissionStatus
    candidate_id: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class BatchOutcome:
    results: List[EntryOutcome] = field(default_factory=list)

    @property
    def submitted(self) -> int:
        return sum(1 for r in self.results if r.status is SubmissionStatus.SUBMITTED)

    @property
    def failed(self) -> int:
        return sum(1 for r in self.results if r.status is SubmissionStatus.SKIPPED_DUE_TO_FAILURE)

    @property
    def skipped_for_limit(self) -> int:
        return sum(1 for r in self.results if r.status is SubmissionStatus.SKIPPED_DUE_TO_LIMIT)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "results": [
                {
                    "index": r.index,
                    "entry": r.entry.to_dict(),
                    "status": r.status.value,
                    "candidate_id": r.candidate_id,
                    "reason": r.reason,
                }
                for r in self.results
            ],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BatchOutcome":
        return cls(
            results=[
                EntryOutcome(
                    index=int(r["index"]),
                    entry=DraftEntry.from_dict(r["entry"]),
                    status=SubmissionStatus(r["status"]),
                    candidate_id=r.get("candidate_id"),
                    reason=r.get("reason"),
                )
                for r in data.get("results", [])
            ]
        )
