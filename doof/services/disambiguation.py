from __future__ import annotations

import logging
from typing import Iterable, List, Optional

from doof.models.bulk_add import (
    InvalidStateTransition,
    ResolutionErrorKind,
    ResolutionState,
    ResolutionStatus,
)
from doof.services.place_resolver import DetailsUnavailableError, PlaceResolver

logger = logging.getLogger(__name__)


class InvalidChoiceError(RuntimeError):
    """A choice was committed for an entry that is not waiting for one, or for an unknown candidate."""

    def __init__(self, index: int, message: str) -> None:
        super().__init__(message)
        self.index = index


class DisambiguationTracker:
    """
    Resolution state per batch position.

    Resolution tasks write their own entry through ``record``; user choices go
    through ``commit_choice``. Each position is written by one task only.
    """

    def __init__(
        self,
        size: int,
        resolver: Optional[PlaceResolver] = None,
        states: Optional[Iterable[ResolutionState]] = None,
    ) -> None:
        self.resolver = resolver
        if states is not None:
            self._states: List[ResolutionState] = list(states)
            if len(self._states) != size:
                raise ValueError(f"expected {size} states, got {len(self._states)}")
        else:
            self._states = [ResolutionState() for _ in range(size)]

    def __len__(self) -> int:
        return len(self._states)

    @property
    def states(self) -> List[ResolutionState]:
        return list(self._states)

    def get_state(self, index: int) -> ResolutionState:
        self._check_index(index)
        return self._states[index]

    def record(self, index: int, state: ResolutionState) -> None:
        self._check_index(index)
        current = self._states[index]
        if current.status is not ResolutionStatus.PENDING:
            raise InvalidStateTransition(f"entry {index} already left pending ({current.status.value})")
        self._states[index] = state

    async def commit_choice(self, index: int, candidate_id: str) -> ResolutionState:
        if not 0 <= index < len(self._states):
            raise InvalidChoiceError(index, f"no entry at position {index}")
        state = self._states[index]
        if state.status is not ResolutionStatus.NEEDS_CHOICE:
            raise InvalidChoiceError(index, f"entry {index} is {state.status.value}, not waiting for a choice")
        if state.find_candidate(candidate_id) is None:
            raise InvalidChoiceError(index, f"candidate {candidate_id!r} is not an option for entry {index}")
        if self.resolver is None:
            raise RuntimeError("DisambiguationTracker needs a resolver to commit choices")

        # Attempts are counted on a working copy so a cancelled fetch leaves the entry untouched
        working = state.copy()
        try:
            details = await self.resolver.fetch_details(candidate_id, working)
        except DetailsUnavailableError as exc:
            working.mark_failed(ResolutionErrorKind.DETAILS_UNAVAILABLE, str(exc))
        else:
            working.mark_resolved(details)

        self._states[index] = working
        logger.info("Entry %d choice %s -> %s", index, candidate_id, working.status.value)
        return working

    def needs_choice_indices(self) -> List[int]:
        return self._indices_with(ResolutionStatus.NEEDS_CHOICE)

    def failed_indices(self) -> List[int]:
        return self._indices_with(ResolutionStatus.FAILED)

    def resolved_indices(self) -> List[int]:
        return self._indices_with(ResolutionStatus.RESOLVED)

    def pending_indices(self) -> List[int]:
        return self._indices_with(ResolutionStatus.PENDING)

    def is_settled(self) -> bool:
        """True when every entry is resolved or failed."""
        return all(state.is_terminal for state in self._states)

    def _indices_with(self, status: ResolutionStatus) -> List[int]:
        return [i for i, state in enumerate(self._states) if state.status is status]

    def _check_index(self, index: int) -> None:
        if not 0 <= index < len(self._states):
            raise IndexError(f"no entry at position {index}")
