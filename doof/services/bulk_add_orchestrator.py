"""
Bulk add orchestrator

Drives one bulk-add batch end to end:
1. parse the paste into draft entries
2. resolve every entry with a bounded worker pool
3. pause while any entry waits for a user choice
4. apply the list capacity limit, earliest entries first
5. append each resolved entry to the list, one call per entry

Per-entry failures never stop the batch; the outcome keeps input order.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Any, Dict, List, Optional, Sequence
from uuid import uuid4

from doof.core.config import DEFAULT_FIELD_ORDER, Settings, get_settings
from doof.models.bulk_add import (
    BatchOutcome,
    DraftEntry,
    EntryOutcome,
    ListAppendRequest,
    ResolutionErrorKind,
    ResolutionState,
    ResolutionStatus,
    SubmissionStatus,
)
from doof.services import line_parser
from doof.services.disambiguation import DisambiguationTracker
from doof.services.list_client import ListAppender, ListAppendError, get_list_client
from doof.services.neighborhood_client import get_neighborhood_client
from doof.services.place_resolver import PlaceResolver, ResolverOptions
from doof.services.places_client import get_places_client

logger = logging.getLogger(__name__)

LIMIT_REASON = "list_limit_reached"


class BatchNotReadyError(RuntimeError):
    """The batch cannot be submitted yet (choices pending, still resolving, or cancelled)."""


@dataclass
class BulkAddOptions:
    max_concurrent_resolutions: int = 5
    max_items_per_list: int = 50
    field_order: Sequence[str] = tuple(DEFAULT_FIELD_ORDER)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BulkAddOptions":
        return cls(
            max_concurrent_resolutions=settings.bulk_add_max_concurrent_resolutions,
            max_items_per_list=settings.bulk_add_max_items_per_list,
            field_order=tuple(settings.bulk_add_field_order),
        )


@dataclass
class BulkAddBatch:
    """One bulk-add submission: parsed entries, their resolution states and the final outcome."""

    batch_id: str
    list_id: str
    existing_item_count: int
    entries: List[DraftEntry]
    tracker: DisambiguationTracker
    duplicates: Dict[int, int] = field(default_factory=dict)
    cancelled: bool = False
    outcome: Optional[BatchOutcome] = None
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @property
    def status(self) -> str:
        if self.outcome is not None:
            return "completed"
        if self.cancelled:
            return "cancelled"
        if self.tracker.pending_indices():
            return "resolving"
        if self.tracker.needs_choice_indices():
            return "awaiting_choices"
        return "ready"

    @property
    def awaiting_choices(self) -> bool:
        return self.outcome is None and bool(self.tracker.needs_choice_indices())

    def to_record(self) -> Dict[str, Any]:
        return {
            "batchId": self.batch_id,
            "listId": self.list_id,
            "existingItemCount": self.existing_item_count,
            "entries": [entry.to_dict() for entry in self.entries],
            "states": [state.to_dict() for state in self.tracker.states],
            "duplicates": {str(k): v for k, v in self.duplicates.items()},
            "cancelled": self.cancelled,
            "outcome": self.outcome.to_dict() if self.outcome is not None else None,
            "createdAt": self.created_at,
        }


class BulkAddOrchestrator:
    def __init__(
        self,
        resolver: PlaceResolver,
        appender: ListAppender,
        options: Optional[BulkAddOptions] = None,
    ) -> None:
        self.resolver = resolver
        self.appender = appender
        self.options = options or BulkAddOptions()

    def prepare(self, raw_input: str, list_id: str, existing_item_count: int) -> BulkAddBatch:
        """Parse the paste into a new batch; no external calls are made."""
        entries = line_parser.parse(raw_input, field_order=self.options.field_order)
        return BulkAddBatch(
            batch_id=uuid4().hex,
            list_id=str(list_id),
            existing_item_count=max(0, int(existing_item_count)),
            entries=entries,
            tracker=DisambiguationTracker(len(entries), resolver=self.resolver),
            duplicates=line_parser.find_duplicates(entries),
        )

    def restore(self, record: Dict[str, Any]) -> BulkAddBatch:
        """Rebuild a batch saved with ``BulkAddBatch.to_record``."""
        entries = [DraftEntry.from_dict(raw) for raw in record.get("entries", [])]
        states = [ResolutionState.from_dict(raw) for raw in record.get("states", [])]
        outcome = record.get("outcome")
        return BulkAddBatch(
            batch_id=record["batchId"],
            list_id=record["listId"],
            existing_item_count=int(record.get("existingItemCount") or 0),
            entries=entries,
            tracker=DisambiguationTracker(len(entries), resolver=self.resolver, states=states),
            duplicates={int(k): int(v) for k, v in (record.get("duplicates") or {}).items()},
            cancelled=bool(record.get("cancelled")),
            outcome=BatchOutcome.from_dict(outcome) if outcome is not None else None,
            created_at=record.get("createdAt") or datetime.now(timezone.utc).isoformat(),
        )

    async def run(self, raw_input: str, list_id: str, existing_item_count: int) -> BulkAddBatch:
        """Parse, resolve and, when no choice is pending, submit.

        ``batch.outcome`` stays None while entries wait for a choice; commit
        them with ``commit_choice`` and finish with ``resume``.
        """
        batch = self.prepare(raw_input, list_id, existing_item_count)
        await self.process(batch)
        return batch

    async def process(self, batch: BulkAddBatch) -> BulkAddBatch:
        if not batch.entries:
            batch.outcome = BatchOutcome()
            logger.info("Bulk add batch %s has no entries", batch.batch_id)
            return batch

        await self._resolve_all(batch)

        waiting = batch.tracker.needs_choice_indices()
        if waiting:
            logger.info(
                "Bulk add batch %s paused: %d entries need a choice", batch.batch_id, len(waiting)
            )
            return batch

        await self._submit(batch)
        return batch

    async def commit_choice(self, batch: BulkAddBatch, index: int, candidate_id: str) -> ResolutionState:
        if batch.cancelled:
            raise BatchNotReadyError(f"batch {batch.batch_id} was cancelled")
        return await batch.tracker.commit_choice(index, candidate_id)

    async def resume(self, batch: BulkAddBatch) -> BatchOutcome:
        if batch.outcome is not None:
            return batch.outcome
        if batch.cancelled:
            raise BatchNotReadyError(f"batch {batch.batch_id} was cancelled")
        if not batch.tracker.is_settled():
            raise BatchNotReadyError(
                f"batch {batch.batch_id} has {len(batch.tracker.needs_choice_indices())} entries "
                f"waiting for a choice and {len(batch.tracker.pending_indices())} unresolved"
            )
        return await self._submit(batch)

    def cancel(self, batch: BulkAddBatch) -> None:
        batch.cancelled = True

    async def _resolve_all(self, batch: BulkAddBatch) -> None:
        entries = batch.entries
        tracker = batch.tracker
        todo = tracker.pending_indices()
        if not todo:
            return

        max_concurrency = max(1, min(self.options.max_concurrent_resolutions, len(todo)))
        cursor = 0
        lock = asyncio.Lock()

        async def worker():
            nonlocal cursor

            while True:
                async with lock:
                    if cursor >= len(todo):
                        return
                    index = todo[cursor]
                    cursor += 1

                entry = entries[index]
                try:
                    state = await self.resolver.resolve(entry)
                except Exception as e:
                    logger.warning("Unexpected error resolving entry %d (%r): %s", index, entry.name, e)
                    state = ResolutionState()
                    state.mark_failed(ResolutionErrorKind.NOT_FOUND, str(e))
                tracker.record(index, state)

        logger.info(
            "Resolving %d entries for batch %s (concurrency=%d)", len(todo), batch.batch_id, max_concurrency
        )
        workers = [asyncio.create_task(worker()) for _ in range(max_concurrency)]
        try:
            await asyncio.gather(*workers)
        except asyncio.CancelledError:
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            batch.cancelled = True
            logger.info(
                "Bulk add batch %s cancelled with %d entries unresolved",
                batch.batch_id,
                len(tracker.pending_indices()),
            )
            raise

        logger.info(
            "Batch %s resolved: %d resolved, %d need a choice, %d failed",
            batch.batch_id,
            len(tracker.resolved_indices()),
            len(tracker.needs_choice_indices()),
            len(tracker.failed_indices()),
        )

    async def _submit(self, batch: BulkAddBatch) -> BatchOutcome:
        capacity = max(0, self.options.max_items_per_list - batch.existing_item_count)
        outcome = BatchOutcome()

        for index, entry in enumerate(batch.entries):
            state = batch.tracker.get_state(index)

            if state.status is ResolutionStatus.FAILED:
                outcome.results.append(
                    EntryOutcome(
                        index=index,
                        entry=entry,
                        status=SubmissionStatus.SKIPPED_DUE_TO_FAILURE,
                        reason=state.last_error.value if state.last_error else None,
                    )
                )
                continue

            details = state.resolved
            if state.status is not ResolutionStatus.RESOLVED or details is None:
                raise BatchNotReadyError(f"entry {index} is {state.status.value}")

            if capacity <= 0:
                outcome.results.append(
                    EntryOutcome(
                        index=index,
                        entry=entry,
                        status=SubmissionStatus.SKIPPED_DUE_TO_LIMIT,
                        candidate_id=details.candidate_id,
                        reason=LIMIT_REASON,
                    )
                )
                continue
            capacity -= 1

            request = ListAppendRequest(
                list_id=batch.list_id,
                name=details.display_name or entry.name,
                description=entry.description_hint,
                location=details.formatted_address or entry.location_hint,
                source_candidate_id=details.candidate_id,
                tags=tuple(sorted(entry.tags)),
                neighborhood_id=details.neighborhood.neighborhood_id if details.neighborhood else None,
            )
            try:
                await self.appender.append(request)
            except ListAppendError as exc:
                logger.warning("Append failed for entry %d (%r): %s", index, entry.name, exc)
                outcome.results.append(
                    EntryOutcome(
                        index=index,
                        entry=entry,
                        status=SubmissionStatus.SKIPPED_DUE_TO_FAILURE,
                        candidate_id=details.candidate_id,
                        reason=f"append_failed: {exc}",
                    )
                )
                continue

            outcome.results.append(
                EntryOutcome(
                    index=index,
                    entry=entry,
                    status=SubmissionStatus.SUBMITTED,
                    candidate_id=details.candidate_id,
                )
            )

        batch.outcome = outcome
        logger.info(
            "Bulk add batch %s submitted to list %s: %d submitted, %d failed, %d skipped for limit",
            batch.batch_id,
            batch.list_id,
            outcome.submitted,
            outcome.failed,
            outcome.skipped_for_limit,
        )
        return outcome


@lru_cache
def get_bulk_add_orchestrator() -> BulkAddOrchestrator:
    settings = get_settings()
    resolver = PlaceResolver(
        get_places_client(),
        ResolverOptions.from_settings(settings),
        neighborhoods=get_neighborhood_client(),
    )
    return BulkAddOrchestrator(resolver, get_list_client(), BulkAddOptions.from_settings(settings))
