"""
Bulk Add API Routes

POST   /api/bulk-add                      - parse + resolve a paste, submit when unambiguous
GET    /api/bulk-add/{batch_id}           - current batch snapshot
POST   /api/bulk-add/{batch_id}/choices   - commit a candidate choice for one entry
POST   /api/bulk-add/{batch_id}/submit    - submit a batch once every choice is made
DELETE /api/bulk-add/{batch_id}           - discard a batch
"""
from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from doof.models.bulk_add_api import (
    AddressView,
    BatchOutcomeView,
    BatchSnapshot,
    BulkAddRequest,
    CandidateView,
    ChoiceRequest,
    EntryOutcomeView,
    EntryView,
    NeighborhoodView,
    ResolvedView,
)
from doof.services.batch_repository import BatchBusyError, BatchRecord, BatchRepository, get_batch_repository
from doof.services.bulk_add_orchestrator import (
    BatchNotReadyError,
    BulkAddBatch,
    BulkAddOrchestrator,
    get_bulk_add_orchestrator,
)
from doof.middleware.request_id import bind_batch_id
from doof.services.disambiguation import InvalidChoiceError

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/bulk-add", tags=["bulk-add"])


def build_snapshot(batch: BulkAddBatch) -> BatchSnapshot:
    entries = []
    for index, entry in enumerate(batch.entries):
        state = batch.tracker.get_state(index)
        resolved = None
        if state.resolved is not None:
            address = state.resolved.address
            neighborhood = state.resolved.neighborhood
            resolved = ResolvedView(
                candidate_id=state.resolved.candidate_id,
                name=state.resolved.display_name,
                formatted_address=state.resolved.formatted_address,
                address=AddressView(
                    street_number=address.street_number,
                    route=address.route,
                    city=address.city,
                    state=address.state,
                    zipcode=address.zipcode,
                ),
                neighborhood=NeighborhoodView(
                    neighborhood_id=neighborhood.neighborhood_id,
                    name=neighborhood.name,
                    city_name=neighborhood.city_name,
                )
                if neighborhood is not None
                else None,
                note=state.resolved.note,
            )
        entries.append(
            EntryView(
                index=index,
                line_number=entry.line_number,
                raw_text=entry.raw_text,
                name=entry.name,
                description_hint=entry.description_hint,
                location_hint=entry.location_hint,
                tags=sorted(entry.tags),
                status=state.status.value,
                attempts=state.attempts,
                candidates=[
                    CandidateView(candidate_id=c.candidate_id, description=c.display_description)
                    for c in state.candidates
                ]
                if state.candidates is not None
                else None,
                resolved=resolved,
                error=state.last_error.value if state.last_error else None,
                error_detail=state.error_detail,
                duplicate_of=batch.duplicates.get(index),
            )
        )

    outcome = None
    if batch.outcome is not None:
        outcome = BatchOutcomeView(
            results=[
                EntryOutcomeView(
                    index=r.index,
                    name=r.entry.name,
                    status=r.status.value,
                    candidate_id=r.candidate_id,
                    reason=r.reason,
                )
                for r in batch.outcome.results
            ],
            submitted=batch.outcome.submitted,
            failed=batch.outcome.failed,
            skipped_for_limit=batch.outcome.skipped_for_limit,
        )

    return BatchSnapshot(
        batch_id=batch.batch_id,
        list_id=batch.list_id,
        status=batch.status,
        existing_item_count=batch.existing_item_count,
        entries=entries,
        needs_choice=batch.tracker.needs_choice_indices(),
        failed=batch.tracker.failed_indices(),
        outcome=outcome,
    )


async def _load_batch(
    batch_id: str,
    repository: BatchRepository,
    orchestrator: BulkAddOrchestrator,
) -> BulkAddBatch:
    record = await repository.get(batch_id)
    if not record:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="batch not found or expired")
    return orchestrator.restore(record)


async def _update_batch(batch_id: str, repository: BatchRepository, apply) -> BatchRecord:
    try:
        record = await repository.update(batch_id, apply)
    except (InvalidChoiceError, BatchNotReadyError, BatchBusyError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if record is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="batch not found or expired")
    return record


@router.post("", response_model=BatchSnapshot, response_model_by_alias=True, status_code=201)
async def create_batch(
    request: BulkAddRequest,
    orchestrator: BulkAddOrchestrator = Depends(get_bulk_add_orchestrator),
    repository: BatchRepository = Depends(get_batch_repository),
) -> BatchSnapshot:
    batch = orchestrator.prepare(request.raw_input, request.list_id, request.existing_item_count)
    with bind_batch_id(batch.batch_id):
        await orchestrator.process(batch)
        await repository.save(batch.to_record())
    return build_snapshot(batch)


@router.get("/{batch_id}", response_model=BatchSnapshot, response_model_by_alias=True)
async def get_batch(
    batch_id: str,
    orchestrator: BulkAddOrchestrator = Depends(get_bulk_add_orchestrator),
    repository: BatchRepository = Depends(get_batch_repository),
) -> BatchSnapshot:
    batch = await _load_batch(batch_id, repository, orchestrator)
    return build_snapshot(batch)


@router.post("/{batch_id}/choices", response_model=BatchSnapshot, response_model_by_alias=True)
async def commit_choice(
    batch_id: str,
    choice: ChoiceRequest,
    orchestrator: BulkAddOrchestrator = Depends(get_bulk_add_orchestrator),
    repository: BatchRepository = Depends(get_batch_repository),
) -> BatchSnapshot:
    async def apply(record: BatchRecord) -> BatchRecord:
        batch = orchestrator.restore(record)
        await orchestrator.commit_choice(batch, choice.index, choice.candidate_id)
        return batch.to_record()

    with bind_batch_id(batch_id):
        record = await _update_batch(batch_id, repository, apply)
    return build_snapshot(orchestrator.restore(record))


@router.post("/{batch_id}/submit", response_model=BatchSnapshot, response_model_by_alias=True)
async def submit_batch(
    batch_id: str,
    orchestrator: BulkAddOrchestrator = Depends(get_bulk_add_orchestrator),
    repository: BatchRepository = Depends(get_batch_repository),
) -> BatchSnapshot:
    async def apply(record: BatchRecord) -> BatchRecord:
        batch = orchestrator.restore(record)
        already_done = batch.outcome is not None
        outcome = await orchestrator.resume(batch)
        if not already_done:
            logger.info("Submitted %d/%d entries", outcome.submitted, len(outcome.results))
        return batch.to_record()

    with bind_batch_id(batch_id):
        record = await _update_batch(batch_id, repository, apply)
    return build_snapshot(orchestrator.restore(record))


@router.delete("/{batch_id}", status_code=204)
async def discard_batch(
    batch_id: str,
    repository: BatchRepository = Depends(get_batch_repository),
) -> Response:
    try:
        async with repository.lock(batch_id):
            deleted = await repository.delete(batch_id)
    except BatchBusyError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    if not deleted:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="batch not found or expired")
    return Response(status_code=204)
