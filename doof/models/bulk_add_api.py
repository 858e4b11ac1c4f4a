from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic.config import ConfigDict


class BulkAddBase(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class BulkAddRequest(BulkAddBase):
    raw_input: str = Field(default="", alias="rawInput")
    list_id: str = Field(..., alias="listId", min_length=1)
    existing_item_count: int = Field(default=0, alias="existingItemCount", ge=0)


class ChoiceRequest(BulkAddBase):
    index: int = Field(..., ge=0)
    candidate_id: str = Field(..., alias="candidateId", min_length=1)


class CandidateView(BulkAddBase):
    candidate_id: str = Field(alias="candidateId")
    description: str


class AddressView(BulkAddBase):
    street_number: str = Field(default="", alias="streetNumber")
    route: str = ""
    city: str = ""
    state: str = ""
    zipcode: str = ""


class NeighborhoodView(BulkAddBase):
    neighborhood_id: int = Field(alias="neighborhoodId")
    name: str
    city_name: str = Field(default="", alias="cityName")


class ResolvedView(BulkAddBase):
    candidate_id: str = Field(alias="candidateId")
    name: str
    formatted_address: str = Field(alias="formattedAddress")
    address: AddressView
    neighborhood: Optional[NeighborhoodView] = None
    note: Optional[str] = None


class EntryView(BulkAddBase):
    index: int
    line_number: int = Field(alias="lineNumber")
    raw_text: str = Field(alias="rawText")
    name: str
    description_hint: str = Field(alias="descriptionHint")
    location_hint: str = Field(alias="locationHint")
    tags: List[str] = Field(default_factory=list)
    status: str
    attempts: int = 0
    candidates: Optional[List[CandidateView]] = None
    resolved: Optional[ResolvedView] = None
    error: Optional[str] = None
    error_detail: Optional[str] = Field(default=None, alias="errorDetail")
    duplicate_of: Optional[int] = Field(default=None, alias="duplicateOf")


class EntryOutcomeView(BulkAddBase):
    index: int
    name: str
    status: str
    candidate_id: Optional[str] = Field(default=None, alias="candidateId")
    reason: Optional[str] = None


class BatchOutcomeView(BulkAddBase):
    results: List[EntryOutcomeView] = Field(default_factory=list)
    submitted: int = 0
    failed: int = 0
    skipped_for_limit: int = Field(default=0, alias="skippedForLimit")


class BatchSnapshot(BulkAddBase):
    batch_id: str = Field(alias="batchId")
    list_id: str = Field(alias="listId")
    status: str
    existing_item_count: int = Field(alias="existingItemCount")
    entries: List[EntryView] = Field(default_factory=list)
    needs_choice: List[int] = Field(default_factory=list, alias="needsChoice")
    failed: List[int] = Field(default_factory=list)
    outcome: Optional[BatchOutcomeView] = None
