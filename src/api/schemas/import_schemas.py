# This file defines request and response schemas for the saved-list import endpoints.
# Field names mirror the job status record so pollers can read progress without translation.

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from src.api.schemas.common import EnvelopeFields


class SelectedListV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1)
    display_name: str | None = None
    is_paid: bool = False
    price: float = Field(default=0.0, ge=0)


class AnalyzeRequestV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    archive_path: str = Field(min_length=1)


class ImportRequestV1(BaseModel):
    model_config = ConfigDict(extra="forbid")

    archive_path: str = Field(min_length=1)
    selected_lists: list[SelectedListV1] | None = None


class ListSummaryV1(BaseModel):
    name: str
    place_count: int
    format: str | None = None
    error: str | None = None


class AnalyzeResultV1(BaseModel):
    total_lists: int
    total_places: int
    lists: list[ListSummaryV1]


class AnalyzeResponseV1(EnvelopeFields):
    data: AnalyzeResultV1


class ImportAcceptedV1(BaseModel):
    job_id: str
    stage: str
    geocoding_enabled: bool
    poll_interval_ms: int


class ImportAcceptedResponseV1(EnvelopeFields):
    data: ImportAcceptedV1


class ListOutcomeV1(BaseModel):
    source_name: str
    title: str
    status: str
    list_id: str | None = None
    place_count: int = 0
    error_kind: str | None = None
    message: str | None = None


class ImportJobStatusV1(BaseModel):
    job_id: str
    stage: str
    progress: int = Field(ge=0, le=100)
    lists_processed: int
    total_lists: int
    places_processed: int
    total_places: int
    # Places with coordinates so far; advances during geocoding, before any list is saved.
    places_resolved: int
    errors: list[str]
    started_at: datetime
    completed_at: datetime | None = None
    geocoding_enabled: bool
    list_results: list[ListOutcomeV1]
    created_list_ids: list[str]


class ImportJobStatusResponseV1(EnvelopeFields):
    data: ImportJobStatusV1


class ImportedPlaceV1(BaseModel):
    id: str
    name: str
    address: str
    latitude: float | None = None
    longitude: float | None = None
    city: str | None = None
    country: str | None = None
    category: str
    rating: float | None = None
    price_level: int | None = None
    external_place_id: str | None = None
    coordinate_source: str
    display_order: int
    note: str | None = None


class ImportedListV1(BaseModel):
    id: str
    owner_id: str
    title: str
    description: str | None = None
    is_public: bool
    is_paid: bool
    price: float
    center_latitude: float
    center_longitude: float
    city: str | None = None
    category: str | None = None
    place_count: int
    source_name: str
    import_job_id: str | None = None
    created_at: datetime
    places: list[ImportedPlaceV1]


class ImportedListsResponseV1(EnvelopeFields):
    data: list[ImportedListV1]
