# This file defines the saved-list import endpoints under the versioned API path.
# Clients analyze an uploaded archive, start a job for the lists they picked, then poll the job until it ends.
# Processing happens on background workers; the start endpoints only return the job id to poll.

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.api.api_config import ApiConfig
from src.api.dependencies import get_config, get_import_service, get_owner_id
from src.api.response_envelope import build_object_envelope
from src.api.schemas.common import ErrorResponse
from src.api.schemas.import_schemas import (
    AnalyzeRequestV1,
    AnalyzeResponseV1,
    ImportAcceptedResponseV1,
    ImportedListsResponseV1,
    ImportJobStatusResponseV1,
    ImportRequestV1,
)
from src.api.services.import_service import ImportService

# Every import route can fail with these; the body is always the shared error payload.
ERROR_RESPONSES: dict[int | str, dict[str, object]] = {
    400: {"model": ErrorResponse, "description": "Archive path outside the upload directory."},
    401: {"model": ErrorResponse, "description": "Missing X-User-Id header."},
    404: {"model": ErrorResponse, "description": "Unknown job, another owner's job, or missing archive."},
    422: {"model": ErrorResponse, "description": "Invalid request body, or an unreadable or empty archive."},
}

router = APIRouter(prefix="/imports", tags=["imports"], responses=ERROR_RESPONSES)
ImportServiceDep = Annotated[ImportService, Depends(get_import_service)]
ConfigDep = Annotated[ApiConfig, Depends(get_config)]
OwnerDep = Annotated[str, Depends(get_owner_id)]


def _envelope(request: Request, config: ApiConfig, data: object, warnings: list[str] | None = None) -> dict[str, object]:
    return build_object_envelope(
        api_version_path=config.api_version_path,
        schema_version=config.schema_version,
        request_id=request.state.request_id,
        data=data,
        warnings=warnings,
    )


@router.post("/analyze", response_model=AnalyzeResponseV1)
def analyze_import(
    request: Request,
    body: AnalyzeRequestV1,
    service: ImportServiceDep,
    config: ConfigDep,
    _: OwnerDep,
) -> dict[str, object]:
    result = service.analyze(body.archive_path)
    warnings = [f"{item['name']}: {item['error']}" for item in result["lists"] if item.get("error")]
    return _envelope(request, config, result, warnings or None)


def _start(
    request: Request,
    body: ImportRequestV1,
    service: ImportService,
    config: ApiConfig,
    owner_id: str,
    *,
    geocoding_enabled: bool,
) -> dict[str, object]:
    accepted = service.start_import(
        owner_id=owner_id,
        archive_path=body.archive_path,
        selected_lists=body.selected_lists,
        geocoding_enabled=geocoding_enabled,
    )
    return _envelope(request, config, accepted)


@router.post("", response_model=ImportAcceptedResponseV1, status_code=202)
def start_import(
    request: Request,
    body: ImportRequestV1,
    service: ImportServiceDep,
    config: ConfigDep,
    owner_id: OwnerDep,
) -> dict[str, object]:
    return _start(request, body, service, config, owner_id, geocoding_enabled=True)


@router.post("/fast", response_model=ImportAcceptedResponseV1, status_code=202)
def start_fast_import(
    request: Request,
    body: ImportRequestV1,
    service: ImportServiceDep,
    config: ConfigDep,
    owner_id: OwnerDep,
) -> dict[str, object]:
    """Same pipeline with geocoding disabled: every place gets a placeholder coordinate."""

    return _start(request, body, service, config, owner_id, geocoding_enabled=False)


@router.get("/{job_id}", response_model=ImportJobStatusResponseV1)
def get_import_status(
    request: Request,
    job_id: str,
    service: ImportServiceDep,
    config: ConfigDep,
    owner_id: OwnerDep,
) -> dict[str, object]:
    return _envelope(request, config, service.get_job_status(owner_id=owner_id, job_id=job_id))


@router.get("/{job_id}/lists", response_model=ImportedListsResponseV1)
def get_import_lists(
    request: Request,
    job_id: str,
    service: ImportServiceDep,
    config: ConfigDep,
    owner_id: OwnerDep,
) -> dict[str, object]:
    return _envelope(request, config, service.get_job_lists(owner_id=owner_id, job_id=job_id))
