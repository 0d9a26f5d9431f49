# This file implements the service behind the import endpoints.
# It validates archive locations, hands jobs to the background dispatcher, and shapes job status for pollers.
# Jobs are scoped to their owner: another owner's job id behaves exactly like an unknown one.

from __future__ import annotations

from collections.abc import Sequence
from pathlib import Path
from typing import Any

from sqlalchemy.engine import Engine

from src.api.api_config import ApiConfig
from src.api.error_handlers import APIError
from src.api.schemas.import_schemas import SelectedListV1
from src.importer.dispatcher import ImportDispatcher
from src.importer.errors import JobNotFound
from src.importer.importer_config import ImportConfig
from src.importer.jobs import ImportJob
from src.importer.models import SelectedList
from src.importer.pipeline import analyze_archive
from src.importer.writer import fetch_lists_for_job


class ImportService:
    """Archive analysis, job submission, and job status lookups."""

    def __init__(
        self,
        *,
        config: ApiConfig,
        import_config: ImportConfig,
        dispatcher: ImportDispatcher,
        engine: Engine,
    ) -> None:
        self.config = config
        self.import_config = import_config
        self.dispatcher = dispatcher
        self.engine = engine

    def resolve_archive_path(self, archive_path: str) -> Path:
        root = self.config.upload_root()
        candidate = Path(archive_path).expanduser()
        if not candidate.is_absolute():
            candidate = root / candidate
        resolved = candidate.resolve()

        if not resolved.is_relative_to(root):
            raise APIError(
                status_code=400,
                error_code="INVALID_ARCHIVE_PATH",
                message="Archive path must point inside the upload directory.",
                details={"archive_path": archive_path},
            )
        if not resolved.is_file():
            raise APIError(
                status_code=404,
                error_code="ARCHIVE_NOT_FOUND",
                message="Archive file not found.",
                details={"archive_path": archive_path},
            )
        return resolved

    def analyze(self, archive_path: str) -> dict[str, Any]:
        lists = analyze_archive(self.resolve_archive_path(archive_path), self.import_config)
        return {
            "total_lists": len(lists),
            "total_places": sum(int(item["place_count"]) for item in lists),
            "lists": lists,
        }

    def start_import(
        self,
        *,
        owner_id: str,
        archive_path: str,
        selected_lists: Sequence[SelectedListV1] | None,
        geocoding_enabled: bool,
    ) -> dict[str, Any]:
        path = self.resolve_archive_path(archive_path)
        selections = None
        if selected_lists is not None:
            selections = [
                SelectedList(
                    name=item.name.strip(),
                    display_name=item.display_name,
                    is_paid=item.is_paid,
                    price=item.price,
                )
                for item in selected_lists
            ]

        job_id = self.dispatcher.submit(owner_id, path, selections, geocoding_enabled=geocoding_enabled)
        job = self.dispatcher.tracker.get(job_id)
        return {
            "job_id": job_id,
            "stage": job.stage.value,
            "geocoding_enabled": job.geocoding_enabled,
            "poll_interval_ms": self.config.poll_interval_ms,
        }

    def _owned_job(self, owner_id: str, job_id: str) -> ImportJob:
        job = self.dispatcher.tracker.get(job_id)
        if job.owner_id != owner_id:
            raise JobNotFound(job_id)
        return job

    def get_job_status(self, *, owner_id: str, job_id: str) -> dict[str, Any]:
        return self._owned_job(owner_id, job_id).to_status()

    def get_job_lists(self, *, owner_id: str, job_id: str) -> list[dict[str, Any]]:
        job = self._owned_job(owner_id, job_id)
        if not job.created_list_ids:
            return []
        return fetch_lists_for_job(self.engine, import_job_id=job.job_id)

    def shutdown(self) -> None:
        self.dispatcher.shutdown(wait=False)
