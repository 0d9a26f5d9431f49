# Error types raised by the saved-list import pipeline.
# Each error carries a machine-readable `kind` so per-list outcomes can be classified without parsing messages.
# Archive-level errors are job-fatal; list-level errors only skip the list that raised them.

from __future__ import annotations

from typing import Any


class ImportPipelineError(RuntimeError):
    """Base class for every failure the import pipeline knows how to classify."""

    kind = "import_error"
    job_fatal = False

    def __init__(self, message: str, *, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ArchiveCorrupt(ImportPipelineError):
    kind = "archive_corrupt"
    job_fatal = True


class ArchiveEmpty(ImportPipelineError):
    kind = "archive_empty"
    job_fatal = True


class ParseError(ImportPipelineError):
    kind = "parse_error"


class NoValidCoordinates(ImportPipelineError):
    kind = "no_valid_coordinates"


class PersistenceError(ImportPipelineError):
    kind = "persistence_error"


class GeocodingUnavailable(ImportPipelineError):
    """The geocoder could not answer; callers fall back to a placeholder coordinate."""

    kind = "geocoding_unavailable"


class JobNotFound(ImportPipelineError):
    kind = "job_not_found"

    def __init__(self, job_id: str) -> None:
        super().__init__(f"Import job not found: {job_id}", details={"job_id": job_id})
        self.job_id = job_id


class InvalidStageTransition(ImportPipelineError):
    kind = "invalid_stage_transition"
