"""
Import job state machine and the store behind it.

A job moves through a fixed stage order and may jump to `error` from any non-terminal stage.
Progress is a weighted function of the active stage and the fraction of work done within it,
and never decreases. Each job has a single writer (its pipeline run); any number of pollers
may read it concurrently.
"""

from __future__ import annotations

import threading
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
from typing import Any, Protocol

from src.importer.errors import InvalidStageTransition, JobNotFound
from src.importer.metrics import IMPORT_JOBS_TOTAL, IMPORT_LISTS_TOTAL


class Stage(str, Enum):
    UPLOADING = "uploading"
    EXTRACTING = "extracting"
    DETECTING = "detecting"
    PARSING = "parsing"
    GEOCODING = "geocoding"
    SAVING = "saving"
    COMPLETE = "complete"
    ERROR = "error"


STAGE_ORDER: tuple[Stage, ...] = (
    Stage.UPLOADING,
    Stage.EXTRACTING,
    Stage.DETECTING,
    Stage.PARSING,
    Stage.GEOCODING,
    Stage.SAVING,
    Stage.COMPLETE,
)
TERMINAL_STAGES = frozenset({Stage.COMPLETE, Stage.ERROR})

# (start, end) progress band per stage; the fraction of work done interpolates inside the band.
STAGE_PROGRESS_BANDS: dict[Stage, tuple[int, int]] = {
    Stage.UPLOADING: (0, 0),
    Stage.EXTRACTING: (10, 10),
    Stage.DETECTING: (20, 20),
    Stage.PARSING: (20, 35),
    Stage.GEOCODING: (35, 80),
    Stage.SAVING: (80, 99),
    Stage.COMPLETE: (100, 100),
}


def compute_progress(stage: Stage, fraction: float = 0.0) -> int:
    start, end = STAGE_PROGRESS_BANDS[stage]
    bounded = min(max(fraction, 0.0), 1.0)
    return int(start + (end - start) * bounded)


def _utcnow() -> datetime:
    return datetime.now(UTC)


class ListStatus(str, Enum):
    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class ListOutcome:
    """Tagged per-list result: a created list id, a silent skip, or a failure with its reason."""

    source_name: str
    title: str
    status: ListStatus
    list_id: str | None = None
    place_count: int = 0
    error_kind: str | None = None
    message: str | None = None

    @classmethod
    def created(cls, *, source_name: str, title: str, list_id: str, place_count: int) -> ListOutcome:
        return cls(source_name=source_name, title=title, status=ListStatus.CREATED, list_id=list_id, place_count=place_count)

    @classmethod
    def skipped(cls, *, source_name: str, title: str, message: str) -> ListOutcome:
        return cls(source_name=source_name, title=title, status=ListStatus.SKIPPED, message=message)

    @classmethod
    def failed(cls, *, source_name: str, title: str, error_kind: str, message: str) -> ListOutcome:
        return cls(
            source_name=source_name,
            title=title,
            status=ListStatus.FAILED,
            error_kind=error_kind,
            message=message,
        )

    @property
    def error_text(self) -> str | None:
        if self.status is not ListStatus.FAILED:
            return None
        return f"Failed to process {self.title}: {self.message}"

    def to_dict(self) -> dict[str, Any]:
        return {
            "source_name": self.source_name,
            "title": self.title,
            "status": self.status.value,
            "list_id": self.list_id,
            "place_count": self.place_count,
            "error_kind": self.error_kind,
            "message": self.message,
        }


@dataclass(frozen=True)
class ImportJob:
    job_id: str
    owner_id: str
    stage: Stage = Stage.UPLOADING
    progress: int = 0
    lists_processed: int = 0
    total_lists: int = 0
    places_processed: int = 0
    total_places: int = 0
    places_resolved: int = 0
    geocoding_enabled: bool = True
    archive_path: str | None = None
    list_results: tuple[ListOutcome, ...] = field(default_factory=tuple)
    fatal_error: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    completed_at: datetime | None = None

    @property
    def is_terminal(self) -> bool:
        return self.stage in TERMINAL_STAGES

    @property
    def errors(self) -> list[str]:
        messages = [outcome.error_text for outcome in self.list_results if outcome.error_text]
        if self.fatal_error:
            messages.append(self.fatal_error)
        return messages

    @property
    def created_list_ids(self) -> list[str]:
        return [outcome.list_id for outcome in self.list_results if outcome.list_id]

    def to_status(self) -> dict[str, Any]:
        return {
            "job_id": self.job_id,
            "stage": self.stage.value,
            "progress": self.progress,
            "lists_processed": self.lists_processed,
            "total_lists": self.total_lists,
            "places_processed": self.places_processed,
            "total_places": self.total_places,
            "places_resolved": self.places_resolved,
            "errors": self.errors,
            "started_at": self.started_at,
            "completed_at": self.completed_at,
            "geocoding_enabled": self.geocoding_enabled,
            "list_results": [outcome.to_dict() for outcome in self.list_results],
            "created_list_ids": self.created_list_ids,
        }


class JobStore(Protocol):
    def create(self, job: ImportJob) -> None: ...

    def get(self, job_id: str) -> ImportJob | None: ...

    def update(self, job: ImportJob) -> None: ...


class InMemoryJobStore:
    """Process-lifetime job map. Jobs are immutable values, so readers never see a half-applied update."""

    def __init__(self) -> None:
        self._jobs: dict[str, ImportJob] = {}
        self._lock = threading.RLock()

    def create(self, job: ImportJob) -> None:
        with self._lock:
            if job.job_id in self._jobs:
                raise ValueError(f"Duplicate job id: {job.job_id}")
            self._jobs[job.job_id] = job

    def get(self, job_id: str) -> ImportJob | None:
        with self._lock:
            return self._jobs.get(job_id)

    def update(self, job: ImportJob) -> None:
        with self._lock:
            if job.job_id not in self._jobs:
                raise JobNotFound(job.job_id)
            self._jobs[job.job_id] = job

    def __len__(self) -> int:
        with self._lock:
            return len(self._jobs)


class JobTracker:
    def __init__(self, store: JobStore | None = None, *, clock: Callable[[], datetime] = _utcnow) -> None:
        self.store = store if store is not None else InMemoryJobStore()
        self._clock = clock

    def create_job(self, owner_id: str, *, geocoding_enabled: bool = True, archive_path: str | None = None) -> str:
        job = ImportJob(
            job_id=str(uuid.uuid4()),
            owner_id=owner_id,
            geocoding_enabled=geocoding_enabled,
            archive_path=archive_path,
            started_at=self._clock(),
        )
        self.store.create(job)
        return job.job_id

    def get(self, job_id: str) -> ImportJob:
        job = self.store.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        return job

    def advance(self, job_id: str, stage: Stage, fraction: float = 0.0, **counters: int) -> ImportJob:
        """Move to `stage` (or stay in it) and update progress plus any counters given."""

        job = self.get(job_id)
        if job.is_terminal:
            raise InvalidStageTransition(
                f"Job {job_id} is already {job.stage.value}",
                details={"job_id": job_id, "stage": job.stage.value, "requested": stage.value},
            )
        if stage in TERMINAL_STAGES:
            raise InvalidStageTransition(f"Use complete() or fail() to end job {job_id}")
        if STAGE_ORDER.index(stage) < STAGE_ORDER.index(job.stage):
            raise InvalidStageTransition(
                f"Job {job_id} cannot move back from {job.stage.value} to {stage.value}",
                details={"job_id": job_id, "stage": job.stage.value, "requested": stage.value},
            )

        updated = replace(job, stage=stage, progress=max(job.progress, compute_progress(stage, fraction)), **counters)
        _check_counters(updated)
        self.store.update(updated)
        return updated

    def record_outcome(self, job_id: str, outcome: ListOutcome) -> ImportJob:
        job = self.get(job_id)
        updated = replace(
            job,
            list_results=job.list_results + (outcome,),
            lists_processed=job.lists_processed + 1,
            places_processed=job.places_processed + outcome.place_count,
        )
        _check_counters(updated)
        self.store.update(updated)
        IMPORT_LISTS_TOTAL.labels(status=outcome.status.value).inc()
        return updated

    def complete(self, job_id: str) -> ImportJob:
        job = self.get(job_id)
        if job.is_terminal:
            raise InvalidStageTransition(f"Job {job_id} is already {job.stage.value}")
        updated = replace(job, stage=Stage.COMPLETE, progress=100, completed_at=self._clock())
        self.store.update(updated)
        IMPORT_JOBS_TOTAL.labels(stage=Stage.COMPLETE.value, geocoding_enabled=str(job.geocoding_enabled).lower()).inc()
        return updated

    def fail(self, job_id: str, message: str) -> ImportJob:
        """Absorbing error state; progress stays where the job stopped."""

        job = self.get(job_id)
        if job.is_terminal:
            raise InvalidStageTransition(f"Job {job_id} is already {job.stage.value}")
        updated = replace(job, stage=Stage.ERROR, fatal_error=message, completed_at=self._clock())
        self.store.update(updated)
        IMPORT_JOBS_TOTAL.labels(stage=Stage.ERROR.value, geocoding_enabled=str(job.geocoding_enabled).lower()).inc()
        return updated


def _check_counters(job: ImportJob) -> None:
    if (
        job.lists_processed > job.total_lists
        or job.places_processed > job.total_places
        or job.places_resolved > job.total_places
    ):
        raise ValueError(
            f"Job {job.job_id} counters out of range: "
            f"lists {job.lists_processed}/{job.total_lists}, places {job.places_processed}/{job.total_places}, "
            f"resolved {job.places_resolved}/{job.total_places}"
        )
