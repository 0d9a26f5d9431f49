"""
Import pipeline orchestration for one job.

Stages run in phases across the selected lists: every list is parsed, then every parsed list is
resolved, then each list is committed. Failures inside one list are recorded as that list's
outcome and the job moves on; only archive-level failures end the job in `error`.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from src.importer.aggregate import build_list_aggregate
from src.importer.archive import inspect_archive, read_list_bytes
from src.importer.errors import ArchiveEmpty, ImportPipelineError
from src.importer.geocoding import GeocodingResolver
from src.importer.importer_config import ImportConfig
from src.importer.jobs import JobTracker, ListOutcome, Stage
from src.importer.metrics import IMPORT_ACTIVE_JOBS
from src.importer.models import Coordinates, ListContext, ListSource, RawRecord, SelectedList
from src.importer.record_parser import detect_format, parse_records
from src.importer.rules import RuleTables
from src.importer.writer import PersistenceWriter

LOGGER = logging.getLogger("importer")


@dataclass(frozen=True)
class PlannedList:
    source: ListSource
    selection: SelectedList

    @property
    def context(self) -> ListContext:
        return ListContext(source_name=self.source.name, display_name=self.selection.title)


@dataclass(frozen=True)
class ParsedList:
    plan: PlannedList
    records: tuple[RawRecord, ...]


@dataclass(frozen=True)
class ResolvedList:
    parsed: ParsedList
    coordinates: tuple[Coordinates, ...]


def plan_lists(sources: Sequence[ListSource], selections: Sequence[SelectedList] | None) -> list[PlannedList]:
    """Pair archive sources with the caller's selection; unknown selected names are ignored."""

    if selections is None:
        return [PlannedList(source=source, selection=SelectedList(name=source.name)) for source in sources]

    by_name = {selection.name.strip(): selection for selection in selections}
    planned = [
        PlannedList(source=source, selection=by_name[source.name])
        for source in sources
        if source.name in by_name
    ]
    if not planned:
        raise ArchiveEmpty(
            "None of the selected lists exist in the archive",
            details={"selected": sorted(by_name), "available": [source.name for source in sources]},
        )
    return planned


def analyze_archive(archive_path: Path | str, config: ImportConfig) -> list[dict[str, Any]]:
    """Enumerate lists with their place counts without resolving or saving anything."""

    summaries: list[dict[str, Any]] = []
    for source in inspect_archive(archive_path, config):
        summary: dict[str, Any] = {"name": source.name, "place_count": 0, "format": None, "error": None}
        try:
            raw = read_list_bytes(archive_path, source)
            summary["format"] = detect_format(raw).value
            summary["place_count"] = len(parse_records(raw))
        except ImportPipelineError as exc:
            summary["error"] = exc.message
        summaries.append(summary)
    return summaries


class ImportPipeline:
    def __init__(
        self,
        *,
        tracker: JobTracker,
        resolver: GeocodingResolver,
        writer: PersistenceWriter,
        rules: RuleTables,
        config: ImportConfig,
    ) -> None:
        self.tracker = tracker
        self.resolver = resolver
        self.writer = writer
        self.rules = rules
        self.config = config

    def run(self, job_id: str, archive_path: Path | str, selections: Sequence[SelectedList] | None = None) -> None:
        """Execute one job to a terminal stage. Never raises."""

        IMPORT_ACTIVE_JOBS.inc()
        try:
            self._run(job_id, Path(archive_path), selections)
        except ImportPipelineError as exc:
            LOGGER.error("Import job %s failed: %s", job_id, exc.message)
            self._fail(job_id, exc.message)
        except Exception as exc:
            LOGGER.exception("Import job %s crashed", job_id)
            self._fail(job_id, f"Unexpected error: {exc.__class__.__name__}")
        finally:
            IMPORT_ACTIVE_JOBS.dec()
            if self.config.cleanup_archive:
                self._cleanup(Path(archive_path))

    def _fail(self, job_id: str, message: str) -> None:
        job = self.tracker.get(job_id)
        if not job.is_terminal:
            self.tracker.fail(job_id, message)

    def _cleanup(self, archive_path: Path) -> None:
        try:
            archive_path.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning("Could not remove archive %s: %s", archive_path, exc)

    def _run(self, job_id: str, archive_path: Path, selections: Sequence[SelectedList] | None) -> None:
        job = self.tracker.get(job_id)
        owner_id = job.owner_id

        self.tracker.advance(job_id, Stage.EXTRACTING)
        sources = inspect_archive(archive_path, self.config)

        self.tracker.advance(job_id, Stage.DETECTING)
        planned = plan_lists(sources, selections)
        self.tracker.advance(job_id, Stage.DETECTING, total_lists=len(planned))
        LOGGER.info("Import job %s: %s of %s lists selected", job_id, len(planned), len(sources))

        parsed = self._parse_phase(job_id, archive_path, planned)
        resolved = self._resolve_phase(job_id, parsed)
        self._save_phase(job_id, owner_id, resolved)

        finished = self.tracker.complete(job_id)
        LOGGER.info(
            "Import job %s complete: %s/%s lists, %s places, %s errors",
            job_id,
            len(finished.created_list_ids),
            finished.total_lists,
            finished.places_processed,
            len(finished.errors),
        )

    def _record_failure(self, job_id: str, plan: PlannedList, exc: Exception) -> None:
        if isinstance(exc, ImportPipelineError):
            kind, message = exc.kind, exc.message
            LOGGER.warning("List %r skipped (%s): %s", plan.source.name, kind, message)
        else:
            kind, message = "unexpected_error", f"{exc.__class__.__name__}: {exc}"
            LOGGER.exception("List %r failed unexpectedly", plan.source.name)
        self.tracker.record_outcome(
            job_id,
            ListOutcome.failed(
                source_name=plan.source.name,
                title=plan.selection.title,
                error_kind=kind,
                message=message,
            ),
        )

    def _parse_phase(self, job_id: str, archive_path: Path, planned: Sequence[PlannedList]) -> list[ParsedList]:
        self.tracker.advance(job_id, Stage.PARSING)
        parsed: list[ParsedList] = []
        for index, plan in enumerate(planned, start=1):
            try:
                records = parse_records(read_list_bytes(archive_path, plan.source))
            except Exception as exc:
                self._record_failure(job_id, plan, exc)
            else:
                if records:
                    parsed.append(ParsedList(plan=plan, records=tuple(records)))
                else:
                    LOGGER.info("List %r has no usable rows; skipping", plan.source.name)
                    self.tracker.record_outcome(
                        job_id,
                        ListOutcome.skipped(
                            source_name=plan.source.name,
                            title=plan.selection.title,
                            message="no rows with a title",
                        ),
                    )
            self.tracker.advance(job_id, Stage.PARSING, fraction=index / len(planned))

        total_places = sum(len(item.records) for item in parsed)
        self.tracker.advance(job_id, Stage.PARSING, fraction=1.0, total_places=total_places)
        return parsed

    def _resolve_phase(self, job_id: str, parsed: Sequence[ParsedList]) -> list[ResolvedList]:
        self.tracker.advance(job_id, Stage.GEOCODING)
        total_places = sum(len(item.records) for item in parsed)
        resolved: list[ResolvedList] = []
        done_before = 0

        for item in parsed:

            def _on_resolved(done: int, offset: int = done_before) -> None:
                count = offset + done
                self.tracker.advance(
                    job_id,
                    Stage.GEOCODING,
                    fraction=count / total_places if total_places else 1.0,
                    places_resolved=count,
                )

            try:
                coordinates = self.resolver.resolve_many(item.records, item.plan.context, on_resolved=_on_resolved)
            except Exception as exc:
                self._record_failure(job_id, item.plan, exc)
            else:
                resolved.append(ResolvedList(parsed=item, coordinates=tuple(coordinates)))
            done_before += len(item.records)

        self.tracker.advance(job_id, Stage.GEOCODING, fraction=1.0)
        return resolved

    def _save_phase(self, job_id: str, owner_id: str, resolved: Sequence[ResolvedList]) -> None:
        self.tracker.advance(job_id, Stage.SAVING)
        for index, item in enumerate(resolved, start=1):
            plan = item.parsed.plan
            try:
                aggregate = build_list_aggregate(
                    owner_id=owner_id,
                    selection=plan.selection,
                    context=plan.context,
                    records=item.parsed.records,
                    coordinates=item.coordinates,
                    rules=self.rules,
                    description=self.config.list_description,
                    import_job_id=job_id,
                )
                list_id = self.writer.commit(aggregate)
            except Exception as exc:
                self._record_failure(job_id, plan, exc)
            else:
                self.tracker.record_outcome(
                    job_id,
                    ListOutcome.created(
                        source_name=plan.source.name,
                        title=aggregate.title,
                        list_id=list_id,
                        place_count=aggregate.place_count,
                    ),
                )
            self.tracker.advance(job_id, Stage.SAVING, fraction=index / len(resolved))
