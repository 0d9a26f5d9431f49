# Shared builders for import pipeline tests: archives, configs, fake geocoders, and wired pipelines.
# Everything here is deterministic and offline.

from __future__ import annotations

import threading
import zipfile
from collections.abc import Iterable, Mapping
from dataclasses import replace
from pathlib import Path

from sqlalchemy.engine import Engine

from src.importer.errors import GeocodingUnavailable
from src.importer.geocoding import GeocodeHit, GeocodingPool, GeocodingResolver, RateLimiter
from src.importer.importer_config import DEFAULT_RULES_PATH, ImportConfig
from src.importer.jobs import ImportJob, InMemoryJobStore, JobTracker
from src.importer.pipeline import ImportPipeline
from src.importer.rules import load_rule_tables
from src.importer.writer import PersistenceWriter

TAKEOUT_HEADER = "Title,Note,URL,Comment"


def csv_export(rows: Iterable[tuple[str, str, str]], header: str = TAKEOUT_HEADER) -> str:
    lines = [header]
    for title, note, url in rows:
        lines.append(f"{title},{note},{url},")
    return "\n".join(lines) + "\n"


def places_csv(prefix: str, count: int) -> str:
    return csv_export(
        (f"{prefix} {index}", f"note {index}", f"https://www.google.com/maps/place/x/data=!4m2!3m1!1s0x{prefix.lower()}{index}")
        for index in range(count)
    )


def build_archive(path: Path, entries: Mapping[str, str | bytes]) -> Path:
    with zipfile.ZipFile(path, "w") as archive:
        for name, content in entries.items():
            archive.writestr(name, content)
    return path


def make_config(**overrides: object) -> ImportConfig:
    config = ImportConfig(
        geocoder_min_interval_ms=0,
        geocoder_backoff_seconds=0.0,
        geocoder_max_retries=2,
        cleanup_archive=False,
        rules_path=str(DEFAULT_RULES_PATH),
    )
    return replace(config, **overrides)


class FakeGeocoderClient:
    """Answers lookups from a fixed table; unknown queries have no match."""

    def __init__(
        self,
        hits: Mapping[str, GeocodeHit] | None = None,
        *,
        failures: Mapping[str, Exception] | None = None,
    ) -> None:
        self.hits = dict(hits or {})
        self.failures = dict(failures or {})
        self.queries: list[str] = []
        self._lock = threading.Lock()

    def search(self, query: str) -> GeocodeHit | None:
        with self._lock:
            self.queries.append(query)
        if query in self.failures:
            raise self.failures[query]
        return self.hits.get(query)


class UnavailableGeocoderClient(FakeGeocoderClient):
    def search(self, query: str) -> GeocodeHit | None:
        with self._lock:
            self.queries.append(query)
        raise GeocodingUnavailable("HTTP 503", details={"status_code": 503})


class RecordingJobStore(InMemoryJobStore):
    """Keeps every stored snapshot so tests can replay what pollers could have seen."""

    def __init__(self) -> None:
        super().__init__()
        self.history: dict[str, list[ImportJob]] = {}

    def create(self, job: ImportJob) -> None:
        super().create(job)
        self.history.setdefault(job.job_id, []).append(job)

    def update(self, job: ImportJob) -> None:
        super().update(job)
        self.history.setdefault(job.job_id, []).append(job)


def build_pipeline(
    engine: Engine,
    *,
    client: object | None = None,
    geocoding_enabled: bool = True,
    config: ImportConfig | None = None,
    tracker: JobTracker | None = None,
    pool: GeocodingPool | None = None,
) -> tuple[JobTracker, ImportPipeline]:
    config = config or make_config()
    rules = load_rule_tables(config.rules_path)
    tracker = tracker or JobTracker(RecordingJobStore())
    resolver = GeocodingResolver(
        client,
        rules,
        config,
        pool=pool,
        limiter=RateLimiter(0.0, sleep=lambda _: None),
        enabled=geocoding_enabled,
        sleep=lambda _: None,
    )
    pipeline = ImportPipeline(
        tracker=tracker,
        resolver=resolver,
        writer=PersistenceWriter(engine),
        rules=rules,
        config=config,
    )
    return tracker, pipeline
