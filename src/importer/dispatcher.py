# This module runs import jobs in the background on a bounded worker pool.
# The triggering call gets a job id immediately; the job then runs to a terminal stage on a worker thread.
# All jobs in one dispatcher share a single geocoding pool and rate limiter.

from __future__ import annotations

import logging
import threading
from collections.abc import Sequence
from concurrent.futures import Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from pathlib import Path

from sqlalchemy.engine import Engine

from src.importer.geocoding import GeocodingPool, GeocodingResolver, NominatimClient, RateLimiter
from src.importer.importer_config import ImportConfig
from src.importer.jobs import JobStore, JobTracker
from src.importer.models import SelectedList
from src.importer.pipeline import ImportPipeline
from src.importer.rules import load_rule_tables
from src.importer.writer import PersistenceWriter

LOGGER = logging.getLogger("importer.dispatcher")


class ImportDispatcher:
    def __init__(
        self,
        *,
        tracker: JobTracker,
        pipelines: dict[bool, ImportPipeline],
        max_workers: int,
        geocoding_pool: GeocodingPool | None = None,
    ) -> None:
        self.tracker = tracker
        self.pipelines = pipelines
        self.geocoding_pool = geocoding_pool
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="import-job")
        self._futures: dict[str, Future] = {}
        self._lock = threading.Lock()

    def submit(
        self,
        owner_id: str,
        archive_path: Path | str,
        selections: Sequence[SelectedList] | None = None,
        *,
        geocoding_enabled: bool = True,
    ) -> str:
        job_id = self.tracker.create_job(
            owner_id,
            geocoding_enabled=geocoding_enabled,
            archive_path=str(archive_path),
        )
        pipeline = self.pipelines[geocoding_enabled]
        future = self._executor.submit(pipeline.run, job_id, archive_path, selections)
        with self._lock:
            self._futures[job_id] = future
        future.add_done_callback(lambda _: self._forget(job_id))
        LOGGER.info("Queued import job %s for owner %s (geocoding=%s)", job_id, owner_id, geocoding_enabled)
        return job_id

    def _forget(self, job_id: str) -> None:
        with self._lock:
            self._futures.pop(job_id, None)

    def wait(self, job_ids: Sequence[str] | None = None, timeout: float | None = None) -> None:
        """Block until the given (or all queued) jobs finish."""

        with self._lock:
            if job_ids is None:
                futures = list(self._futures.values())
            else:
                futures = [self._futures[job_id] for job_id in job_ids if job_id in self._futures]
        wait_futures(futures, timeout=timeout)

    def pending_jobs(self) -> int:
        with self._lock:
            return len(self._futures)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)
        if self.geocoding_pool is not None:
            self.geocoding_pool.shutdown(wait=wait)


def build_dispatcher(
    *,
    engine: Engine,
    config: ImportConfig,
    store: JobStore | None = None,
    client: NominatimClient | None = None,
) -> ImportDispatcher:
    """Wire tracker, resolvers, writer and pools for one process."""

    rules = load_rule_tables(config.rules_path)
    tracker = JobTracker(store)
    writer = PersistenceWriter(engine)
    pool = GeocodingPool(config.geocoder_pool_size)
    limiter = RateLimiter(config.geocoder_min_interval_seconds)
    if client is None:
        client = NominatimClient(config.geocoder_url, config.geocoder_email, config.geocoder_timeout_seconds)

    pipelines = {
        enabled: ImportPipeline(
            tracker=tracker,
            resolver=GeocodingResolver(client, rules, config, pool=pool, limiter=limiter, enabled=enabled),
            writer=writer,
            rules=rules,
            config=config,
        )
        for enabled in (True, False)
    }
    return ImportDispatcher(tracker=tracker, pipelines=pipelines, max_workers=config.job_workers, geocoding_pool=pool)
