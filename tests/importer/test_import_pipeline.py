# End-to-end pipeline runs against a SQLite database with fake geocoders.

from __future__ import annotations

from pathlib import Path

import pytest
from sqlalchemy import text
from sqlalchemy.engine import Engine

from src.importer.errors import PersistenceError
from src.importer.geocoding import GeocodeHit
from src.importer.jobs import STAGE_ORDER, Stage
from src.importer.models import CoordinateSource, ListAggregate, SelectedList
from src.importer.pipeline import analyze_archive
from src.importer.writer import PersistenceWriter, fetch_lists_for_job
from tests.importer.support import (
    FakeGeocoderClient,
    UnavailableGeocoderClient,
    build_archive,
    build_pipeline,
    make_config,
    places_csv,
)

TOKYO_BASE = (35.6762, 139.6503)


def _list_rows(engine: Engine) -> list[dict]:
    with engine.connect() as connection:
        rows = connection.execute(text("SELECT title, city, place_count FROM lists ORDER BY title")).mappings().all()
    return [dict(row) for row in rows]


def _mixed_archive(tmp_path: Path) -> Path:
    return build_archive(
        tmp_path / "takeout.zip",
        {
            "Takeout/Saved/Seoul Cafes.csv": places_csv("Seoul", 3),
            "Takeout/Saved/NYC Bars.csv": places_csv("Bar", 2),
            "Takeout/Saved/Frankfurt.csv": places_csv("Frankfurt", 4),
            "Takeout/Saved/Broken.csv": "Note,URL\nno title column,https://example.com\n",
        },
    )


def test_partial_failure_completes_with_one_error(tmp_path: Path, sqlite_engine: Engine) -> None:
    client = FakeGeocoderClient({"Seoul 0": GeocodeHit(latitude=37.57, longitude=126.98, city="Seoul")})
    tracker, pipeline = build_pipeline(sqlite_engine, client=client)
    archive = _mixed_archive(tmp_path)
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert job.progress == 100
    assert len(job.errors) == 1
    assert "Broken" in job.errors[0]
    assert job.total_lists == 4
    assert job.lists_processed == 4
    assert len(job.created_list_ids) == 3

    rows = _list_rows(sqlite_engine)
    assert [row["title"] for row in rows] == ["Frankfurt", "NYC Bars", "Seoul Cafes"]
    assert sum(row["place_count"] for row in rows) == job.places_processed == 9
    assert job.total_places == 9

    failed = [outcome for outcome in job.list_results if outcome.status.value == "failed"]
    assert failed[0].error_kind == "parse_error"


def test_fast_import_uses_city_placeholders(tmp_path: Path, sqlite_engine: Engine) -> None:
    client = FakeGeocoderClient()
    tracker, pipeline = build_pipeline(sqlite_engine, client=client, geocoding_enabled=False)
    archive = build_archive(tmp_path / "takeout.zip", {"Saved/Tokyo Eats.csv": places_csv("Ramen", 5)})
    job_id = tracker.create_job("owner-1", geocoding_enabled=False)

    pipeline.run(job_id, archive)

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert job.errors == []
    assert client.queries == []

    (created,) = fetch_lists_for_job(sqlite_engine, import_job_id=job_id)
    assert created["city"] == "Tokyo"
    assert created["place_count"] == 5
    for index, place in enumerate(created["places"]):
        assert place["latitude"] == pytest.approx(TOKYO_BASE[0] + index * 0.001)
        assert place["longitude"] == pytest.approx(TOKYO_BASE[1] + index * 0.001)
        assert place["coordinate_source"] == CoordinateSource.PLACEHOLDER.value
        assert place["address"] == f"Ramen {index} (location approximate)"
    assert created["center_latitude"] == pytest.approx(TOKYO_BASE[0] + 0.002)


def test_stages_and_progress_are_monotonic(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient())
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, _mixed_archive(tmp_path))

    history = tracker.store.history[job_id]
    stages = [snapshot.stage for snapshot in history]
    progress = [snapshot.progress for snapshot in history]
    assert progress == sorted(progress)
    assert [STAGE_ORDER.index(stage) for stage in stages] == sorted(STAGE_ORDER.index(stage) for stage in stages)
    seen = list(dict.fromkeys(stages))
    assert seen == list(STAGE_ORDER)
    for snapshot in history:
        assert snapshot.lists_processed <= snapshot.total_lists
        assert snapshot.places_processed <= snapshot.total_places


def test_corrupt_archive_fails_job(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient())
    archive = tmp_path / "upload.zip"
    archive.write_bytes(b"PK but not really")
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    job = tracker.get(job_id)
    assert job.stage is Stage.ERROR
    assert job.lists_processed == 0
    assert len(job.errors) == 1
    assert job.completed_at is not None
    assert _list_rows(sqlite_engine) == []
    assert [snapshot.stage for snapshot in tracker.store.history[job_id]][-1] is Stage.ERROR


def test_selection_scopes_lists_and_metadata(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient(), geocoding_enabled=False)
    job_id = tracker.create_job("owner-1")
    selections = [
        SelectedList(name="Seoul Cafes", display_name="Best of Seoul", is_paid=True, price=2.5),
        SelectedList(name="Not In Archive"),
    ]

    pipeline.run(job_id, _mixed_archive(tmp_path), selections)

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert job.total_lists == 1
    (created,) = fetch_lists_for_job(sqlite_engine, import_job_id=job_id)
    assert created["title"] == "Best of Seoul"
    assert created["city"] == "Seoul"
    assert bool(created["is_paid"]) is True
    assert bool(created["is_public"]) is False
    assert float(created["price"]) == pytest.approx(2.5)


def test_selection_matching_nothing_fails_job(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient())
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, _mixed_archive(tmp_path), [SelectedList(name="Nope")])

    job = tracker.get(job_id)
    assert job.stage is Stage.ERROR
    assert "None of the selected lists" in job.errors[0]


def test_list_without_rows_is_skipped_silently(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient())
    archive = build_archive(
        tmp_path / "takeout.zip",
        {
            "Saved/Empty.csv": "Title,Note,URL,Comment\n",
            "Saved/Seoul.csv": places_csv("Seoul", 2),
        },
    )
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert job.errors == []
    assert job.lists_processed == 2
    assert len(job.created_list_ids) == 1
    assert [outcome.status.value for outcome in job.list_results] == ["skipped", "created"]


class _FailingWriter(PersistenceWriter):
    def commit(self, aggregate: ListAggregate) -> str:
        if aggregate.source_name == "NYC Bars":
            raise PersistenceError("disk full")
        return super().commit(aggregate)


def test_persistence_failure_only_skips_that_list(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient(), geocoding_enabled=False)
    pipeline.writer = _FailingWriter(sqlite_engine)
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, _mixed_archive(tmp_path))

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert len(job.errors) == 2
    assert [row["title"] for row in _list_rows(sqlite_engine)] == ["Frankfurt", "Seoul Cafes"]
    assert job.places_processed == 7


def test_archive_is_removed_after_run_when_configured(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(
        sqlite_engine,
        client=FakeGeocoderClient(),
        geocoding_enabled=False,
        config=make_config(cleanup_archive=True),
    )
    archive = _mixed_archive(tmp_path)
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    assert not archive.exists()


def test_analyze_counts_titled_rows(tmp_path: Path) -> None:
    summaries = analyze_archive(_mixed_archive(tmp_path), make_config())

    by_name = {item["name"]: item for item in summaries}
    assert by_name["Seoul Cafes"]["place_count"] == 3
    assert by_name["Frankfurt"]["format"] == "tabular"
    assert by_name["Broken"]["place_count"] == 0
    assert by_name["Broken"]["error"]


def test_places_resolved_advances_during_geocoding(tmp_path: Path, sqlite_engine: Engine) -> None:
    tracker, pipeline = build_pipeline(sqlite_engine, client=FakeGeocoderClient())
    archive = build_archive(tmp_path / "takeout.zip", {"Saved/Seoul.csv": places_csv("Seoul", 4)})
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    geocoding = [snapshot for snapshot in tracker.store.history[job_id] if snapshot.stage is Stage.GEOCODING]
    resolved = [snapshot.places_resolved for snapshot in geocoding]
    assert resolved == sorted(resolved)
    assert resolved[-1] == 4
    assert {snapshot.places_processed for snapshot in geocoding} == {0}
    assert tracker.get(job_id).to_status()["places_resolved"] == 4


def test_unavailable_geocoder_falls_back_without_errors(tmp_path: Path, sqlite_engine: Engine) -> None:
    client = UnavailableGeocoderClient()
    tracker, pipeline = build_pipeline(sqlite_engine, client=client)
    archive = build_archive(tmp_path / "takeout.zip", {"Saved/Tokyo Eats.csv": places_csv("Ramen", 3)})
    job_id = tracker.create_job("owner-1")

    pipeline.run(job_id, archive)

    job = tracker.get(job_id)
    assert job.stage is Stage.COMPLETE
    assert job.errors == []
    assert client.queries
    (created,) = fetch_lists_for_job(sqlite_engine, import_job_id=job_id)
    assert created["city"] == "Tokyo"
    assert [place["coordinate_source"] for place in created["places"]] == ["placeholder"] * 3
    assert created["places"][2]["latitude"] == pytest.approx(TOKYO_BASE[0] + 0.002)
