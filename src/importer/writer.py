# This module persists list aggregates: one list row, its place rows, and their ordered memberships.
# Each aggregate is written inside a single transaction so readers never see a partially imported list.
# A failed commit rolls back only that list and surfaces as a PersistenceError.

from __future__ import annotations

import logging
import uuid
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from sqlalchemy import text
from sqlalchemy.engine import Connection, Engine
from sqlalchemy.exc import SQLAlchemyError

from src.importer.errors import PersistenceError
from src.importer.importer_config import REPO_ROOT
from src.importer.models import ListAggregate, NormalizedPlace

LOGGER = logging.getLogger("importer.writer")

IMPORT_DDL_ORDER = [
    "sql/ddl/lists.sql",
    "sql/ddl/places.sql",
    "sql/ddl/list_places.sql",
]

IMPORT_TABLES = ("lists", "places", "list_places")

_INSERT_LIST = text(
    """
    INSERT INTO lists (
        id,
        owner_id,
        title,
        description,
        is_public,
        is_paid,
        price,
        center_latitude,
        center_longitude,
        city,
        category,
        place_count,
        source_name,
        import_job_id,
        created_at
    ) VALUES (
        :id,
        :owner_id,
        :title,
        :description,
        :is_public,
        :is_paid,
        :price,
        :center_latitude,
        :center_longitude,
        :city,
        :category,
        :place_count,
        :source_name,
        :import_job_id,
        :created_at
    )
    """
)

_INSERT_PLACE = text(
    """
    INSERT INTO places (
        id,
        list_id,
        name,
        address,
        latitude,
        longitude,
        city,
        country,
        category,
        rating,
        price_level,
        external_place_id,
        coordinate_source,
        created_at
    ) VALUES (
        :id,
        :list_id,
        :name,
        :address,
        :latitude,
        :longitude,
        :city,
        :country,
        :category,
        :rating,
        :price_level,
        :external_place_id,
        :coordinate_source,
        :created_at
    )
    """
)

_INSERT_MEMBERSHIP = text(
    """
    INSERT INTO list_places (list_id, place_id, display_order, note)
    VALUES (:list_id, :place_id, :display_order, :note)
    """
)


def _split_statements(sql_text: str) -> list[str]:
    # Comment lines are dropped first; they may contain semicolons.
    body = "\n".join(line for line in sql_text.splitlines() if not line.lstrip().startswith("--"))
    return [statement.strip() for statement in body.split(";") if statement.strip()]


def apply_import_ddl(engine: Engine, root: Path = REPO_ROOT) -> None:
    """Create the import tables if they do not exist yet."""

    with engine.begin() as connection:
        for sql_file in IMPORT_DDL_ORDER:
            sql_text = (root / sql_file).read_text(encoding="utf-8")
            for statement in _split_statements(sql_text):
                connection.exec_driver_sql(statement)


def _place_params(place: NormalizedPlace, *, place_id: str, list_id: str, created_at: datetime) -> dict[str, Any]:
    return {
        "id": place_id,
        "list_id": list_id,
        "name": place.name,
        "address": place.address,
        "latitude": place.latitude,
        "longitude": place.longitude,
        "city": place.city,
        "country": place.country,
        "category": place.category,
        "rating": place.rating,
        "price_level": place.price_level,
        "external_place_id": place.external_place_id,
        "coordinate_source": place.coordinate_source.value,
        "created_at": created_at,
    }


class PersistenceWriter:
    def __init__(self, engine: Engine) -> None:
        self.engine = engine

    def commit(self, aggregate: ListAggregate) -> str:
        """Write one list aggregate atomically and return the new list id."""

        if not aggregate.places:
            raise PersistenceError("Refusing to persist a list without places", details={"title": aggregate.title})

        list_id = str(uuid.uuid4())
        created_at = datetime.now(UTC).replace(tzinfo=None)
        try:
            with self.engine.begin() as connection:
                self._write(connection, aggregate, list_id=list_id, created_at=created_at)
        except SQLAlchemyError as exc:
            LOGGER.warning("Rolled back list %r: %s", aggregate.title, exc)
            raise PersistenceError(
                f"Failed to save list {aggregate.title}: {exc.__class__.__name__}",
                details={"title": aggregate.title, "source_name": aggregate.source_name},
            ) from exc
        return list_id

    def _write(self, connection: Connection, aggregate: ListAggregate, *, list_id: str, created_at: datetime) -> None:
        connection.execute(
            _INSERT_LIST,
            {
                "id": list_id,
                "owner_id": aggregate.owner_id,
                "title": aggregate.title,
                "description": aggregate.description,
                "is_public": aggregate.is_public,
                "is_paid": aggregate.is_paid,
                "price": aggregate.price,
                "center_latitude": aggregate.center_latitude,
                "center_longitude": aggregate.center_longitude,
                "city": aggregate.city,
                "category": aggregate.category,
                "place_count": aggregate.place_count,
                "source_name": aggregate.source_name,
                "import_job_id": aggregate.import_job_id,
                "created_at": created_at,
            },
        )

        place_rows: list[dict[str, Any]] = []
        memberships: list[dict[str, Any]] = []
        for order, place in enumerate(aggregate.places):
            place_id = str(uuid.uuid4())
            place_rows.append(_place_params(place, place_id=place_id, list_id=list_id, created_at=created_at))
            memberships.append({"list_id": list_id, "place_id": place_id, "display_order": order, "note": place.note})

        connection.execute(_INSERT_PLACE, place_rows)
        connection.execute(_INSERT_MEMBERSHIP, memberships)


def fetch_lists_for_job(engine: Engine, *, import_job_id: str) -> list[dict[str, Any]]:
    """Created lists of one job with their places in display order."""

    with engine.begin() as connection:
        list_rows = connection.execute(
            text(
                """
                SELECT id, owner_id, title, description, is_public, is_paid, price,
                       center_latitude, center_longitude, city, category, place_count,
                       source_name, import_job_id, created_at
                FROM lists
                WHERE import_job_id = :import_job_id
                ORDER BY created_at, title
                """
            ),
            {"import_job_id": import_job_id},
        ).mappings().all()

        results: list[dict[str, Any]] = []
        for row in list_rows:
            place_rows = connection.execute(
                text(
                    """
                    SELECT p.id, p.name, p.address, p.latitude, p.longitude, p.city, p.country,
                           p.category, p.rating, p.price_level, p.external_place_id,
                           p.coordinate_source, lp.display_order, lp.note
                    FROM list_places lp
                    JOIN places p ON p.id = lp.place_id
                    WHERE lp.list_id = :list_id
                    ORDER BY lp.display_order
                    """
                ),
                {"list_id": row["id"]},
            ).mappings().all()
            item = dict(row)
            item["places"] = [dict(place) for place in place_rows]
            results.append(item)
    return results
