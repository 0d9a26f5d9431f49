# Shared helpers for API endpoint tests.
# Tests override the database and import service dependencies, so no real database or geocoder is touched.

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from src.api.api_config import ApiConfig
from src.api.app import app
from src.api.dependencies import get_config, get_database_client, get_import_service
from src.api.services.import_service import ImportService
from src.importer.dispatcher import build_dispatcher
from src.importer.writer import IMPORT_TABLES
from tests.importer.support import FakeGeocoderClient, make_config


def build_test_config(*, upload_dir: Path | str = "uploads") -> ApiConfig:
    """Create deterministic API config for tests."""

    return ApiConfig(
        api_name="Test Import API",
        api_version_path="/api/v1",
        schema_version="1.0.0",
        host="0.0.0.0",
        port=8000,
        environment="test",
        database_url="sqlite+pysqlite:///:memory:",
        allowed_origins=[],
        upload_dir=str(upload_dir),
        poll_interval_ms=2000,
        app_version="0.1.0",
    )


class FakeDBClient:
    """Simple fake DB dependency for health/readiness endpoint tests."""

    def __init__(self, *, connected: bool = True, existing_tables: set[str] | None = None) -> None:
        self._connected = connected
        self._tables = set(IMPORT_TABLES) if existing_tables is None else existing_tables

    def can_connect(self) -> bool:
        return self._connected

    def table_exists(self, table_name: str) -> bool:
        return self._connected and table_name in self._tables


def build_import_service(config: ApiConfig, engine: Engine, client: Any | None = None) -> ImportService:
    import_config = make_config()
    dispatcher = build_dispatcher(engine=engine, config=import_config, client=client or FakeGeocoderClient())
    return ImportService(config=config, import_config=import_config, dispatcher=dispatcher, engine=engine)


@contextmanager
def api_test_client(
    *,
    config: ApiConfig | None = None,
    db_client: Any | None = None,
    import_service: Any | None = None,
) -> Iterator[TestClient]:
    """Yield a TestClient with scoped dependency overrides."""

    resolved_config = config or build_test_config()

    app.dependency_overrides[get_config] = lambda: resolved_config
    if db_client is not None:
        app.dependency_overrides[get_database_client] = lambda: db_client
    if import_service is not None:
        app.dependency_overrides[get_import_service] = lambda: import_service

    try:
        with TestClient(app) as client:
            yield client
    finally:
        app.dependency_overrides.clear()
        if isinstance(import_service, ImportService):
            import_service.dispatcher.shutdown()
