# This file provides dependency factories for FastAPI routes and middleware.
# Services are created once per process, so every request shares one job store and one geocoding pool.
# Tests replace these factories through `app.dependency_overrides`.

from __future__ import annotations

from functools import lru_cache
from typing import Annotated

from fastapi import Header

from src.api.api_config import ApiConfig, get_api_config
from src.api.db_access import DatabaseClient
from src.api.error_handlers import APIError
from src.api.services.import_service import ImportService
from src.importer.dispatcher import build_dispatcher
from src.importer.importer_config import load_import_config


@lru_cache(maxsize=1)
def get_database_client() -> DatabaseClient:
    config = get_api_config()
    return DatabaseClient(database_url=config.database_url)


@lru_cache(maxsize=1)
def get_import_service() -> ImportService:
    config = get_api_config()
    import_config = load_import_config()
    db_client = get_database_client()
    dispatcher = build_dispatcher(engine=db_client.engine, config=import_config)
    return ImportService(config=config, import_config=import_config, dispatcher=dispatcher, engine=db_client.engine)


def shutdown_import_service() -> None:
    """Stop background workers if the import service was ever created."""

    if get_import_service.cache_info().currsize:
        get_import_service().shutdown()
        get_import_service.cache_clear()


def get_config() -> ApiConfig:
    return get_api_config()


def get_owner_id(x_user_id: Annotated[str | None, Header()] = None) -> str:
    """Owner identity set by the upstream authentication layer."""

    if x_user_id is None or not x_user_id.strip():
        raise APIError(
            status_code=401,
            error_code="OWNER_REQUIRED",
            message="X-User-Id header is required.",
        )
    return x_user_id.strip()
