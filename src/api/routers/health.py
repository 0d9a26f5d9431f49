# This file defines liveness, readiness, and version endpoints for API operations.
# Readiness requires a reachable database with every import table in place.

from __future__ import annotations

from datetime import UTC, datetime
from typing import Annotated

from fastapi import APIRouter, Depends, Request

from src.api.api_config import ApiConfig
from src.api.db_access import DatabaseClient
from src.api.dependencies import get_config, get_database_client
from src.api.response_envelope import api_version_label
from src.api.schemas.health_schemas import HealthResponse, ReadinessResponse, VersionResponse
from src.importer.writer import IMPORT_TABLES

router = APIRouter(tags=["health"])
ConfigDep = Annotated[ApiConfig, Depends(get_config)]
DBDep = Annotated[DatabaseClient, Depends(get_database_client)]


def _base_fields(request: Request, config: ApiConfig) -> dict[str, object]:
    return {
        "api_version": api_version_label(config.api_version_path),
        "schema_version": config.schema_version,
        "request_id": request.state.request_id,
        "timestamp": datetime.now(tz=UTC),
    }


@router.get("/health", response_model=HealthResponse)
def health(request: Request, config: ConfigDep) -> dict[str, object]:
    return {
        **_base_fields(request, config),
        "status": "ok",
        "environment": config.environment,
        "service_name": config.api_name,
    }


@router.get("/ready", response_model=ReadinessResponse)
def ready(request: Request, config: ConfigDep, db: DBDep) -> dict[str, object]:
    db_connected = db.can_connect()
    tables = {name: db_connected and db.table_exists(name) for name in IMPORT_TABLES}
    return {
        **_base_fields(request, config),
        "db_connected": db_connected,
        "import_tables": tables,
        "ready": db_connected and all(tables.values()),
        "database": "reachable" if db_connected else "unreachable",
    }


@router.get("/version", response_model=VersionResponse)
def version(request: Request, config: ConfigDep) -> dict[str, object]:
    return {
        **_base_fields(request, config),
        "api_version_path": config.api_version_path,
        "app_version": config.app_version,
        "project": config.api_name,
    }
