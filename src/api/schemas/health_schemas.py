# This file defines response schemas for health, readiness, and version endpoints.
# Readiness reports each import table separately so operators can tell a missing migration from a dead database.

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel


class OperationalFields(BaseModel):
    api_version: str
    schema_version: str
    request_id: str
    timestamp: datetime


class HealthResponse(OperationalFields):
    status: str
    environment: str
    service_name: str


class ReadinessResponse(OperationalFields):
    db_connected: bool
    # Table name -> present; keys follow the DDL apply order.
    import_tables: dict[str, bool]
    ready: bool
    database: str


class VersionResponse(OperationalFields):
    api_version_path: str
    app_version: str
    project: str
