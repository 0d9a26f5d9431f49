# This file builds response envelopes for API endpoints in a consistent format.
# Every payload carries version metadata and the request id so pollers can correlate responses with logs.

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any


def api_version_label(api_version_path: str) -> str:
    """Convert `/api/v1` style paths into `v1` labels."""

    parts = [part for part in api_version_path.rstrip("/").split("/") if part]
    if not parts:
        raise ValueError(f"Invalid api_version_path: {api_version_path!r}")
    return parts[-1]


def build_object_envelope(
    *,
    api_version_path: str,
    schema_version: str,
    request_id: str,
    data: dict[str, Any] | list[dict[str, Any]] | None,
    warnings: list[str] | None = None,
) -> dict[str, Any]:
    return {
        "api_version": api_version_label(api_version_path),
        "schema_version": schema_version,
        "request_id": request_id,
        "generated_at": datetime.now(tz=UTC),
        "data": data,
        "warnings": warnings,
    }
