# This file defines schema pieces shared by the import and operational endpoints.
# Envelope metadata and the error payload are declared once so every route exposes the same contract.

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class EnvelopeFields(BaseModel):
    api_version: str
    schema_version: str
    request_id: str
    generated_at: datetime
    warnings: list[str] | None = None


class ErrorResponse(BaseModel):
    error_code: str
    message: str
    details: Any | None = None
    request_id: str
    timestamp: datetime
