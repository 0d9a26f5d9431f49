# This file defines the API error payload and the exception handlers that produce it.
# Every failure, whether raised by a route, by request validation, or by the import pipeline, leaves as the same shape.
# Unexpected errors are reduced to a generic message so stack traces never reach clients.

from __future__ import annotations

import logging
from datetime import UTC, datetime
from typing import Any

from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.importer.errors import (
    ArchiveCorrupt,
    ArchiveEmpty,
    ImportPipelineError,
    JobNotFound,
)

LOGGER = logging.getLogger("api.errors")

# Pipeline errors that can reach a route, by the status and code clients see.
IMPORT_ERROR_RESPONSES: dict[type[ImportPipelineError], tuple[int, str]] = {
    JobNotFound: (404, "JOB_NOT_FOUND"),
    ArchiveCorrupt: (422, "ARCHIVE_CORRUPT"),
    ArchiveEmpty: (422, "ARCHIVE_EMPTY"),
}


class APIError(Exception):
    """Domain error type with structured API details."""

    def __init__(
        self,
        *,
        status_code: int,
        error_code: str,
        message: str,
        details: Any | None = None,
    ) -> None:
        self.status_code = status_code
        self.error_code = error_code
        self.message = message
        self.details = details
        super().__init__(message)

    @classmethod
    def from_import_error(cls, exc: ImportPipelineError) -> APIError:
        status_code, error_code = IMPORT_ERROR_RESPONSES.get(type(exc), (400, exc.kind.upper()))
        return cls(status_code=status_code, error_code=error_code, message=exc.message, details=exc.details or None)


def _error_body(*, request: Request, error_code: str, message: str, details: Any | None = None) -> dict[str, Any]:
    return {
        "error_code": error_code,
        "message": message,
        "details": details,
        "request_id": str(getattr(request.state, "request_id", "unknown")),
        "timestamp": datetime.now(tz=UTC).isoformat(),
    }


def _api_error_response(request: Request, exc: APIError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content=_error_body(request=request, error_code=exc.error_code, message=exc.message, details=exc.details),
    )


def register_error_handlers(app: FastAPI) -> None:
    """Register global exception handlers."""

    @app.exception_handler(APIError)
    async def api_error_handler(request: Request, exc: APIError) -> JSONResponse:
        return _api_error_response(request, exc)

    @app.exception_handler(ImportPipelineError)
    async def import_error_handler(request: Request, exc: ImportPipelineError) -> JSONResponse:
        return _api_error_response(request, APIError.from_import_error(exc))

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=422,
            content=_error_body(
                request=request,
                error_code="VALIDATION_ERROR",
                message="Invalid request parameters.",
                details=[
                    {"loc": list(error.get("loc", ())), "msg": error.get("msg"), "type": error.get("type")}
                    for error in exc.errors()
                ],
            ),
        )

    @app.exception_handler(HTTPException)
    async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
        return JSONResponse(
            status_code=exc.status_code,
            content=_error_body(request=request, error_code="HTTP_ERROR", message=str(exc.detail)),
        )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception) -> JSONResponse:
        LOGGER.exception("Unhandled error on %s %s", request.method, request.url.path, exc_info=exc)
        return JSONResponse(
            status_code=500,
            content=_error_body(
                request=request,
                error_code="INTERNAL_SERVER_ERROR",
                message="The server encountered an unexpected error.",
            ),
        )
