# This file assembles the FastAPI application for the saved-list import service.
# The lifespan checks the database on the way up and stops the background import workers on the way down.
# Every request gets an id, a timing header, and Prometheus counters keyed by route template.

from __future__ import annotations

import logging
import time
import uuid
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Gauge, Histogram, generate_latest
from starlette.middleware.base import RequestResponseEndpoint

from src.api.api_config import ApiConfig, get_api_config
from src.api.dependencies import get_database_client, shutdown_import_service
from src.api.error_handlers import register_error_handlers
from src.api.routers.health import router as health_router
from src.api.routers.imports import router as imports_router
from src.common.logging import configure_logging
from src.importer.writer import apply_import_ddl

LOGGER = logging.getLogger("api")

HTTP_REQUESTS_TOTAL = Counter(
    "saved_lists_api_requests_total",
    "HTTP requests handled, by route template and status.",
    ["method", "route", "status_code"],
)
HTTP_REQUEST_SECONDS = Histogram(
    "saved_lists_api_request_duration_seconds",
    "HTTP request latency. Import starts only enqueue work, so they stay in the low buckets.",
    ["method", "route"],
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5),
)
HTTP_INFLIGHT = Gauge("saved_lists_api_inflight_requests", "Requests currently being served.")


def _route_label(request: Request) -> str:
    # Templates such as /api/v1/imports/{job_id} keep job ids out of label values.
    route = request.scope.get("route")
    return str(getattr(route, "path", "unmatched"))


def _lifespan(config: ApiConfig):
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        db = get_database_client()
        app.state.db_connected_at_startup = db.can_connect()
        if not app.state.db_connected_at_startup:
            LOGGER.warning("Database unreachable at startup; import jobs will fail until it recovers")
        elif config.apply_ddl_on_startup:
            apply_import_ddl(db.engine)
            LOGGER.info("Import tables ensured")
        try:
            yield
        finally:
            shutdown_import_service()

    return lifespan


def _install_request_context(app: FastAPI) -> None:
    @app.middleware("http")
    async def request_context(request: Request, call_next: RequestResponseEndpoint) -> Response:
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id

        started = time.perf_counter()
        status_code = 500
        HTTP_INFLIGHT.inc()
        try:
            response = await call_next(request)
            status_code = response.status_code
            response.headers["x-request-id"] = request_id
            response.headers["x-response-time-ms"] = f"{(time.perf_counter() - started) * 1000.0:.2f}"
            return response
        finally:
            HTTP_INFLIGHT.dec()
            route = _route_label(request)
            HTTP_REQUESTS_TOTAL.labels(method=request.method, route=route, status_code=str(status_code)).inc()
            HTTP_REQUEST_SECONDS.labels(method=request.method, route=route).observe(time.perf_counter() - started)


def create_app() -> FastAPI:
    configure_logging()
    config = get_api_config()

    app = FastAPI(
        title=config.api_name,
        description=(
            "Imports exported saved-place lists from an uploaded archive as background jobs. "
            "Analyze the archive, start a job for the lists you pick, then poll the job until it ends."
        ),
        version=config.app_version,
        lifespan=_lifespan(config),
        openapi_tags=[
            {"name": "health", "description": "Liveness, readiness of the import tables, and version."},
            {"name": "imports", "description": "Archive analysis, import jobs, and job status polling."},
        ],
    )

    if config.allowed_origins:
        app.add_middleware(
            CORSMiddleware,
            allow_origins=config.allowed_origins,
            allow_credentials=True,
            allow_methods=["GET", "POST"],
            allow_headers=["*"],
        )
    _install_request_context(app)

    @app.get("/metrics", include_in_schema=False)
    def metrics() -> Response:
        return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)

    register_error_handlers(app)
    app.include_router(health_router)
    app.include_router(imports_router, prefix=config.api_version_path)
    return app


app = create_app()
