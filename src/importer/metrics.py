# Prometheus metrics for background import jobs.
# They are registered on the default registry, so the API's /metrics endpoint exposes them alongside HTTP metrics.

from __future__ import annotations

from prometheus_client import Counter, Gauge

IMPORT_JOBS_TOTAL = Counter(
    "import_jobs_total",
    "Import jobs that reached a terminal stage.",
    ["stage", "geocoding_enabled"],
)
IMPORT_LISTS_TOTAL = Counter(
    "import_lists_total",
    "Per-list import outcomes.",
    ["status"],
)
IMPORT_GEOCODE_LOOKUPS_TOTAL = Counter(
    "import_geocode_lookups_total",
    "Coordinate resolutions by result.",
    ["result"],
)
IMPORT_ACTIVE_JOBS = Gauge(
    "import_active_jobs",
    "Import jobs currently executing.",
)
