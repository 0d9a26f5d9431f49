"""
Coordinate resolution for imported places.

Lookups go to an OpenStreetMap Nominatim endpoint through a rate limiter and a bounded
thread pool shared by every running job. When the service is unreachable, declares itself
unavailable, or simply has no match, the resolver falls back to a deterministic placeholder
derived from the list title, so resolution never fails an import.
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Sequence
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass
from typing import Any

import requests

from src.importer.errors import GeocodingUnavailable
from src.importer.importer_config import ImportConfig
from src.importer.metrics import IMPORT_GEOCODE_LOOKUPS_TOTAL
from src.importer.models import Coordinates, CoordinateSource, ListContext, RawRecord, is_valid_coordinate
from src.importer.rules import RuleTables

LOGGER = logging.getLogger("importer.geocoding")

UNAVAILABLE_STATUS_CODES = frozenset({429, 503})


@dataclass(frozen=True)
class GeocodeHit:
    latitude: float
    longitude: float
    city: str | None = None
    country: str | None = None
    display_name: str | None = None


def placeholder_address(title: str) -> str:
    return f"{title} (location approximate)"


def placeholder_coordinates(list_title: str, index: int, rules: RuleTables, offset: float) -> Coordinates:
    """Deterministic stand-in location: the list's city base shifted by `index * offset` degrees.

    Longitude wraps around the antimeridian and latitude is clamped at the poles, so very long
    lists still get valid coordinates.
    """

    base = rules.base_for(list_title)
    shift = index * offset
    longitude = base.longitude + shift
    if not -180.0 <= longitude <= 180.0:
        longitude = ((longitude + 180.0) % 360.0) - 180.0
    return Coordinates(
        latitude=min(90.0, max(-90.0, base.latitude + shift)),
        longitude=longitude,
        source=CoordinateSource.PLACEHOLDER,
        city=base.city,
    )


class NominatimClient:
    """Thin HTTP client for the Nominatim `/search` endpoint."""

    def __init__(
        self,
        base_url: str,
        email: str,
        timeout_seconds: float,
        session: requests.Session | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout_seconds = timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": f"SavedListsImport/1.0 ({email})"})

    def search(self, query: str) -> GeocodeHit | None:
        """Return the best match for `query`, or None when the service has no result.

        Raises `GeocodingUnavailable` when the service refuses work (429/503) and lets
        `requests.RequestException` propagate for transport failures.
        """

        response = self.session.get(
            f"{self.base_url}/search",
            params={"q": query, "format": "json", "limit": 1, "addressdetails": 1},
            timeout=self.timeout_seconds,
        )
        if response.status_code in UNAVAILABLE_STATUS_CODES:
            raise GeocodingUnavailable(
                f"Geocoder declared unavailability (HTTP {response.status_code})",
                details={"status_code": response.status_code, "retry_after": response.headers.get("Retry-After")},
            )
        response.raise_for_status()

        payload = response.json()
        if not isinstance(payload, list) or not payload:
            return None
        return _hit_from_payload(payload[0])


def _hit_from_payload(item: dict[str, Any]) -> GeocodeHit | None:
    try:
        latitude = float(item["lat"])
        longitude = float(item["lon"])
    except (KeyError, TypeError, ValueError):
        return None
    if not is_valid_coordinate(latitude, longitude):
        return None
    address = item.get("address") or {}
    return GeocodeHit(
        latitude=latitude,
        longitude=longitude,
        city=address.get("city") or address.get("town") or address.get("village"),
        country=address.get("country"),
        display_name=item.get("display_name"),
    )


class RateLimiter:
    """Spaces outbound lookups at least `min_interval_seconds` apart across all threads.

    Also tracks a cool-down window opened when the service declares itself unavailable.
    """

    def __init__(
        self,
        min_interval_seconds: float,
        *,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.min_interval_seconds = min_interval_seconds
        self._clock = clock
        self._sleep = sleep
        self._lock = threading.Lock()
        self._next_slot = 0.0
        self._cooldown_until = 0.0

    def acquire(self) -> None:
        # Reserve a slot under the lock, then wait outside it so other threads can queue behind.
        with self._lock:
            now = self._clock()
            slot = max(now, self._next_slot)
            self._next_slot = slot + self.min_interval_seconds
        wait = slot - now
        if wait > 0:
            self._sleep(wait)

    def cool_down(self, seconds: float) -> None:
        with self._lock:
            self._cooldown_until = max(self._cooldown_until, self._clock() + seconds)

    def cooling_down(self) -> bool:
        with self._lock:
            return self._clock() < self._cooldown_until


class GeocodingPool:
    """Bounded worker pool shared by all jobs; excess lookups queue inside the executor."""

    def __init__(self, max_workers: int) -> None:
        self.max_workers = max_workers
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="geocoder")

    def submit(self, fn: Callable[..., Any], *args: Any) -> Future:
        return self._executor.submit(fn, *args)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class GeocodingResolver:
    def __init__(
        self,
        client: NominatimClient | None,
        rules: RuleTables,
        config: ImportConfig,
        *,
        pool: GeocodingPool | None = None,
        limiter: RateLimiter | None = None,
        enabled: bool = True,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.client = client
        self.rules = rules
        self.config = config
        self.pool = pool
        self.limiter = limiter or RateLimiter(config.geocoder_min_interval_seconds, sleep=sleep)
        self.enabled = enabled and client is not None
        self._sleep = sleep

    def resolve(self, record: RawRecord, context: ListContext, index: int) -> Coordinates:
        """Coordinates for one record; never raises, only degrades to a placeholder."""

        if record.has_coordinates:
            IMPORT_GEOCODE_LOOKUPS_TOTAL.labels(result="export").inc()
            return Coordinates(
                latitude=float(record.latitude),
                longitude=float(record.longitude),
                source=CoordinateSource.EXPORT,
                address=record.address,
            )

        if not self.enabled:
            IMPORT_GEOCODE_LOOKUPS_TOTAL.labels(result="disabled").inc()
            return self.placeholder(context, index)

        query = record.address or record.title
        try:
            hit = self._lookup(query)
        except GeocodingUnavailable as exc:
            IMPORT_GEOCODE_LOOKUPS_TOTAL.labels(result="unavailable").inc()
            LOGGER.debug("Placeholder for %r: %s", query, exc.message)
            return self.placeholder(context, index)

        if hit is None:
            IMPORT_GEOCODE_LOOKUPS_TOTAL.labels(result="no_match").inc()
            LOGGER.debug("No geocoder match for %r; using placeholder", query)
            return self.placeholder(context, index)

        IMPORT_GEOCODE_LOOKUPS_TOTAL.labels(result="resolved").inc()
        return Coordinates(
            latitude=hit.latitude,
            longitude=hit.longitude,
            source=CoordinateSource.GEOCODER,
            address=record.address or hit.display_name,
            city=hit.city,
            country=hit.country,
        )

    def placeholder(self, context: ListContext, index: int) -> Coordinates:
        return placeholder_coordinates(
            context.keyword_text,
            index,
            self.rules,
            self.config.placeholder_offset_degrees,
        )

    def _lookup(self, query: str) -> GeocodeHit | None:
        if self.limiter.cooling_down():
            raise GeocodingUnavailable("Geocoder is cooling down after declared unavailability")

        attempts = self.config.geocoder_max_retries + 1
        last_error: Exception | None = None
        for attempt in range(attempts):
            self.limiter.acquire()
            try:
                return self.client.search(query)
            except GeocodingUnavailable:
                self.limiter.cool_down(self.config.geocoder_cooldown_seconds)
                LOGGER.info(
                    "Geocoder unavailable; placeholders for the next %.0fs",
                    self.config.geocoder_cooldown_seconds,
                )
                raise
            except requests.RequestException as exc:
                last_error = exc
                if attempt + 1 < attempts:
                    self._sleep(self.config.geocoder_backoff_seconds * (2**attempt))

        raise GeocodingUnavailable(
            f"Geocoding failed after {attempts} attempts: {last_error}",
            details={"query": query},
        )

    def resolve_many(
        self,
        records: Sequence[RawRecord],
        context: ListContext,
        on_resolved: Callable[[int], None] | None = None,
    ) -> list[Coordinates]:
        """Resolve a whole list, in record order.

        `on_resolved` is called on the calling thread with the number of records resolved so far.
        """

        results: list[Coordinates | None] = [None] * len(records)
        if self.pool is None or not self.enabled:
            for index, record in enumerate(records):
                results[index] = self.resolve(record, context, index)
                if on_resolved is not None:
                    on_resolved(index + 1)
            return [item for item in results if item is not None]

        futures = {
            self.pool.submit(self.resolve, record, context, index): index
            for index, record in enumerate(records)
        }
        for done, future in enumerate(as_completed(futures), start=1):
            results[futures[future]] = future.result()
            if on_resolved is not None:
                on_resolved(done)
        return [item for item in results if item is not None]
