# Coordinate resolution: retries, cool-down after declared unavailability, placeholders, and the shared pool.

from __future__ import annotations

from typing import Any

import pytest
import requests

from src.importer.errors import GeocodingUnavailable
from src.importer.geocoding import (
    GeocodeHit,
    GeocodingPool,
    GeocodingResolver,
    NominatimClient,
    RateLimiter,
    placeholder_coordinates,
)
from src.importer.models import CoordinateSource, ListContext, RawRecord, is_valid_coordinate
from tests.importer.support import FakeGeocoderClient, UnavailableGeocoderClient, make_config

TOKYO = ListContext(source_name="Tokyo Eats", display_name="Tokyo Eats")


class _FakeClock:
    def __init__(self) -> None:
        self.now = 100.0
        self.sleeps: list[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def _resolver(client: Any, rule_tables, **kwargs: Any) -> GeocodingResolver:
    config = kwargs.pop("config", make_config())
    return GeocodingResolver(
        client,
        rule_tables,
        config,
        limiter=kwargs.pop("limiter", RateLimiter(0.0, sleep=lambda _: None)),
        sleep=kwargs.pop("sleep", lambda _: None),
        **kwargs,
    )


def test_export_coordinates_skip_lookup(rule_tables) -> None:
    client = FakeGeocoderClient()
    resolver = _resolver(client, rule_tables)

    coords = resolver.resolve(RawRecord(title="Ichiran", latitude=35.69, longitude=139.70), TOKYO, 0)

    assert coords.source is CoordinateSource.EXPORT
    assert (coords.latitude, coords.longitude) == (35.69, 139.70)
    assert client.queries == []


def test_lookup_uses_address_before_title(rule_tables) -> None:
    client = FakeGeocoderClient(
        {"1-1 Jingumae, Tokyo": GeocodeHit(latitude=35.67, longitude=139.70, city="Tokyo", country="Japan")}
    )
    resolver = _resolver(client, rule_tables)

    coords = resolver.resolve(RawRecord(title="Harajuku", address="1-1 Jingumae, Tokyo"), TOKYO, 3)

    assert coords.source is CoordinateSource.GEOCODER
    assert coords.city == "Tokyo"
    assert coords.country == "Japan"
    assert client.queries == ["1-1 Jingumae, Tokyo"]


def test_no_match_falls_back_to_placeholder(rule_tables) -> None:
    resolver = _resolver(FakeGeocoderClient(), rule_tables)

    coords = resolver.resolve(RawRecord(title="Nowhere"), TOKYO, 2)

    assert coords.source is CoordinateSource.PLACEHOLDER
    assert coords.latitude == pytest.approx(35.6762 + 0.002)
    assert coords.longitude == pytest.approx(139.6503 + 0.002)


def test_transient_errors_are_retried_with_exponential_backoff(rule_tables) -> None:
    clock = _FakeClock()

    class _FlakyClient(FakeGeocoderClient):
        def search(self, query: str) -> GeocodeHit | None:
            self.queries.append(query)
            if len(self.queries) < 3:
                raise requests.ConnectionError("connection reset")
            return GeocodeHit(latitude=37.56, longitude=126.97, city="Seoul")

    client = _FlakyClient()
    resolver = _resolver(
        client,
        rule_tables,
        config=make_config(geocoder_max_retries=2, geocoder_backoff_seconds=0.5),
        sleep=clock.sleep,
    )

    coords = resolver.resolve(RawRecord(title="Gyeongbokgung"), TOKYO, 0)

    assert coords.source is CoordinateSource.GEOCODER
    assert len(client.queries) == 3
    assert clock.sleeps == [0.5, 1.0]


def test_exhausted_retries_degrade_to_placeholder(rule_tables) -> None:
    client = FakeGeocoderClient(failures={"Ichiran": requests.Timeout("slow")})
    resolver = _resolver(client, rule_tables, config=make_config(geocoder_max_retries=1))

    coords = resolver.resolve(RawRecord(title="Ichiran"), TOKYO, 0)

    assert coords.source is CoordinateSource.PLACEHOLDER
    assert len(client.queries) == 2


def test_declared_unavailability_starts_cool_down(rule_tables) -> None:
    clock = _FakeClock()
    limiter = RateLimiter(0.0, clock=clock, sleep=clock.sleep)
    client = UnavailableGeocoderClient()
    resolver = _resolver(
        client,
        rule_tables,
        config=make_config(geocoder_cooldown_seconds=60.0),
        limiter=limiter,
    )

    first = resolver.resolve(RawRecord(title="A"), TOKYO, 0)
    second = resolver.resolve(RawRecord(title="B"), TOKYO, 1)

    assert first.source is CoordinateSource.PLACEHOLDER
    assert second.source is CoordinateSource.PLACEHOLDER
    assert client.queries == ["A"]

    clock.now += 61.0
    resolver.resolve(RawRecord(title="C"), TOKYO, 2)
    assert client.queries == ["A", "C"]


def test_disabled_resolver_never_calls_client(rule_tables) -> None:
    client = FakeGeocoderClient()
    resolver = _resolver(client, rule_tables, enabled=False)

    coords = resolver.resolve_many([RawRecord(title=f"P{index}") for index in range(3)], TOKYO)

    assert [item.source for item in coords] == [CoordinateSource.PLACEHOLDER] * 3
    assert client.queries == []


def test_rate_limiter_spaces_calls() -> None:
    clock = _FakeClock()
    limiter = RateLimiter(1.1, clock=clock, sleep=clock.sleep)

    limiter.acquire()
    limiter.acquire()
    limiter.acquire()

    assert clock.sleeps == [pytest.approx(1.1), pytest.approx(1.1)]


def test_resolve_many_keeps_record_order_with_pool(rule_tables) -> None:
    hits = {f"P{index}": GeocodeHit(latitude=10.0 + index, longitude=20.0 + index) for index in range(8)}
    pool = GeocodingPool(max_workers=4)
    resolver = _resolver(FakeGeocoderClient(hits), rule_tables, pool=pool)
    progress: list[int] = []
    try:
        coords = resolver.resolve_many(
            [RawRecord(title=f"P{index}") for index in range(8)],
            TOKYO,
            on_resolved=progress.append,
        )
    finally:
        pool.shutdown()

    assert [item.latitude for item in coords] == [10.0 + index for index in range(8)]
    assert progress == list(range(1, 9))


def test_placeholder_is_pure_function_of_title_and_index(rule_tables) -> None:
    first = placeholder_coordinates("Tokyo Eats", 4, rule_tables, 0.001)
    again = placeholder_coordinates("Tokyo Eats", 4, rule_tables, 0.001)
    default = placeholder_coordinates("Weekend ideas", 0, rule_tables, 0.001)

    assert first == again
    assert first.city == "Tokyo"
    assert first.latitude == pytest.approx(35.6762 + 0.004)
    assert default.city is None
    assert (default.latitude, default.longitude) == (37.7749, -122.4194)


def test_placeholder_stays_valid_for_very_long_lists(rule_tables) -> None:
    wrapped = placeholder_coordinates("Tokyo Eats", 41000, rule_tables, 0.001)
    clamped = placeholder_coordinates("Tokyo Eats", 60000, rule_tables, 0.001)

    assert is_valid_coordinate(wrapped.latitude, wrapped.longitude)
    assert wrapped.latitude == pytest.approx(35.6762 + 41.0)
    assert wrapped.longitude == pytest.approx(139.6503 + 41.0 - 360.0)
    assert is_valid_coordinate(clamped.latitude, clamped.longitude)
    assert clamped.latitude == 90.0
    assert clamped.longitude == pytest.approx(139.6503 + 60.0 - 360.0)


class _StubResponse:
    def __init__(self, status_code: int, payload: Any = None) -> None:
        self.status_code = status_code
        self._payload = payload
        self.headers: dict[str, str] = {}

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"HTTP {self.status_code}")

    def json(self) -> Any:
        return self._payload


class _StubSession:
    def __init__(self, response: _StubResponse) -> None:
        self.response = response
        self.headers: dict[str, str] = {}
        self.calls: list[dict[str, Any]] = []

    def get(self, url: str, **kwargs: Any) -> _StubResponse:
        self.calls.append({"url": url, **kwargs})
        return self.response


def test_nominatim_client_parses_first_result() -> None:
    session = _StubSession(
        _StubResponse(
            200,
            [
                {
                    "lat": "35.6586",
                    "lon": "139.7454",
                    "display_name": "Tokyo Tower, Minato, Tokyo, Japan",
                    "address": {"town": "Minato", "country": "Japan"},
                }
            ],
        )
    )
    client = NominatimClient("https://nominatim.example/", "ops@example.com", 5.0, session=session)

    hit = client.search("Tokyo Tower")

    assert hit == GeocodeHit(
        latitude=35.6586,
        longitude=139.7454,
        city="Minato",
        country="Japan",
        display_name="Tokyo Tower, Minato, Tokyo, Japan",
    )
    call = session.calls[0]
    assert call["url"] == "https://nominatim.example/search"
    assert call["params"] == {"q": "Tokyo Tower", "format": "json", "limit": 1, "addressdetails": 1}
    assert "ops@example.com" in session.headers["User-Agent"]


def test_nominatim_client_maps_throttling_to_unavailable() -> None:
    client = NominatimClient("https://nominatim.example", "ops@example.com", 5.0, session=_StubSession(_StubResponse(429)))

    with pytest.raises(GeocodingUnavailable):
        client.search("anything")


def test_nominatim_client_empty_result_is_no_match() -> None:
    client = NominatimClient("https://nominatim.example", "ops@example.com", 5.0, session=_StubSession(_StubResponse(200, [])))

    assert client.search("anything") is None
