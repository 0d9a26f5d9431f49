# Domain records passed between import pipeline stages.
# Raw records are transient parser output; normalized places and list aggregates are what the writer persists.

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class RecordFormat(str, Enum):
    TABULAR = "tabular"
    STRUCTURED = "structured"


class CoordinateSource(str, Enum):
    EXPORT = "export"
    GEOCODER = "geocoder"
    PLACEHOLDER = "placeholder"


DEFAULT_PLACE_CATEGORY = "general"


def is_valid_coordinate(latitude: float | None, longitude: float | None) -> bool:
    """In-range and not the (0, 0) marker exports use for unknown locations."""

    if latitude is None or longitude is None:
        return False
    if latitude != latitude or longitude != longitude:  # NaN
        return False
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return False
    return not (latitude == 0.0 and longitude == 0.0)


@dataclass(frozen=True)
class ListSource:
    """One per-list export file found inside an archive."""

    entry_name: str
    name: str
    extension: str


@dataclass(frozen=True)
class SelectedList:
    name: str
    display_name: str | None = None
    is_paid: bool = False
    price: float = 0.0

    @property
    def title(self) -> str:
        return (self.display_name or "").strip() or self.name


@dataclass(frozen=True)
class RawRecord:
    title: str
    note: str | None = None
    url: str | None = None
    address: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    category: str | None = None

    @property
    def has_coordinates(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class ListContext:
    """What the resolver knows about the list a record belongs to."""

    source_name: str
    display_name: str

    @property
    def keyword_text(self) -> str:
        if self.display_name == self.source_name:
            return self.display_name
        return f"{self.display_name} {self.source_name}"


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float
    source: CoordinateSource
    address: str | None = None
    city: str | None = None
    country: str | None = None

    @property
    def is_precise(self) -> bool:
        return self.source is not CoordinateSource.PLACEHOLDER


@dataclass(frozen=True)
class NormalizedPlace:
    name: str
    address: str
    latitude: float | None
    longitude: float | None
    note: str | None = None
    city: str | None = None
    country: str | None = None
    category: str = DEFAULT_PLACE_CATEGORY
    rating: float | None = None
    price_level: int | None = None
    external_place_id: str | None = None
    coordinate_source: CoordinateSource = CoordinateSource.PLACEHOLDER

    @property
    def has_valid_coordinates(self) -> bool:
        return is_valid_coordinate(self.latitude, self.longitude)


@dataclass(frozen=True)
class ListAggregate:
    owner_id: str
    source_name: str
    title: str
    description: str
    is_public: bool
    is_paid: bool
    price: float
    center_latitude: float
    center_longitude: float
    city: str | None
    category: str | None
    places: tuple[NormalizedPlace, ...] = field(default_factory=tuple)
    import_job_id: str | None = None

    @property
    def place_count(self) -> int:
        return len(self.places)
