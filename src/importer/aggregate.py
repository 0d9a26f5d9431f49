"""
List aggregate assembly: normalized places plus the derived centroid, city, and category.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Sequence

import numpy as np

from src.importer.errors import NoValidCoordinates
from src.importer.geocoding import placeholder_address
from src.importer.models import (
    DEFAULT_PLACE_CATEGORY,
    Coordinates,
    CoordinateSource,
    ListAggregate,
    ListContext,
    NormalizedPlace,
    RawRecord,
    SelectedList,
)
from src.importer.record_parser import extract_place_id
from src.importer.rules import RuleTables


def normalize_place(record: RawRecord, coordinates: Coordinates) -> NormalizedPlace:
    if coordinates.source is CoordinateSource.PLACEHOLDER:
        address = record.address or placeholder_address(record.title)
    else:
        address = record.address or coordinates.address or record.title

    return NormalizedPlace(
        name=record.title,
        address=address,
        latitude=coordinates.latitude,
        longitude=coordinates.longitude,
        note=record.note,
        city=coordinates.city,
        country=coordinates.country,
        category=record.category or DEFAULT_PLACE_CATEGORY,
        external_place_id=extract_place_id(record.url),
        coordinate_source=coordinates.source,
    )


def compute_centroid(places: Sequence[NormalizedPlace]) -> tuple[float, float]:
    """Mean of valid member coordinates; raises `NoValidCoordinates` when there are none."""

    valid = [(place.latitude, place.longitude) for place in places if place.has_valid_coordinates]
    if not valid:
        raise NoValidCoordinates(
            "List has no place with valid coordinates",
            details={"place_count": len(places)},
        )
    center = np.asarray(valid, dtype=float).mean(axis=0)
    return float(center[0]), float(center[1])


def derive_city(title_text: str, places: Sequence[NormalizedPlace], rules: RuleTables) -> str | None:
    """Title keyword table first, then the members' geocoded cities, then the first precise address."""

    rule = rules.match_city(title_text)
    if rule is not None and rule.city:
        return rule.city

    precise = [place for place in places if place.coordinate_source is not CoordinateSource.PLACEHOLDER]

    cities = Counter(place.city for place in precise if place.city)
    if cities:
        return cities.most_common(1)[0][0]

    for place in precise:
        parts = [part.strip() for part in place.address.split(",")]
        if len(parts) >= 2 and parts[1]:
            return parts[1]
        break
    return None


def build_list_aggregate(
    *,
    owner_id: str,
    selection: SelectedList,
    context: ListContext,
    records: Sequence[RawRecord],
    coordinates: Sequence[Coordinates],
    rules: RuleTables,
    description: str,
    import_job_id: str | None = None,
) -> ListAggregate:
    if len(records) != len(coordinates):
        raise ValueError(f"Got {len(coordinates)} coordinates for {len(records)} records")

    places = tuple(normalize_place(record, coords) for record, coords in zip(records, coordinates))
    center_latitude, center_longitude = compute_centroid(places)

    address_tokens = [
        place.address for place in places if place.coordinate_source is not CoordinateSource.PLACEHOLDER
    ]

    return ListAggregate(
        owner_id=owner_id,
        source_name=context.source_name,
        title=selection.title,
        description=description,
        is_public=not selection.is_paid,
        is_paid=selection.is_paid,
        price=float(selection.price) if selection.is_paid else 0.0,
        center_latitude=center_latitude,
        center_longitude=center_longitude,
        city=derive_city(context.keyword_text, places, rules),
        category=rules.derive_category(context.keyword_text, address_tokens),
        places=places,
        import_job_id=import_job_id,
    )
