"""
Format detection and record parsing for per-list export files.
Tabular exports are read with pandas; structured exports are GeoJSON or plain JSON arrays.
"""

from __future__ import annotations

import hashlib
import io
import json
import logging
import re
from typing import Any

import pandas as pd

from src.importer.errors import ParseError
from src.importer.models import RawRecord, RecordFormat, is_valid_coordinate

LOGGER = logging.getLogger("importer.parser")

TITLE_COLUMNS = ("title", "name")
NOTE_COLUMNS = ("note", "notes", "comment")
URL_COLUMNS = ("url", "google maps url", "google_maps_url")
ADDRESS_COLUMNS = ("address", "location")
LATITUDE_COLUMNS = ("latitude", "lat")
LONGITUDE_COLUMNS = ("longitude", "lng", "lon")
CATEGORY_COLUMNS = ("category",)

STRUCTURED_CONTAINER_KEYS = ("features", "places", "items")

_PLACE_ID_SEGMENT = re.compile(r"1s([^:&!]+)")
_CID_PARAM = re.compile(r"[?&]cid=(\d+)")


def _decode(raw: bytes) -> str:
    try:
        return raw.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        raise ParseError(f"Export is not valid UTF-8: {exc}") from exc


def detect_format(raw: bytes) -> RecordFormat:
    """Structured when the payload opens with a JSON object or array, tabular otherwise."""

    text = _decode(raw).lstrip()
    if text.startswith(("{", "[")):
        return RecordFormat.STRUCTURED
    return RecordFormat.TABULAR


def extract_place_id(url: str | None) -> str | None:
    """Place identifier from a Maps URL, or a stable hash of the URL when it carries none."""

    if not url or not url.strip():
        return None
    url = url.strip()
    match = _PLACE_ID_SEGMENT.search(url)
    if match:
        return match.group(1)
    match = _CID_PARAM.search(url)
    if match:
        return match.group(1)
    return "imported_" + hashlib.sha256(url.encode("utf-8")).hexdigest()[:20]


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_float(value: Any) -> float | None:
    if value is None or (isinstance(value, str) and not value.strip()):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _coordinates(latitude: Any, longitude: Any) -> tuple[float | None, float | None]:
    lat, lng = _to_float(latitude), _to_float(longitude)
    if not is_valid_coordinate(lat, lng):
        return None, None
    return lat, lng


def _first_column(columns: dict[str, str], candidates: tuple[str, ...]) -> str | None:
    for candidate in candidates:
        if candidate in columns:
            return columns[candidate]
    return None


def _parse_tabular(text: str) -> list[RawRecord]:
    try:
        frame = pd.read_csv(io.StringIO(text), dtype=str, keep_default_na=False, skip_blank_lines=True)
    except (pd.errors.ParserError, pd.errors.EmptyDataError, ValueError) as exc:
        raise ParseError(f"Tabular export could not be parsed: {exc}") from exc

    columns = {str(column).strip().lower(): column for column in frame.columns}
    title_column = _first_column(columns, TITLE_COLUMNS)
    if title_column is None:
        raise ParseError(
            "Tabular export has no title column",
            details={"columns": [str(column) for column in frame.columns]},
        )

    note_column = _first_column(columns, NOTE_COLUMNS)
    url_column = _first_column(columns, URL_COLUMNS)
    address_column = _first_column(columns, ADDRESS_COLUMNS)
    latitude_column = _first_column(columns, LATITUDE_COLUMNS)
    longitude_column = _first_column(columns, LONGITUDE_COLUMNS)
    category_column = _first_column(columns, CATEGORY_COLUMNS)

    records: list[RawRecord] = []
    for row in frame.to_dict(orient="records"):
        title = _clean(row.get(title_column))
        if title is None:
            continue
        latitude, longitude = _coordinates(
            row.get(latitude_column) if latitude_column else None,
            row.get(longitude_column) if longitude_column else None,
        )
        records.append(
            RawRecord(
                title=title,
                note=_clean(row.get(note_column)) if note_column else None,
                url=_clean(row.get(url_column)) if url_column else None,
                address=_clean(row.get(address_column)) if address_column else None,
                latitude=latitude,
                longitude=longitude,
                category=_clean(row.get(category_column)) if category_column else None,
            )
        )
    return records


def _lookup(mapping: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = mapping.get(key)
        if value not in (None, ""):
            return value
    return None


def _structured_items(payload: Any) -> list[Any]:
    if isinstance(payload, list):
        return payload
    if isinstance(payload, dict):
        for key in STRUCTURED_CONTAINER_KEYS:
            items = payload.get(key)
            if isinstance(items, list):
                return items
    raise ParseError("Structured export holds no list of places")


def _feature_record(feature: dict[str, Any]) -> RawRecord | None:
    properties = feature.get("properties") or {}
    location = properties.get("Location") or properties.get("location") or {}
    if not isinstance(location, dict):
        location = {}

    title = _clean(
        _lookup(properties, "name", "Title", "title") or _lookup(location, "Business Name", "name", "Name")
    )
    if title is None:
        return None

    latitude = longitude = None
    geometry = feature.get("geometry") or {}
    coordinates = geometry.get("coordinates") if isinstance(geometry, dict) else None
    if isinstance(coordinates, list) and len(coordinates) >= 2:
        # GeoJSON positions are [longitude, latitude].
        latitude, longitude = _coordinates(coordinates[1], coordinates[0])

    return RawRecord(
        title=title,
        note=_clean(_lookup(properties, "Comment", "comment", "note", "Note")),
        url=_clean(_lookup(properties, "Google Maps URL", "google_maps_url", "url", "URL")),
        address=_clean(_lookup(location, "Address", "address") or _lookup(properties, "address", "Address")),
        latitude=latitude,
        longitude=longitude,
        category=_clean(_lookup(location, "Business Status") or properties.get("category")),
    )


def _object_record(item: dict[str, Any]) -> RawRecord | None:
    lowered = {str(key).strip().lower(): value for key, value in item.items()}
    title = _clean(_lookup(lowered, *TITLE_COLUMNS))
    if title is None:
        return None
    latitude, longitude = _coordinates(
        _lookup(lowered, *LATITUDE_COLUMNS),
        _lookup(lowered, *LONGITUDE_COLUMNS),
    )
    return RawRecord(
        title=title,
        note=_clean(_lookup(lowered, *NOTE_COLUMNS)),
        url=_clean(_lookup(lowered, *URL_COLUMNS)),
        address=_clean(_lookup(lowered, *ADDRESS_COLUMNS)),
        latitude=latitude,
        longitude=longitude,
        category=_clean(_lookup(lowered, *CATEGORY_COLUMNS)),
    )


def _parse_structured(text: str) -> list[RawRecord]:
    try:
        payload = json.loads(text)
    except json.JSONDecodeError as exc:
        raise ParseError(f"Structured export is not valid JSON: {exc}") from exc

    records: list[RawRecord] = []
    for item in _structured_items(payload):
        if not isinstance(item, dict):
            continue
        if isinstance(item.get("properties"), dict):
            record = _feature_record(item)
        else:
            record = _object_record(item)
        if record is not None:
            records.append(record)
    return records


def parse_records(raw: bytes) -> list[RawRecord]:
    """Parse one export file into raw records, dropping rows without a title.

    Raises `ParseError` when the file cannot be read as either supported format.
    """

    export_format = detect_format(raw)
    text = _decode(raw)
    if export_format is RecordFormat.STRUCTURED:
        records = _parse_structured(text)
    else:
        records = _parse_tabular(text)
    LOGGER.debug("Parsed %s %s records", len(records), export_format.value)
    return records
