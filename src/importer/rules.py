# This module holds the keyword rule tables used to infer a list's city and category.
# Tables are loaded from YAML and evaluated in order, so adding a city or category never touches parsing code.
# Matching is word-prefix and case-insensitive; the first rule with a matching keyword wins.

from __future__ import annotations

import re
from collections.abc import Iterable
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml


@dataclass(frozen=True)
class CityRule:
    city: str | None
    latitude: float
    longitude: float
    keywords: tuple[str, ...] = ()


@dataclass(frozen=True)
class CategoryRule:
    category: str
    keywords: tuple[str, ...]


@dataclass(frozen=True)
class RuleTables:
    cities: tuple[CityRule, ...]
    default_city: CityRule
    categories: tuple[CategoryRule, ...]

    def match_city(self, text: str | None) -> CityRule | None:
        """Return the first city rule whose keyword appears in `text`."""

        for rule in self.cities:
            if _matches_any(text, rule.keywords):
                return rule
        return None

    def base_for(self, text: str | None) -> CityRule:
        return self.match_city(text) or self.default_city

    def match_category(self, text: str | None) -> str | None:
        for rule in self.categories:
            if _matches_any(text, rule.keywords):
                return rule.category
        return None

    def derive_category(self, title: str | None, address_tokens: Iterable[str | None] = ()) -> str | None:
        """Title rules win; address text is only consulted when the title says nothing."""

        category = self.match_category(title)
        if category is not None:
            return category
        joined = " ".join(token for token in address_tokens if token)
        return self.match_category(joined) if joined else None


@lru_cache(maxsize=256)
def _keyword_pattern(keyword: str) -> re.Pattern[str]:
    escaped = r"\s+".join(re.escape(part) for part in keyword.lower().split())
    return re.compile(rf"\b{escaped}", re.IGNORECASE)


def _matches_any(text: str | None, keywords: tuple[str, ...]) -> bool:
    if not text:
        return False
    return any(_keyword_pattern(keyword).search(text) for keyword in keywords)


def _load_yaml(path: Path) -> dict[str, Any]:
    with path.open(encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Rules at {path} must be a mapping, got: {type(loaded).__name__}")
    return dict(loaded)


def _keywords(raw: Any, *, where: str) -> tuple[str, ...]:
    if not isinstance(raw, list) or not raw:
        raise ValueError(f"{where}: keywords must be a non-empty list")
    return tuple(str(item).strip().lower() for item in raw if str(item).strip())


def _city_rule(raw: dict[str, Any], *, where: str, require_keywords: bool = True) -> CityRule:
    try:
        latitude = float(raw["latitude"])
        longitude = float(raw["longitude"])
    except (KeyError, TypeError, ValueError) as exc:
        raise ValueError(f"{where}: latitude/longitude are required numbers") from exc
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        raise ValueError(f"{where}: coordinate out of range ({latitude}, {longitude})")
    city = raw.get("city")
    keywords = _keywords(raw.get("keywords"), where=where) if require_keywords else ()
    return CityRule(city=str(city) if city else None, latitude=latitude, longitude=longitude, keywords=keywords)


def parse_rule_tables(payload: dict[str, Any]) -> RuleTables:
    cities = tuple(
        _city_rule(dict(item), where=f"cities[{index}]")
        for index, item in enumerate(payload.get("cities") or [])
    )
    default_raw = dict((payload.get("placeholder") or {}).get("default") or {})
    default_city = _city_rule(default_raw, where="placeholder.default", require_keywords=False)

    categories: list[CategoryRule] = []
    for index, item in enumerate(payload.get("categories") or []):
        category = str(dict(item).get("category") or "").strip()
        if not category:
            raise ValueError(f"categories[{index}]: category name is required")
        categories.append(
            CategoryRule(category=category, keywords=_keywords(item.get("keywords"), where=f"categories[{index}]"))
        )

    return RuleTables(cities=cities, default_city=default_city, categories=tuple(categories))


@lru_cache(maxsize=8)
def load_rule_tables(path: str) -> RuleTables:
    """Load and validate rule tables; cached per path."""

    return parse_rule_tables(_load_yaml(Path(path)))
