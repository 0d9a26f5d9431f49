# This module defines the runtime configuration for the saved-list import pipeline.
# API-triggered jobs and CLI runs resolve the same defaults here, with environment overrides on top.
# Rate-limit and retry knobs for the geocoder live next to the archive layout conventions they apply to.

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any

REPO_ROOT = Path(__file__).resolve().parents[2]
DEFAULT_RULES_PATH = REPO_ROOT / "configs" / "import_rules.yaml"


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return int(value)


def _env_float(name: str, default: float) -> float:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return float(value)


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return value


def _env_bool(name: str, default: bool) -> bool:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    normalized = value.strip().lower()
    if normalized in {"1", "true", "yes", "y", "on"}:
        return True
    if normalized in {"0", "false", "no", "n", "off"}:
        return False
    raise ValueError(f"{name} must be a boolean value (true/false), got: {value!r}")


def _env_tuple(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    value = os.getenv(name)
    if value is None or value.strip() == "":
        return default
    return tuple(item.strip().lower() for item in value.split(",") if item.strip())


@dataclass(frozen=True)
class ImportConfig:
    saved_lists_prefix: str = "Saved/"
    export_extensions: tuple[str, ...] = (".csv", ".json")
    legacy_export_name: str = "Labeled places.json"

    geocoder_url: str = "https://nominatim.openstreetmap.org"
    geocoder_email: str = "dev@trustmaps.com"
    geocoder_timeout_seconds: float = 10.0
    geocoder_max_retries: int = 2
    geocoder_backoff_seconds: float = 0.5
    geocoder_min_interval_ms: int = 1100
    geocoder_pool_size: int = 2
    geocoder_cooldown_seconds: float = 60.0

    placeholder_offset_degrees: float = 0.001
    job_workers: int = 4
    cleanup_archive: bool = True
    list_description: str = "Imported from Google Maps"
    rules_path: str = str(DEFAULT_RULES_PATH)

    def __post_init__(self) -> None:
        if not self.saved_lists_prefix.endswith("/"):
            raise ValueError(f"saved_lists_prefix must end with '/', got {self.saved_lists_prefix!r}")
        if not self.export_extensions:
            raise ValueError("export_extensions must not be empty")
        if self.geocoder_max_retries < 0:
            raise ValueError(f"geocoder_max_retries must be >= 0, got {self.geocoder_max_retries}")
        if self.geocoder_pool_size <= 0:
            raise ValueError(f"geocoder_pool_size must be > 0, got {self.geocoder_pool_size}")
        if self.geocoder_min_interval_ms < 0:
            raise ValueError(f"geocoder_min_interval_ms must be >= 0, got {self.geocoder_min_interval_ms}")
        if self.job_workers <= 0:
            raise ValueError(f"job_workers must be > 0, got {self.job_workers}")
        if self.placeholder_offset_degrees <= 0:
            raise ValueError("placeholder_offset_degrees must be > 0")

    @property
    def geocoder_min_interval_seconds(self) -> float:
        return self.geocoder_min_interval_ms / 1000.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "saved_lists_prefix": self.saved_lists_prefix,
            "export_extensions": list(self.export_extensions),
            "legacy_export_name": self.legacy_export_name,
            "geocoder_url": self.geocoder_url,
            "geocoder_timeout_seconds": self.geocoder_timeout_seconds,
            "geocoder_max_retries": self.geocoder_max_retries,
            "geocoder_backoff_seconds": self.geocoder_backoff_seconds,
            "geocoder_min_interval_ms": self.geocoder_min_interval_ms,
            "geocoder_pool_size": self.geocoder_pool_size,
            "geocoder_cooldown_seconds": self.geocoder_cooldown_seconds,
            "placeholder_offset_degrees": self.placeholder_offset_degrees,
            "job_workers": self.job_workers,
            "cleanup_archive": self.cleanup_archive,
            "rules_path": self.rules_path,
        }


def load_import_config() -> ImportConfig:
    defaults = ImportConfig()
    return ImportConfig(
        saved_lists_prefix=_env_str("IMPORT_SAVED_LISTS_PREFIX", defaults.saved_lists_prefix),
        export_extensions=_env_tuple("IMPORT_EXPORT_EXTENSIONS", defaults.export_extensions),
        legacy_export_name=_env_str("IMPORT_LEGACY_EXPORT_NAME", defaults.legacy_export_name),
        geocoder_url=_env_str("NOMINATIM_URL", defaults.geocoder_url).rstrip("/"),
        geocoder_email=_env_str("NOMINATIM_EMAIL", defaults.geocoder_email),
        geocoder_timeout_seconds=_env_float("GEOCODING_TIMEOUT_SECONDS", defaults.geocoder_timeout_seconds),
        geocoder_max_retries=_env_int("GEOCODING_MAX_RETRIES", defaults.geocoder_max_retries),
        geocoder_backoff_seconds=_env_float("GEOCODING_BACKOFF_SECONDS", defaults.geocoder_backoff_seconds),
        geocoder_min_interval_ms=_env_int("GEOCODING_RATE_LIMIT", defaults.geocoder_min_interval_ms),
        geocoder_pool_size=_env_int("GEOCODING_POOL_SIZE", defaults.geocoder_pool_size),
        geocoder_cooldown_seconds=_env_float("GEOCODING_COOLDOWN_SECONDS", defaults.geocoder_cooldown_seconds),
        placeholder_offset_degrees=_env_float("IMPORT_PLACEHOLDER_OFFSET", defaults.placeholder_offset_degrees),
        job_workers=_env_int("IMPORT_JOB_WORKERS", defaults.job_workers),
        cleanup_archive=_env_bool("IMPORT_CLEANUP_ARCHIVE", defaults.cleanup_archive),
        list_description=_env_str("IMPORT_LIST_DESCRIPTION", defaults.list_description),
        rules_path=_env_str("IMPORT_RULES_PATH", defaults.rules_path),
    )
