# This file defines the API layer's runtime settings.
# Archives are only read from under `upload_dir`; the API never accepts arbitrary filesystem paths.
# Unset environment variables fall back to the model defaults below.

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, field_validator

_TRUE_VALUES = {"1", "true", "yes", "y", "on"}
_FALSE_VALUES = {"0", "false", "no", "n", "off"}

# Environment variable -> ApiConfig field.
ENV_FIELDS: dict[str, str] = {
    "API_NAME": "api_name",
    "API_VERSION_PATH": "api_version_path",
    "API_SCHEMA_VERSION": "schema_version",
    "API_HOST": "host",
    "API_PORT": "port",
    "ENV": "environment",
    "DATABASE_URL": "database_url",
    "API_ALLOWED_ORIGINS": "allowed_origins",
    "IMPORT_UPLOAD_DIR": "upload_dir",
    "IMPORT_POLL_INTERVAL_MS": "poll_interval_ms",
    "IMPORT_APPLY_DDL_ON_STARTUP": "apply_ddl_on_startup",
    "APP_VERSION": "app_version",
}


class ApiConfig(BaseModel):
    model_config = ConfigDict(extra="ignore")

    api_name: str = "Saved Lists Import API"
    api_version_path: str = "/api/v1"
    schema_version: str = "1.0.0"
    host: str = "0.0.0.0"
    port: int = Field(default=8000, gt=0)
    environment: str = "local"
    database_url: str = Field(min_length=1)
    allowed_origins: list[str] = Field(default_factory=list)
    upload_dir: str = "uploads"
    # Suggested delay between status polls, returned when a job is accepted.
    poll_interval_ms: int = Field(default=2000, gt=0)
    apply_ddl_on_startup: bool = False
    app_version: str = "0.1.0"

    @field_validator("api_version_path")
    @classmethod
    def validate_api_version_path(cls, value: str) -> str:
        parts = [part for part in value.split("/") if part]
        if not value.startswith("/") or len(parts) < 2 or not parts[-1].startswith("v"):
            raise ValueError("api_version_path must look like '/api/v1'.")
        return "/" + "/".join(parts)

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def split_origins(cls, value: object) -> object:
        if isinstance(value, str):
            return [item.strip() for item in value.split(",") if item.strip()]
        return value

    @field_validator("apply_ddl_on_startup", mode="before")
    @classmethod
    def parse_flag(cls, value: object) -> object:
        if isinstance(value, str):
            lowered = value.strip().lower()
            if lowered in _TRUE_VALUES:
                return True
            if lowered in _FALSE_VALUES:
                return False
            raise ValueError(f"expected a boolean-like value, got {value!r}")
        return value

    def upload_root(self) -> Path:
        """Absolute upload directory; archive paths are resolved and checked against it."""

        return Path(self.upload_dir).expanduser().resolve()


def load_api_config(*, load_env: bool = True) -> ApiConfig:
    if load_env:
        load_dotenv()

    if not os.getenv("DATABASE_URL"):
        raise RuntimeError("DATABASE_URL is required for API startup.")

    values: dict[str, str] = {}
    for env_name, field in ENV_FIELDS.items():
        raw = os.getenv(env_name, "").strip()
        if raw:
            values[field] = raw
    return ApiConfig.model_validate(values)


@lru_cache(maxsize=1)
def get_api_config() -> ApiConfig:
    return load_api_config()
