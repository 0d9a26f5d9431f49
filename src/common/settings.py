"""
Process settings read from the environment (and `.env` when present).
The API process, its background import workers and the import CLI all read the same values.
"""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from typing import Final

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

REQUIRED_ENV_VARS: Final[tuple[str, ...]] = (
    "PROJECT_NAME",
    "ENV",
    "LOG_LEVEL",
    "DATABASE_URL",
    "API_HOST",
    "API_PORT",
)


class Settings(BaseModel):
    model_config = ConfigDict(extra="ignore")

    PROJECT_NAME: str
    ENV: str
    LOG_LEVEL: str
    DATABASE_URL: str
    API_HOST: str
    API_PORT: int = Field(ge=1, le=65535)

    @field_validator("LOG_LEVEL")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        level = value.strip().upper()
        if not isinstance(logging.getLevelName(level), int):
            raise ValueError(f"Unknown log level {value!r}")
        return level

    @field_validator("DATABASE_URL")
    @classmethod
    def require_sqlalchemy_url(cls, value: str) -> str:
        # Import jobs write through SQLAlchemy, so the URL needs a dialect prefix.
        if "://" not in value:
            raise ValueError("DATABASE_URL must be a SQLAlchemy URL such as postgresql+psycopg2://...")
        return value


def load_settings(*, load_env: bool = True) -> Settings:
    """Validate the environment; missing or malformed keys raise `RuntimeError`."""

    if load_env:
        load_dotenv()

    missing = sorted(key for key in REQUIRED_ENV_VARS if not os.getenv(key))
    if missing:
        raise RuntimeError(
            f"Missing required environment variables: {', '.join(missing)}. "
            "Set them in `.env` or the process environment before running imports."
        )

    try:
        return Settings.model_validate(dict(os.environ))
    except ValidationError as exc:
        raise RuntimeError(f"Invalid environment configuration: {exc}") from exc


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return load_settings()
