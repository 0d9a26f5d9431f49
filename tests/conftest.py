"""
Shared test configuration.
Provides environment defaults, a throwaway SQLite database with the import tables, and the rule tables.
Tests never reach the network; geocoder clients are replaced by fakes.
"""

from __future__ import annotations

import os
import sys
from collections.abc import Iterator
from pathlib import Path

import pytest
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine

ROOT_DIR = Path(__file__).resolve().parent.parent
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

TEST_ENV_DEFAULTS = {
    "PROJECT_NAME": "test-project",
    "ENV": "test",
    "LOG_LEVEL": "INFO",
    "DATABASE_URL": "sqlite+pysqlite:///:memory:",
    "API_HOST": "0.0.0.0",
    "API_PORT": "8000",
}

# `src.api.app` builds the app at import time, before any fixture runs.
for _key, _value in TEST_ENV_DEFAULTS.items():
    os.environ.setdefault(_key, _value)


@pytest.fixture(autouse=True)
def base_test_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Ensure required environment variables are present during tests."""

    for key, value in TEST_ENV_DEFAULTS.items():
        if os.getenv(key) is None:
            monkeypatch.setenv(key, value)


@pytest.fixture
def sqlite_engine(tmp_path: Path) -> Iterator[Engine]:
    from src.importer.writer import apply_import_ddl

    engine = create_engine(
        f"sqlite+pysqlite:///{tmp_path / 'imports.db'}",
        future=True,
        connect_args={"timeout": 30, "check_same_thread": False},
    )
    apply_import_ddl(engine)
    try:
        yield engine
    finally:
        engine.dispose()


@pytest.fixture
def rule_tables():
    from src.importer.importer_config import DEFAULT_RULES_PATH
    from src.importer.rules import load_rule_tables

    return load_rule_tables(str(DEFAULT_RULES_PATH))
