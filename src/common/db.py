"""
Engine for command-line import runs, built from `DATABASE_URL`.
The API builds its own engine through `src.api.db_access.DatabaseClient`.
"""

from __future__ import annotations

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError

from src.common.settings import get_settings

engine: Engine = create_engine(get_settings().DATABASE_URL, pool_pre_ping=True, future=True)


def test_connection() -> bool:
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except SQLAlchemyError:
        return False
    return True
