"""
FastAPI dependency injection providers.

Routes receive the settings and the engine through these providers, so tests
can swap both with `app.dependency_overrides`.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Generator

from fastapi import Depends
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.db.engine import get_engine


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Provide the process settings, built once from the environment.

    Returns:
        Settings: Runtime configuration
    """
    return Settings.from_env()


def get_db_engine(settings: Settings = Depends(get_settings)) -> Generator[Engine, None, None]:
    """
    Provide database engine for dependency injection.

    Yields:
        Engine: SQLAlchemy database engine

    Testing Example:
        >>> app.dependency_overrides[get_db_engine] = lambda: sqlite_engine
        >>> client = TestClient(app)
        >>> client.post("/wubook/sync-today", json={"dry_run": True})
    """
    yield get_engine(settings)
