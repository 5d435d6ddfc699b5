"""
SQLAlchemy engine factory with production-ready connection pooling.

One engine is created per database URL and reused; the app, the scripts
and the dependency layer all go through `get_engine()`.
"""

from functools import lru_cache

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine

from sync_wubook.config import Settings
from sync_wubook.errors import ConfigurationError


@lru_cache(maxsize=None)
def _create_engine(database_url: str) -> Engine:
    if database_url.startswith("sqlite"):
        return create_engine(database_url, future=True)
    return create_engine(
        database_url,
        future=True,
        # Connection pool settings
        pool_size=10,  # Number of connections to maintain in the pool
        max_overflow=20,  # Additional connections when pool is exhausted
        pool_pre_ping=True,  # Verify connections before using (detect stale connections)
        pool_recycle=3600,  # Recycle connections after 1 hour (prevents stale connections)
        echo=False,
    )


def get_engine(settings: Settings) -> Engine:
    """
    Return the shared engine for `settings.database_url`.

    Raises:
        ConfigurationError: If no database URL is configured.
    """
    if not settings.database_url:
        raise ConfigurationError("DATABASE_URL is not set.")
    return _create_engine(settings.database_url)


def check_engine_health(engine: Engine) -> bool:
    """
    Check if database engine is healthy and connections are working.

    This function is used by the /ready endpoint to verify database
    connectivity before allowing traffic to the service.

    Args:
        engine: Engine to probe

    Returns:
        bool: True if database is reachable and healthy, False otherwise
    """
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1"))
        return True
    except Exception:
        return False
