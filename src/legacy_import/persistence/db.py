"""PostgreSQL connectivity helpers for the legacy import service.

Provides engine creation and transactional connection helpers.

Environment Variables:
    LEGACY_IMPORT_DATABASE_URL: Application connection string
    LEGACY_IMPORT_DATABASE_ADMIN_URL: Admin connection string (migrations/tests only)

When LEGACY_IMPORT_DATABASE_URL is unset the service runs on the in-memory store.
"""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from sqlalchemy import create_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

DATABASE_URL_ENV = "LEGACY_IMPORT_DATABASE_URL"
DATABASE_ADMIN_URL_ENV = "LEGACY_IMPORT_DATABASE_ADMIN_URL"

_app_engine: Engine | None = None
_admin_engine: Engine | None = None


class DatabaseConfigError(Exception):
    """Raised when database configuration is missing or invalid."""

    pass


def is_postgres_configured() -> bool:
    """Check if PostgreSQL is configured via environment.

    Returns:
        True if LEGACY_IMPORT_DATABASE_URL is set, False otherwise.
    """
    return bool(os.environ.get(DATABASE_URL_ENV))


def _normalize_url(url: str) -> str:
    """Rewrite the legacy ``postgres://`` scheme that SQLAlchemy rejects."""
    if url.startswith("postgres://"):
        return url.replace("postgres://", "postgresql://", 1)
    return url


def get_database_url(admin: bool = False) -> str:
    """Get the database URL from environment.

    Args:
        admin: If True, return admin URL; otherwise return app URL.

    Raises:
        DatabaseConfigError: If the required environment variable is not set.
    """
    env_var = DATABASE_ADMIN_URL_ENV if admin else DATABASE_URL_ENV
    url = os.environ.get(env_var)

    if not url:
        raise DatabaseConfigError(
            f"Database URL not configured. Set {env_var} environment variable."
        )

    return _normalize_url(url)


def get_app_engine() -> Engine:
    """Get or create the application database engine.

    Raises:
        DatabaseConfigError: If LEGACY_IMPORT_DATABASE_URL is not set.
    """
    global _app_engine

    if _app_engine is None:
        _app_engine = create_engine(
            get_database_url(admin=False),
            pool_size=5,
            max_overflow=10,
            pool_pre_ping=True,
            echo=False,
        )
        logger.info("Created application database engine")

    return _app_engine


def get_admin_engine() -> Engine:
    """Get or create the admin database engine used for migrations.

    Raises:
        DatabaseConfigError: If LEGACY_IMPORT_DATABASE_ADMIN_URL is not set.
    """
    global _admin_engine

    if _admin_engine is None:
        _admin_engine = create_engine(
            get_database_url(admin=True),
            pool_size=2,
            max_overflow=5,
            pool_pre_ping=True,
            echo=False,
        )
        logger.info("Created admin database engine")

    return _admin_engine


def reset_engines() -> None:
    """Dispose global engine instances. Used by tests."""
    global _app_engine, _admin_engine
    if _app_engine is not None:
        _app_engine.dispose()
        _app_engine = None
    if _admin_engine is not None:
        _admin_engine.dispose()
        _admin_engine = None
