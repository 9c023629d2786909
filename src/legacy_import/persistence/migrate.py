"""Programmatic migration runner (no alembic.ini required)."""

from __future__ import annotations

import logging
import os
from typing import TYPE_CHECKING

from alembic import command
from alembic.config import Config
from alembic.script import ScriptDirectory

from legacy_import.persistence.db import get_admin_engine

if TYPE_CHECKING:
    from sqlalchemy import Engine

logger = logging.getLogger(__name__)

MIGRATIONS_DIR = os.path.join(os.path.dirname(__file__), "migrations")


def get_alembic_config() -> Config:
    """Create an Alembic config pointing at the bundled migrations."""
    config = Config()
    config.set_main_option("script_location", MIGRATIONS_DIR)
    return config


def get_head_revision() -> str | None:
    """Return the head revision of the bundled migration scripts."""
    script = ScriptDirectory.from_config(get_alembic_config())
    return script.get_current_head()


def run_upgrade(engine: Engine | None = None, revision: str = "head") -> None:
    """Upgrade the schema to ``revision``.

    Args:
        engine: SQLAlchemy engine to use. If None, uses the admin engine.
        revision: Target revision (default: "head").
    """
    if engine is None:
        engine = get_admin_engine()

    config = get_alembic_config()

    with engine.begin() as conn:
        config.attributes["connection"] = conn
        command.upgrade(config, revision)

    logger.info("Migrations upgraded to %s", revision)
