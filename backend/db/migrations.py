"""Programmatic Alembic entry points.

``python -m backend.db.migrations`` upgrades the database named by
``DATABASE_URL`` to head.
"""

from __future__ import annotations

from pathlib import Path
from typing import Optional

from alembic import command
from alembic.config import Config
from alembic.runtime.migration import MigrationContext
from sqlalchemy import create_engine

BACKEND_DIR = Path(__file__).resolve().parents[1]
ALEMBIC_INI = BACKEND_DIR / "alembic.ini"


def alembic_config(database_url: Optional[str] = None) -> Config:
    config = Config(str(ALEMBIC_INI))
    config.set_main_option("script_location", str(BACKEND_DIR / "alembic"))
    if database_url:
        config.attributes["database_url"] = database_url
    return config


def alembic_upgrade_head(database_url: str) -> None:
    command.upgrade(alembic_config(database_url), "head")


def current_revision(database_url: str) -> Optional[str]:
    engine = create_engine(database_url)
    try:
        with engine.connect() as connection:
            return MigrationContext.configure(connection).get_current_revision()
    finally:
        engine.dispose()


if __name__ == "__main__":
    from backend.db.session import DATABASE_URL

    alembic_upgrade_head(DATABASE_URL)
    print(f"database at revision {current_revision(DATABASE_URL)}")
