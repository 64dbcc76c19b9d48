"""Programmatic Alembic upgrades for the workflow database."""

from __future__ import annotations

from pathlib import Path

from alembic import command
from alembic.config import Config

from taskchain.storage.common import sqlite_url

# Shipped inside the package so an installed CLI can migrate without an alembic.ini.
MIGRATIONS_DIR = Path(__file__).resolve().parent / "migrations"


def upgrade_head(db_path: Path) -> None:
    """Bring `db_path` to the latest schema revision; a no-op when already current."""

    db_path.parent.mkdir(parents=True, exist_ok=True)
    config = Config()
    config.set_main_option("script_location", str(MIGRATIONS_DIR))
    config.set_main_option("sqlalchemy.url", sqlite_url(db_path))
    command.upgrade(config, "head")
