"""Database initialization and schema upgrades."""

from __future__ import annotations

import shutil
from pathlib import Path

from alembic import command
from alembic.config import Config
from sqlalchemy import inspect
from sqlalchemy.engine import Engine

from . import database
from .models import Base


def init_db(engine: Engine | None = None) -> list[str]:
    return upgrade_database(make_backup=False, engine=engine)


def _alembic_config(engine: Engine) -> Config:
    package_dir = Path(__file__).resolve().parent
    script_location = package_dir / "alembic"
    ini_path = script_location.parent / "alembic.ini"

    config = Config(str(ini_path)) if ini_path.exists() else Config()
    config.set_main_option("script_location", str(script_location))
    config.set_main_option(
        "sqlalchemy.url", engine.url.render_as_string(hide_password=False)
    )
    return config


def _sqlite_path(engine: Engine) -> Path | None:
    if engine.dialect.name != "sqlite" or not engine.url.database:
        return None
    if engine.url.database == ":memory:":
        return None
    return Path(engine.url.database)


def upgrade_database(
    *, make_backup: bool = True, engine: Engine | None = None
) -> list[str]:
    """Upgrade the database schema in-place.

    Returns a list of applied actions.
    """
    engine = engine or database.engine
    actions: list[str] = []
    db_path = _sqlite_path(engine)

    if make_backup and db_path and db_path.exists():
        backup_path = db_path.with_suffix(db_path.suffix + ".bak")
        shutil.copy(db_path, backup_path)
        actions.append(f"Backup created at {backup_path}")

    inspector = inspect(engine)
    has_alembic = inspector.has_table("alembic_version")
    has_events = inspector.has_table("events")
    config = _alembic_config(engine)

    with engine.begin() as connection:
        config.attributes["connection"] = connection
        if not has_alembic and not has_events:
            command.upgrade(config, "head")
            actions.append("Ran Alembic upgrade to head (fresh database)")
        elif not has_alembic:
            # Schema created outside Alembic (e.g. create_all): baseline it.
            command.stamp(config, "head")
            actions.append("Stamped existing database to Alembic head")
        else:
            command.upgrade(config, "head")
            actions.append("Applied Alembic migrations to head")

    return actions


def reset_database(engine: Engine | None = None) -> None:
    """Drop every table and rebuild the schema from scratch."""
    engine = engine or database.engine
    Base.metadata.drop_all(bind=engine)
    with engine.begin() as connection:
        connection.exec_driver_sql("DROP TABLE IF EXISTS alembic_version")
    upgrade_database(make_backup=False, engine=engine)
