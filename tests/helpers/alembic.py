"""Migrate a throwaway podsync database with the project's Alembic scripts."""

from pathlib import Path

from alembic.config import Config

from alembic import command

ALEMBIC_INI = Path(__file__).resolve().parents[2] / "alembic.ini"


def run_migrations(db_path: Path, revision: str = "head") -> None:
    """Upgrade the SQLite database at ``db_path`` to ``revision``.

    The migration runs over the synchronous ``sqlite`` driver, so it is safe
    to call from fixtures before an event loop owns the file. ``DATABASE_URL``
    must be unset, since ``alembic/env.py`` prefers it over the ini URL.
    """
    if not ALEMBIC_INI.exists():
        raise FileNotFoundError(f"alembic.ini not found at {ALEMBIC_INI}")

    config = Config(str(ALEMBIC_INI))
    config.set_main_option("sqlalchemy.url", f"sqlite:///{db_path}")
    command.upgrade(config, revision)
