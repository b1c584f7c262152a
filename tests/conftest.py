# pyright: reportPrivateUsage=false
"""Global pytest configuration and shared fixtures for the test suite."""

from collections.abc import AsyncGenerator
from pathlib import Path

from _pytest.config import Config
from _pytest.config.argparsing import Parser
from _pytest.nodes import Item
from helpers.alembic import run_migrations
import pytest
import pytest_asyncio

from podsync.db.sqlalchemy_core import DB_FILENAME, SqlalchemyCore
from podsync.logging_config import setup_logging


def pytest_addoption(parser: Parser) -> None:
    """Add the --integration flag for end-to-end tests."""
    parser.addoption(
        "--integration",
        action="store_true",
        default=False,
        help="run integration tests",
    )


def pytest_configure() -> None:
    """Route podsync's structured logs through the human formatter."""
    setup_logging(
        log_format_type="human", app_log_level_name="INFO", include_stacktrace=False
    )


def pytest_collection_modifyitems(config: Config, items: list[Item]) -> None:
    """Skip integration tests unless --integration flag is provided."""
    if config.getoption("--integration"):
        return

    skip_integration = pytest.mark.skip(reason="need --integration option to run")
    for item in items:
        if "integration" in item.keywords:
            item.add_marker(skip_integration)


# --- Fixtures ---


@pytest_asyncio.fixture
async def db_core(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> AsyncGenerator[SqlalchemyCore]:
    """Provides a SqlalchemyCore over a freshly migrated podsync database.

    Modules that need seeded rows override this fixture and request it by
    the same name.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    run_migrations(tmp_path / DB_FILENAME)
    core = SqlalchemyCore(tmp_path)
    yield core
    await core.close()
