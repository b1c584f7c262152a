"""Core async database components using SQLAlchemy and SQLModel."""

from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager
import logging
from pathlib import Path
import sqlite3
from typing import Any

from sqlalchemy import event
from sqlalchemy.engine import CursorResult, Engine, Result
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import ConnectionPoolEntry

from ..exceptions import DatabaseOperationError, NotFoundError

logger = logging.getLogger(__name__)

DB_FILENAME = "podsync.db"


class SqlalchemyCore:
    """Core wrapper for SQLAlchemy async operations.

    Attributes:
        engine: The async engine bound to the SQLite database file.
        async_session_maker: Factory for new sessions.
    """

    def __init__(self, db_dir: Path) -> None:
        db_path = db_dir / DB_FILENAME
        db_url = f"sqlite+aiosqlite:///{db_path.resolve()}"
        self.engine: AsyncEngine = create_async_engine(
            db_url,
            echo=logger.isEnabledFor(logging.DEBUG),
            pool_size=1,  # single writer
            connect_args={
                "check_same_thread": False,
                "timeout": 60.0,
            },
        )
        self.async_session_maker = async_sessionmaker(
            self.engine, class_=AsyncSession, expire_on_commit=False
        )

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession]:
        """Provide a transactional session.

        Yields:
            An active, transactional AsyncSession.
        """
        async with self.async_session_maker() as session:
            yield session

    async def close(self) -> None:
        """Close the database engine and all its connections."""
        await self.engine.dispose()

    @staticmethod
    def as_cursor_result(result: Result[Any]) -> CursorResult[Any]:
        """Coerce a Result to a CursorResult.

        Raises:
            DatabaseOperationError: If the result is not backed by a cursor.
        """
        if isinstance(result, CursorResult):
            return result
        raise DatabaseOperationError(
            f"Expected cursor-backed SQLAlchemy result, got {type(result).__name__}.",
        )

    @staticmethod
    def assert_exactly_one_row_affected(
        result: Result[Any], **identifiers: Any
    ) -> None:
        """Validate that exactly one row was affected by an update.

        Args:
            result: The result from the update operation.
            **identifiers: Identifiers of the entity (e.g., ``episode_id=3``).

        Raises:
            NotFoundError: If no rows were affected.
            DatabaseOperationError: If more than one row was affected.
        """
        cursor_result = SqlalchemyCore.as_cursor_result(result)
        match cursor_result.rowcount:
            case 0:
                raise NotFoundError("Record not found.", **identifiers)
            case 1:
                pass
            case rowcount:
                raise DatabaseOperationError(
                    f"Update affected {rowcount} rows, expected 1.", **identifiers
                )

    @staticmethod
    def rows_affected(result: Result[Any]) -> int:
        """Return how many rows a write statement touched."""
        return SqlalchemyCore.as_cursor_result(result).rowcount


@event.listens_for(Engine, "connect")
def _(
    dbapi_connection: sqlite3.Connection, _connection_record: ConnectionPoolEntry
) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA journal_mode = WAL;")
    cursor.execute("PRAGMA synchronous = NORMAL;")
    cursor.execute("PRAGMA foreign_keys = ON;")
