"""Database operations for download attempt history."""

from datetime import UTC, datetime
import logging

from sqlalchemy import delete, update
from sqlmodel import col, select

from ..exceptions import DatabaseOperationError, NotFoundError
from .decorators import handle_episode_db_errors, handle_podcast_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import DownloadHistory, HistoryStatus

logger = logging.getLogger(__name__)


class HistoryDatabase:
    """Manage download history records.

    A record is created STARTED and closed exactly once; closing a record that
    is no longer STARTED is an error.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    @handle_episode_db_errors("start download history", podcast_id_from="podcast_id")
    async def start_attempt(
        self, user_id: str, podcast_id: int, episode_id: int
    ) -> DownloadHistory:
        """Create a STARTED record for a new download attempt.

        Returns:
            The stored record, including its id and ``start_time``.
        """
        record = DownloadHistory(
            user_id=user_id,
            podcast_id=podcast_id,
            episode_id=episode_id,
            status=HistoryStatus.STARTED,
            start_time=datetime.now(UTC),
        )
        async with self._db.session() as session:
            session.add(record)
            await session.commit()
            await session.refresh(record)
        return record

    async def _close(self, record: DownloadHistory, **values: object) -> None:
        if record.id is None:
            raise DatabaseOperationError(
                "Download history record has no id.",
                episode_id=record.episode_id,
            )
        async with self._db.session() as session:
            stmt = (
                update(DownloadHistory)
                .where(col(DownloadHistory.id) == record.id)
                .where(col(DownloadHistory.status) == HistoryStatus.STARTED)
                .values(**values)
            )
            try:
                self._db.assert_exactly_one_row_affected(
                    await session.execute(stmt), episode_id=record.episode_id
                )
            except NotFoundError as e:
                raise DatabaseOperationError(
                    "Download history record is missing or already closed.",
                    podcast_id=record.podcast_id,
                    episode_id=record.episode_id,
                ) from e
            await session.commit()

    @staticmethod
    def _elapsed(record: DownloadHistory, end_time: datetime) -> float | None:
        if record.start_time is None:
            return None
        return (end_time - record.start_time).total_seconds()

    @handle_episode_db_errors("complete download history", episode_id_from="record.episode_id")
    async def complete_attempt(
        self,
        record: DownloadHistory,
        bytes_downloaded: int | None,
        cloud_upload_time: datetime | None = None,
    ) -> None:
        """Close a record as COMPLETED.

        Args:
            record: The STARTED record returned by ``start_attempt``.
            bytes_downloaded: Size of the uploaded file.
            cloud_upload_time: When the upload finished; defaults to now.

        Raises:
            DatabaseOperationError: If the record is missing, not STARTED, or
                the database operation fails.
        """
        end_time = datetime.now(UTC)
        await self._close(
            record,
            status=HistoryStatus.COMPLETED,
            end_time=end_time,
            duration_seconds=self._elapsed(record, end_time),
            bytes_downloaded=bytes_downloaded,
            uploaded_to_cloud=True,
            cloud_upload_time=cloud_upload_time or end_time,
        )

    @handle_episode_db_errors("fail download history", episode_id_from="record.episode_id")
    async def fail_attempt(self, record: DownloadHistory, error_message: str) -> None:
        """Close a record as FAILED with the given message.

        Raises:
            DatabaseOperationError: If the record is missing, not STARTED, or
                the database operation fails.
        """
        end_time = datetime.now(UTC)
        await self._close(
            record,
            status=HistoryStatus.FAILED,
            end_time=end_time,
            duration_seconds=self._elapsed(record, end_time),
            error_message=error_message,
        )

    @handle_episode_db_errors("get download history")
    async def get_history(self, episode_id: int) -> list[DownloadHistory]:
        """Return an episode's attempts, oldest first."""
        async with self._db.session() as session:
            result = await session.execute(
                select(DownloadHistory)
                .where(col(DownloadHistory.episode_id) == episode_id)
                .order_by(col(DownloadHistory.id))
            )
            return list(result.scalars().all())

    @handle_podcast_db_errors("delete podcast history")
    async def delete_for_podcast(self, podcast_id: int) -> int:
        """Delete every history record of a podcast; returns the count."""
        async with self._db.session() as session:
            result = await session.execute(
                delete(DownloadHistory).where(
                    col(DownloadHistory.podcast_id) == podcast_id
                )
            )
            await session.commit()
        return self._db.rows_affected(result)

