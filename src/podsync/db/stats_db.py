"""Database operations for daily per-user statistics."""

from datetime import date, datetime, timedelta
import logging

from sqlalchemy import Integer, func
from sqlalchemy.dialects.sqlite import insert
from sqlmodel import col, select

from .decorators import handle_user_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import DailyStats, Episode, EpisodeStatus, Podcast

logger = logging.getLogger(__name__)


class StatsDatabase:
    """Aggregate library counts and store them as daily snapshots.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    @handle_user_db_errors("collect user stats")
    async def collect_stats(self, user_id: str, now: datetime) -> DailyStats:
        """Compute a snapshot of the user's library as of ``now``.

        Args:
            user_id: The user identifier.
            now: Aware UTC time; sets the snapshot date and the 24 hour
                window for ``downloads_today``.

        Returns:
            An unsaved ``DailyStats`` row.
        """
        podcast_counts = select(
            func.count(),
            func.coalesce(func.sum(col(Podcast.enabled).cast(Integer)), 0),
        ).where(col(Podcast.user_id) == user_id)

        episode_filter = col(Episode.user_id) == user_id
        episode_counts = select(
            func.count(),
            func.coalesce(func.sum(col(Episode.downloaded).cast(Integer)), 0),
            func.coalesce(func.sum(col(Episode.file_size)), 0),
        ).where(episode_filter)
        failed = (
            select(func.count())
            .select_from(Episode)
            .where(episode_filter)
            .where(col(Episode.status) == EpisodeStatus.FAILED)
        )
        recent = (
            select(func.count())
            .select_from(Episode)
            .where(episode_filter)
            .where(col(Episode.download_date) >= now - timedelta(hours=24))
        )

        async with self._db.session() as session:
            total_podcasts, active_podcasts = (
                await session.execute(podcast_counts)
            ).one()
            total_episodes, downloaded_episodes, storage = (
                await session.execute(episode_counts)
            ).one()
            failed_downloads = (await session.execute(failed)).scalar_one()
            downloads_today = (await session.execute(recent)).scalar_one()

        return DailyStats(
            user_id=user_id,
            day=now.date(),
            total_podcasts=total_podcasts,
            active_podcasts=active_podcasts,
            total_episodes=total_episodes,
            downloaded_episodes=downloaded_episodes,
            failed_downloads=failed_downloads,
            total_storage_used=storage,
            downloads_today=downloads_today,
            last_check_run=now,
        )

    @handle_user_db_errors("upsert user stats", user_id_from="stats.user_id")
    async def upsert_stats(self, stats: DailyStats) -> None:
        """Insert the day's snapshot, replacing an earlier one for the same day."""
        data = stats.model_dump()
        async with self._db.session() as session:
            stmt = insert(DailyStats).values(**data)
            update_data = {
                k: v for k, v in data.items() if k not in ("user_id", "day")
            }
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id", "day"], set_=update_data
            )
            await session.execute(stmt)
            await session.commit()
        logger.debug(
            "Daily stats stored.",
            extra={"user_id": stats.user_id, "day": str(stats.day)},
        )

    @handle_user_db_errors("get user stats")
    async def get_stats(self, user_id: str, day: date) -> DailyStats | None:
        """Return the user's snapshot for ``day``, if one was taken."""
        async with self._db.session() as session:
            result = await session.execute(
                select(DailyStats)
                .where(col(DailyStats.user_id) == user_id)
                .where(col(DailyStats.day) == day)
            )
            return result.scalar_one_or_none()
