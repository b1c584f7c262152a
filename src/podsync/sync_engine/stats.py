"""Daily statistics snapshots for each user."""

from datetime import UTC, datetime
import logging

from ..db import StatsDatabase, UserDatabase
from ..db.types import DailyStats
from ..exceptions import DatabaseOperationError

logger = logging.getLogger(__name__)


class StatsAggregator:
    """Compute and store ``DailyStats`` rows.

    Attributes:
        _user_db: Lists the users to snapshot.
        _stats_db: Computes and stores snapshots.
    """

    def __init__(self, user_db: UserDatabase, stats_db: StatsDatabase):
        self._user_db = user_db
        self._stats_db = stats_db

    async def update_user_stats(
        self, user_id: str, now: datetime | None = None
    ) -> DailyStats:
        """Store today's snapshot for one user, replacing any earlier one.

        Raises:
            DatabaseOperationError: If the counts cannot be computed or stored.
        """
        stats = await self._stats_db.collect_stats(user_id, now or datetime.now(UTC))
        await self._stats_db.upsert_stats(stats)
        return stats

    async def update_all_users_stats(self) -> int:
        """Snapshot every user; one user failing does not stop the others.

        Returns:
            The number of users whose snapshot was stored.

        Raises:
            DatabaseOperationError: If the users cannot be listed.
        """
        now = datetime.now(UTC)
        users = await self._user_db.get_users()
        updated = 0
        for user in users:
            try:
                await self.update_user_stats(user.id, now)
            except DatabaseOperationError as e:
                logger.error(
                    "Failed to update daily stats for user.",
                    extra={"user_id": user.id},
                    exc_info=e,
                )
                continue
            updated += 1
        logger.info(
            "Daily stats updated.",
            extra={"user_count": len(users), "updated_count": updated},
        )
        return updated
