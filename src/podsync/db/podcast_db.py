"""Database operations for podcasts.

Besides CRUD, this module owns the atomic updates of a podcast's
``episode_counter`` that sequence number allocation relies on.
"""

from datetime import UTC, datetime
import logging

from sqlalchemy import func, update
from sqlmodel import col, select

from ..exceptions import NotFoundError, PodcastNotFoundError
from .decorators import handle_podcast_db_errors, handle_user_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import Episode, Podcast

logger = logging.getLogger(__name__)


class PodcastDatabase:
    """Manage database operations for podcasts.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    # --- CRUD Operations ---

    @handle_user_db_errors("add podcast", user_id_from="podcast.user_id")
    async def add_podcast(self, podcast: Podcast) -> Podcast:
        """Insert a new podcast.

        Args:
            podcast: The podcast to insert; its ``id`` must be unset.

        Returns:
            The stored podcast with its assigned id and server defaults.

        Raises:
            DatabaseOperationError: If the insert fails, including when the
                user already subscribes to the same feed URL.
        """
        async with self._db.session() as session:
            session.add(podcast)
            await session.commit()
            await session.refresh(podcast)
        logger.debug(
            "Podcast added.",
            extra={"user_id": podcast.user_id, "podcast_id": podcast.id},
        )
        return podcast

    @handle_podcast_db_errors("get podcast")
    async def get_podcast(self, podcast_id: int) -> Podcast:
        """Retrieve a podcast by id.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            podcast = await session.get(Podcast, podcast_id)
            if podcast is None:
                raise PodcastNotFoundError(
                    "Podcast not found.", podcast_id=podcast_id
                )
            return podcast

    @handle_user_db_errors("get podcasts")
    async def get_podcasts(
        self, user_id: str, enabled: bool | None = None
    ) -> list[Podcast]:
        """Get a user's podcasts, optionally filtered by enabled status.

        Args:
            user_id: The owning user.
            enabled: If given, only podcasts with this enabled flag.

        Returns:
            Podcasts ordered by id.
        """
        async with self._db.session() as session:
            stmt = select(Podcast).where(col(Podcast.user_id) == user_id)
            if enabled is not None:
                stmt = stmt.where(col(Podcast.enabled) == enabled)
            result = await session.execute(stmt.order_by(col(Podcast.id)))
            return list(result.scalars().all())

    @handle_user_db_errors("get last checked time")
    async def get_last_checked(self, user_id: str) -> datetime | None:
        """Return the most recent ``last_checked`` across a user's podcasts.

        Returns:
            The latest check time, or None if no podcast was ever checked.
        """
        async with self._db.session() as session:
            result = await session.execute(
                select(col(Podcast.last_checked))
                .where(col(Podcast.user_id) == user_id)
                .where(col(Podcast.last_checked).is_not(None))
                .order_by(col(Podcast.last_checked).desc())
                .limit(1)
            )
            return result.scalar_one_or_none()

    async def _update_one(self, podcast_id: int, **values: object) -> None:
        async with self._db.session() as session:
            stmt = update(Podcast).where(col(Podcast.id) == podcast_id).values(**values)
            try:
                self._db.assert_exactly_one_row_affected(
                    await session.execute(stmt), podcast_id=podcast_id
                )
            except NotFoundError as e:
                raise PodcastNotFoundError(
                    "Podcast not found.", podcast_id=podcast_id
                ) from e
            await session.commit()

    @handle_podcast_db_errors("mark podcast checked")
    async def mark_checked(
        self, podcast_id: int, checked_at: datetime | None = None
    ) -> None:
        """Record a completed feed check and refresh the episode counts.

        Args:
            podcast_id: The podcast identifier.
            checked_at: Check time; defaults to now.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        total = (
            select(func.count())
            .select_from(Episode)
            .where(col(Episode.podcast_id) == podcast_id)
            .scalar_subquery()
        )
        downloaded = (
            select(func.count())
            .select_from(Episode)
            .where(col(Episode.podcast_id) == podcast_id)
            .where(col(Episode.downloaded).is_(True))
            .scalar_subquery()
        )
        await self._update_one(
            podcast_id,
            last_checked=checked_at or datetime.now(UTC),
            total_episodes=total,
            downloaded_episodes=downloaded,
        )
        logger.debug("Podcast check recorded.", extra={"podcast_id": podcast_id})

    @handle_podcast_db_errors("set remote folder")
    async def set_remote_folder(self, podcast_id: int, folder_id: str | None) -> None:
        """Record the remote folder that holds this podcast's files.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        await self._update_one(podcast_id, remote_folder_id=folder_id)
        logger.debug(
            "Podcast remote folder recorded.",
            extra={"podcast_id": podcast_id, "folder_id": folder_id},
        )

    @handle_podcast_db_errors("set podcast enabled")
    async def set_enabled(self, podcast_id: int, enabled: bool) -> None:
        """Include or exclude the podcast from scheduled checks."""
        await self._update_one(podcast_id, enabled=enabled)

    @handle_podcast_db_errors("reset podcast sync state")
    async def reset_sync_state(self, podcast_id: int) -> None:
        """Forget that the podcast was ever checked or downloaded.

        Clears ``last_checked`` and the episode counts; the counter is reset
        separately.
        """
        await self._update_one(
            podcast_id, last_checked=None, total_episodes=0, downloaded_episodes=0
        )

    # --- Sequence counter ---

    @handle_podcast_db_errors("increment episode counter")
    async def increment_counter(self, podcast_id: int, count: int = 1) -> int:
        """Atomically add ``count`` to the counter and return the new value.

        The increment and the read happen in a single ``UPDATE ... RETURNING``
        statement, so concurrent callers never observe the same value.

        Args:
            podcast_id: The podcast identifier.
            count: How much to add; must be positive.

        Returns:
            The counter after the increment.

        Raises:
            ValueError: If ``count`` is not positive.
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        if count < 1:
            raise ValueError(f"count must be positive, got {count}")
        async with self._db.session() as session:
            stmt = (
                update(Podcast)
                .where(col(Podcast.id) == podcast_id)
                .values(episode_counter=col(Podcast.episode_counter) + count)
                .returning(col(Podcast.episode_counter))
            )
            new_value = (await session.execute(stmt)).scalar_one_or_none()
            if new_value is None:
                raise PodcastNotFoundError(
                    "Podcast not found.", podcast_id=podcast_id
                )
            await session.commit()
        return new_value

    @handle_podcast_db_errors("raise episode counter")
    async def raise_counter(self, podcast_id: int, value: int) -> None:
        """Set the counter to ``value`` if that is higher; never lowers it."""
        await self._update_one(
            podcast_id,
            episode_counter=func.max(col(Podcast.episode_counter), value),
        )

    @handle_podcast_db_errors("reset episode counter")
    async def reset_counter(self, podcast_id: int) -> None:
        """Clear every episode's sequence number and set the counter to 0.

        Both changes are committed together.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            await session.execute(
                update(Episode)
                .where(col(Episode.podcast_id) == podcast_id)
                .values(sequence_number=None)
            )
            stmt = (
                update(Podcast)
                .where(col(Podcast.id) == podcast_id)
                .values(episode_counter=0)
            )
            try:
                self._db.assert_exactly_one_row_affected(
                    await session.execute(stmt), podcast_id=podcast_id
                )
            except NotFoundError as e:
                raise PodcastNotFoundError(
                    "Podcast not found.", podcast_id=podcast_id
                ) from e
            await session.commit()
        logger.info("Episode counter reset.", extra={"podcast_id": podcast_id})
