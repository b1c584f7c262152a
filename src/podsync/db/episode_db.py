"""Database operations for episodes.

Episodes move through ``pending -> downloading -> completed | failed``; each
transition here is a single-row update that fails loudly when the row is
missing.
"""

from collections.abc import Sequence
from datetime import UTC, datetime
import logging

from sqlalchemy import delete, func, update
from sqlalchemy.exc import IntegrityError
from sqlmodel import col, select

from ..exceptions import EpisodeNotFoundError, NotFoundError, SequenceConflictError
from .decorators import (
    handle_db_errors,
    handle_episode_db_errors,
    handle_podcast_db_errors,
)
from .sqlalchemy_core import SqlalchemyCore
from .types import Episode, EpisodeStatus

logger = logging.getLogger(__name__)

_SEQUENCE_CONSTRAINT_COLUMN = "sequence_number"


class EpisodeDatabase:
    """Manage database operations for episodes.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    # --- CRUD Operations ---

    @handle_podcast_db_errors("add episode", podcast_id_from="episode.podcast_id")
    async def add_episode(self, episode: Episode) -> Episode:
        """Insert a new episode.

        Args:
            episode: The episode to insert; its ``id`` must be unset.

        Returns:
            The stored episode with its id and server defaults.

        Raises:
            DatabaseOperationError: If the insert fails, including when the
                podcast already has an episode with the same guid.
        """
        async with self._db.session() as session:
            session.add(episode)
            await session.commit()
            await session.refresh(episode)
        return episode

    @handle_episode_db_errors("get episode")
    async def get_episode(self, episode_id: int) -> Episode:
        """Retrieve an episode by id.

        Raises:
            EpisodeNotFoundError: If the episode does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            episode = await session.get(Episode, episode_id)
            if episode is None:
                raise EpisodeNotFoundError(
                    "Episode not found.", episode_id=episode_id
                )
            return episode

    @handle_podcast_db_errors("get episodes")
    async def get_episodes(
        self, podcast_id: int, downloaded: bool | None = None
    ) -> list[Episode]:
        """Get a podcast's episodes, newest first.

        Args:
            podcast_id: The podcast identifier.
            downloaded: If given, only episodes with this downloaded flag.
        """
        async with self._db.session() as session:
            stmt = select(Episode).where(col(Episode.podcast_id) == podcast_id)
            if downloaded is not None:
                stmt = stmt.where(col(Episode.downloaded) == downloaded)
            stmt = stmt.order_by(col(Episode.pub_date).desc(), col(Episode.id).desc())
            result = await session.execute(stmt)
            return list(result.scalars().all())

    @handle_db_errors("get episodes by id")
    async def get_episodes_by_ids(
        self, user_id: str, episode_ids: Sequence[int]
    ) -> list[Episode]:
        """Get the user's episodes among ``episode_ids``, ordered by id.

        Ids that do not exist or belong to another user are silently dropped.
        """
        if not episode_ids:
            return []
        async with self._db.session() as session:
            result = await session.execute(
                select(Episode)
                .where(col(Episode.user_id) == user_id)
                .where(col(Episode.id).in_(list(episode_ids)))
                .order_by(col(Episode.id))
            )
            return list(result.scalars().all())

    @handle_podcast_db_errors("get known guids")
    async def get_guids(self, podcast_id: int) -> set[str]:
        """Return the guids of every episode already stored for a podcast."""
        async with self._db.session() as session:
            result = await session.execute(
                select(col(Episode.guid)).where(col(Episode.podcast_id) == podcast_id)
            )
            return set(result.scalars().all())

    @handle_podcast_db_errors("get retention candidates")
    async def get_prune_candidates(
        self, podcast_id: int, keep_count: int
    ) -> list[Episode]:
        """Return remote episodes beyond the ``keep_count`` most recent.

        Every episode with a remote file is ranked by publish date, newest
        first; protected episodes count toward the kept ones but are never
        returned.

        Args:
            podcast_id: The podcast identifier.
            keep_count: How many of the most recent remote files to keep.

        Returns:
            Episodes whose remote files should be deleted, newest first.
        """
        async with self._db.session() as session:
            result = await session.execute(
                select(Episode)
                .where(col(Episode.podcast_id) == podcast_id)
                .where(col(Episode.cloud_file_id).is_not(None))
                .order_by(col(Episode.pub_date).desc(), col(Episode.id).desc())
                .offset(keep_count)
            )
            return [ep for ep in result.scalars().all() if not ep.protected]

    @handle_podcast_db_errors("count episodes published before")
    async def count_published_before(
        self, podcast_id: int, pub_date: datetime | None, exclude_episode_id: int
    ) -> int:
        """Count other episodes of the podcast published strictly before ``pub_date``.

        An episode without a publish date ranks after every dated one.
        """
        async with self._db.session() as session:
            stmt = (
                select(func.count())
                .select_from(Episode)
                .where(col(Episode.podcast_id) == podcast_id)
                .where(col(Episode.id) != exclude_episode_id)
            )
            if pub_date is None:
                stmt = stmt.where(col(Episode.pub_date).is_not(None))
            else:
                stmt = stmt.where(col(Episode.pub_date) < pub_date)
            return (await session.execute(stmt)).scalar_one()

    @handle_podcast_db_errors("delete podcast episodes")
    async def delete_for_podcast(self, podcast_id: int) -> int:
        """Delete every episode of a podcast.

        Returns:
            The number of episodes deleted.
        """
        async with self._db.session() as session:
            result = await session.execute(
                delete(Episode).where(col(Episode.podcast_id) == podcast_id)
            )
            await session.commit()
        deleted = self._db.rows_affected(result)
        logger.info(
            "Podcast episodes deleted.",
            extra={"podcast_id": podcast_id, "deleted_count": deleted},
        )
        return deleted

    # --- Single-row updates ---

    async def _update_one(self, episode_id: int, **values: object) -> None:
        async with self._db.session() as session:
            stmt = update(Episode).where(col(Episode.id) == episode_id).values(**values)
            try:
                self._db.assert_exactly_one_row_affected(
                    await session.execute(stmt), episode_id=episode_id
                )
            except NotFoundError as e:
                raise EpisodeNotFoundError(
                    "Episode not found.", episode_id=episode_id
                ) from e
            await session.commit()

    @handle_episode_db_errors("set sequence number")
    async def set_sequence_number(self, episode_id: int, sequence_number: int) -> None:
        """Assign a sequence number to an episode.

        Raises:
            SequenceConflictError: If another episode of the podcast already
                holds ``sequence_number``.
            EpisodeNotFoundError: If the episode does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        try:
            await self._update_one(episode_id, sequence_number=sequence_number)
        except IntegrityError as e:
            if _SEQUENCE_CONSTRAINT_COLUMN not in str(e.orig):
                raise
            raise SequenceConflictError(
                "Sequence number already taken.",
                episode_id=episode_id,
                sequence_number=sequence_number,
            ) from e

    @handle_episode_db_errors("mark episode downloading")
    async def mark_downloading(self, episode_id: int) -> None:
        """Move an episode to DOWNLOADING and clear its last error."""
        await self._update_one(
            episode_id, status=EpisodeStatus.DOWNLOADING, error_message=None
        )

    @handle_episode_db_errors("mark episode completed")
    async def mark_completed(
        self,
        episode_id: int,
        *,
        cloud_file_id: str,
        cloud_url: str | None,
        file_size: int | None,
        original_filename: str | None,
        download_date: datetime | None = None,
    ) -> None:
        """Record a successful download and upload.

        Args:
            episode_id: The episode identifier.
            cloud_file_id: Remote file identifier.
            cloud_url: Remote file link.
            file_size: Uploaded size in bytes.
            original_filename: Encrypted name the file was uploaded under.
            download_date: Completion time; defaults to now.

        Raises:
            EpisodeNotFoundError: If the episode does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        await self._update_one(
            episode_id,
            status=EpisodeStatus.COMPLETED,
            downloaded=True,
            download_date=download_date or datetime.now(UTC),
            cloud_file_id=cloud_file_id,
            cloud_url=cloud_url,
            file_size=file_size,
            original_filename=original_filename,
            error_message=None,
        )

    @handle_episode_db_errors("mark episode failed")
    async def mark_failed(self, episode_id: int, error_message: str) -> None:
        """Move an episode to FAILED with the given message."""
        await self._update_one(
            episode_id, status=EpisodeStatus.FAILED, error_message=error_message
        )

    @handle_episode_db_errors("clear remote file")
    async def clear_remote_file(self, episode_id: int) -> None:
        """Forget an episode's remote file after it was deleted remotely."""
        await self._update_one(
            episode_id, cloud_file_id=None, cloud_url=None, downloaded=False
        )

    @handle_episode_db_errors("set episode protected")
    async def set_protected(self, episode_id: int, protected: bool) -> None:
        """Exempt an episode from retention cleanup, or lift the exemption."""
        await self._update_one(episode_id, protected=protected)

    @handle_db_errors("reset episodes for resync")
    async def reset_for_resync(self, episode_ids: Sequence[int]) -> int:
        """Put episodes back to PENDING with their remote references cleared.

        Args:
            episode_ids: Episodes to reset.

        Returns:
            The number of episodes reset.
        """
        if not episode_ids:
            return 0
        async with self._db.session() as session:
            result = await session.execute(
                update(Episode)
                .where(col(Episode.id).in_(list(episode_ids)))
                .values(
                    status=EpisodeStatus.PENDING,
                    downloaded=False,
                    download_date=None,
                    cloud_file_id=None,
                    cloud_url=None,
                    error_message=None,
                )
            )
            await session.commit()
        return self._db.rows_affected(result)
