"""Retention cleanup of remote episode files.

The Pruner keeps a podcast's ``keep_episode_count`` most recent remote files
and deletes the rest, clearing the episodes' remote references. Protected
episodes are never deleted.
"""

import logging
from typing import Any

from ..blob_store import BlobStore
from ..db import EpisodeDatabase
from ..db.types import Episode, Podcast
from ..exceptions import (
    BlobNotFoundError,
    BlobStoreError,
    DatabaseOperationError,
    PruneError,
)

logger = logging.getLogger(__name__)


class Pruner:
    """Delete remote files beyond a podcast's retention count.

    Attributes:
        _episode_db: Episode persistence.
    """

    def __init__(self, episode_db: EpisodeDatabase):
        self._episode_db = episode_db
        logger.debug("Pruner initialized.")

    async def _prune_episode(self, store: BlobStore, episode: Episode) -> bool:
        """Delete one episode's remote file and clear its references.

        Returns:
            True if a remote file was deleted, False if it was already gone.

        Raises:
            PruneError: If the file or the episode record cannot be updated.
        """
        assert episode.id is not None and episode.cloud_file_id is not None
        log_params: dict[str, Any] = {
            "podcast_id": episode.podcast_id,
            "episode_id": episode.id,
            "file_id": episode.cloud_file_id,
        }

        file_deleted = True
        try:
            await store.delete_file(episode.cloud_file_id)
        except BlobNotFoundError:
            logger.warning(
                "Remote file not found during pruning, clearing the reference anyway.",
                extra=log_params,
            )
            file_deleted = False
        except BlobStoreError as e:
            raise PruneError(
                "Failed to delete remote file during pruning.",
                podcast_id=episode.podcast_id,
                episode_id=episode.id,
            ) from e

        try:
            await self._episode_db.clear_remote_file(episode.id)
        except DatabaseOperationError as e:
            raise PruneError(
                "Failed to clear remote file reference.",
                podcast_id=episode.podcast_id,
                episode_id=episode.id,
            ) from e

        logger.debug("Episode pruned.", extra=log_params)
        return file_deleted

    async def prune_podcast(self, store: BlobStore, podcast: Podcast) -> int:
        """Apply the podcast's retention count.

        Remote files are ranked by publish date, newest first; everything past
        ``keep_episode_count`` is deleted unless the episode is protected. A
        count of 0 keeps everything. One episode failing does not stop the rest.

        Args:
            store: The owner's blob store session.
            podcast: The stored podcast.

        Returns:
            The number of episodes whose remote references were cleared.

        Raises:
            PruneError: If the candidates cannot be loaded.
        """
        if podcast.id is None:
            raise ValueError("Podcast must be stored before it can be pruned.")
        log_params: dict[str, Any] = {
            "podcast_id": podcast.id,
            "keep_episode_count": podcast.keep_episode_count,
        }
        if podcast.keep_episode_count <= 0:
            logger.debug("Retention disabled for podcast.", extra=log_params)
            return 0

        try:
            candidates = await self._episode_db.get_prune_candidates(
                podcast.id, podcast.keep_episode_count
            )
        except DatabaseOperationError as e:
            raise PruneError(
                "Failed to identify episodes for retention cleanup.",
                user_id=podcast.user_id,
                podcast_id=podcast.id,
            ) from e

        if not candidates:
            logger.debug("No episodes to prune for podcast.", extra=log_params)
            return 0

        pruned_count = 0
        files_deleted_count = 0
        for episode in candidates:
            try:
                if await self._prune_episode(store, episode):
                    files_deleted_count += 1
            except PruneError as e:
                logger.error(
                    "Failed to prune episode.",
                    extra={**log_params, "episode_id": episode.id},
                    exc_info=e,
                )
                continue
            pruned_count += 1

        logger.info(
            "Retention cleanup completed for podcast.",
            extra={
                **log_params,
                "candidate_count": len(candidates),
                "pruned_count": pruned_count,
                "files_deleted_count": files_deleted_count,
            },
        )
        return pruned_count
