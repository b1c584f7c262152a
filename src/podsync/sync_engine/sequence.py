"""Per-podcast episode sequence number allocation.

Sequence numbers name files (``001-Title.mp3``) and rank them for retention.
Uniqueness within a podcast is guaranteed; numbers may have gaps and are not
strictly in publish-date order.
"""

import logging

from ..db import EpisodeDatabase, PodcastDatabase
from ..db.types import Episode
from ..exceptions import SequenceConflictError

logger = logging.getLogger(__name__)

MAX_FALLBACK_ATTEMPTS = 5


class SequenceAllocator:
    """Hand out unique sequence numbers backed by ``Podcast.episode_counter``.

    Attributes:
        _podcast_db: Database manager owning the counter.
        _episode_db: Database manager for episode sequence numbers.
    """

    def __init__(self, podcast_db: PodcastDatabase, episode_db: EpisodeDatabase):
        self._podcast_db = podcast_db
        self._episode_db = episode_db

    async def reserve_next(self, podcast_id: int) -> int:
        """Reserve and return the podcast's next sequence number.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the counter cannot be updated.
        """
        return await self._podcast_db.increment_counter(podcast_id, 1)

    async def reserve_block(self, podcast_id: int, count: int) -> int:
        """Reserve ``count`` consecutive numbers and return the first one.

        Raises:
            ValueError: If ``count`` is not positive.
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the counter cannot be updated.
        """
        last = await self._podcast_db.increment_counter(podcast_id, count)
        return last - count + 1

    async def resolve(self, episode: Episode) -> int:
        """Return the episode's sequence number, assigning one if needed.

        A pre-assigned number is returned as is. Otherwise the episode gets
        its chronological position within the podcast, and the counter is
        raised to cover it. When that position is already taken, a fresh
        number is reserved instead.

        Args:
            episode: A stored episode.

        Returns:
            The episode's sequence number.

        Raises:
            SequenceConflictError: If no free number could be stored.
            DatabaseOperationError: If storage is unavailable.
        """
        if episode.sequence_number is not None:
            return episode.sequence_number
        if episode.id is None:
            raise ValueError("Episode must be stored before it can be numbered.")

        log_params = {"podcast_id": episode.podcast_id, "episode_id": episode.id}
        position = (
            await self._episode_db.count_published_before(
                episode.podcast_id, episode.pub_date, episode.id
            )
            + 1
        )
        try:
            await self._episode_db.set_sequence_number(episode.id, position)
        except SequenceConflictError:
            logger.debug(
                "Natural position already taken, reserving a new number.",
                extra={**log_params, "sequence_number": position},
            )
        else:
            await self._podcast_db.raise_counter(episode.podcast_id, position)
            logger.debug(
                "Assigned natural sequence position.",
                extra={**log_params, "sequence_number": position},
            )
            return position

        for _ in range(MAX_FALLBACK_ATTEMPTS):
            candidate = await self.reserve_next(episode.podcast_id)
            try:
                await self._episode_db.set_sequence_number(episode.id, candidate)
            except SequenceConflictError:
                continue
            logger.debug(
                "Assigned reserved sequence number.",
                extra={**log_params, "sequence_number": candidate},
            )
            return candidate

        raise SequenceConflictError(
            "Could not find a free sequence number.",
            podcast_id=episode.podcast_id,
            episode_id=episode.id,
        )

    async def reset_counter(self, podcast_id: int) -> None:
        """Clear the podcast's sequence numbers and restart its counter at 0.

        Raises:
            PodcastNotFoundError: If the podcast does not exist.
            DatabaseOperationError: If the reset fails.
        """
        await self._podcast_db.reset_counter(podcast_id)
