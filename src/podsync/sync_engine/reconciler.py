"""Discovery of new episodes by diffing feeds against stored guids."""

import logging

from ..crypto import CredentialStore, encrypt_episode, podcast_display_name
from ..db import EpisodeDatabase, PodcastDatabase
from ..db.types import Episode, EpisodeStatus, Podcast
from ..exceptions import (
    CredentialError,
    DatabaseOperationError,
    FeedSourceError,
    ReconcileError,
)
from ..feed_source import FeedSource, ParsedEpisode
from ..sync_status import OutcomeStatus, SyncStatusTracker
from .sequence import SequenceAllocator
from .types import DiscoveredEpisode, DiscoveryResult

logger = logging.getLogger(__name__)


class FeedReconciler:
    """Create pending episodes for feed items not seen before.

    Attributes:
        _feed_source: Fetches and parses feeds.
        _episode_db: Episode persistence.
        _podcast_db: Podcast persistence.
        _allocator: Pre-assigns sequence numbers to new episodes.
        _credentials: Supplies users' encryption keys.
        _tracker: Receives per-podcast discovery outcomes.
    """

    def __init__(
        self,
        feed_source: FeedSource,
        episode_db: EpisodeDatabase,
        podcast_db: PodcastDatabase,
        allocator: SequenceAllocator,
        credentials: CredentialStore,
        tracker: SyncStatusTracker,
    ):
        self._feed_source = feed_source
        self._episode_db = episode_db
        self._podcast_db = podcast_db
        self._allocator = allocator
        self._credentials = credentials
        self._tracker = tracker

    async def _create_episode(
        self, podcast: Podcast, podcast_id: int, item: ParsedEpisode, key: bytes
    ) -> Episode | None:
        log_params = {"podcast_id": podcast_id, "guid": item.guid}
        episode = encrypt_episode(
            Episode(
                user_id=podcast.user_id,
                podcast_id=podcast_id,
                guid=item.guid,
                title=item.title,
                description=item.description,
                pub_date=item.pub_date,
                audio_url=item.audio_url,
                image_url=item.image_url,
                duration=item.duration,
                file_size=item.file_size,
                status=EpisodeStatus.PENDING,
                downloaded=False,
            ),
            key,
        )
        try:
            return await self._episode_db.add_episode(episode)
        except DatabaseOperationError as e:
            logger.warning(
                "Failed to create episode, skipping it.", extra=log_params, exc_info=e
            )
            return None

    async def _preassign_sequence_numbers(
        self, podcast_id: int, episodes: list[Episode]
    ) -> None:
        """Number new episodes consecutively, oldest first.

        Failures leave numbers unassigned; the download pipeline resolves them.
        """
        ordered = sorted(
            episodes, key=lambda ep: (ep.pub_date is None, ep.pub_date, ep.id)
        )
        try:
            first = await self._allocator.reserve_block(podcast_id, len(ordered))
        except DatabaseOperationError as e:
            logger.warning(
                "Failed to reserve sequence numbers for new episodes.",
                extra={"podcast_id": podcast_id, "episode_count": len(ordered)},
                exc_info=e,
            )
            return

        for offset, episode in enumerate(ordered):
            if episode.id is None:
                continue
            sequence_number = first + offset
            try:
                await self._episode_db.set_sequence_number(episode.id, sequence_number)
            except DatabaseOperationError as e:
                logger.warning(
                    "Failed to pre-assign sequence number.",
                    extra={
                        "podcast_id": podcast_id,
                        "episode_id": episode.id,
                        "sequence_number": sequence_number,
                    },
                    exc_info=e,
                )
                continue
            episode.sequence_number = sequence_number

    async def reconcile(self, podcast: Podcast, max_episodes: int) -> list[Episode]:
        """Create pending episodes for new items in the podcast's feed.

        Args:
            podcast: The stored podcast.
            max_episodes: How many of the most recent feed items to consider.

        Returns:
            The newly created episodes (encrypted, as stored).

        Raises:
            ReconcileError: If the feed cannot be fetched or parsed, the key is
                unavailable, or the podcast's state cannot be read or updated.
        """
        if podcast.id is None:
            raise ValueError("Podcast must be stored before it can be reconciled.")
        podcast_id = podcast.id
        log_params = {"user_id": podcast.user_id, "podcast_id": podcast_id}

        try:
            key = await self._credentials.get_user_key(podcast.user_id)
            feed = await self._feed_source.parse_feed(podcast.rss_url, max_episodes)
            known_guids = await self._episode_db.get_guids(podcast_id)
        except (CredentialError, FeedSourceError, DatabaseOperationError) as e:
            raise ReconcileError(
                "Failed to load feed for reconciliation.",
                user_id=podcast.user_id,
                podcast_id=podcast_id,
            ) from e

        created: list[Episode] = []
        for item in feed.episodes:
            if item.guid in known_guids:
                continue
            known_guids.add(item.guid)
            if not item.audio_url:
                logger.debug(
                    "Skipping feed item without audio.",
                    extra={**log_params, "guid": item.guid},
                )
                continue
            episode = await self._create_episode(podcast, podcast_id, item, key)
            if episode is not None:
                created.append(episode)

        if created:
            await self._preassign_sequence_numbers(podcast_id, created)

        try:
            await self._podcast_db.mark_checked(podcast_id)
        except DatabaseOperationError as e:
            raise ReconcileError(
                "Failed to record podcast check.",
                user_id=podcast.user_id,
                podcast_id=podcast_id,
            ) from e

        logger.info(
            "Podcast reconciled.",
            extra={
                **log_params,
                "feed_items": len(feed.episodes),
                "new_episodes": len(created),
            },
        )
        return created

    async def discover(
        self, user_id: str, podcasts: list[Podcast], max_episodes: int
    ) -> DiscoveryResult:
        """Reconcile each podcast in turn, reporting progress to the tracker.

        One podcast failing never stops the others.

        Args:
            user_id: The owning user.
            podcasts: The podcasts to reconcile.
            max_episodes: Feed items considered per podcast.

        Returns:
            New episodes paired with their podcasts, plus per-podcast errors.
        """
        try:
            key: bytes | None = await self._credentials.get_user_key(user_id)
        except (CredentialError, DatabaseOperationError) as e:
            logger.warning(
                "User key unavailable; progress will show podcast ids.",
                extra={"user_id": user_id},
                exc_info=e,
            )
            key = None

        discovered: list[DiscoveredEpisode] = []
        errors: list[Exception] = []
        checked = 0
        for podcast in podcasts:
            name = podcast_display_name(podcast, key)
            try:
                new_episodes = await self.reconcile(podcast, max_episodes)
            except ReconcileError as e:
                logger.error(
                    "Podcast reconciliation failed.",
                    extra={"user_id": user_id, "podcast_id": podcast.id},
                    exc_info=e,
                )
                errors.append(e)
                self._tracker.update_podcast(
                    name, OutcomeStatus.FAILED, 0, str(e.__cause__ or e)
                )
                continue

            checked += 1
            discovered.extend(DiscoveredEpisode(ep, podcast) for ep in new_episodes)
            self._tracker.update_podcast(
                name, OutcomeStatus.SUCCESS, len(new_episodes)
            )

        return DiscoveryResult(
            discovered=discovered, podcasts_checked=checked, errors=errors
        )
