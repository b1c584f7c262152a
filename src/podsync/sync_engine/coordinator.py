"""Orchestration of one user's sync.

This module defines the UserSyncCoordinator, which runs a user's sync
end-to-end (discovery, download, retention cleanup) and hosts the podcast
maintenance operations that touch several stores at once.
"""

from dataclasses import dataclass
from datetime import UTC, datetime
import logging
import time
from typing import Any

from ..blob_store import BlobStore, BlobStoreProvider
from ..crypto import CredentialStore, episode_display_title, podcast_display_name
from ..db import EpisodeDatabase, HistoryDatabase, PodcastDatabase, UserDatabase
from ..db.types import EpisodeStatus, Podcast, UserSettings
from ..exceptions import (
    BlobStoreError,
    CredentialError,
    DatabaseOperationError,
    DownloadError,
    PodcastNotFoundError,
    PruneError,
    SyncAlreadyRunningError,
    SyncConflictError,
    SyncCoordinatorError,
    SyncEngineError,
)
from ..sync_status import OutcomeStatus, SyncStatusTracker
from .downloader import DownloadPipeline, describe_error
from .pruner import Pruner
from .reconciler import FeedReconciler
from .sequence import SequenceAllocator
from .types import DiscoveredEpisode, PhaseResult, SyncResults

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class StartOverResult:
    """What a podcast start-over removed.

    Attributes:
        files_deleted: Remote files deleted.
        episodes_deleted: Episode records deleted.
        history_deleted: Download history records deleted.
        errors: Remote deletions that failed, as messages.
    """

    files_deleted: int
    episodes_deleted: int
    history_deleted: int
    errors: list[str]


class UserSyncCoordinator:
    """Run a user's sync through its phases.

    Per-podcast and per-episode failures are recorded and processing
    continues; anything that prevents the sync from running at all is logged
    and stored on the results as the fatal error.

    Attributes:
        _user_db: User settings.
        _podcast_db: Podcast persistence.
        _episode_db: Episode persistence.
        _history_db: Download history.
        _reconciler: Discovers new episodes.
        _pipeline: Downloads episodes.
        _pruner: Applies retention counts.
        _allocator: Sequence number maintenance.
        _credentials: Supplies users' encryption keys.
        _blob_stores: Opens per-user blob store sessions.
        _tracker: Progress reporting and single-flight guard.
    """

    def __init__(
        self,
        user_db: UserDatabase,
        podcast_db: PodcastDatabase,
        episode_db: EpisodeDatabase,
        history_db: HistoryDatabase,
        reconciler: FeedReconciler,
        pipeline: DownloadPipeline,
        pruner: Pruner,
        allocator: SequenceAllocator,
        credentials: CredentialStore,
        blob_stores: BlobStoreProvider,
        tracker: SyncStatusTracker,
    ):
        self._user_db = user_db
        self._podcast_db = podcast_db
        self._episode_db = episode_db
        self._history_db = history_db
        self._reconciler = reconciler
        self._pipeline = pipeline
        self._pruner = pruner
        self._allocator = allocator
        self._credentials = credentials
        self._blob_stores = blob_stores
        self._tracker = tracker
        logger.debug("UserSyncCoordinator initialized.")

    async def _prepare(
        self, user_id: str
    ) -> tuple[BlobStore, UserSettings, list[Podcast]]:
        """Open the user's blob store and load settings and enabled podcasts.

        Raises:
            SyncCoordinatorError: If any of them is unavailable.
        """
        try:
            store = await self._blob_stores.for_user(user_id)
        except BlobStoreError as e:
            raise SyncCoordinatorError(
                "Remote storage is unavailable for user.", user_id=user_id
            ) from e
        try:
            settings = await self._user_db.get_settings(user_id)
            podcasts = await self._podcast_db.get_podcasts(user_id, enabled=True)
        except DatabaseOperationError as e:
            raise SyncCoordinatorError(
                "Failed to load user settings or podcasts.", user_id=user_id
            ) from e
        return store, settings, podcasts

    async def _optional_key(self, user_id: str) -> bytes | None:
        try:
            return await self._credentials.get_user_key(user_id)
        except (CredentialError, DatabaseOperationError) as e:
            logger.warning(
                "User key unavailable; progress will show ids.",
                extra={"user_id": user_id},
                exc_info=e,
            )
            return None

    # --- Phases ---

    async def _execute_discovery_phase(
        self, user_id: str, podcasts: list[Podcast], max_episodes: int
    ) -> tuple[PhaseResult, list[DiscoveredEpisode]]:
        phase_start = time.time()
        log_params: dict[str, Any] = {"user_id": user_id, "phase": "discovery"}
        logger.info(
            "Starting discovery phase.",
            extra={**log_params, "podcast_count": len(podcasts)},
        )

        result = await self._reconciler.discover(user_id, podcasts, max_episodes)

        duration = time.time() - phase_start
        logger.info(
            "Discovery phase completed.",
            extra={
                **log_params,
                "podcasts_checked": result.podcasts_checked,
                "new_episodes": len(result.discovered),
                "failure_count": len(result.errors),
                "duration_seconds": duration,
            },
        )
        return (
            PhaseResult(
                success=True,
                count=len(result.discovered),
                errors=list(result.errors),
                duration_seconds=duration,
            ),
            result.discovered,
        )

    async def _execute_download_phase(
        self,
        user_id: str,
        store: BlobStore,
        discovered: list[DiscoveredEpisode],
        key: bytes | None,
    ) -> PhaseResult:
        """Download new episodes one at a time, reporting each to the tracker."""
        phase_start = time.time()
        log_params: dict[str, Any] = {"user_id": user_id, "phase": "download"}
        logger.info(
            "Starting download phase.",
            extra={**log_params, "episode_count": len(discovered)},
        )

        success_count = 0
        errors: list[Exception] = []
        for item in discovered:
            title = episode_display_title(item.episode, key)
            podcast_name = podcast_display_name(item.podcast, key)
            try:
                await self._pipeline.download(item.episode, item.podcast, store)
            except DownloadError as e:
                logger.error(
                    "Episode download failed.",
                    extra={**log_params, "episode_id": item.episode.id},
                    exc_info=e,
                )
                errors.append(e)
                self._tracker.update_episode(
                    title, podcast_name, OutcomeStatus.FAILED, describe_error(e)
                )
                continue
            success_count += 1
            self._tracker.update_episode(title, podcast_name, OutcomeStatus.SUCCESS)

        duration = time.time() - phase_start
        logger.info(
            "Download phase completed.",
            extra={
                **log_params,
                "success_count": success_count,
                "failure_count": len(errors),
                "duration_seconds": duration,
            },
        )
        # Individual failures are recorded on the episodes; the phase still ran.
        return PhaseResult(
            success=True,
            count=success_count,
            errors=errors,
            duration_seconds=duration,
        )

    async def _execute_cleanup_phase(
        self, user_id: str, store: BlobStore, podcasts: list[Podcast]
    ) -> PhaseResult:
        phase_start = time.time()
        log_params: dict[str, Any] = {"user_id": user_id, "phase": "cleanup"}

        pruned_count = 0
        errors: list[Exception] = []
        for podcast in podcasts:
            if podcast.keep_episode_count <= 0:
                continue
            try:
                pruned_count += await self._pruner.prune_podcast(store, podcast)
            except PruneError as e:
                logger.error(
                    "Retention cleanup failed for podcast.",
                    extra={**log_params, "podcast_id": podcast.id},
                    exc_info=e,
                )
                errors.append(e)

        duration = time.time() - phase_start
        logger.info(
            "Cleanup phase completed.",
            extra={
                **log_params,
                "pruned_count": pruned_count,
                "failure_count": len(errors),
                "duration_seconds": duration,
            },
        )
        return PhaseResult(
            success=not errors,
            count=pruned_count,
            errors=errors,
            duration_seconds=duration,
        )

    # --- Public API ---

    async def process_user(self, user_id: str) -> SyncResults:
        """Run discovery, downloads and retention cleanup for one user.

        Discovery covers every enabled podcast. Downloads and cleanup only run
        when discovery found new episodes.

        Args:
            user_id: The user to process.

        Returns:
            Results of every phase. A failure that stopped processing is in
            ``fatal_error``; it is never raised.
        """
        start_time = datetime.now(UTC)
        log_params: dict[str, Any] = {"user_id": user_id}
        logger.info("Starting user sync.", extra=log_params)

        results = SyncResults(user_id=user_id, start_time=start_time)
        sync_started = False

        try:
            store, settings, podcasts = await self._prepare(user_id)
            results.podcast_count = len(podcasts)
            if not podcasts:
                logger.info("No enabled podcasts for user.", extra=log_params)
                return results

            self._tracker.start_sync(len(podcasts))
            sync_started = True

            results.discovery_result, discovered = await self._execute_discovery_phase(
                user_id, podcasts, settings.max_episodes_per_check
            )

            if discovered:
                key = await self._optional_key(user_id)
                self._tracker.start_download_phase(len(discovered))
                results.download_result = await self._execute_download_phase(
                    user_id, store, discovered, key
                )
                results.cleanup_result = await self._execute_cleanup_phase(
                    user_id, store, podcasts
                )

        except (SyncEngineError, SyncConflictError) as e:
            logger.error("Fatal error during user sync.", extra=log_params, exc_info=e)
            results.fatal_error = e

        except Exception as e:
            logger.error(
                "Unexpected error during user sync.", extra=log_params, exc_info=e
            )
            results.fatal_error = e

        finally:
            if sync_started:
                self._tracker.end_sync()
            results.total_duration_seconds = (
                datetime.now(UTC) - start_time
            ).total_seconds()
            logger.info(
                "User sync completed.",
                extra={**log_params, **results.summary_dict()},
            )

        return results

    async def download_pending(self, user_id: str) -> PhaseResult:
        """Download every episode of the user's enabled podcasts not yet stored.

        Episodes run in batches capped by the user's
        ``max_concurrent_downloads`` setting and are reported to the tracker
        as each batch completes.

        Raises:
            SyncAlreadyRunningError: If a sync is already running.
            SyncCoordinatorError: If storage, settings or episodes are unavailable.
        """
        phase_start = time.time()
        log_params: dict[str, Any] = {"user_id": user_id, "phase": "download"}

        # Claim the tracker before loading anything.
        self._tracker.start_sync(0)
        errors: list[Exception] = []
        success_count = 0
        pending: list[DiscoveredEpisode] = []
        try:
            store, settings, podcasts = await self._prepare(user_id)
            try:
                for podcast in podcasts:
                    assert podcast.id is not None
                    episodes = await self._episode_db.get_episodes(
                        podcast.id, downloaded=False
                    )
                    pending.extend(
                        DiscoveredEpisode(ep, podcast)
                        for ep in reversed(episodes)
                        if ep.status != EpisodeStatus.DOWNLOADING
                    )
            except DatabaseOperationError as e:
                raise SyncCoordinatorError(
                    "Failed to load pending episodes.", user_id=user_id
                ) from e

            key = await self._optional_key(user_id)
            self._tracker.start_download_phase(len(pending))
            outcomes = await self._pipeline.download_many(
                pending, settings.max_concurrent_downloads, store
            )
            for item, outcome in zip(pending, outcomes, strict=True):
                title = episode_display_title(item.episode, key)
                podcast_name = podcast_display_name(item.podcast, key)
                if isinstance(outcome, Exception):
                    errors.append(outcome)
                    self._tracker.update_episode(
                        title, podcast_name, OutcomeStatus.FAILED, describe_error(outcome)
                    )
                elif isinstance(outcome, BaseException):
                    raise outcome
                else:
                    success_count += 1
                    self._tracker.update_episode(
                        title, podcast_name, OutcomeStatus.SUCCESS
                    )
        finally:
            self._tracker.end_sync()

        duration = time.time() - phase_start
        logger.info(
            "Pending downloads completed.",
            extra={
                **log_params,
                "episode_count": len(pending),
                "success_count": success_count,
                "failure_count": len(errors),
                "duration_seconds": duration,
            },
        )
        return PhaseResult(
            success=True, count=success_count, errors=errors, duration_seconds=duration
        )

    async def reset_counter(self, user_id: str, podcast_id: int) -> None:
        """Clear a podcast's sequence numbers and restart its counter at 0.

        Raises:
            PodcastNotFoundError: If the podcast does not belong to the user.
            DatabaseOperationError: If the reset fails.
        """
        await self._get_owned_podcast(user_id, podcast_id)
        await self._allocator.reset_counter(podcast_id)
        logger.info(
            "Podcast sequence counter reset.",
            extra={"user_id": user_id, "podcast_id": podcast_id},
        )

    async def _get_owned_podcast(self, user_id: str, podcast_id: int) -> Podcast:
        podcast = await self._podcast_db.get_podcast(podcast_id)
        if podcast.user_id != user_id:
            raise PodcastNotFoundError(
                "Podcast not found.", user_id=user_id, podcast_id=podcast_id
            )
        return podcast

    async def _delete_remote_files(
        self, user_id: str, podcast: Podcast, errors: list[str]
    ) -> int:
        """Delete every file in the podcast's remote folder; failures go to ``errors``."""
        if not podcast.remote_folder_id:
            return 0
        log_params = {"user_id": user_id, "podcast_id": podcast.id}
        try:
            store = await self._blob_stores.for_user(user_id)
            files = await store.list_files(podcast.remote_folder_id)
        except BlobStoreError as e:
            logger.error(
                "Failed to access remote storage during start-over.",
                extra=log_params,
                exc_info=e,
            )
            errors.append(describe_error(e))
            return 0

        deleted = 0
        for remote_file in files:
            try:
                await store.delete_file(remote_file.id)
            except BlobStoreError as e:
                logger.error(
                    "Failed to delete remote file during start-over.",
                    extra={**log_params, "file_id": remote_file.id},
                    exc_info=e,
                )
                errors.append(f"{remote_file.name}: {e}")
                continue
            deleted += 1
        return deleted

    async def start_over(self, user_id: str, podcast_id: int) -> StartOverResult:
        """Forget everything synced for a podcast so the next check starts fresh.

        Remote files are deleted best-effort; episodes and download history are
        deleted; the sequence counter, counts and ``last_checked`` are reset.

        Raises:
            PodcastNotFoundError: If the podcast does not belong to the user.
            DatabaseOperationError: If the records cannot be deleted or reset.
        """
        podcast = await self._get_owned_podcast(user_id, podcast_id)
        errors: list[str] = []
        files_deleted = await self._delete_remote_files(user_id, podcast, errors)

        history_deleted = await self._history_db.delete_for_podcast(podcast_id)
        episodes_deleted = await self._episode_db.delete_for_podcast(podcast_id)
        await self._podcast_db.reset_counter(podcast_id)
        await self._podcast_db.reset_sync_state(podcast_id)

        result = StartOverResult(
            files_deleted=files_deleted,
            episodes_deleted=episodes_deleted,
            history_deleted=history_deleted,
            errors=errors,
        )
        logger.info(
            "Podcast start-over completed.",
            extra={
                "user_id": user_id,
                "podcast_id": podcast_id,
                "files_deleted": files_deleted,
                "episodes_deleted": episodes_deleted,
                "history_deleted": history_deleted,
                "error_count": len(errors),
            },
        )
        return result
