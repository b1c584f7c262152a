"""Consistency checks between stored episodes and remote files, and resync.

Verification compares what the database says was uploaded against what the
user's blob store actually holds; it never changes either side. Resync puts
selected episodes back to pending and runs the download pipeline for them.
"""

from collections import defaultdict
import logging
from typing import Any

from ..blob_store import BlobStore, BlobStoreProvider
from ..crypto import CredentialStore, episode_display_title, podcast_display_name
from ..db import EpisodeDatabase, PodcastDatabase
from ..db.types import Episode, Podcast
from ..exceptions import (
    BlobFolderNotFoundError,
    BlobStoreError,
    BlobStoreUnavailableError,
    CredentialError,
    DatabaseOperationError,
    DownloadError,
    VerificationError,
)
from ..sync_status import OutcomeStatus, SyncStatusTracker
from .downloader import DownloadPipeline, describe_error
from .types import PodcastVerification, ResyncResult, VerificationReport

logger = logging.getLogger(__name__)

NO_FOLDER_WARNING = "No remote folder ID stored for this podcast"
MISSING_FOLDER_ERROR = (
    "Podcast folder no longer exists remotely "
    "(folder will be recreated on next upload)"
)


class ConsistencyVerifier:
    """Report and repair drift between episode records and remote storage.

    Attributes:
        _podcast_db: Podcast persistence.
        _episode_db: Episode persistence.
        _credentials: Supplies users' encryption keys.
        _blob_stores: Opens per-user blob store sessions.
        _pipeline: Re-downloads episodes on resync.
        _tracker: Receives resync progress.
    """

    def __init__(
        self,
        podcast_db: PodcastDatabase,
        episode_db: EpisodeDatabase,
        credentials: CredentialStore,
        blob_stores: BlobStoreProvider,
        pipeline: DownloadPipeline,
        tracker: SyncStatusTracker,
    ):
        self._podcast_db = podcast_db
        self._episode_db = episode_db
        self._credentials = credentials
        self._blob_stores = blob_stores
        self._pipeline = pipeline
        self._tracker = tracker

    async def _optional_key(self, user_id: str) -> bytes | None:
        try:
            return await self._credentials.get_user_key(user_id)
        except (CredentialError, DatabaseOperationError) as e:
            logger.warning(
                "User key unavailable; names will show ids.",
                extra={"user_id": user_id},
                exc_info=e,
            )
            return None

    async def _verify_podcast(
        self, store: BlobStore, podcast: Podcast, name: str
    ) -> PodcastVerification:
        assert podcast.id is not None
        episodes = await self._episode_db.get_episodes(podcast.id)
        downloaded = [ep for ep in episodes if ep.downloaded]
        downloaded_ids = [ep.id for ep in downloaded if ep.id is not None]
        folder_id = podcast.remote_folder_id

        if not folder_id:
            return PodcastVerification(
                podcast_id=podcast.id,
                podcast_name=name,
                folder_id=None,
                downloaded_count=len(downloaded),
                remote_file_count=0,
                missing_episode_ids=downloaded_ids,
                warning=NO_FOLDER_WARNING if downloaded else None,
            )

        try:
            files = await store.list_files(folder_id)
        except BlobFolderNotFoundError:
            return PodcastVerification(
                podcast_id=podcast.id,
                podcast_name=name,
                folder_id=folder_id,
                downloaded_count=len(downloaded),
                remote_file_count=0,
                missing_episode_ids=downloaded_ids,
                error=MISSING_FOLDER_ERROR,
            )

        remote_ids = {f.id for f in files}
        referenced_ids = {ep.cloud_file_id for ep in episodes if ep.cloud_file_id}
        missing = [
            ep.id
            for ep in downloaded
            if ep.id is not None
            and (not ep.cloud_file_id or ep.cloud_file_id not in remote_ids)
        ]
        extra = [f for f in files if f.id not in referenced_ids]
        return PodcastVerification(
            podcast_id=podcast.id,
            podcast_name=name,
            folder_id=folder_id,
            downloaded_count=len(downloaded),
            remote_file_count=len(files),
            missing_episode_ids=missing,
            extra_files=extra,
        )

    async def verify(self, user_id: str) -> VerificationReport:
        """Compare every podcast's downloaded episodes with its remote folder.

        Args:
            user_id: The user to verify.

        Returns:
            A report with status ``"skipped"`` when the user has no usable
            blob store, otherwise ``"ok"`` with per-podcast results.

        Raises:
            VerificationError: If records or folder listings cannot be read.
        """
        log_params: dict[str, Any] = {"user_id": user_id}
        try:
            store = await self._blob_stores.for_user(user_id)
        except BlobStoreUnavailableError as e:
            logger.info(
                "Remote storage unavailable, skipping verification.",
                extra=log_params,
                exc_info=e,
            )
            return VerificationReport(
                user_id=user_id, status="skipped", message=str(e)
            )

        key = await self._optional_key(user_id)
        try:
            podcasts = await self._podcast_db.get_podcasts(user_id)
            results: list[PodcastVerification] = []
            for podcast in podcasts:
                results.append(
                    await self._verify_podcast(
                        store, podcast, podcast_display_name(podcast, key)
                    )
                )
        except (DatabaseOperationError, BlobStoreError) as e:
            raise VerificationError(
                "Failed to verify remote consistency.", user_id=user_id
            ) from e

        report = VerificationReport(user_id=user_id, status="ok", podcasts=results)
        logger.info(
            "Verification completed.",
            extra={
                **log_params,
                "podcast_count": len(results),
                "total_missing": report.total_missing,
                "total_extra": report.total_extra,
            },
        )
        return report

    async def _load_for_resync(
        self, user_id: str, episode_ids: list[int]
    ) -> list[tuple[Episode, Podcast]]:
        """Reset the episodes and return them, reloaded, grouped by podcast."""
        episodes = await self._episode_db.get_episodes_by_ids(user_id, episode_ids)
        grouped: dict[int, list[int]] = defaultdict(list)
        for episode in episodes:
            if episode.id is not None:
                grouped[episode.podcast_id].append(episode.id)

        ordered_ids = [eid for ids in grouped.values() for eid in ids]
        await self._episode_db.reset_for_resync(ordered_ids)
        refreshed = {
            ep.id: ep
            for ep in await self._episode_db.get_episodes_by_ids(user_id, ordered_ids)
        }

        pairs: list[tuple[Episode, Podcast]] = []
        for podcast_id, ids in grouped.items():
            podcast = await self._podcast_db.get_podcast(podcast_id)
            pairs.extend((refreshed[eid], podcast) for eid in ids if eid in refreshed)
        return pairs

    async def resync(self, user_id: str, episode_ids: list[int]) -> ResyncResult:
        """Re-download the selected episodes.

        Every selected episode is reset to pending with its remote references
        cleared before any download starts. Downloads then run one at a time
        and report progress to the tracker; failures are recorded, not raised.

        Args:
            user_id: The owning user; ids of other users' episodes are ignored.
            episode_ids: Episodes to re-download.

        Returns:
            How many episodes were downloaded, and their ids.

        Raises:
            SyncAlreadyRunningError: If a sync is already running.
            VerificationError: If storage or records are unavailable.
        """
        log_params: dict[str, Any] = {
            "user_id": user_id,
            "requested_count": len(episode_ids),
        }
        # Claim the tracker before any episode is reset.
        self._tracker.start_sync(0)
        succeeded: list[int] = []
        try:
            try:
                store = await self._blob_stores.for_user(user_id)
                pairs = await self._load_for_resync(user_id, episode_ids)
            except (BlobStoreError, DatabaseOperationError) as e:
                raise VerificationError(
                    "Failed to prepare episodes for resync.", user_id=user_id
                ) from e
            logger.info(
                "Resync starting.", extra={**log_params, "episode_count": len(pairs)}
            )

            key = await self._optional_key(user_id)
            self._tracker.start_download_phase(len(pairs))
            for episode, podcast in pairs:
                title = episode_display_title(episode, key)
                podcast_name = podcast_display_name(podcast, key)
                try:
                    outcome = await self._pipeline.download(episode, podcast, store)
                except DownloadError as e:
                    logger.error(
                        "Resync download failed.",
                        extra={**log_params, "episode_id": episode.id},
                        exc_info=e,
                    )
                    self._tracker.update_episode(
                        title, podcast_name, OutcomeStatus.FAILED, describe_error(e)
                    )
                    continue
                succeeded.append(outcome.episode_id)
                self._tracker.update_episode(title, podcast_name, OutcomeStatus.SUCCESS)
        finally:
            self._tracker.end_sync()

        logger.info(
            "Resync completed.", extra={**log_params, "succeeded_count": len(succeeded)}
        )
        return ResyncResult(started_count=len(succeeded), episode_ids=succeeded)
