"""Download pipeline for a single episode.

For one episode: fetch the audio to a temporary file, settle its sequence
number, tag it, upload it to the user's blob store, and record the outcome on
the episode and in its download history.
"""

import asyncio
from collections.abc import Sequence
import logging
from pathlib import Path, PurePosixPath
from typing import Any
from urllib.parse import urlparse

import aiofiles
import aiofiles.os
import httpx

from ..audio_tagger import AudioTagger, build_tags
from ..blob_store import BlobStore, BlobStoreProvider
from ..crypto import CredentialStore, decrypt_episode, decrypt_podcast, encrypt_value
from ..db import EpisodeDatabase, HistoryDatabase, PodcastDatabase, UserDatabase
from ..db.types import DownloadHistory, Episode, Podcast
from ..exceptions import (
    AudioFetchError,
    BlobStoreError,
    CredentialError,
    DatabaseOperationError,
    DownloadError,
    FileOperationError,
    TaggingError,
)
from ..feed_source import is_transient_http_error
from ..filenames import build_episode_filename
from ..path_manager import PathManager
from ..retry import RetryPolicy, linear_backoff
from .sequence import SequenceAllocator
from .types import DiscoveredEpisode, DownloadOutcome

logger = logging.getLogger(__name__)

DEFAULT_EXTENSION = "mp3"
AUDIO_RETRY_ATTEMPTS = 3
AUDIO_CONNECT_TIMEOUT_SECONDS = 30.0
STREAM_CHUNK_SIZE = 64 * 1024
TAGGABLE_EXTENSIONS = frozenset({"mp3"})


def audio_extension(url: str) -> str:
    """Return the file extension of the URL's path, or ``mp3``."""
    try:
        path = urlparse(url).path
    except ValueError:
        return DEFAULT_EXTENSION
    suffix = PurePosixPath(path).suffix.lstrip(".").lower()
    if suffix and suffix.isalnum() and len(suffix) <= 5:
        return suffix
    return DEFAULT_EXTENSION


def describe_error(error: BaseException) -> str:
    """Render an error and its direct cause as one line."""
    cause = error.__cause__
    if cause is not None and str(cause):
        return f"{error} ({cause})"
    return str(error)


class DownloadPipeline:
    """Download, tag, and upload episodes.

    Attributes:
        _episode_db: Episode persistence.
        _podcast_db: Podcast persistence (remote folder references).
        _history_db: Download attempt history.
        _user_db: User settings (root folder).
        _allocator: Settles sequence numbers.
        _credentials: Supplies users' encryption keys.
        _blob_stores: Opens per-user blob store sessions.
        _tagger: Writes ID3 tags and fetches cover art.
        _paths: Locates temporary files.
        _audio_timeout: Read timeout for audio streams, in seconds.
        _user_agent: User-Agent header value.
        _retry: Policy for transient audio fetch failures.
    """

    def __init__(
        self,
        episode_db: EpisodeDatabase,
        podcast_db: PodcastDatabase,
        history_db: HistoryDatabase,
        user_db: UserDatabase,
        allocator: SequenceAllocator,
        credentials: CredentialStore,
        blob_stores: BlobStoreProvider,
        tagger: AudioTagger,
        paths: PathManager,
        audio_timeout_seconds: float = 2 * 60 * 60,
        user_agent: str = "podsync/1.0",
        retry_policy: RetryPolicy | None = None,
    ):
        self._episode_db = episode_db
        self._podcast_db = podcast_db
        self._history_db = history_db
        self._user_db = user_db
        self._allocator = allocator
        self._credentials = credentials
        self._blob_stores = blob_stores
        self._tagger = tagger
        self._paths = paths
        self._audio_timeout = audio_timeout_seconds
        self._user_agent = user_agent
        self._retry = retry_policy or RetryPolicy(
            max_attempts=AUDIO_RETRY_ATTEMPTS,
            backoff=linear_backoff(2.0),
            is_retryable=is_transient_http_error,
        )
        logger.debug("DownloadPipeline initialized.")

    # --- Steps ---

    async def _stream_to_file(self, url: str, target: Path) -> int:
        timeout = httpx.Timeout(AUDIO_CONNECT_TIMEOUT_SECONDS, read=self._audio_timeout)
        written = 0
        async with (
            httpx.AsyncClient(
                timeout=timeout,
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
            ) as client,
            client.stream("GET", url) as response,
        ):
            response.raise_for_status()
            async with aiofiles.open(target, "wb") as file:
                async for chunk in response.aiter_bytes(STREAM_CHUNK_SIZE):
                    await file.write(chunk)
                    written += len(chunk)
        return written

    async def _fetch_audio(self, url: str, target: Path, log_params: dict[str, Any]) -> int:
        """Fetch ``url`` into ``target``, retrying transient failures.

        Raises:
            AudioFetchError: If the audio cannot be fetched.
        """
        try:
            return await self._retry.run(
                lambda: self._stream_to_file(url, target), log_params
            )
        except httpx.HTTPStatusError as e:
            raise AudioFetchError(
                f"Audio request returned HTTP {e.response.status_code}",
                url=url,
                status_code=e.response.status_code,
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise AudioFetchError("Audio request failed", url=url) from e
        except OSError as e:
            raise AudioFetchError("Failed to write audio to disk", url=url) from e

    async def _tag(
        self,
        path: Path,
        ext: str,
        episode: Episode,
        podcast: Podcast,
        sequence_number: int,
        log_params: dict[str, Any],
    ) -> None:
        """Tag the file; failures are logged and the file is left untagged."""
        if ext not in TAGGABLE_EXTENSIONS:
            logger.debug(
                "Skipping ID3 tags for non-MP3 audio.", extra={**log_params, "ext": ext}
            )
            return
        cover_art = await self._tagger.fetch_cover_art(episode.image_url)
        if cover_art is None and podcast.image_url != episode.image_url:
            cover_art = await self._tagger.fetch_cover_art(podcast.image_url)
        tags = build_tags(
            title=episode.title,
            podcast_name=podcast.name,
            podcast_author=podcast.author,
            sequence_number=sequence_number,
            pub_date=episode.pub_date,
            cover_art=cover_art,
        )
        try:
            await self._tagger.tag(path, tags)
        except TaggingError as e:
            logger.warning(
                "Failed to tag audio, uploading untagged file.",
                extra=log_params,
                exc_info=e,
            )

    async def _ensure_folder(
        self, store: BlobStore, podcast: Podcast, podcast_name: str
    ) -> str:
        """Return the podcast's remote folder, recreating it when it has vanished.

        A new folder is recorded on the podcast, in the database and on the
        passed instance.
        """
        if podcast.remote_folder_id and await store.folder_exists(
            podcast.remote_folder_id
        ):
            return podcast.remote_folder_id

        assert podcast.id is not None
        settings = await self._user_db.get_settings(podcast.user_id)
        folder_id = await store.get_or_create_folder(
            podcast_name, settings.root_folder_id
        )
        await self._podcast_db.set_remote_folder(podcast.id, folder_id)
        if podcast.remote_folder_id:
            logger.info(
                "Podcast folder was missing remotely and has been recreated.",
                extra={
                    "podcast_id": podcast.id,
                    "old_folder_id": podcast.remote_folder_id,
                    "folder_id": folder_id,
                },
            )
        podcast.remote_folder_id = folder_id
        return folder_id

    async def _handle_download_success(
        self,
        episode_id: int,
        history: DownloadHistory,
        file_id: str,
        web_view_link: str | None,
        size: int,
        filename: str,
        key: bytes,
    ) -> None:
        """Record the completed download on the episode and its history.

        Raises:
            DownloadError: If the outcome cannot be stored.
        """
        try:
            await self._episode_db.mark_completed(
                episode_id,
                cloud_file_id=file_id,
                cloud_url=web_view_link,
                file_size=size,
                original_filename=encrypt_value(filename, key),
            )
            await self._history_db.complete_attempt(history, size)
        except DatabaseOperationError as e:
            raise DownloadError(
                "Failed to record completed download.",
                user_id=history.user_id,
                podcast_id=history.podcast_id,
                episode_id=episode_id,
            ) from e

    async def _handle_download_failure(
        self, episode_id: int, history: DownloadHistory, error: DownloadError
    ) -> None:
        """Mark the episode and its history record failed.

        Errors while recording the failure are logged, not raised.
        """
        log_params = {"podcast_id": history.podcast_id, "episode_id": episode_id}
        logger.error("Could not complete download.", extra=log_params, exc_info=error)
        message = describe_error(error)
        try:
            await self._episode_db.mark_failed(episode_id, message)
            await self._history_db.fail_attempt(history, message)
        except DatabaseOperationError as e:
            logger.error(
                "Failed to record download failure.", extra=log_params, exc_info=e
            )

    # --- Public API ---

    async def _run(
        self,
        episode: Episode,
        podcast: Podcast,
        plain_episode: Episode,
        plain_podcast: Podcast,
        key: bytes,
        history: DownloadHistory,
        store: BlobStore | None,
    ) -> DownloadOutcome:
        assert episode.id is not None
        episode_id = episode.id
        ids: dict[str, Any] = {
            "user_id": episode.user_id,
            "podcast_id": episode.podcast_id,
            "episode_id": episode_id,
        }

        audio_url = plain_episode.audio_url
        if not audio_url:
            raise DownloadError("Episode has no audio URL.", **ids)
        ext = audio_extension(audio_url)

        try:
            if store is None:
                store = await self._blob_stores.for_user(episode.user_id)
            tmp_path = await self._paths.tmp_file(episode.user_id, ext)
        except (BlobStoreError, FileOperationError, ValueError) as e:
            raise DownloadError("Failed to prepare download.", **ids) from e

        try:
            try:
                size = await self._fetch_audio(audio_url, tmp_path, ids)
            except AudioFetchError as e:
                raise DownloadError("Failed to fetch audio.", **ids) from e
            logger.debug("Audio fetched.", extra={**ids, "bytes": size})

            try:
                sequence_number = await self._allocator.resolve(episode)
            except DatabaseOperationError as e:
                raise DownloadError("Failed to resolve sequence number.", **ids) from e

            filename = build_episode_filename(
                sequence_number, plain_episode.title or "Untitled", ext
            )
            await self._tag(
                tmp_path, ext, plain_episode, plain_podcast, sequence_number, ids
            )

            try:
                folder_id = await self._ensure_folder(
                    store, podcast, plain_podcast.name or f"podcast {podcast.id}"
                )
                uploaded = await store.upload(tmp_path, filename, folder_id)
            except (BlobStoreError, DatabaseOperationError) as e:
                raise DownloadError("Failed to upload episode.", **ids) from e

            await self._handle_download_success(
                episode_id,
                history,
                uploaded.file_id,
                uploaded.web_view_link,
                uploaded.size,
                filename,
                key,
            )
        finally:
            try:
                await aiofiles.os.remove(tmp_path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(
                    "Failed to remove temporary audio file.",
                    extra={**ids, "tmp_path": str(tmp_path)},
                    exc_info=e,
                )

        logger.info(
            "Episode downloaded.",
            extra={**ids, "sequence_number": sequence_number, "bytes": uploaded.size},
        )
        return DownloadOutcome(
            episode_id=episode_id,
            file_id=uploaded.file_id,
            bytes=uploaded.size,
            sequence_number=sequence_number,
            filename=filename,
        )

    async def download(
        self, episode: Episode, podcast: Podcast, store: BlobStore | None = None
    ) -> DownloadOutcome:
        """Download one episode into the user's blob store.

        Args:
            episode: The stored episode (encrypted fields).
            podcast: The episode's stored podcast (encrypted fields). Its
                ``remote_folder_id`` is updated in place if the folder is
                (re)created.
            store: An already open blob store session for the user.

        Returns:
            Where the file went and how big it is.

        Raises:
            DownloadError: If any step fails. Once the episode has been marked
                downloading, a failure also marks it and its history record
                failed.
        """
        if episode.id is None:
            raise ValueError("Episode must be stored before it can be downloaded.")
        episode_id = episode.id
        ids: dict[str, Any] = {
            "user_id": episode.user_id,
            "podcast_id": episode.podcast_id,
            "episode_id": episode_id,
        }
        logger.debug("Starting episode download.", extra=ids)

        try:
            key = await self._credentials.get_user_key(episode.user_id)
            plain_episode = decrypt_episode(episode, key)
            plain_podcast = decrypt_podcast(podcast, key)
        except (CredentialError, DatabaseOperationError) as e:
            raise DownloadError("Failed to decrypt episode metadata.", **ids) from e

        try:
            await self._episode_db.mark_downloading(episode_id)
            history = await self._history_db.start_attempt(
                episode.user_id, episode.podcast_id, episode_id
            )
        except DatabaseOperationError as e:
            raise DownloadError("Failed to start download.", **ids) from e

        try:
            return await self._run(
                episode, podcast, plain_episode, plain_podcast, key, history, store
            )
        except DownloadError as e:
            await self._handle_download_failure(episode_id, history, e)
            raise
        except Exception as e:
            error = DownloadError("Unexpected error during download.", **ids)
            error.__cause__ = e
            await self._handle_download_failure(episode_id, history, error)
            raise error from e

    async def download_many(
        self,
        items: Sequence[DiscoveredEpisode],
        max_concurrent: int = 3,
        store: BlobStore | None = None,
    ) -> list[DownloadOutcome | BaseException]:
        """Download episodes in batches of at most ``max_concurrent``.

        Each batch finishes completely before the next starts.

        Returns:
            One entry per item, in order: the outcome, or the exception it
            failed with.
        """
        if max_concurrent < 1:
            raise ValueError(f"max_concurrent must be at least 1, got {max_concurrent}")
        results: list[DownloadOutcome | BaseException] = []
        for start in range(0, len(items), max_concurrent):
            batch = items[start : start + max_concurrent]
            results.extend(
                await asyncio.gather(
                    *(self.download(item.episode, item.podcast, store) for item in batch),
                    return_exceptions=True,
                )
            )
        return results
