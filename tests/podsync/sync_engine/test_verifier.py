# pyright: reportPrivateUsage=false

"""Tests for ConsistencyVerifier reports and resync."""

from pathlib import Path
from unittest.mock import MagicMock

from helpers.records import seed_episodes, seed_podcast, seed_user
import pytest
import pytest_asyncio

from podsync.blob_store import BlobStoreProvider, LocalBlobStore
from podsync.crypto import CredentialStore, encrypt_podcast, generate_key
from podsync.db import EpisodeDatabase, PodcastDatabase, UserDatabase
from podsync.db.sqlalchemy_core import SqlalchemyCore
from podsync.db.types import Episode, EpisodeStatus, Podcast
from podsync.exceptions import (
    BlobStoreUnavailableError,
    DownloadError,
    SyncAlreadyRunningError,
    VerificationError,
)
from podsync.sync_engine import ConsistencyVerifier, DownloadPipeline
from podsync.sync_engine.types import DownloadOutcome
from podsync.sync_engine.verifier import MISSING_FOLDER_ERROR, NO_FOLDER_WARNING
from podsync.sync_status import SyncStatusTracker

KEY = generate_key()

# --- Fixtures ---


@pytest_asyncio.fixture
async def db_core(db_core: SqlalchemyCore) -> SqlalchemyCore:
    """Extends the migrated database with one user."""
    await seed_user(UserDatabase(db_core))
    return db_core


@pytest.fixture
def podcast_db(db_core: SqlalchemyCore) -> PodcastDatabase:
    """Provides a PodcastDatabase instance."""
    return PodcastDatabase(db_core)


@pytest.fixture
def episode_db(db_core: SqlalchemyCore) -> EpisodeDatabase:
    """Provides an EpisodeDatabase instance."""
    return EpisodeDatabase(db_core)


@pytest.fixture
def store(tmp_path: Path) -> LocalBlobStore:
    """Provides a LocalBlobStore rooted in a temporary directory."""
    root = tmp_path / "storage"
    root.mkdir()
    return LocalBlobStore(root)


@pytest.fixture
def mock_provider(store: LocalBlobStore) -> MagicMock:
    """Provides a BlobStoreProvider mock handing out the local store."""
    provider = MagicMock(spec=BlobStoreProvider)
    provider.for_user.return_value = store
    return provider


@pytest.fixture
def mock_pipeline() -> MagicMock:
    """Provides a MagicMock DownloadPipeline."""
    return MagicMock(spec=DownloadPipeline)


@pytest.fixture
def tracker() -> SyncStatusTracker:
    """Provides a real SyncStatusTracker."""
    return SyncStatusTracker()


@pytest.fixture
def verifier(
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
    mock_provider: MagicMock,
    mock_pipeline: MagicMock,
    tracker: SyncStatusTracker,
) -> ConsistencyVerifier:
    """Provides a ConsistencyVerifier over the real database and local store."""
    credentials = MagicMock(spec=CredentialStore)
    credentials.get_user_key.return_value = KEY
    return ConsistencyVerifier(
        podcast_db, episode_db, credentials, mock_provider, mock_pipeline, tracker
    )


async def _encrypted_podcast(
    podcast_db: PodcastDatabase, name: str, rss_url: str
) -> Podcast:
    plain = Podcast(user_id="user-1", rss_url=rss_url, name=name)
    return await podcast_db.add_podcast(encrypt_podcast(plain, KEY))


async def _mark_uploaded(
    episode_db: EpisodeDatabase, episode: Episode, file_id: str
) -> None:
    assert episode.id is not None
    await episode_db.mark_completed(
        episode.id,
        cloud_file_id=file_id,
        cloud_url=None,
        file_size=5,
        original_filename=None,
    )


# --- Tests for verify ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_verify_reports_missing_and_extra(
    verifier: ConsistencyVerifier,
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
    store: LocalBlobStore,
    tmp_path: Path,
):
    """Missing uploads and unreferenced files are both reported."""
    podcast = await _encrypted_podcast(podcast_db, "My Show", "https://a/feed")
    assert podcast.id is not None
    folder_id = await store.get_or_create_folder("My Show", None)
    await podcast_db.set_remote_folder(podcast.id, folder_id)
    source = tmp_path / "audio.mp3"
    source.write_bytes(b"audio")
    present = await store.upload(source, "001-One.mp3", folder_id)
    stray = await store.upload(source, "stray.mp3", folder_id)
    first, second, _ = await seed_episodes(episode_db, podcast, 3)
    await _mark_uploaded(episode_db, first, present.file_id)
    await _mark_uploaded(episode_db, second, f"{folder_id}/002-Two.mp3")

    report = await verifier.verify("user-1")

    assert report.status == "ok"
    (result,) = report.podcasts
    assert result.podcast_name == "My Show"
    assert result.downloaded_count == 2
    assert result.remote_file_count == 2
    assert result.missing_episode_ids == [second.id]
    assert [f.id for f in result.extra_files] == [stray.file_id]
    assert [f.name for f in result.extra_files] == ["stray.mp3"]
    assert report.total_missing == 1
    assert report.total_extra == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_verify_without_folder_warns(
    verifier: ConsistencyVerifier,
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
):
    """Downloaded episodes without a recorded folder are all missing."""
    podcast = await seed_podcast(podcast_db)
    (episode,) = await seed_episodes(episode_db, podcast, 1)
    await _mark_uploaded(episode_db, episode, "somewhere/001.mp3")

    report = await verifier.verify("user-1")

    (result,) = report.podcasts
    assert result.folder_id is None
    assert result.warning == NO_FOLDER_WARNING
    assert result.missing_episode_ids == [episode.id]
    assert result.podcast_name == f"podcast {podcast.id}"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_verify_with_vanished_folder_errors(
    verifier: ConsistencyVerifier,
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
):
    """A recorded folder that no longer exists is reported, not raised."""
    podcast = await seed_podcast(podcast_db)
    assert podcast.id is not None
    await podcast_db.set_remote_folder(podcast.id, "Gone")
    (episode,) = await seed_episodes(episode_db, podcast, 1)
    await _mark_uploaded(episode_db, episode, "Gone/001.mp3")

    report = await verifier.verify("user-1")

    (result,) = report.podcasts
    assert result.error == MISSING_FOLDER_ERROR
    assert result.missing_episode_ids == [episode.id]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_verify_skipped_without_store(
    verifier: ConsistencyVerifier, mock_provider: MagicMock
):
    """Verification is skipped when the user has no usable store."""
    mock_provider.for_user.side_effect = BlobStoreUnavailableError("not connected")

    report = await verifier.verify("user-1")

    assert report.status == "skipped"
    assert report.message == "not connected"
    assert report.podcasts == []


# --- Tests for resync ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resync_resets_before_downloading(
    verifier: ConsistencyVerifier,
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
    mock_pipeline: MagicMock,
    store: LocalBlobStore,
    tracker: SyncStatusTracker,
):
    """Every selected episode is pending before the first download starts."""
    podcast = await seed_podcast(podcast_db)
    episodes = await seed_episodes(episode_db, podcast, 2)
    for i, episode in enumerate(episodes, start=1):
        await _mark_uploaded(episode_db, episode, f"Show/{i:03d}.mp3")
    ids = [ep.id for ep in episodes if ep.id is not None]
    seen_states: list[list[EpisodeStatus]] = []

    async def download(
        episode: Episode, podcast: Podcast, store: object
    ) -> DownloadOutcome:
        stored = await episode_db.get_episodes_by_ids("user-1", ids)
        seen_states.append([ep.status for ep in stored])
        assert episode.cloud_file_id is None
        if episode.guid == "guid-2":
            raise DownloadError("boom")
        assert episode.id is not None
        return DownloadOutcome(episode.id, "f", 5, 1, "001.mp3")

    mock_pipeline.download.side_effect = download

    result = await verifier.resync("user-1", [*ids, 999])

    assert result.started_count == 1
    assert result.episode_ids == [ids[0]]
    assert seen_states[0] == [EpisodeStatus.PENDING, EpisodeStatus.PENDING]
    assert mock_pipeline.download.await_count == 2
    assert mock_pipeline.download.call_args.args[2] is store
    status = tracker.get_status()
    assert status.is_running is False
    assert status.phase is None
    assert status.succeeded_episodes == 1
    assert status.failed_episodes == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resync_rejected_while_syncing(
    verifier: ConsistencyVerifier,
    tracker: SyncStatusTracker,
    mock_pipeline: MagicMock,
):
    """Resync refuses to start while another sync runs."""
    tracker.start_sync(1)

    with pytest.raises(SyncAlreadyRunningError):
        await verifier.resync("user-1", [1])

    mock_pipeline.download.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resync_holds_tracker_before_resetting(
    verifier: ConsistencyVerifier,
    podcast_db: PodcastDatabase,
    episode_db: EpisodeDatabase,
    mock_provider: MagicMock,
    mock_pipeline: MagicMock,
    store: LocalBlobStore,
    tracker: SyncStatusTracker,
):
    """A sync trying to start during preparation is refused; resync carries on."""
    podcast = await seed_podcast(podcast_db)
    (episode,) = await seed_episodes(episode_db, podcast, 1)
    await _mark_uploaded(episode_db, episode, "Show/001.mp3")
    assert episode.id is not None
    competing: list[SyncAlreadyRunningError] = []

    async def for_user(user_id: str) -> LocalBlobStore:
        try:
            tracker.start_sync(1)
        except SyncAlreadyRunningError as e:
            competing.append(e)
        return store

    mock_provider.for_user.side_effect = for_user
    mock_pipeline.download.return_value = DownloadOutcome(
        episode.id, "Show/001.mp3", 5, 1, "001.mp3"
    )

    result = await verifier.resync("user-1", [episode.id])

    assert len(competing) == 1
    assert result.episode_ids == [episode.id]
    mock_pipeline.download.assert_awaited_once()
    assert tracker.can_start_sync()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_resync_preparation_failure_releases_tracker(
    verifier: ConsistencyVerifier,
    mock_provider: MagicMock,
    tracker: SyncStatusTracker,
):
    """A store that cannot be opened ends the claimed sync."""
    mock_provider.for_user.side_effect = BlobStoreUnavailableError("not connected")

    with pytest.raises(VerificationError):
        await verifier.resync("user-1", [1])

    assert tracker.can_start_sync()
