# pyright: reportPrivateUsage=false

"""Tests for FeedReconciler discovery and deduplication."""

from datetime import timedelta
from unittest.mock import MagicMock

from helpers.records import BASE_TIME, seed_podcast, seed_user
import pytest
import pytest_asyncio

from podsync.crypto import CredentialStore, decrypt_episode, encrypt_podcast, generate_key
from podsync.db import EpisodeDatabase, PodcastDatabase, UserDatabase
from podsync.db.sqlalchemy_core import SqlalchemyCore
from podsync.db.types import EpisodeStatus, Podcast
from podsync.exceptions import CredentialError, FeedFetchError, ReconcileError
from podsync.feed_source import FeedSource, ParsedEpisode, ParsedFeed
from podsync.sync_engine import FeedReconciler, SequenceAllocator
from podsync.sync_status import OutcomeStatus, SyncStatusTracker

KEY = generate_key()


def _item(n: int, audio: bool = True) -> ParsedEpisode:
    return ParsedEpisode(
        guid=f"guid-{n}",
        title=f"Episode {n}",
        description=f"About episode {n}",
        pub_date=BASE_TIME + timedelta(days=n),
        audio_url=f"https://cdn.example.com/{n}.mp3" if audio else None,
    )


def _feed(*items: ParsedEpisode) -> ParsedFeed:
    return ParsedFeed(
        title="Example Show",
        description=None,
        image_url=None,
        author=None,
        link=None,
        episodes=list(items),
    )


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
def mock_feed_source() -> MagicMock:
    """Provides a MagicMock FeedSource."""
    return MagicMock(spec=FeedSource)


@pytest.fixture
def mock_credentials() -> MagicMock:
    """Provides a MagicMock CredentialStore that returns a fixed key."""
    credentials = MagicMock(spec=CredentialStore)
    credentials.get_user_key.return_value = KEY
    return credentials


@pytest.fixture
def mock_tracker() -> MagicMock:
    """Provides a MagicMock SyncStatusTracker."""
    return MagicMock(spec=SyncStatusTracker)


@pytest.fixture
def reconciler(
    mock_feed_source: MagicMock,
    episode_db: EpisodeDatabase,
    podcast_db: PodcastDatabase,
    mock_credentials: MagicMock,
    mock_tracker: MagicMock,
) -> FeedReconciler:
    """Provides a FeedReconciler over a real database and mocked collaborators."""
    return FeedReconciler(
        mock_feed_source,
        episode_db,
        podcast_db,
        SequenceAllocator(podcast_db, episode_db),
        mock_credentials,
        mock_tracker,
    )


@pytest_asyncio.fixture
async def podcast(podcast_db: PodcastDatabase) -> Podcast:
    """Provides a stored podcast with an encrypted name."""
    plain = Podcast(
        user_id="user-1", rss_url="https://feeds.example.com/show.xml", name="My Show"
    )
    return await podcast_db.add_podcast(encrypt_podcast(plain, KEY))


# --- Tests for reconcile ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_creates_encrypted_pending_episodes(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
    episode_db: EpisodeDatabase,
    podcast_db: PodcastDatabase,
):
    """New items are stored encrypted, pending, and numbered oldest first."""
    assert podcast.id is not None
    mock_feed_source.parse_feed.return_value = _feed(_item(3), _item(2), _item(1))

    created = await reconciler.reconcile(podcast, max_episodes=5)

    mock_feed_source.parse_feed.assert_awaited_once_with(podcast.rss_url, 5)
    assert len(created) == 3
    stored = await episode_db.get_episodes(podcast.id)
    assert {ep.guid: ep.sequence_number for ep in stored} == {
        "guid-1": 1,
        "guid-2": 2,
        "guid-3": 3,
    }
    assert all(ep.status == EpisodeStatus.PENDING for ep in stored)
    assert all(ep.title.count(":") == 2 for ep in stored)
    assert decrypt_episode(stored[0], KEY).title == "Episode 3"
    refreshed = await podcast_db.get_podcast(podcast.id)
    assert refreshed.last_checked is not None
    assert refreshed.episode_counter == 3
    assert refreshed.total_episodes == 3


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_is_idempotent(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
    episode_db: EpisodeDatabase,
):
    """Running twice over the same feed creates nothing the second time."""
    assert podcast.id is not None
    mock_feed_source.parse_feed.return_value = _feed(_item(2), _item(1))

    first = await reconciler.reconcile(podcast, max_episodes=5)
    second = await reconciler.reconcile(podcast, max_episodes=5)

    assert len(first) == 2
    assert second == []
    assert len(await episode_db.get_episodes(podcast.id)) == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_adds_only_new_items(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
    episode_db: EpisodeDatabase,
):
    """A later feed with one new item yields exactly that item, numbered next."""
    mock_feed_source.parse_feed.return_value = _feed(_item(1))
    await reconciler.reconcile(podcast, max_episodes=5)
    mock_feed_source.parse_feed.return_value = _feed(_item(2), _item(1))

    created = await reconciler.reconcile(podcast, max_episodes=5)

    assert [ep.guid for ep in created] == ["guid-2"]
    assert created[0].sequence_number == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_skips_items_without_audio(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
):
    """Items without an audio URL are not stored."""
    mock_feed_source.parse_feed.return_value = _feed(
        _item(2, audio=False), _item(1)
    )

    created = await reconciler.reconcile(podcast, max_episodes=5)

    assert [ep.guid for ep in created] == ["guid-1"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_ignores_duplicate_guids_in_feed(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
):
    """A guid repeated within one feed is stored once."""
    mock_feed_source.parse_feed.return_value = _feed(_item(1), _item(1))

    created = await reconciler.reconcile(podcast, max_episodes=5)

    assert len(created) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_feed_failure_raises(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    podcast: Podcast,
    podcast_db: PodcastDatabase,
):
    """Feed errors surface as ReconcileError and leave the podcast unchecked."""
    assert podcast.id is not None
    mock_feed_source.parse_feed.side_effect = FeedFetchError("down", url="u")

    with pytest.raises(ReconcileError) as exc_info:
        await reconciler.reconcile(podcast, max_episodes=5)

    assert isinstance(exc_info.value.__cause__, FeedFetchError)
    assert (await podcast_db.get_podcast(podcast.id)).last_checked is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_reconcile_missing_key_raises(
    reconciler: FeedReconciler,
    mock_credentials: MagicMock,
    mock_feed_source: MagicMock,
    podcast: Podcast,
):
    """Without a user key nothing is fetched."""
    mock_credentials.get_user_key.side_effect = CredentialError("no key")

    with pytest.raises(ReconcileError):
        await reconciler.reconcile(podcast, max_episodes=5)

    mock_feed_source.parse_feed.assert_not_awaited()


# --- Tests for discover ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discover_isolates_failing_podcasts(
    reconciler: FeedReconciler,
    mock_feed_source: MagicMock,
    mock_tracker: MagicMock,
    podcast: Podcast,
    podcast_db: PodcastDatabase,
):
    """One podcast failing does not stop the others."""
    broken = await seed_podcast(podcast_db, rss_url="https://broken/feed")

    async def parse_feed(url: str, max_episodes: int) -> ParsedFeed:
        if url == broken.rss_url:
            raise FeedFetchError("HTTP 500", url=url)
        return _feed(_item(2), _item(1))

    mock_feed_source.parse_feed.side_effect = parse_feed

    result = await reconciler.discover("user-1", [broken, podcast], max_episodes=5)

    assert result.podcasts_checked == 1
    assert len(result.errors) == 1
    assert isinstance(result.errors[0], ReconcileError)
    assert [d.episode.guid for d in result.discovered] == ["guid-2", "guid-1"]
    assert all(d.podcast.id == podcast.id for d in result.discovered)
    calls = mock_tracker.update_podcast.call_args_list
    assert calls[0].args[1] == OutcomeStatus.FAILED
    assert calls[0].args[3] == "HTTP 500"
    assert calls[1].args == ("My Show", OutcomeStatus.SUCCESS, 2)


@pytest.mark.unit
@pytest.mark.asyncio
async def test_discover_without_key_reports_ids(
    reconciler: FeedReconciler,
    mock_credentials: MagicMock,
    mock_tracker: MagicMock,
    podcast: Podcast,
):
    """Progress falls back to podcast ids when the key is unavailable."""
    mock_credentials.get_user_key.side_effect = CredentialError("no key")

    result = await reconciler.discover("user-1", [podcast], max_episodes=5)

    assert result.podcasts_checked == 0
    mock_tracker.update_podcast.assert_called_once()
    assert mock_tracker.update_podcast.call_args.args[0] == f"podcast {podcast.id}"
