"""Default mode: run the per-user scheduler until a shutdown signal arrives."""

import asyncio
import logging
import signal

from ..audio_tagger import AudioTagger
from ..blob_store import LocalBlobStoreProvider
from ..config import AppSettings
from ..crypto import CredentialStore
from ..db import (
    EpisodeDatabase,
    HistoryDatabase,
    PodcastDatabase,
    StatsDatabase,
    UserDatabase,
)
from ..db.sqlalchemy_core import SqlalchemyCore
from ..exceptions import FileOperationError
from ..feed_source import FeedSource
from ..path_manager import PathManager
from ..schedule import UserScheduler
from ..sync_engine import (
    DownloadPipeline,
    FeedReconciler,
    Pruner,
    SequenceAllocator,
    StatsAggregator,
    UserSyncCoordinator,
)
from ..sync_status import SyncStatusTracker

logger = logging.getLogger(__name__)


async def graceful_shutdown(
    scheduler: UserScheduler | None,
    db_core: SqlalchemyCore | None,
) -> None:
    """Stop the scheduler, letting running syncs finish, then close the database.

    Args:
        scheduler: The user scheduler to stop.
        db_core: The database core to close.
    """
    logger.info("Shutdown signal received.")

    if scheduler:
        try:
            await scheduler.stop(wait_for_jobs=True)
            logger.info("Scheduler shutdown completed.")
        except Exception as e:
            logger.error("Error shutting down scheduler.", exc_info=e)

    if db_core:
        try:
            await db_core.close()
            logger.info("Database connections closed.")
        except Exception as e:
            logger.error("Error closing database connections.", exc_info=e)

    logger.info("podsync shutdown completed.")


async def _init(settings: AppSettings) -> tuple[SqlalchemyCore, UserScheduler]:
    path_manager = PathManager(base_data_dir=settings.data_dir)

    try:
        settings.data_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        logger.error(
            "Failed to create data directory.",
            extra={"data_dir": str(settings.data_dir)},
            exc_info=e,
        )
        raise FileOperationError(
            "Failed to create data directory.", file_name=str(settings.data_dir)
        ) from e

    logger.debug("Initializing database components.")
    db_dir = await path_manager.db_dir()
    db_core = SqlalchemyCore(db_dir)
    user_db = UserDatabase(db_core)
    podcast_db = PodcastDatabase(db_core)
    episode_db = EpisodeDatabase(db_core)
    history_db = HistoryDatabase(db_core)
    stats_db = StatsDatabase(db_core)

    tracker = SyncStatusTracker()
    credentials = CredentialStore(user_db, settings.master_key.get_secret_value())
    blob_stores = LocalBlobStoreProvider(path_manager)
    feed_source = FeedSource(
        timeout_seconds=settings.feed_timeout_seconds, user_agent=settings.user_agent
    )
    tagger = AudioTagger(
        image_timeout_seconds=settings.image_timeout_seconds,
        user_agent=settings.user_agent,
    )

    allocator = SequenceAllocator(podcast_db, episode_db)
    reconciler = FeedReconciler(
        feed_source=feed_source,
        episode_db=episode_db,
        podcast_db=podcast_db,
        allocator=allocator,
        credentials=credentials,
        tracker=tracker,
    )
    pipeline = DownloadPipeline(
        episode_db=episode_db,
        podcast_db=podcast_db,
        history_db=history_db,
        user_db=user_db,
        allocator=allocator,
        credentials=credentials,
        blob_stores=blob_stores,
        tagger=tagger,
        paths=path_manager,
        audio_timeout_seconds=settings.audio_timeout_seconds,
        user_agent=settings.user_agent,
    )
    coordinator = UserSyncCoordinator(
        user_db=user_db,
        podcast_db=podcast_db,
        episode_db=episode_db,
        history_db=history_db,
        reconciler=reconciler,
        pipeline=pipeline,
        pruner=Pruner(episode_db),
        allocator=allocator,
        credentials=credentials,
        blob_stores=blob_stores,
        tracker=tracker,
    )

    scheduler = UserScheduler(
        coordinator=coordinator,
        stats=StatsAggregator(user_db, stats_db),
        user_db=user_db,
        podcast_db=podcast_db,
        tracker=tracker,
        check_schedule=settings.check_schedule,
        stats_schedule=settings.stats_schedule,
    )
    return db_core, scheduler


def _install_signal_handlers(stop_event: asyncio.Event) -> None:
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug(
                "Signal handlers unsupported on this platform.",
                extra={"signal": sig.name},
            )


async def default(settings: AppSettings) -> None:
    """Run podsync until SIGINT or SIGTERM.

    Args:
        settings: Application settings.
    """
    logger.debug(
        "Starting podsync in default mode.",
        extra={"config_file": str(settings.config_file)},
    )

    db_core: SqlalchemyCore | None = None
    scheduler: UserScheduler | None = None
    stop_event = asyncio.Event()
    try:
        db_core, scheduler = await _init(settings)
        _install_signal_handlers(stop_event)

        logger.info(
            "Starting scheduler...",
            extra={
                "check_schedule": str(settings.check_schedule),
                "stats_schedule": str(settings.stats_schedule),
                "data_dir": str(settings.data_dir),
            },
        )
        await scheduler.start()
        await stop_event.wait()
    except Exception as e:
        logger.error("Unexpected error during execution.", exc_info=e)
    finally:
        await graceful_shutdown(scheduler, db_core)
