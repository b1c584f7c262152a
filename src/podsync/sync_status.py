"""In-memory progress tracking for the running sync.

At most one sync runs at a time. A sync moves ``idle -> discovery ->
download -> idle``; observers poll ``get_status()`` or ``subscribe()`` to
change events. Progress is not persisted.
"""

from collections.abc import Callable
from dataclasses import asdict, dataclass, field, replace
from datetime import UTC, datetime
from enum import Enum
import logging
import time
from typing import Any

from .exceptions import SyncAlreadyRunningError

logger = logging.getLogger(__name__)


class SyncPhase(str, Enum):
    """Phase of a running sync."""

    DISCOVERY = "discovery"
    DOWNLOAD = "download"


class OutcomeStatus(str, Enum):
    """Result of processing one podcast or episode."""

    SUCCESS = "success"
    FAILED = "failed"


class SyncEvent(str, Enum):
    """Events delivered to subscribers."""

    SYNC_STARTED = "sync-started"
    PODCAST_UPDATED = "podcast-updated"
    DOWNLOAD_PHASE_STARTED = "download-phase-started"
    EPISODE_UPDATED = "episode-updated"
    SYNC_COMPLETED = "sync-completed"


@dataclass(frozen=True)
class PodcastOutcome:
    """Discovery result for one podcast."""

    name: str
    status: OutcomeStatus
    new_episodes: int
    error: str | None
    timestamp: datetime


@dataclass(frozen=True)
class EpisodeOutcome:
    """Download result for one episode."""

    title: str
    podcast_name: str
    status: OutcomeStatus
    error: str | None
    timestamp: datetime


@dataclass(frozen=True)
class SyncStatus:
    """Immutable snapshot of sync progress.

    Attributes:
        is_running: Whether a sync is in progress.
        phase: Current phase, or None when idle.
        total_podcasts: Podcasts to check in discovery.
        processed_podcasts: Podcasts checked so far.
        succeeded_podcasts: Podcasts checked without error.
        failed_podcasts: Podcasts whose check failed.
        total_episodes: Episodes to download.
        processed_episodes: Episodes attempted so far.
        succeeded_episodes: Episodes downloaded.
        failed_episodes: Episodes whose download failed.
        podcasts: Discovery outcomes in the order they were reported.
        episodes: Download outcomes in the order they were reported.
        current_podcast: Podcast most recently reported.
        current_episode: Episode most recently reported.
        start_time: When the sync started.
        discovery_end_time: When the download phase began.
        end_time: When the sync ended.
        duration_seconds: Total duration, set when the sync ends.
    """

    is_running: bool = False
    phase: SyncPhase | None = None
    total_podcasts: int = 0
    processed_podcasts: int = 0
    succeeded_podcasts: int = 0
    failed_podcasts: int = 0
    total_episodes: int = 0
    processed_episodes: int = 0
    succeeded_episodes: int = 0
    failed_episodes: int = 0
    podcasts: tuple[PodcastOutcome, ...] = field(default_factory=tuple)
    episodes: tuple[EpisodeOutcome, ...] = field(default_factory=tuple)
    current_podcast: str | None = None
    current_episode: str | None = None
    start_time: datetime | None = None
    discovery_end_time: datetime | None = None
    end_time: datetime | None = None
    duration_seconds: float | None = None

    def to_dict(self) -> dict[str, Any]:
        """Return a JSON-friendly representation."""

        def convert(value: Any) -> Any:
            match value:
                case datetime():
                    return value.isoformat()
                case Enum():
                    return value.value
                case dict():
                    return {k: convert(v) for k, v in value.items()}  # type: ignore
                case list() | tuple():
                    return [convert(v) for v in value]  # type: ignore
                case _:
                    return value

        return convert(asdict(self))


type SyncListener = Callable[[SyncEvent, SyncStatus], None]


class SyncStatusTracker:
    """Single-flight two-phase sync state machine.

    Calls that do not fit the current phase are ignored.

    Attributes:
        _status: Current snapshot; replaced, never mutated.
        _started_monotonic: Monotonic start time used for the duration.
        _listeners: Subscribed observers.
    """

    def __init__(self) -> None:
        self._status = SyncStatus()
        self._started_monotonic: float | None = None
        self._listeners: list[SyncListener] = []

    def subscribe(self, listener: SyncListener) -> Callable[[], None]:
        """Register an observer for sync events.

        Returns:
            A callable that removes the observer.
        """
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _emit(self, event: SyncEvent) -> None:
        for listener in list(self._listeners):
            try:
                listener(event, self._status)
            except Exception as e:
                logger.error(
                    "Sync status listener failed.",
                    extra={"event": event.value},
                    exc_info=e,
                )

    def _ignored(self, operation: str, expected: SyncPhase) -> bool:
        if self._status.is_running and self._status.phase == expected:
            return False
        logger.debug(
            "Ignoring sync progress update outside its phase.",
            extra={
                "operation": operation,
                "expected_phase": expected.value,
                "phase": self._status.phase.value if self._status.phase else None,
            },
        )
        return True

    def start_sync(self, total_podcasts: int) -> None:
        """Begin a sync in the discovery phase, resetting all progress.

        Raises:
            SyncAlreadyRunningError: If a sync is already running.
        """
        if self._status.is_running:
            raise SyncAlreadyRunningError("Sync is already running")
        self._started_monotonic = time.monotonic()
        self._status = SyncStatus(
            is_running=True,
            phase=SyncPhase.DISCOVERY,
            total_podcasts=total_podcasts,
            start_time=datetime.now(UTC),
        )
        logger.info("Sync started.", extra={"total_podcasts": total_podcasts})
        self._emit(SyncEvent.SYNC_STARTED)

    def update_podcast(
        self,
        name: str,
        status: OutcomeStatus,
        new_episodes: int = 0,
        error: str | None = None,
    ) -> None:
        """Record the discovery outcome of one podcast."""
        if self._ignored("update_podcast", SyncPhase.DISCOVERY):
            return
        s = self._status
        succeeded = status == OutcomeStatus.SUCCESS
        self._status = replace(
            s,
            current_podcast=name,
            processed_podcasts=s.processed_podcasts + 1,
            succeeded_podcasts=s.succeeded_podcasts + int(succeeded),
            failed_podcasts=s.failed_podcasts + int(not succeeded),
            podcasts=(
                *s.podcasts,
                PodcastOutcome(name, status, new_episodes, error, datetime.now(UTC)),
            ),
        )
        logger.info(
            "Podcast checked.",
            extra={
                "podcast_name": name,
                "status": status.value,
                "new_episodes": new_episodes,
                "error": error,
            },
        )
        self._emit(SyncEvent.PODCAST_UPDATED)

    def start_download_phase(self, total_episodes: int) -> None:
        """Move from discovery to the download phase."""
        if self._ignored("start_download_phase", SyncPhase.DISCOVERY):
            return
        self._status = replace(
            self._status,
            phase=SyncPhase.DOWNLOAD,
            total_episodes=total_episodes,
            discovery_end_time=datetime.now(UTC),
        )
        logger.info(
            "Download phase started.", extra={"total_episodes": total_episodes}
        )
        self._emit(SyncEvent.DOWNLOAD_PHASE_STARTED)

    def update_episode(
        self,
        title: str,
        podcast_name: str,
        status: OutcomeStatus,
        error: str | None = None,
    ) -> None:
        """Record the download outcome of one episode."""
        if self._ignored("update_episode", SyncPhase.DOWNLOAD):
            return
        s = self._status
        succeeded = status == OutcomeStatus.SUCCESS
        self._status = replace(
            s,
            current_episode=title,
            current_podcast=podcast_name,
            processed_episodes=s.processed_episodes + 1,
            succeeded_episodes=s.succeeded_episodes + int(succeeded),
            failed_episodes=s.failed_episodes + int(not succeeded),
            episodes=(
                *s.episodes,
                EpisodeOutcome(title, podcast_name, status, error, datetime.now(UTC)),
            ),
        )
        self._emit(SyncEvent.EPISODE_UPDATED)

    def end_sync(self) -> None:
        """Return to idle, freezing the final progress until the next sync."""
        if not self._status.is_running:
            return
        duration = (
            time.monotonic() - self._started_monotonic
            if self._started_monotonic is not None
            else None
        )
        self._status = replace(
            self._status,
            is_running=False,
            phase=None,
            current_podcast=None,
            current_episode=None,
            end_time=datetime.now(UTC),
            duration_seconds=duration,
        )
        logger.info(
            "Sync completed.",
            extra={
                "duration_seconds": round(duration, 1) if duration is not None else None,
                "failed_podcasts": self._status.failed_podcasts,
                "failed_episodes": self._status.failed_episodes,
            },
        )
        self._emit(SyncEvent.SYNC_COMPLETED)

    def can_start_sync(self) -> bool:
        """Return True when no sync is running."""
        return not self._status.is_running

    def get_status(self) -> SyncStatus:
        """Return the current snapshot."""
        return self._status
