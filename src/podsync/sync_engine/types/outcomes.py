"""Small result types returned by the sync engine."""

from dataclasses import dataclass, field
from typing import Literal

from ...blob_store import RemoteFile
from ...db.types import Episode, Podcast


@dataclass(frozen=True)
class DiscoveredEpisode:
    """A newly created episode paired with its podcast.

    Both records are as stored, with encrypted fields.
    """

    episode: Episode
    podcast: Podcast


@dataclass(frozen=True)
class DownloadOutcome:
    """Result of a successful download.

    Attributes:
        episode_id: The downloaded episode.
        file_id: Remote file identifier.
        bytes: Uploaded size.
        sequence_number: Sequence number the file was named with.
        filename: Name the file was uploaded under.
    """

    episode_id: int
    file_id: str
    bytes: int
    sequence_number: int
    filename: str


@dataclass(frozen=True)
class ResyncResult:
    """Result of re-downloading selected episodes.

    Attributes:
        started_count: Episodes downloaded successfully.
        episode_ids: Ids of those episodes.
    """

    started_count: int
    episode_ids: list[int] = field(default_factory=list[int])


@dataclass(frozen=True)
class PodcastVerification:
    """Consistency of one podcast's records against its remote folder.

    Attributes:
        podcast_id: The podcast.
        podcast_name: Decrypted podcast name.
        folder_id: Recorded remote folder, if any.
        downloaded_count: Episodes recorded as downloaded.
        remote_file_count: Files found in the folder.
        missing_episode_ids: Downloaded episodes with no matching remote file.
        extra_files: Remote files no episode references.
        warning: Non-fatal condition that limited the check.
        error: Condition that prevented a full check.
    """

    podcast_id: int
    podcast_name: str
    folder_id: str | None
    downloaded_count: int
    remote_file_count: int
    missing_episode_ids: list[int] = field(default_factory=list[int])
    extra_files: list[RemoteFile] = field(default_factory=list[RemoteFile])
    warning: str | None = None
    error: str | None = None

    @property
    def missing_count(self) -> int:
        """Number of missing episodes."""
        return len(self.missing_episode_ids)

    @property
    def extra_count(self) -> int:
        """Number of unreferenced remote files."""
        return len(self.extra_files)


@dataclass(frozen=True)
class VerificationReport:
    """Result of verifying one user's library.

    Attributes:
        user_id: The verified user.
        status: ``"ok"``, or ``"skipped"`` when storage was unavailable.
        podcasts: Per-podcast results.
        message: Why verification was skipped.
    """

    user_id: str
    status: Literal["ok", "skipped"]
    podcasts: list[PodcastVerification] = field(
        default_factory=list[PodcastVerification]
    )
    message: str | None = None

    @property
    def total_missing(self) -> int:
        """Missing episodes across all podcasts."""
        return sum(p.missing_count for p in self.podcasts)

    @property
    def total_extra(self) -> int:
        """Unreferenced remote files across all podcasts."""
        return sum(p.extra_count for p in self.podcasts)


@dataclass(frozen=True)
class DiscoveryResult:
    """Result of reconciling a user's podcasts.

    Attributes:
        discovered: New episodes in the order they were created.
        podcasts_checked: Podcasts reconciled without error.
        errors: One error per podcast that failed.
    """

    discovered: list[DiscoveredEpisode] = field(
        default_factory=list[DiscoveredEpisode]
    )
    podcasts_checked: int = 0
    errors: list[Exception] = field(default_factory=list[Exception])
