"""Custom exceptions for the podsync application.

This module defines all custom exception classes used throughout the
application, organized by functional area. Each exception carries the
identifiers relevant to its layer so the logging record factory can surface
them without parsing messages.
"""


class PodsyncError(Exception):
    """Base class for application-specific errors."""


class ConfigLoadError(PodsyncError):
    """Raised when a configuration file fails to load.

    Attributes:
        config_file: Path to the configuration file that failed to load.
    """

    def __init__(
        self,
        message: str,
        config_file: str | None = None,
    ):
        super().__init__(message)
        self.config_file = config_file


class FileOperationError(PodsyncError):
    """Raised when a local file or directory operation fails.

    Attributes:
        file_name: The file or directory involved.
    """

    def __init__(self, message: str, file_name: str | None = None):
        super().__init__(message)
        self.file_name = file_name


# --- Persistence ---------------------------------------------------------


class DatabaseOperationError(PodsyncError):
    """Raised when a database operation fails.

    Attributes:
        user_id: The user identifier associated with the error.
        podcast_id: The podcast identifier associated with the error.
        episode_id: The episode identifier associated with the error.
    """

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        podcast_id: int | None = None,
        episode_id: int | None = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.podcast_id = podcast_id
        self.episode_id = episode_id


class NotFoundError(DatabaseOperationError):
    """Raised when a record expected to exist is missing."""


class UserNotFoundError(NotFoundError):
    """Raised when a user record is not found."""


class PodcastNotFoundError(NotFoundError):
    """Raised when a podcast record is not found."""


class EpisodeNotFoundError(NotFoundError):
    """Raised when an episode record is not found."""


class SequenceConflictError(DatabaseOperationError):
    """Raised when a sequence number is already taken within a podcast.

    Attributes:
        sequence_number: The sequence number that collided.
    """

    def __init__(
        self,
        message: str,
        podcast_id: int | None = None,
        episode_id: int | None = None,
        sequence_number: int | None = None,
    ):
        super().__init__(message, podcast_id=podcast_id, episode_id=episode_id)
        self.sequence_number = sequence_number


# --- Credentials ---------------------------------------------------------


class CredentialError(PodsyncError):
    """Raised when a user's encryption key cannot be loaded or used.

    Attributes:
        user_id: The user identifier associated with the error.
    """

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.user_id = user_id


# --- Feed source ---------------------------------------------------------


class FeedSourceError(PodsyncError):
    """Base class for feed fetching and parsing errors.

    Attributes:
        url: The feed URL associated with the error.
    """

    def __init__(self, message: str, url: str | None = None):
        super().__init__(message)
        self.url = url


class FeedFetchError(FeedSourceError):
    """Raised when a feed cannot be retrieved."""


class FeedParseError(FeedSourceError):
    """Raised when a retrieved document is not a usable feed."""


# --- Audio + tagging -----------------------------------------------------


class AudioFetchError(PodsyncError):
    """Raised when an episode's audio cannot be fetched.

    Attributes:
        url: The audio URL associated with the error.
        status_code: HTTP status code, if a response was received.
    """

    def __init__(
        self,
        message: str,
        url: str | None = None,
        status_code: int | None = None,
    ):
        super().__init__(message)
        self.url = url
        self.status_code = status_code


class TaggingError(PodsyncError):
    """Raised when ID3 tags cannot be written to an audio file.

    Attributes:
        file_name: The file that could not be tagged.
    """

    def __init__(self, message: str, file_name: str | None = None):
        super().__init__(message)
        self.file_name = file_name


# --- Blob store ----------------------------------------------------------


class BlobStoreError(PodsyncError):
    """Base class for remote storage errors.

    Attributes:
        folder_id: The remote folder identifier associated with the error.
        file_id: The remote file identifier associated with the error.
    """

    def __init__(
        self,
        message: str,
        folder_id: str | None = None,
        file_id: str | None = None,
    ):
        super().__init__(message)
        self.folder_id = folder_id
        self.file_id = file_id


class BlobFolderNotFoundError(BlobStoreError):
    """Raised when a remote folder does not exist."""


class BlobNotFoundError(BlobStoreError):
    """Raised when a remote file does not exist."""


class BlobStoreUnavailableError(BlobStoreError):
    """Raised when no remote storage session can be opened for a user.

    Attributes:
        user_id: The user identifier associated with the error.
    """

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.user_id = user_id


# --- Sync engine ---------------------------------------------------------


class SyncEngineError(PodsyncError):
    """Base class for errors originating from the sync engine.

    Attributes:
        user_id: The user identifier associated with the error.
        podcast_id: The podcast identifier associated with the error.
        episode_id: The episode identifier associated with the error.
    """

    def __init__(
        self,
        message: str,
        user_id: str | None = None,
        podcast_id: int | None = None,
        episode_id: int | None = None,
    ):
        super().__init__(message)
        self.user_id = user_id
        self.podcast_id = podcast_id
        self.episode_id = episode_id


class ReconcileError(SyncEngineError):
    """Raised when a podcast's feed cannot be reconciled."""


class DownloadError(SyncEngineError):
    """Raised when an episode fails to download, tag, or upload."""


class PruneError(SyncEngineError):
    """Raised when retention cleanup fails."""


class VerificationError(SyncEngineError):
    """Raised when a consistency check cannot be completed."""


class SyncCoordinatorError(SyncEngineError):
    """Raised when a user's sync cannot proceed at all."""


# --- Concurrency conflicts -----------------------------------------------


class SyncConflictError(PodsyncError):
    """Base class for single-flight violations surfaced to callers."""


class SyncAlreadyRunningError(SyncConflictError):
    """Raised when a sync is started while another is in progress."""


class UserAlreadyProcessingError(SyncConflictError):
    """Raised when a user's podcasts are already being checked.

    Attributes:
        user_id: The user identifier associated with the error.
    """

    def __init__(self, message: str, user_id: str | None = None):
        super().__init__(message)
        self.user_id = user_id
