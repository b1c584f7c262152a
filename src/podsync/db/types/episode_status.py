"""Episode status lifecycle values."""

from enum import Enum


class EpisodeStatus(str, Enum):
    """Represent where an episode is in the download lifecycle.

    Episodes are created PENDING by discovery, move to DOWNLOADING when the
    download pipeline picks them up, and end COMPLETED or FAILED. A resync
    puts them back to PENDING.
    """

    PENDING = "pending"
    DOWNLOADING = "downloading"
    COMPLETED = "completed"
    FAILED = "failed"
