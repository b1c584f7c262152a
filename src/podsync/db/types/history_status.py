"""Download attempt status values."""

from enum import Enum


class HistoryStatus(str, Enum):
    """Outcome of a single download attempt.

    A record is created STARTED and transitions exactly once, to COMPLETED or
    FAILED.
    """

    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"
