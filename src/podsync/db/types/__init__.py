"""Database model and enum types."""

from .daily_stats import DailyStats
from .download_history import DownloadHistory
from .episode import Episode
from .episode_status import EpisodeStatus
from .history_status import HistoryStatus
from .podcast import Podcast
from .user import User, UserKey, UserSettings

__all__ = [
    "DailyStats",
    "DownloadHistory",
    "Episode",
    "EpisodeStatus",
    "HistoryStatus",
    "Podcast",
    "User",
    "UserKey",
    "UserSettings",
]
