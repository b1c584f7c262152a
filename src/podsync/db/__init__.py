from .episode_db import EpisodeDatabase
from .history_db import HistoryDatabase
from .podcast_db import PodcastDatabase
from .sqlalchemy_core import SqlalchemyCore
from .stats_db import StatsDatabase
from .user_db import UserDatabase

__all__ = [
    "EpisodeDatabase",
    "HistoryDatabase",
    "PodcastDatabase",
    "SqlalchemyCore",
    "StatsDatabase",
    "UserDatabase",
]
