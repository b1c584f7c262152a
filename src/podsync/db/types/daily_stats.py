"""Daily per-user statistics table mapped with SQLModel."""

from datetime import date, datetime

from sqlalchemy import Column, Date, ForeignKey, String
from sqlmodel import Field, SQLModel

from .timezone_aware_datetime import TimezoneAwareDatetime


class DailyStats(SQLModel, table=True):
    """Snapshot of a user's library, one row per user per day.

    Attributes:
        user_id: Owning user.
        day: Day the snapshot belongs to (UTC).
        total_podcasts: All podcasts.
        active_podcasts: Enabled podcasts.
        total_episodes: All episodes.
        downloaded_episodes: Episodes present remotely.
        failed_downloads: Episodes whose last download failed.
        total_storage_used: Sum of known episode sizes in bytes.
        downloads_today: Downloads completed in the preceding 24 hours.
        last_check_run: When the snapshot was taken (UTC).
    """

    __tablename__ = "daily_stats"  # type: ignore

    user_id: str = Field(
        sa_column=Column(
            String, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True
        )
    )
    day: date = Field(sa_column=Column(Date, primary_key=True))
    total_podcasts: int = 0
    active_podcasts: int = 0
    total_episodes: int = 0
    downloaded_episodes: int = 0
    failed_downloads: int = 0
    total_storage_used: int = 0
    downloads_today: int = 0
    last_check_run: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
