"""Download history table mapped with SQLModel."""

from datetime import datetime

from sqlalchemy import Boolean, Column, Enum, ForeignKey, Integer, String, text
from sqlmodel import Field, SQLModel

from .history_status import HistoryStatus
from .timezone_aware_datetime import SQLITE_DATETIME_NOW, TimezoneAwareDatetime


class DownloadHistory(SQLModel, table=True):
    """Audit record of one download attempt.

    Attributes:
        id: The record identifier.
        user_id: Owning user.
        podcast_id: Podcast of the episode.
        episode_id: Episode that was attempted.
        status: Outcome of the attempt.
        start_time: When the attempt began (UTC).
        end_time: When the attempt finished (UTC).
        duration_seconds: Wall time of the attempt.
        bytes_downloaded: Size of the uploaded file.
        uploaded_to_cloud: Whether the upload succeeded.
        cloud_upload_time: When the upload finished (UTC).
        error_message: Failure description.
    """

    __tablename__ = "download_history"  # type: ignore

    id: int | None = Field(default=None, primary_key=True)
    user_id: str = Field(
        sa_column=Column(
            String,
            ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    podcast_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("podcast.id", ondelete="CASCADE"),
            nullable=False,
        )
    )
    episode_id: int = Field(
        sa_column=Column(
            Integer,
            ForeignKey("episode.id", ondelete="CASCADE"),
            nullable=False,
            index=True,
        )
    )
    status: HistoryStatus = Field(
        default=HistoryStatus.STARTED,
        sa_column=Column(Enum(HistoryStatus), nullable=False),
    )
    start_time: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )
    end_time: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
    duration_seconds: float | None = None
    bytes_downloaded: int | None = None
    uploaded_to_cloud: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
    )
    cloud_upload_time: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
    error_message: str | None = None
