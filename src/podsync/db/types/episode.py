"""Episode table mapped with SQLModel."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    Enum,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql.schema import FetchedValue
from sqlmodel import Field, SQLModel

from .episode_status import EpisodeStatus
from .timezone_aware_datetime import SQLITE_DATETIME_NOW, TimezoneAwareDatetime


class Episode(SQLModel, table=True):
    """Represent an episode discovered in a podcast's feed.

    ``title``, ``description``, ``audio_url``, ``image_url`` and
    ``original_filename`` hold ciphertext produced with the owner's key.

    Attributes:
        id: The episode identifier.
        user_id: Owning user.
        podcast_id: Podcast the episode belongs to.
        guid: Feed-provided identifier; unique per podcast.
        pub_date: Publication datetime (UTC).

        Feed Metadata:
            title: Episode title (encrypted).
            description: Episode description (encrypted).
            audio_url: Enclosure URL (encrypted).
            image_url: Episode artwork URL (encrypted).
            duration: Duration as given by the feed.
            file_size: Size in bytes, from the feed or the upload.

        Download State:
            sequence_number: Per-podcast ordering number; unique per podcast.
            status: Current lifecycle status.
            downloaded: Whether the file is present remotely.
            download_date: When the download completed (UTC).
            cloud_file_id: Remote file identifier.
            cloud_url: Remote file link.
            original_filename: Name the file was uploaded under (encrypted).
            error_message: Last download error, if any.
            protected: Exempt from retention cleanup.
    """

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
    guid: str
    pub_date: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )

    # ------------------------------------------------- feed metadata
    title: str
    description: str | None = None
    audio_url: str | None = None
    image_url: str | None = None
    duration: str | None = None
    file_size: int | None = None

    # ------------------------------------------------ download state
    sequence_number: int | None = None
    status: EpisodeStatus = Field(
        default=EpisodeStatus.PENDING,
        sa_column=Column(
            Enum(EpisodeStatus),
            nullable=False,
            server_default=EpisodeStatus.PENDING.name,
        ),
    )
    downloaded: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
    )
    download_date: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
    cloud_file_id: str | None = None
    cloud_url: str | None = None
    original_filename: str | None = None
    error_message: str | None = None
    protected: bool = Field(
        default=False,
        sa_column=Column(Boolean, nullable=False, server_default="0"),
    )

    created_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
            server_onupdate=FetchedValue(),
        ),
    )

    __table_args__ = (
        UniqueConstraint("podcast_id", "guid", name="uq_episode_podcast_guid"),
        UniqueConstraint(
            "podcast_id", "sequence_number", name="uq_episode_podcast_sequence"
        ),
        Index("idx_episode_podcast_pub_date", "podcast_id", "pub_date"),
        Index("idx_episode_user_status", "user_id", "status"),
    )

    def model_dump_for_insert(self) -> dict[str, Any]:
        """Use in place of model_dump() for inserts.

        Returns:
            The episode's columns minus the unset primary key and the
            timestamps the database fills in.
        """
        dump = self.model_dump()
        for key in ("id", "created_at", "updated_at"):
            if dump.get(key) is None:
                dump.pop(key, None)
        return dump
