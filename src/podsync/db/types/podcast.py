"""Podcast table mapped with SQLModel."""

from datetime import datetime
from typing import Any

from sqlalchemy import (
    Boolean,
    Column,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
    text,
)
from sqlalchemy.sql.schema import FetchedValue
from sqlmodel import Field, SQLModel

from .timezone_aware_datetime import SQLITE_DATETIME_NOW, TimezoneAwareDatetime

DEFAULT_KEEP_EPISODE_COUNT = 10


class Podcast(SQLModel, table=True):
    """ORM model representing one user's subscription to a feed.

    ``name``, ``description``, ``author`` and ``image_url`` hold ciphertext
    produced with the owner's key; decrypt them before display or use.

    Attributes:
        id: The podcast identifier.
        user_id: Owning user.
        rss_url: Feed URL; unique per user.
        enabled: Whether scheduled checks include this podcast.

        Display Metadata:
            name: Podcast title (encrypted).
            description: Podcast description (encrypted).
            author: Podcast author (encrypted).
            image_url: Cover art URL (encrypted).

        Sync State:
            last_checked: Last time the feed was reconciled (UTC).
            episode_counter: High-water mark of assigned sequence numbers.
            remote_folder_id: Remote folder holding this podcast's files.
            total_episodes: Number of known episodes.
            downloaded_episodes: Number of downloaded episodes.

        Retention:
            keep_episode_count: Remote files to keep; 0 keeps everything.

        Time Keeping:
            created_at: When the podcast was added (UTC).
            updated_at: When the podcast was last updated (UTC).
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
    rss_url: str
    enabled: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, server_default="1"),
    )

    # ------------------------------------------------ display metadata
    name: str
    description: str | None = None
    author: str | None = None
    image_url: str | None = None

    # ------------------------------------------------------ sync state
    last_checked: datetime | None = Field(
        default=None, sa_column=Column(TimezoneAwareDatetime)
    )
    episode_counter: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )
    remote_folder_id: str | None = None
    total_episodes: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )
    downloaded_episodes: int = Field(
        default=0,
        sa_column=Column(Integer, nullable=False, server_default="0"),
    )

    # ------------------------------------------------------- retention
    keep_episode_count: int = Field(
        default=DEFAULT_KEEP_EPISODE_COUNT,
        ge=0,
        sa_column=Column(Integer, nullable=False, server_default="10"),
    )

    # ---------------------------------------------------- time keeping
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
        UniqueConstraint("user_id", "rss_url", name="uq_podcast_user_rss_url"),
    )

    def model_dump_for_insert(self) -> dict[str, Any]:
        """Use in place of model_dump() for inserts.

        Drops the primary key when unset and timestamps the database fills in.
        """
        dump = self.model_dump()
        for key in ("id", "created_at", "updated_at"):
            if dump.get(key) is None:
                dump.pop(key, None)
        return dump
