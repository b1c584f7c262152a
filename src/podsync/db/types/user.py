"""User tables mapped with SQLModel.

Users own podcasts, a settings row controlling automatic checks, and a
wrapped encryption key used for their at-rest fields.
"""

from datetime import datetime

from sqlalchemy import Boolean, Column, ForeignKey, Integer, String, text
from sqlalchemy.sql.schema import FetchedValue
from sqlmodel import Field, SQLModel

from .timezone_aware_datetime import SQLITE_DATETIME_NOW, TimezoneAwareDatetime

DEFAULT_CHECK_INTERVAL_HOURS = 6
DEFAULT_MAX_EPISODES_PER_CHECK = 5
DEFAULT_MAX_CONCURRENT_DOWNLOADS = 3


class User(SQLModel, table=True):
    """ORM model representing an account whose podcasts are synced.

    Attributes:
        id: The user identifier.
        email: Contact address, used only for log messages.
        created_at: When the user was created (UTC).
    """

    id: str = Field(primary_key=True)
    email: str | None = None
    created_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )


class UserSettings(SQLModel, table=True):
    """Per-user sync preferences.

    A user without a row gets the defaults below.

    Attributes:
        user_id: Owning user.
        auto_check_enabled: Whether the scheduler checks this user automatically.
        check_interval_hours: Minimum hours between automatic checks.
        max_episodes_per_check: Most recent feed items considered per podcast.
        max_concurrent_downloads: Batch size for bulk downloads.
        root_folder_id: Remote folder under which podcast folders are created.
        updated_at: When the settings last changed (UTC).
    """

    __tablename__ = "user_settings"  # type: ignore

    user_id: str = Field(
        sa_column=Column(
            String, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True
        )
    )
    auto_check_enabled: bool = Field(
        default=True,
        sa_column=Column(Boolean, nullable=False, server_default="1"),
    )
    check_interval_hours: int = Field(
        default=DEFAULT_CHECK_INTERVAL_HOURS,
        ge=1,
        le=168,
        sa_column=Column(Integer, nullable=False, server_default="6"),
    )
    max_episodes_per_check: int = Field(
        default=DEFAULT_MAX_EPISODES_PER_CHECK,
        ge=1,
        le=50,
        sa_column=Column(Integer, nullable=False, server_default="5"),
    )
    max_concurrent_downloads: int = Field(
        default=DEFAULT_MAX_CONCURRENT_DOWNLOADS,
        ge=1,
        le=10,
        sa_column=Column(Integer, nullable=False, server_default="3"),
    )
    root_folder_id: str | None = None
    updated_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
            server_onupdate=FetchedValue(),
        ),
    )


class UserKey(SQLModel, table=True):
    """A user's data key, encrypted with the application master key.

    Attributes:
        user_id: Owning user.
        encrypted_key: ``iv:authTag:cipher`` hex string.
        created_at: When the key was generated (UTC).
    """

    __tablename__ = "user_key"  # type: ignore

    user_id: str = Field(
        sa_column=Column(
            String, ForeignKey("user.id", ondelete="CASCADE"), primary_key=True
        )
    )
    encrypted_key: str
    created_at: datetime | None = Field(
        default=None,
        sa_column=Column(
            TimezoneAwareDatetime,
            nullable=False,
            server_default=text(SQLITE_DATETIME_NOW),
        ),
    )
