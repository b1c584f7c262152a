"""initial schema.

Revision ID: 5b3c9e1f7a20
Revises:
Create Date: 2026-10-19 09:12:44.518302
"""

from collections.abc import Sequence

import sqlalchemy as sa

from alembic import op
from alembic_helpers.triggers import (  # pyright: ignore[reportMissingImports]
    create_updated_at_triggers,
    drop_updated_at_triggers,
)
from podsync.db.types.timezone_aware_datetime import (
    SQLITE_DATETIME_NOW,
    TimezoneAwareDatetime,
)

# revision identifiers, used by Alembic.
revision: str = "5b3c9e1f7a20"
down_revision: str | Sequence[str] | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

EPISODE_STATUSES = ("PENDING", "DOWNLOADING", "COMPLETED", "FAILED")
HISTORY_STATUSES = ("STARTED", "COMPLETED", "FAILED")


def _now() -> sa.TextClause:
    return sa.text(SQLITE_DATETIME_NOW)


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table(
        "user",
        sa.Column("id", sa.String(), primary_key=True, nullable=False),
        sa.Column("email", sa.String(), nullable=True),
        sa.Column(
            "created_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
    )

    op.create_table(
        "user_settings",
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column(
            "auto_check_enabled", sa.Boolean(), nullable=False, server_default="1"
        ),
        sa.Column(
            "check_interval_hours", sa.Integer(), nullable=False, server_default="6"
        ),
        sa.Column(
            "max_episodes_per_check", sa.Integer(), nullable=False, server_default="5"
        ),
        sa.Column(
            "max_concurrent_downloads", sa.Integer(), nullable=False, server_default="3"
        ),
        sa.Column("root_folder_id", sa.String(), nullable=True),
        sa.Column(
            "updated_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
    )

    op.create_table(
        "user_key",
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("encrypted_key", sa.String(), nullable=False),
        sa.Column(
            "created_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
    )

    op.create_table(
        "podcast",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("rss_url", sa.String(), nullable=False),
        sa.Column("enabled", sa.Boolean(), nullable=False, server_default="1"),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("author", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("last_checked", TimezoneAwareDatetime(), nullable=True),
        sa.Column("episode_counter", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("remote_folder_id", sa.String(), nullable=True),
        sa.Column("total_episodes", sa.Integer(), nullable=False, server_default="0"),
        sa.Column(
            "downloaded_episodes", sa.Integer(), nullable=False, server_default="0"
        ),
        sa.Column(
            "keep_episode_count", sa.Integer(), nullable=False, server_default="10"
        ),
        sa.Column(
            "created_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
        sa.Column(
            "updated_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
        sa.UniqueConstraint("user_id", "rss_url", name="uq_podcast_user_rss_url"),
    )
    op.create_index("ix_podcast_user_id", "podcast", ["user_id"])

    op.create_table(
        "episode",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "podcast_id",
            sa.Integer(),
            sa.ForeignKey("podcast.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("guid", sa.String(), nullable=False),
        sa.Column("pub_date", TimezoneAwareDatetime(), nullable=True),
        sa.Column("title", sa.String(), nullable=False),
        sa.Column("description", sa.String(), nullable=True),
        sa.Column("audio_url", sa.String(), nullable=True),
        sa.Column("image_url", sa.String(), nullable=True),
        sa.Column("duration", sa.String(), nullable=True),
        sa.Column("file_size", sa.Integer(), nullable=True),
        sa.Column("sequence_number", sa.Integer(), nullable=True),
        sa.Column(
            "status",
            sa.Enum(*EPISODE_STATUSES, name="episodestatus"),
            nullable=False,
            server_default="PENDING",
        ),
        sa.Column("downloaded", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column("download_date", TimezoneAwareDatetime(), nullable=True),
        sa.Column("cloud_file_id", sa.String(), nullable=True),
        sa.Column("cloud_url", sa.String(), nullable=True),
        sa.Column("original_filename", sa.String(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
        sa.Column("protected", sa.Boolean(), nullable=False, server_default="0"),
        sa.Column(
            "created_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
        sa.Column(
            "updated_at", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
        sa.UniqueConstraint("podcast_id", "guid", name="uq_episode_podcast_guid"),
        sa.UniqueConstraint(
            "podcast_id", "sequence_number", name="uq_episode_podcast_sequence"
        ),
    )
    op.create_index("ix_episode_user_id", "episode", ["user_id"])
    op.create_index(
        "idx_episode_podcast_pub_date", "episode", ["podcast_id", "pub_date"]
    )
    op.create_index("idx_episode_user_status", "episode", ["user_id", "status"])

    op.create_table(
        "download_history",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "podcast_id",
            sa.Integer(),
            sa.ForeignKey("podcast.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "episode_id",
            sa.Integer(),
            sa.ForeignKey("episode.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "status", sa.Enum(*HISTORY_STATUSES, name="historystatus"), nullable=False
        ),
        sa.Column(
            "start_time", TimezoneAwareDatetime(), nullable=False, server_default=_now()
        ),
        sa.Column("end_time", TimezoneAwareDatetime(), nullable=True),
        sa.Column("duration_seconds", sa.Float(), nullable=True),
        sa.Column("bytes_downloaded", sa.Integer(), nullable=True),
        sa.Column(
            "uploaded_to_cloud", sa.Boolean(), nullable=False, server_default="0"
        ),
        sa.Column("cloud_upload_time", TimezoneAwareDatetime(), nullable=True),
        sa.Column("error_message", sa.String(), nullable=True),
    )
    op.create_index("ix_download_history_user_id", "download_history", ["user_id"])
    op.create_index(
        "ix_download_history_episode_id", "download_history", ["episode_id"]
    )

    op.create_table(
        "daily_stats",
        sa.Column(
            "user_id",
            sa.String(),
            sa.ForeignKey("user.id", ondelete="CASCADE"),
            primary_key=True,
            nullable=False,
        ),
        sa.Column("day", sa.Date(), primary_key=True, nullable=False),
        sa.Column("total_podcasts", sa.Integer(), nullable=False),
        sa.Column("active_podcasts", sa.Integer(), nullable=False),
        sa.Column("total_episodes", sa.Integer(), nullable=False),
        sa.Column("downloaded_episodes", sa.Integer(), nullable=False),
        sa.Column("failed_downloads", sa.Integer(), nullable=False),
        sa.Column("total_storage_used", sa.Integer(), nullable=False),
        sa.Column("downloads_today", sa.Integer(), nullable=False),
        sa.Column("last_check_run", TimezoneAwareDatetime(), nullable=True),
    )

    create_updated_at_triggers()


def downgrade() -> None:
    """Downgrade schema."""
    drop_updated_at_triggers()
    op.drop_table("daily_stats")
    op.drop_index("ix_download_history_episode_id", table_name="download_history")
    op.drop_index("ix_download_history_user_id", table_name="download_history")
    op.drop_table("download_history")
    op.drop_index("idx_episode_user_status", table_name="episode")
    op.drop_index("idx_episode_podcast_pub_date", table_name="episode")
    op.drop_index("ix_episode_user_id", table_name="episode")
    op.drop_table("episode")
    op.drop_index("ix_podcast_user_id", table_name="podcast")
    op.drop_table("podcast")
    op.drop_table("user_key")
    op.drop_table("user_settings")
    op.drop_table("user")
