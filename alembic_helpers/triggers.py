"""Shared SQL helpers for the SQLite triggers created by migrations.

Each trigger keeps a table's ``updated_at`` column current. The column lists
name every column except ``updated_at`` itself; a migration that adds a column
to one of these tables must recreate the matching trigger.
"""

from alembic import op

TRIGGER_PODCAST_UPDATE_UPDATED_AT = "podcast_update_updated_at"
TRIGGER_EPISODE_UPDATE_UPDATED_AT = "episode_update_updated_at"
TRIGGER_USER_SETTINGS_UPDATE_UPDATED_AT = "user_settings_update_updated_at"

TRIGGER_NAMES = (
    TRIGGER_PODCAST_UPDATE_UPDATED_AT,
    TRIGGER_EPISODE_UPDATE_UPDATED_AT,
    TRIGGER_USER_SETTINGS_UPDATE_UPDATED_AT,
)

TRIGGER_STATEMENTS = (
    f"""
        CREATE TRIGGER IF NOT EXISTS {TRIGGER_PODCAST_UPDATE_UPDATED_AT}
        AFTER UPDATE OF user_id, rss_url, enabled, name, description, author, image_url,
                         last_checked, episode_counter, remote_folder_id, total_episodes,
                         downloaded_episodes, keep_episode_count ON podcast
        FOR EACH ROW
        BEGIN
            UPDATE podcast SET updated_at = (datetime('now', 'utc')) WHERE id = NEW.id;
        END;
    """,
    f"""
        CREATE TRIGGER IF NOT EXISTS {TRIGGER_EPISODE_UPDATE_UPDATED_AT}
        AFTER UPDATE OF user_id, podcast_id, guid, pub_date, title, description, audio_url,
                         image_url, duration, file_size, sequence_number, status, downloaded,
                         download_date, cloud_file_id, cloud_url, original_filename,
                         error_message, protected ON episode
        FOR EACH ROW
        BEGIN
            UPDATE episode SET updated_at = (datetime('now', 'utc')) WHERE id = NEW.id;
        END;
    """,
    f"""
        CREATE TRIGGER IF NOT EXISTS {TRIGGER_USER_SETTINGS_UPDATE_UPDATED_AT}
        AFTER UPDATE OF auto_check_enabled, check_interval_hours, max_episodes_per_check,
                         max_concurrent_downloads, root_folder_id ON user_settings
        FOR EACH ROW
        BEGIN
            UPDATE user_settings SET updated_at = (datetime('now', 'utc'))
            WHERE user_id = NEW.user_id;
        END;
    """,
)


def create_updated_at_triggers() -> None:
    """Create the ``updated_at`` triggers."""
    for statement in TRIGGER_STATEMENTS:
        op.execute(statement)


def drop_updated_at_triggers() -> None:
    """Drop the ``updated_at`` triggers if present."""
    for trigger in TRIGGER_NAMES:
        op.execute(f"DROP TRIGGER IF EXISTS {trigger}")
