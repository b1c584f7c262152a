# pyright: reportPrivateUsage=false

"""Tests for UserDatabase users, settings and wrapped keys."""

from helpers.records import seed_user
from pydantic import ValidationError
import pytest

from podsync.db import UserDatabase
from podsync.db.sqlalchemy_core import SqlalchemyCore
from podsync.db.types import User, UserKey, UserSettings
from podsync.exceptions import UserNotFoundError

# --- Fixtures ---


@pytest.fixture
def user_db(db_core: SqlalchemyCore) -> UserDatabase:
    """Provides a UserDatabase instance."""
    return UserDatabase(db_core)


# --- Tests for users ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upsert_and_get_user(user_db: UserDatabase):
    """Users can be inserted and read back."""
    await seed_user(user_db)

    user = await user_db.get_user("user-1")

    assert user.email == "user-1@example.com"
    assert user.created_at is not None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upsert_user_updates_email(user_db: UserDatabase):
    """Upserting an existing user replaces its email."""
    await seed_user(user_db)
    await user_db.upsert_user(User(id="user-1", email="new@example.com"))

    assert (await user_db.get_user("user-1")).email == "new@example.com"
    assert len(await user_db.get_users()) == 1


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_not_found(user_db: UserDatabase):
    """Unknown users raise UserNotFoundError."""
    with pytest.raises(UserNotFoundError) as exc_info:
        await user_db.get_user("ghost")

    assert exc_info.value.user_id == "ghost"


# --- Tests for settings ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_settings_default_when_missing(user_db: UserDatabase):
    """Users without a settings row get the defaults."""
    await seed_user(user_db)

    settings = await user_db.get_settings("user-1")

    assert settings.auto_check_enabled is True
    assert settings.check_interval_hours == 6
    assert settings.max_episodes_per_check == 5
    assert settings.max_concurrent_downloads == 3
    assert settings.root_folder_id is None


@pytest.mark.unit
@pytest.mark.asyncio
async def test_upsert_settings_round_trip(user_db: UserDatabase):
    """Stored settings replace the defaults and can be updated again."""
    await seed_user(user_db)
    await user_db.upsert_settings(
        UserSettings(user_id="user-1", check_interval_hours=12, root_folder_id="r")
    )
    await user_db.upsert_settings(
        UserSettings(
            user_id="user-1",
            check_interval_hours=24,
            max_concurrent_downloads=5,
            root_folder_id="r",
        )
    )

    settings = await user_db.get_settings("user-1")

    assert settings.check_interval_hours == 24
    assert settings.max_concurrent_downloads == 5
    assert settings.root_folder_id == "r"


@pytest.mark.unit
@pytest.mark.asyncio
@pytest.mark.parametrize(
    "field,value",
    [
        ("check_interval_hours", 0),
        ("check_interval_hours", 169),
        ("max_episodes_per_check", 51),
        ("max_concurrent_downloads", 0),
        ("max_concurrent_downloads", 11),
    ],
)
async def test_upsert_settings_rejects_out_of_range(
    user_db: UserDatabase, field: str, value: int
):
    """Values outside their allowed range are rejected before storing."""
    await seed_user(user_db)
    settings = UserSettings(user_id="user-1")
    setattr(settings, field, value)

    with pytest.raises(ValidationError):
        await user_db.upsert_settings(settings)

    assert (await user_db.get_settings("user-1")).check_interval_hours == 6


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_all_settings_fills_defaults(user_db: UserDatabase):
    """Every user appears, with defaults where nothing is stored."""
    await seed_user(user_db, "user-1")
    await seed_user(user_db, "user-2")
    await user_db.upsert_settings(
        UserSettings(user_id="user-2", auto_check_enabled=False)
    )

    all_settings = await user_db.get_all_settings()

    assert set(all_settings) == {"user-1", "user-2"}
    assert all_settings["user-1"].auto_check_enabled is True
    assert all_settings["user-2"].auto_check_enabled is False


# --- Tests for keys ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_user_key_upsert_replaces(user_db: UserDatabase):
    """A user holds at most one wrapped key."""
    await seed_user(user_db)
    assert await user_db.get_user_key("user-1") is None

    await user_db.upsert_user_key(UserKey(user_id="user-1", encrypted_key="a:b:c"))
    await user_db.upsert_user_key(UserKey(user_id="user-1", encrypted_key="d:e:f"))

    key = await user_db.get_user_key("user-1")
    assert key is not None
    assert key.encrypted_key == "d:e:f"
