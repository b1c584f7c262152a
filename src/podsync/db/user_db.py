"""Database operations for users, their settings, and their wrapped keys."""

import logging

from sqlalchemy.dialects.sqlite import insert
from sqlmodel import col, select

from ..exceptions import UserNotFoundError
from .decorators import handle_db_errors, handle_user_db_errors
from .sqlalchemy_core import SqlalchemyCore
from .types import User, UserKey, UserSettings

logger = logging.getLogger(__name__)


class UserDatabase:
    """Manage database operations for users.

    Attributes:
        _db: Core SQLAlchemy database manager.
    """

    def __init__(self, db_core: SqlalchemyCore):
        self._db = db_core

    @handle_user_db_errors("upsert user", user_id_from="user.id")
    async def upsert_user(self, user: User) -> None:
        """Insert a user, or update its email if it already exists.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        log_params = {"user_id": user.id}
        logger.debug("Attempting to upsert user record.", extra=log_params)
        async with self._db.session() as session:
            data = user.model_dump(exclude_none=True)
            stmt = insert(User).values(**data)
            stmt = stmt.on_conflict_do_update(
                index_elements=["id"], set_={"email": user.email}
            )
            await session.execute(stmt)
            await session.commit()
        logger.debug("Upsert user record execution complete.", extra=log_params)

    @handle_user_db_errors("get user")
    async def get_user(self, user_id: str) -> User:
        """Retrieve a user by id.

        Raises:
            UserNotFoundError: If the user does not exist.
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            user = await session.get(User, user_id)
            if user is None:
                raise UserNotFoundError("User not found.", user_id=user_id)
            return user

    @handle_db_errors("get users")
    async def get_users(self) -> list[User]:
        """Return every user, ordered by id."""
        async with self._db.session() as session:
            result = await session.execute(select(User).order_by(col(User.id)))
            return list(result.scalars().all())

    # --- Settings ---

    @handle_user_db_errors("get user settings")
    async def get_settings(self, user_id: str) -> UserSettings:
        """Return a user's settings, or the defaults when none are stored.

        Args:
            user_id: The user identifier.

        Returns:
            The stored settings, or an unsaved ``UserSettings`` with defaults.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            settings = await session.get(UserSettings, user_id)
        if settings is None:
            logger.debug(
                "No settings stored for user, using defaults.",
                extra={"user_id": user_id},
            )
            return UserSettings(user_id=user_id)
        return settings

    @handle_db_errors("get all user settings")
    async def get_all_settings(self) -> dict[str, UserSettings]:
        """Return settings for every user, filling in defaults where missing."""
        async with self._db.session() as session:
            users = (await session.execute(select(col(User.id)))).scalars().all()
            stored = (await session.execute(select(UserSettings))).scalars().all()
        by_user = {s.user_id: s for s in stored}
        return {
            user_id: by_user.get(user_id) or UserSettings(user_id=user_id)
            for user_id in users
        }

    @handle_user_db_errors("upsert user settings", user_id_from="settings.user_id")
    async def upsert_settings(self, settings: UserSettings) -> UserSettings:
        """Validate and store a user's settings.

        Args:
            settings: The settings to store.

        Returns:
            The validated settings.

        Raises:
            pydantic.ValidationError: If a value is outside its allowed range.
            DatabaseOperationError: If the database operation fails.
        """
        validated = UserSettings.model_validate(settings.model_dump())
        data = validated.model_dump(exclude={"updated_at"})
        async with self._db.session() as session:
            stmt = insert(UserSettings).values(**data)
            update_data = {k: v for k, v in data.items() if k != "user_id"}
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"], set_=update_data
            )
            await session.execute(stmt)
            await session.commit()
        logger.debug(
            "User settings stored.", extra={"user_id": validated.user_id}
        )
        return validated

    # --- Keys ---

    @handle_user_db_errors("get user key")
    async def get_user_key(self, user_id: str) -> UserKey | None:
        """Return the user's wrapped key row, if any."""
        async with self._db.session() as session:
            return await session.get(UserKey, user_id)

    @handle_user_db_errors("store user key", user_id_from="user_key.user_id")
    async def upsert_user_key(self, user_key: UserKey) -> None:
        """Store a user's wrapped key, replacing any existing one.

        Raises:
            DatabaseOperationError: If the database operation fails.
        """
        async with self._db.session() as session:
            stmt = insert(UserKey).values(
                user_id=user_key.user_id, encrypted_key=user_key.encrypted_key
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=["user_id"],
                set_={"encrypted_key": user_key.encrypted_key},
            )
            await session.execute(stmt)
            await session.commit()
        logger.info("User key stored.", extra={"user_id": user_key.user_id})
