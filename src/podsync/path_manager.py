"""Helpers for resolving local file system paths."""

import logging
from pathlib import Path
import uuid

import aiofiles.os

from .exceptions import FileOperationError

logger = logging.getLogger(__name__)


class PathManager:
    """Single source of truth for where podsync keeps local files.

    Layout under the data directory::

        db/                 SQLite database
        tmp/<user_id>/      in-flight audio downloads
        storage/<user_id>/  files of the local blob store provider

    Attributes:
        _base_data_dir: Root directory for all application data.
    """

    def __init__(self, base_data_dir: Path):
        self._base_data_dir = Path(base_data_dir).resolve()

    @property
    def base_tmp_dir(self) -> Path:
        """Return the directory used for temporary downloads."""
        return self._base_data_dir / "tmp"

    @property
    def base_storage_dir(self) -> Path:
        """Return the directory backing the local blob store."""
        return self._base_data_dir / "storage"

    async def _ensure_dir(self, path: Path, description: str) -> Path:
        try:
            await aiofiles.os.makedirs(path, exist_ok=True)
        except OSError as e:
            raise FileOperationError(
                f"Failed to create {description} directory.",
                file_name=str(path),
            ) from e
        return path

    async def db_dir(self) -> Path:
        """Return the directory containing the database file, creating it if needed.

        Raises:
            FileOperationError: If the directory cannot be created.
        """
        return await self._ensure_dir(self._base_data_dir / "db", "database")

    async def user_tmp_dir(self, user_id: str) -> Path:
        """Return a user's temporary download directory, creating it if needed.

        Raises:
            ValueError: If user_id is empty or whitespace-only.
            FileOperationError: If the directory cannot be created.
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id cannot be empty or whitespace-only")
        return await self._ensure_dir(self.base_tmp_dir / user_id, "temporary")

    async def tmp_file(self, user_id: str, ext: str) -> Path:
        """Return a fresh, unused temporary file path for a user's download.

        Args:
            user_id: The user the download belongs to.
            ext: File extension without the leading dot.

        Raises:
            ValueError: If user_id or ext is empty.
            FileOperationError: If the directory cannot be created.
        """
        if not ext or not ext.strip():
            raise ValueError("ext cannot be empty or whitespace-only")
        tmp_dir = await self.user_tmp_dir(user_id)
        return tmp_dir / f"{uuid.uuid4().hex}.{ext}"

    async def user_storage_dir(self, user_id: str) -> Path:
        """Return the root of a user's local blob store, creating it if needed.

        Raises:
            ValueError: If user_id is empty or whitespace-only.
            FileOperationError: If the directory cannot be created.
        """
        if not user_id or not user_id.strip():
            raise ValueError("user_id cannot be empty or whitespace-only")
        return await self._ensure_dir(self.base_storage_dir / user_id, "storage")
