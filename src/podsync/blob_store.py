"""Per-user remote storage for episode files.

The sync engine talks to remote storage only through the ``BlobStore`` and
``BlobStoreProvider`` protocols. ``LocalBlobStore`` implements them on the
local file system: folders are directories and ids are paths relative to
the user's storage root.
"""

from dataclasses import dataclass
import logging
import mimetypes
from pathlib import Path, PurePosixPath
from typing import Protocol

import aiofiles
import aiofiles.os

from .exceptions import (
    BlobFolderNotFoundError,
    BlobNotFoundError,
    BlobStoreError,
    BlobStoreUnavailableError,
    FileOperationError,
)
from .filenames import sanitize_filename
from .path_manager import PathManager

logger = logging.getLogger(__name__)

COPY_CHUNK_SIZE = 1024 * 1024


@dataclass(frozen=True)
class UploadedFile:
    """Result of an upload.

    Attributes:
        file_id: Identifier of the stored file.
        web_view_link: Link for viewing the file.
        size: Stored size in bytes.
    """

    file_id: str
    web_view_link: str | None
    size: int


@dataclass(frozen=True)
class RemoteFile:
    """One entry of a folder listing.

    Attributes:
        id: File identifier.
        name: File name.
        size: Size in bytes.
        mime_type: Guessed MIME type.
    """

    id: str
    name: str
    size: int | None
    mime_type: str | None


class BlobStore(Protocol):
    """A user's remote storage session."""

    async def upload(
        self, source_path: Path, filename: str, folder_id: str
    ) -> UploadedFile:
        """Store ``source_path`` as ``filename`` in ``folder_id``."""
        ...

    async def list_files(self, folder_id: str) -> list[RemoteFile]:
        """List the files directly inside ``folder_id``."""
        ...

    async def delete_file(self, file_id: str) -> None:
        """Delete a file."""
        ...

    async def get_or_create_folder(self, name: str, parent_id: str | None) -> str:
        """Return the id of folder ``name`` under ``parent_id``, creating it if missing."""
        ...

    async def folder_exists(self, folder_id: str) -> bool:
        """Return whether ``folder_id`` still exists."""
        ...


class BlobStoreProvider(Protocol):
    """Open per-user storage sessions."""

    async def for_user(self, user_id: str) -> BlobStore:
        """Return the user's storage session.

        Raises:
            BlobStoreUnavailableError: If the user has no usable storage.
        """
        ...


class LocalBlobStore:
    """Blob store backed by a directory tree.

    Attributes:
        _root: The user's storage root; every id resolves beneath it.
    """

    def __init__(self, root: Path):
        self._root = root.resolve()

    def _resolve(self, blob_id: str | None) -> Path:
        if not blob_id:
            return self._root
        path = (self._root / PurePosixPath(blob_id)).resolve()
        if not path.is_relative_to(self._root):
            raise BlobStoreError("Id resolves outside the storage root.", file_id=blob_id)
        return path

    def _id_of(self, path: Path) -> str:
        return path.relative_to(self._root).as_posix()

    async def upload(
        self, source_path: Path, filename: str, folder_id: str
    ) -> UploadedFile:
        """Copy ``source_path`` into the folder, replacing a same-named file.

        Raises:
            BlobFolderNotFoundError: If the folder does not exist.
            BlobStoreError: If the copy fails.
        """
        folder = self._resolve(folder_id)
        if not await aiofiles.os.path.isdir(folder):
            raise BlobFolderNotFoundError("Folder not found.", folder_id=folder_id)

        target = self._resolve(f"{folder_id}/{filename}")
        log_params = {"folder_id": folder_id, "file_name": filename}
        logger.debug("Uploading file.", extra=log_params)
        try:
            async with (
                aiofiles.open(source_path, "rb") as src,
                aiofiles.open(target, "wb") as dst,
            ):
                while chunk := await src.read(COPY_CHUNK_SIZE):
                    await dst.write(chunk)
            size = await aiofiles.os.path.getsize(target)
        except OSError as e:
            raise BlobStoreError(
                "Failed to store file.", folder_id=folder_id, file_id=filename
            ) from e

        logger.debug("File uploaded.", extra={**log_params, "size": size})
        return UploadedFile(
            file_id=self._id_of(target), web_view_link=target.as_uri(), size=size
        )

    async def list_files(self, folder_id: str) -> list[RemoteFile]:
        """List regular files in the folder, sorted by name.

        Raises:
            BlobFolderNotFoundError: If the folder does not exist.
            BlobStoreError: If the folder cannot be read.
        """
        folder = self._resolve(folder_id)
        if not await aiofiles.os.path.isdir(folder):
            raise BlobFolderNotFoundError("Folder not found.", folder_id=folder_id)
        try:
            names = sorted(await aiofiles.os.listdir(folder))
            files: list[RemoteFile] = []
            for name in names:
                path = folder / name
                if not await aiofiles.os.path.isfile(path):
                    continue
                files.append(
                    RemoteFile(
                        id=self._id_of(path),
                        name=name,
                        size=await aiofiles.os.path.getsize(path),
                        mime_type=mimetypes.guess_type(name)[0],
                    )
                )
        except OSError as e:
            raise BlobStoreError("Failed to list folder.", folder_id=folder_id) from e
        return files

    async def delete_file(self, file_id: str) -> None:
        """Delete a file.

        Raises:
            BlobNotFoundError: If the file does not exist.
            BlobStoreError: If the file cannot be removed.
        """
        path = self._resolve(file_id)
        if not await aiofiles.os.path.isfile(path):
            raise BlobNotFoundError("File not found.", file_id=file_id)
        try:
            await aiofiles.os.remove(path)
        except OSError as e:
            raise BlobStoreError("Failed to delete file.", file_id=file_id) from e
        logger.debug("File deleted.", extra={"file_id": file_id})

    async def get_or_create_folder(self, name: str, parent_id: str | None) -> str:
        """Return the id of folder ``name`` under ``parent_id``, creating it if missing.

        Raises:
            BlobFolderNotFoundError: If the parent folder does not exist.
            BlobStoreError: If the folder cannot be created.
        """
        parent = self._resolve(parent_id)
        if not await aiofiles.os.path.isdir(parent):
            raise BlobFolderNotFoundError(
                "Parent folder not found.", folder_id=parent_id
            )
        folder_name = sanitize_filename(name).strip() or "untitled"
        if parent == self._root:
            folder = self._resolve(folder_name)
        else:
            folder = self._resolve(f"{self._id_of(parent)}/{folder_name}")
        try:
            await aiofiles.os.makedirs(folder, exist_ok=True)
        except OSError as e:
            raise BlobStoreError(
                "Failed to create folder.", folder_id=folder_name
            ) from e
        return self._id_of(folder)

    async def folder_exists(self, folder_id: str) -> bool:
        """Return whether the folder exists."""
        return await aiofiles.os.path.isdir(self._resolve(folder_id))


class LocalBlobStoreProvider:
    """Hand out a ``LocalBlobStore`` rooted at each user's storage directory.

    Attributes:
        _paths: PathManager locating user storage roots.
    """

    def __init__(self, paths: PathManager):
        self._paths = paths

    async def for_user(self, user_id: str) -> BlobStore:
        """Open the user's local store.

        Raises:
            BlobStoreUnavailableError: If the storage directory cannot be created.
        """
        try:
            root = await self._paths.user_storage_dir(user_id)
        except (ValueError, FileOperationError) as e:
            raise BlobStoreUnavailableError(
                "Local storage is unavailable for this user.", user_id=user_id
            ) from e
        return LocalBlobStore(root)
