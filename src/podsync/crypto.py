"""Field encryption and per-user key management.

Sensitive podcast and episode fields are stored as AES-256-GCM ciphertext in
the form ``iv:authTag:cipher`` (hex). Each user has their own data key, which
is itself stored wrapped by the application master key.
"""

from collections.abc import Callable
import logging
import os

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from sqlmodel import SQLModel

from .db.types import Episode, Podcast, UserKey
from .db.user_db import UserDatabase
from .exceptions import CredentialError

logger = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 16

PODCAST_ENCRYPTED_FIELDS = ("name", "description", "author", "image_url")
EPISODE_ENCRYPTED_FIELDS = (
    "title",
    "description",
    "audio_url",
    "image_url",
    "original_filename",
)


def generate_key() -> bytes:
    """Return a fresh random 256-bit key."""
    return AESGCM.generate_key(bit_length=KEY_BYTES * 8)


def _encrypt_bytes(data: bytes, key: bytes) -> str:
    iv = os.urandom(IV_BYTES)
    sealed = AESGCM(key).encrypt(iv, data, None)
    cipher, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return f"{iv.hex()}:{tag.hex()}:{cipher.hex()}"


def _decrypt_bytes(token: str, key: bytes) -> bytes:
    try:
        iv_hex, tag_hex, cipher_hex = token.split(":")
        iv = bytes.fromhex(iv_hex)
        sealed = bytes.fromhex(cipher_hex) + bytes.fromhex(tag_hex)
        return AESGCM(key).decrypt(iv, sealed, None)
    except (ValueError, InvalidTag) as e:
        raise CredentialError("Failed to decrypt data") from e


def encrypt_value(plaintext: str | None, key: bytes) -> str | None:
    """Encrypt a string with a user's key.

    Args:
        plaintext: Value to encrypt. Empty values are returned unchanged.
        key: The user's 32-byte data key.

    Returns:
        The ``iv:authTag:cipher`` token, or None for empty input.
    """
    if not plaintext:
        return None
    return _encrypt_bytes(plaintext.encode("utf-8"), key)


def decrypt_value(token: str | None, key: bytes) -> str | None:
    """Decrypt a token produced by ``encrypt_value``.

    Raises:
        CredentialError: If the token is malformed or fails authentication.
    """
    if not token:
        return None
    try:
        return _decrypt_bytes(token, key).decode("utf-8")
    except UnicodeDecodeError as e:
        raise CredentialError("Failed to decrypt data") from e


def _transform_fields[T: SQLModel](
    record: T,
    fields: tuple[str, ...],
    transform: Callable[[str | None, bytes], str | None],
    key: bytes,
) -> T:
    updates = {
        name: transform(value, key)
        for name in fields
        if (value := getattr(record, name))
    }
    return type(record).model_validate({**record.model_dump(), **updates})


def encrypt_podcast(podcast: Podcast, key: bytes) -> Podcast:
    """Return a copy of ``podcast`` with its display fields encrypted."""
    return _transform_fields(podcast, PODCAST_ENCRYPTED_FIELDS, encrypt_value, key)


def decrypt_podcast(podcast: Podcast, key: bytes) -> Podcast:
    """Return a copy of ``podcast`` with its display fields decrypted.

    Raises:
        CredentialError: If any field fails to decrypt.
    """
    return _transform_fields(podcast, PODCAST_ENCRYPTED_FIELDS, decrypt_value, key)


def encrypt_episode(episode: Episode, key: bytes) -> Episode:
    """Return a copy of ``episode`` with its sensitive fields encrypted."""
    return _transform_fields(episode, EPISODE_ENCRYPTED_FIELDS, encrypt_value, key)


def decrypt_episode(episode: Episode, key: bytes) -> Episode:
    """Return a copy of ``episode`` with its sensitive fields decrypted.

    Raises:
        CredentialError: If any field fails to decrypt.
    """
    return _transform_fields(episode, EPISODE_ENCRYPTED_FIELDS, decrypt_value, key)


class CredentialStore:
    """Load, create, and cache users' data keys.

    Keys are stored wrapped by the master key and cached unwrapped in memory
    after first use.

    Attributes:
        _user_db: Database access for wrapped keys.
        _master_key: The 32-byte master key.
        _cache: Unwrapped keys by user id.
    """

    def __init__(self, user_db: UserDatabase, master_key_hex: str):
        if len(master_key_hex) != KEY_BYTES * 2:
            raise ValueError("Master key must be 64 hex characters (32 bytes)")
        self._user_db = user_db
        self._master_key = bytes.fromhex(master_key_hex)
        self._cache: dict[str, bytes] = {}

    async def get_user_key(self, user_id: str) -> bytes:
        """Return a user's data key.

        Raises:
            CredentialError: If the user has no key, or it cannot be unwrapped.
            DatabaseOperationError: If the key cannot be read.
        """
        cached = self._cache.get(user_id)
        if cached is not None:
            return cached

        row = await self._user_db.get_user_key(user_id)
        if row is None:
            raise CredentialError("Encryption key not found for user", user_id=user_id)
        try:
            key = _decrypt_bytes(row.encrypted_key, self._master_key)
        except CredentialError as e:
            raise CredentialError(
                "Failed to unwrap user encryption key.", user_id=user_id
            ) from e
        self._cache[user_id] = key
        return key

    async def create_user_key(self, user_id: str) -> bytes:
        """Generate, wrap, store, and cache a new data key for a user.

        Raises:
            DatabaseOperationError: If the key cannot be stored.
        """
        key = generate_key()
        await self._user_db.upsert_user_key(
            UserKey(user_id=user_id, encrypted_key=_encrypt_bytes(key, self._master_key))
        )
        self._cache[user_id] = key
        logger.info("Created encryption key for user.", extra={"user_id": user_id})
        return key

    def clear_cache(self, user_id: str | None = None) -> None:
        """Drop one user's cached key, or every cached key when no user is given."""
        if user_id is None:
            self._cache.clear()
        else:
            self._cache.pop(user_id, None)


def podcast_display_name(podcast: Podcast, key: bytes | None) -> str:
    """Return the podcast's decrypted name for logs and progress reports.

    Falls back to ``podcast <id>`` when no key is available or the name does
    not decrypt.
    """
    fallback = f"podcast {podcast.id}"
    if key is None:
        return fallback
    try:
        return decrypt_value(podcast.name, key) or fallback
    except CredentialError:
        return fallback


def episode_display_title(episode: Episode, key: bytes | None) -> str:
    """Return the episode's decrypted title, or ``episode <id>``."""
    fallback = f"episode {episode.id}"
    if key is None:
        return fallback
    try:
        return decrypt_value(episode.title, key) or fallback
    except CredentialError:
        return fallback
