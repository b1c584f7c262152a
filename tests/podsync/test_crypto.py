# pyright: reportPrivateUsage=false

"""Tests for field encryption and the per-user CredentialStore."""

from unittest.mock import MagicMock

import pytest

from podsync.crypto import (
    CredentialStore,
    _encrypt_bytes,
    decrypt_episode,
    decrypt_podcast,
    decrypt_value,
    encrypt_episode,
    encrypt_podcast,
    encrypt_value,
    episode_display_title,
    generate_key,
    podcast_display_name,
)
from podsync.db.types import Episode, Podcast, UserKey
from podsync.db.user_db import UserDatabase
from podsync.exceptions import CredentialError

MASTER_KEY_HEX = "00112233445566778899aabbccddeeff" * 2

# --- Fixtures ---


@pytest.fixture
def key() -> bytes:
    """Provides a fresh data key."""
    return generate_key()


@pytest.fixture
def mock_user_db() -> MagicMock:
    """Provides a MagicMock for UserDatabase."""
    return MagicMock(spec=UserDatabase)


@pytest.fixture
def credential_store(mock_user_db: MagicMock) -> CredentialStore:
    """Provides a CredentialStore over the mock UserDatabase."""
    return CredentialStore(mock_user_db, MASTER_KEY_HEX)


# --- Tests for value encryption ---


@pytest.mark.unit
def test_encrypt_value_produces_three_hex_parts(key: bytes):
    """Tokens are iv:authTag:cipher, with a 16-byte iv and tag."""
    token = encrypt_value("The Daily", key)

    assert token is not None
    iv_hex, tag_hex, cipher_hex = token.split(":")
    assert len(bytes.fromhex(iv_hex)) == 16
    assert len(bytes.fromhex(tag_hex)) == 16
    assert len(bytes.fromhex(cipher_hex)) == len("The Daily".encode())


@pytest.mark.unit
def test_encrypt_value_uses_fresh_iv(key: bytes):
    """Encrypting the same value twice yields different tokens."""
    assert encrypt_value("same", key) != encrypt_value("same", key)


@pytest.mark.unit
def test_decrypt_value_restores_unicode(key: bytes):
    """Decryption returns the original text."""
    token = encrypt_value("Café ☕ episode", key)
    assert decrypt_value(token, key) == "Café ☕ episode"


@pytest.mark.unit
@pytest.mark.parametrize("empty", [None, ""])
def test_empty_values_pass_through(key: bytes, empty: str | None):
    """Empty values are neither encrypted nor decrypted."""
    assert encrypt_value(empty, key) is None
    assert decrypt_value(empty, key) is None


@pytest.mark.unit
def test_decrypt_value_with_wrong_key_raises(key: bytes):
    """A token from another key fails authentication."""
    token = encrypt_value("secret", key)

    with pytest.raises(CredentialError):
        decrypt_value(token, generate_key())


@pytest.mark.unit
@pytest.mark.parametrize("token", ["not-a-token", "aa:bb", "zz:zz:zz"])
def test_decrypt_value_malformed_raises(key: bytes, token: str):
    """Malformed tokens raise CredentialError."""
    with pytest.raises(CredentialError):
        decrypt_value(token, key)


@pytest.mark.unit
def test_decrypt_value_tampered_cipher_raises(key: bytes):
    """Flipping a ciphertext byte fails authentication."""
    token = encrypt_value("secret", key)
    assert token is not None
    iv_hex, tag_hex, cipher_hex = token.split(":")
    flipped = f"{int(cipher_hex[:2], 16) ^ 0xFF:02x}{cipher_hex[2:]}"

    with pytest.raises(CredentialError):
        decrypt_value(f"{iv_hex}:{tag_hex}:{flipped}", key)


# --- Tests for record encryption ---


@pytest.mark.unit
def test_encrypt_podcast_only_touches_display_fields(key: bytes):
    """Name, description, author and image are encrypted; the feed URL is not."""
    podcast = Podcast(
        id=3,
        user_id="user-1",
        rss_url="https://example.com/feed.xml",
        name="Show",
        description=None,
        author="Host",
        image_url="https://example.com/cover.jpg",
    )

    encrypted = encrypt_podcast(podcast, key)

    assert encrypted.rss_url == podcast.rss_url
    assert encrypted.name != "Show"
    assert encrypted.description is None
    assert decrypt_podcast(encrypted, key).model_dump() == podcast.model_dump()
    assert podcast.name == "Show"


@pytest.mark.unit
def test_episode_encryption_covers_sensitive_fields(key: bytes):
    """Title, description, audio and image URLs and filename are encrypted."""
    episode = Episode(
        id=9,
        user_id="user-1",
        podcast_id=3,
        guid="guid-9",
        title="Episode 9",
        description="About nine",
        audio_url="https://example.com/9.mp3",
        image_url=None,
        original_filename="009-Episode 9.mp3",
        duration="12:00",
    )

    encrypted = encrypt_episode(episode, key)

    assert encrypted.guid == "guid-9"
    assert encrypted.duration == "12:00"
    for field in ("title", "description", "audio_url", "original_filename"):
        assert getattr(encrypted, field) != getattr(episode, field)
    assert decrypt_episode(encrypted, key).model_dump() == episode.model_dump()


# --- Tests for display helpers ---


@pytest.mark.unit
def test_display_helpers_decrypt_with_key(key: bytes):
    """Names and titles are shown decrypted when the key is available."""
    podcast = encrypt_podcast(
        Podcast(id=1, user_id="u", rss_url="https://x/feed", name="Show"), key
    )
    episode = encrypt_episode(
        Episode(id=2, user_id="u", podcast_id=1, guid="g", title="Ep"), key
    )

    assert podcast_display_name(podcast, key) == "Show"
    assert episode_display_title(episode, key) == "Ep"


@pytest.mark.unit
def test_display_helpers_fall_back_to_ids(key: bytes):
    """Without a working key, names fall back to record ids."""
    podcast = encrypt_podcast(
        Podcast(id=1, user_id="u", rss_url="https://x/feed", name="Show"), key
    )
    episode = encrypt_episode(
        Episode(id=2, user_id="u", podcast_id=1, guid="g", title="Ep"), key
    )

    assert podcast_display_name(podcast, None) == "podcast 1"
    assert podcast_display_name(podcast, generate_key()) == "podcast 1"
    assert episode_display_title(episode, None) == "episode 2"


# --- Tests for CredentialStore ---


@pytest.mark.unit
def test_credential_store_rejects_short_master_key(mock_user_db: MagicMock):
    """The master key must be 64 hex characters."""
    with pytest.raises(ValueError):
        CredentialStore(mock_user_db, "abcd")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_key_unwraps_and_caches(
    credential_store: CredentialStore, mock_user_db: MagicMock, key: bytes
):
    """A stored key is unwrapped with the master key and read only once."""
    master = bytes.fromhex(MASTER_KEY_HEX)
    mock_user_db.get_user_key.return_value = UserKey(
        user_id="user-1", encrypted_key=_encrypt_bytes(key, master)
    )

    first = await credential_store.get_user_key("user-1")
    second = await credential_store.get_user_key("user-1")

    assert first == key
    assert second == key
    mock_user_db.get_user_key.assert_awaited_once_with("user-1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_key_missing_raises(
    credential_store: CredentialStore, mock_user_db: MagicMock
):
    """A user without a stored key raises CredentialError."""
    mock_user_db.get_user_key.return_value = None

    with pytest.raises(CredentialError) as exc_info:
        await credential_store.get_user_key("user-1")

    assert exc_info.value.user_id == "user-1"


@pytest.mark.unit
@pytest.mark.asyncio
async def test_get_user_key_wrapped_with_other_master_raises(
    credential_store: CredentialStore, mock_user_db: MagicMock, key: bytes
):
    """A key wrapped by a different master key cannot be unwrapped."""
    mock_user_db.get_user_key.return_value = UserKey(
        user_id="user-1", encrypted_key=_encrypt_bytes(key, generate_key())
    )

    with pytest.raises(CredentialError):
        await credential_store.get_user_key("user-1")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_create_user_key_stores_wrapped_key(
    credential_store: CredentialStore, mock_user_db: MagicMock
):
    """A created key is stored wrapped and served from the cache afterwards."""
    created = await credential_store.create_user_key("user-1")

    mock_user_db.upsert_user_key.assert_awaited_once()
    stored: UserKey = mock_user_db.upsert_user_key.await_args.args[0]
    assert stored.user_id == "user-1"
    assert created.hex() not in stored.encrypted_key
    assert await credential_store.get_user_key("user-1") == created
    mock_user_db.get_user_key.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_clear_cache_forces_reload(
    credential_store: CredentialStore, mock_user_db: MagicMock, key: bytes
):
    """Clearing the cache makes the next lookup read the database again."""
    mock_user_db.get_user_key.return_value = UserKey(
        user_id="user-1",
        encrypted_key=_encrypt_bytes(key, bytes.fromhex(MASTER_KEY_HEX)),
    )
    await credential_store.get_user_key("user-1")

    credential_store.clear_cache("user-1")
    await credential_store.get_user_key("user-1")

    assert mock_user_db.get_user_key.await_count == 2
