"""ID3 tagging of downloaded episodes.

Tags make synced files show up as "album = podcast, track = episode" in music
players. Cover art is fetched best-effort: a missing or invalid image never
stops a download.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
import logging
from pathlib import Path

import httpx
from mutagen import MutagenError
from mutagen.id3 import (
    APIC,
    COMM,
    ID3,
    TALB,
    TCON,
    TDRC,
    TIT2,
    TPE1,
    TRCK,
    ID3NoHeaderError,
    PictureType,
)

from .exceptions import TaggingError

logger = logging.getLogger(__name__)

UTF8 = 3


@dataclass(frozen=True)
class CoverArt:
    """Image bytes with their MIME type."""

    data: bytes
    mime_type: str


@dataclass(frozen=True)
class EpisodeTags:
    """Tag values for one episode file.

    Attributes:
        title: Episode title (TIT2).
        artist: Podcast author, or the podcast name (TPE1).
        album: Podcast name (TALB).
        track_number: Episode sequence number (TRCK).
        year: Publication year (TDRC).
        genre: Always "Podcast" unless overridden (TCON).
        cover_art: Front cover image (APIC).
    """

    title: str
    artist: str
    album: str
    track_number: int
    year: int | None = None
    genre: str = "Podcast"
    cover_art: CoverArt | None = None

    @property
    def comment(self) -> str:
        """Comment frame text (COMM)."""
        return f"Episode from {self.album}"


def build_tags(
    title: str | None,
    podcast_name: str | None,
    podcast_author: str | None,
    sequence_number: int,
    pub_date: datetime | None,
    cover_art: CoverArt | None = None,
) -> EpisodeTags:
    """Assemble tag values, filling gaps with placeholders."""
    album = podcast_name or "Unknown Podcast"
    return EpisodeTags(
        title=title or "Unknown Episode",
        artist=podcast_author or album,
        album=album,
        track_number=sequence_number,
        year=(pub_date or datetime.now()).year,
        cover_art=cover_art,
    )


def write_tags(path: Path, tags: EpisodeTags) -> None:
    """Write ID3v2.4 tags to ``path``, replacing frames that already exist.

    Raises:
        TaggingError: If the file cannot be read or written as ID3.
    """
    try:
        try:
            id3 = ID3(path)
        except ID3NoHeaderError:
            id3 = ID3()
        id3.setall("TIT2", [TIT2(encoding=UTF8, text=tags.title)])
        id3.setall("TPE1", [TPE1(encoding=UTF8, text=tags.artist)])
        id3.setall("TALB", [TALB(encoding=UTF8, text=tags.album)])
        id3.setall("TRCK", [TRCK(encoding=UTF8, text=str(tags.track_number))])
        id3.setall("TCON", [TCON(encoding=UTF8, text=tags.genre)])
        if tags.year is not None:
            id3.setall("TDRC", [TDRC(encoding=UTF8, text=str(tags.year))])
        id3.setall(
            "COMM", [COMM(encoding=UTF8, lang="eng", desc="", text=tags.comment)]
        )
        if tags.cover_art is not None:
            id3.setall(
                "APIC",
                [
                    APIC(
                        encoding=UTF8,
                        mime=tags.cover_art.mime_type,
                        type=PictureType.COVER_FRONT,
                        desc="Cover",
                        data=tags.cover_art.data,
                    )
                ],
            )
        id3.save(path)
    except (MutagenError, OSError) as e:
        raise TaggingError("Failed to write ID3 tags.", file_name=path.name) from e


class AudioTagger:
    """Fetch cover art and tag audio files.

    Attributes:
        _image_timeout: Timeout for cover art requests, in seconds.
        _user_agent: User-Agent header value.
    """

    def __init__(self, image_timeout_seconds: float = 10.0, user_agent: str = "podsync/1.0"):
        self._image_timeout = image_timeout_seconds
        self._user_agent = user_agent

    async def fetch_cover_art(self, url: str | None) -> CoverArt | None:
        """Download an image, returning None on any failure.

        Responses whose content type does not mention "image" are rejected.
        """
        if not url:
            return None
        log_params = {"url": url}
        try:
            async with httpx.AsyncClient(
                timeout=self._image_timeout,
                headers={"User-Agent": self._user_agent},
                follow_redirects=True,
            ) as client:
                response = await client.get(url)
                response.raise_for_status()
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            logger.warning("Failed to fetch cover art.", extra=log_params, exc_info=e)
            return None

        content_type = response.headers.get("content-type", "")
        if "image" not in content_type:
            logger.warning(
                "Cover art response is not an image.",
                extra={**log_params, "content_type": content_type},
            )
            return None
        return CoverArt(
            data=response.content,
            mime_type=content_type.split(";")[0].strip() or "image/jpeg",
        )

    async def tag(self, path: Path, tags: EpisodeTags) -> None:
        """Write tags without blocking the event loop.

        Raises:
            TaggingError: If tagging fails.
        """
        await asyncio.to_thread(write_tags, path, tags)
        logger.debug(
            "Audio file tagged.",
            extra={"file_name": path.name, "track_number": tags.track_number},
        )
