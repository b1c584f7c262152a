"""Fetch and parse podcast RSS feeds.

Feeds are fetched with httpx, retrying transient failures, and parsed with
feedparser, which handles RSS 2.0, Atom, and the iTunes namespace.
"""

from calendar import timegm
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
from typing import Any

import feedparser
import httpx

from .exceptions import FeedFetchError, FeedParseError
from .retry import RetryPolicy, exponential_backoff

logger = logging.getLogger(__name__)

FEED_RETRY_ATTEMPTS = 3


@dataclass(frozen=True)
class ParsedEpisode:
    """One feed item, normalized.

    Attributes:
        guid: Item guid, falling back to its link.
        title: Item title.
        description: Item summary or description.
        pub_date: Publication time (UTC); items without one get the parse time.
        audio_url: Enclosure URL, if the item has audio.
        duration: ``itunes:duration`` as given.
        file_size: Enclosure length in bytes, if given.
        image_url: ``itunes:image`` of the item, if given.
    """

    guid: str
    title: str
    description: str | None
    pub_date: datetime
    audio_url: str | None
    duration: str | None = None
    file_size: int | None = None
    image_url: str | None = None


@dataclass(frozen=True)
class ParsedFeed:
    """Feed-level metadata plus its items in feed order.

    Attributes:
        title: Channel title.
        description: Channel description.
        image_url: Channel image, falling back to ``itunes:image``.
        author: ``itunes:author``, falling back to the channel author.
        link: Channel website.
        episodes: Parsed items, most recent first as published.
    """

    title: str | None
    description: str | None
    image_url: str | None
    author: str | None
    link: str | None
    episodes: list[ParsedEpisode] = field(default_factory=list)


def is_transient_http_error(exc: BaseException) -> bool:
    """Return True for failures worth retrying.

    Timeouts, failed connections (including DNS), dropped connections and 5xx
    responses are transient; anything else is permanent.
    """
    match exc:
        case (
            httpx.TimeoutException()
            | httpx.ConnectError()
            | httpx.ReadError()
            | httpx.WriteError()
            | httpx.RemoteProtocolError()
        ):
            return True
        case httpx.HTTPStatusError():
            return exc.response.status_code >= 500
        case _:
            return False


def _struct_to_datetime(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.fromtimestamp(timegm(value), UTC)
    except (TypeError, ValueError, OverflowError):
        return None


def _parse_int(value: Any) -> int | None:
    try:
        return int(value) if value not in (None, "") else None
    except (TypeError, ValueError):
        return None


def _first_audio_enclosure(entry: Any) -> dict[str, Any] | None:
    enclosures: list[dict[str, Any]] = entry.get("enclosures") or []
    for enclosure in enclosures:
        if enclosure.get("href") and str(enclosure.get("type", "")).startswith("audio"):
            return enclosure
    return next((e for e in enclosures if e.get("href")), None)


def _image_href(node: Any) -> str | None:
    image = node.get("image")
    if isinstance(image, dict):
        return image.get("href") or image.get("url")  # type: ignore
    return None


def _parse_entry(entry: Any, parsed_at: datetime) -> ParsedEpisode | None:
    guid = entry.get("id") or entry.get("link")
    if not guid:
        logger.debug(
            "Skipping feed item without guid or link.",
            extra={"title": entry.get("title")},
        )
        return None
    enclosure = _first_audio_enclosure(entry)
    return ParsedEpisode(
        guid=guid,
        title=entry.get("title") or "Untitled",
        description=entry.get("summary") or entry.get("description"),
        pub_date=_struct_to_datetime(entry.get("published_parsed")) or parsed_at,
        audio_url=enclosure.get("href") if enclosure else None,
        duration=entry.get("itunes_duration"),
        file_size=_parse_int(enclosure.get("length")) if enclosure else None,
        image_url=_image_href(entry),
    )


def parse_feed_content(
    content: bytes | str, url: str, max_episodes: int | None = None
) -> ParsedFeed:
    """Parse raw feed content.

    Args:
        content: The feed document.
        url: Where the document came from, for error context.
        max_episodes: Keep only this many items from the top of the feed.

    Returns:
        The parsed feed.

    Raises:
        FeedParseError: If the document is not a recognizable feed.
    """
    parsed = feedparser.parse(content)
    if parsed.get("bozo") and not parsed.get("entries") and not parsed.get("feed"):
        raise FeedParseError(
            f"Failed to parse feed: {parsed.get('bozo_exception')}", url=url
        )
    if parsed.get("bozo"):
        logger.debug(
            "Feed parsed with warnings.",
            extra={"url": url, "warning": str(parsed.get("bozo_exception"))},
        )

    channel = parsed.get("feed", {})
    entries = parsed.get("entries", [])
    if max_episodes is not None:
        entries = entries[:max_episodes]

    parsed_at = datetime.now(UTC)
    episodes = [
        episode
        for entry in entries
        if (episode := _parse_entry(entry, parsed_at)) is not None
    ]
    return ParsedFeed(
        title=channel.get("title"),
        description=channel.get("subtitle") or channel.get("description"),
        image_url=_image_href(channel),
        author=channel.get("itunes_author") or channel.get("author"),
        link=channel.get("link"),
        episodes=episodes,
    )


class FeedSource:
    """Fetch feeds over HTTP and parse them.

    Attributes:
        _timeout: Per-request timeout in seconds.
        _user_agent: User-Agent header value.
        _retry: Policy for transient fetch failures.
    """

    def __init__(
        self,
        timeout_seconds: float = 30.0,
        user_agent: str = "podsync/1.0",
        retry_policy: RetryPolicy | None = None,
    ):
        self._timeout = timeout_seconds
        self._user_agent = user_agent
        self._retry = retry_policy or RetryPolicy(
            max_attempts=FEED_RETRY_ATTEMPTS,
            backoff=exponential_backoff(1.0),
            is_retryable=is_transient_http_error,
        )

    async def _fetch(self, url: str) -> bytes:
        async with httpx.AsyncClient(
            timeout=self._timeout,
            headers={"User-Agent": self._user_agent},
            follow_redirects=True,
        ) as client:
            response = await client.get(url)
            response.raise_for_status()
            return response.content

    async def parse_feed(self, url: str, max_episodes: int | None = None) -> ParsedFeed:
        """Fetch and parse the feed at ``url``.

        Args:
            url: Feed URL.
            max_episodes: Keep only this many items from the top of the feed.

        Returns:
            The parsed feed.

        Raises:
            FeedFetchError: If the feed cannot be retrieved.
            FeedParseError: If the response is not a recognizable feed.
        """
        log_params = {"url": url}
        logger.debug("Fetching feed.", extra=log_params)
        try:
            content = await self._retry.run(lambda: self._fetch(url), log_params)
        except httpx.HTTPStatusError as e:
            raise FeedFetchError(
                f"Feed request returned HTTP {e.response.status_code}", url=url
            ) from e
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            raise FeedFetchError("Feed request failed", url=url) from e

        feed = parse_feed_content(content, url, max_episodes)
        logger.debug(
            "Feed parsed.", extra={**log_params, "episode_count": len(feed.episodes)}
        )
        return feed
