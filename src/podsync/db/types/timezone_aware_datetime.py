"""UTC-normalizing datetime column type for SQLite."""

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime, TypeDecorator

SQLITE_DATETIME_NOW = "datetime('now', 'utc')"


class TimezoneAwareDatetime(TypeDecorator[datetime]):
    """Store aware datetimes as naive UTC and read them back as aware UTC.

    SQLite has no timezone support, so naive values are rejected on the way in
    to avoid silently mixing local and UTC timestamps.
    """

    impl = DateTime
    cache_ok = True

    def process_bind_param(
        self, value: datetime | None, dialect: Any
    ) -> datetime | None:
        """Normalize an aware datetime to naive UTC.

        Raises:
            TypeError: If the datetime is naive.
        """
        if value is None:
            return None
        if value.tzinfo is None or value.tzinfo.utcoffset(value) is None:
            raise TypeError("tzinfo is required")
        return value.astimezone(UTC).replace(tzinfo=None)

    def process_result_value(
        self, value: datetime | None, dialect: Any
    ) -> datetime | None:
        """Attach UTC to a value read from the database."""
        return value.replace(tzinfo=UTC) if value is not None else None
