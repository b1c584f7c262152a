"""Cron expression data type for podsync configuration.

Schedules for the periodic user check and the daily statistics job are given
as cron strings in settings; this type validates them with croniter and exposes
the individual fields APScheduler's ``CronTrigger`` needs.
"""

from dataclasses import dataclass, field
from datetime import datetime

from croniter import croniter


@dataclass
class CronExpression:
    """Validated cron expression.

    Accepts standard 5-field expressions and 6-field expressions with a
    trailing seconds field, plus croniter aliases such as ``@daily``.

    Attributes:
        cron_str: Original cron expression string.
        minute: Minute field.
        hour: Hour field.
        day: Day-of-month field.
        month: Month field.
        day_of_week: Day-of-week field.
        second: Seconds field, or None for 5-field expressions.
    """

    cron_str: str = field(repr=False, hash=False, compare=False)
    _itr: croniter = field(init=False, repr=False, hash=False, compare=False)

    minute: int | str | None = field(init=False)
    hour: int | str | None = field(init=False)
    day: int | str | None = field(init=False)
    month: int | str | None = field(init=False)
    day_of_week: int | str | None = field(init=False)
    second: int | str | None = field(init=False, default=None)

    def __post_init__(self):
        self._itr = croniter(self.cron_str)
        fields = self._itr.expressions
        if len(fields) not in (5, 6):
            raise ValueError(f"Invalid cron expression: {self.cron_str}")

        self.minute, self.hour, self.day, self.month, self.day_of_week = fields[:5]
        self.second = fields[5] if len(fields) == 6 else None

    def next(self, start_time: datetime) -> datetime:
        """Return the first matching time after ``start_time``."""
        return self._itr.get_next(datetime, start_time=start_time)  # type: ignore

    def __str__(self) -> str:
        return self.cron_str
