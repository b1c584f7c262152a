"""Type-safe wrapper around APScheduler for podsync's periodic jobs.

This module isolates the rest of the code base from APScheduler: jobs are
scheduled from ``CronExpression`` values and completion, failure and missed
runs are reported through typed callbacks.
"""

from collections.abc import Callable
from datetime import datetime
import logging
from typing import Any

from apscheduler.events import (  # type: ignore
    EVENT_JOB_ERROR,  # type: ignore
    EVENT_JOB_EXECUTED,  # type: ignore
    EVENT_JOB_MISSED,  # type: ignore
    JobExecutionEvent,  # type: ignore
)
from apscheduler.executors.asyncio import AsyncIOExecutor  # type: ignore
from apscheduler.jobstores.memory import MemoryJobStore  # type: ignore
from apscheduler.schedulers.asyncio import AsyncIOScheduler  # type: ignore
from apscheduler.triggers.cron import CronTrigger  # type: ignore

from ..config.types import CronExpression

logger = logging.getLogger(__name__)

MISFIRE_GRACE_SECONDS = 300


class APSchedulerCore:
    """In-memory ``AsyncIOScheduler`` running cron-triggered jobs.

    Jobs never overlap with themselves and missed runs are coalesced into one.
    Completion callbacks are registered per return type; the first callback
    whose type matches a job's return value receives it.
    """

    def __init__(self):
        self._scheduler = AsyncIOScheduler(  # type: ignore
            jobstores={"default": MemoryJobStore()},
            executors={"default": AsyncIOExecutor()},
            job_defaults={
                "coalesce": True,
                "max_instances": 1,
                "misfire_grace_time": MISFIRE_GRACE_SECONDS,
                "replace_existing": True,
            },
            timezone="UTC",
        )

        self._job_completed_type_listeners: dict[
            type, Callable[[str, datetime, Any], None]
        ] = {}

        self._scheduler.add_listener(  # type: ignore
            self._dispatch_job_completed_event,  # type: ignore
            EVENT_JOB_EXECUTED,
        )

    @staticmethod
    def _trigger_from_cron_expression(expr: CronExpression, jitter: int) -> CronTrigger:  # type: ignore
        """Build a UTC ``CronTrigger`` from the expression's fields."""
        return CronTrigger(  # type: ignore
            minute=expr.minute,
            hour=expr.hour,
            day=expr.day,
            month=expr.month,
            day_of_week=expr.day_of_week,
            second=expr.second if expr.second is not None else 0,
            jitter=jitter or None,
            timezone="UTC",
        )

    def _dispatch_job_completed_event(self, event: JobExecutionEvent) -> None:  # type: ignore
        for return_type, callback in self._job_completed_type_listeners.items():
            if isinstance(event.retval, return_type):  # type: ignore
                callback(
                    event.job_id,  # type: ignore
                    event.scheduled_run_time,  # type: ignore
                    event.retval,  # type: ignore
                )
                return

        logger.warning(
            "No registered listener for job completed event",
            extra={
                "job_id": event.job_id,  # type: ignore
                "scheduled_run_time": event.scheduled_run_time,  # type: ignore
            },
        )

    def add_job_completed_listener[R](
        self, return_type: type[R], callback: Callable[[str, datetime, R], None]
    ) -> None:
        """Call ``callback(job_id, scheduled_run_time, retval)`` for jobs returning ``R``.

        Can be called multiple times with different return types.
        """
        self._job_completed_type_listeners[return_type] = callback

    def add_job_failed_listener(
        self, callback: Callable[[str, datetime, Exception], None]
    ) -> None:
        """Call ``callback(job_id, scheduled_run_time, exception)`` when a job raises."""

        def callback_wrapper(event: JobExecutionEvent) -> None:  # type: ignore
            callback(
                event.job_id,  # type: ignore
                event.scheduled_run_time,  # type: ignore
                event.exception,  # type: ignore
            )

        self._scheduler.add_listener(  # type: ignore
            callback_wrapper,  # type: ignore
            EVENT_JOB_ERROR,  # type: ignore
        )

    def add_job_missed_listener(
        self, callback: Callable[[str, datetime], None]
    ) -> None:
        """Call ``callback(job_id, scheduled_run_time)`` when a run is missed."""

        def callback_wrapper(event: JobExecutionEvent) -> None:  # type: ignore
            callback(
                event.job_id,  # type: ignore
                event.scheduled_run_time,  # type: ignore
            )

        self._scheduler.add_listener(  # type: ignore
            callback_wrapper,  # type: ignore
            EVENT_JOB_MISSED,  # type: ignore
        )

    def schedule_job[**P, R](
        self,
        job_id: str,
        cron_expression: CronExpression,
        jitter: int,
        callback: Callable[P, R],
        *args: P.args,
        **kwargs: P.kwargs,
    ) -> None:
        """Run ``callback(*args, **kwargs)`` whenever the cron expression fires.

        Coroutine functions run on the scheduler's event loop.

        Args:
            job_id: The job identifier; an existing job with this id is replaced.
            cron_expression: When to run.
            jitter: Maximum random delay in seconds, 0 for none.
            callback: The function to run.
            args: Positional arguments for the callback.
            kwargs: Keyword arguments for the callback.
        """
        trigger = self._trigger_from_cron_expression(cron_expression, jitter=jitter)  # type: ignore
        self._scheduler.add_job(  # type: ignore
            callback,
            args=args,
            kwargs=kwargs,
            trigger=trigger,
            id=job_id,
            coalesce=True,
            max_instances=1,
            misfire_grace_time=MISFIRE_GRACE_SECONDS,
            replace_existing=True,
        )

    def start(self) -> None:
        """Start the scheduler."""
        self._scheduler.start()  # type: ignore

    def get_job_ids(self) -> list[str]:
        """Return the ids of all scheduled jobs."""
        return [job.id for job in self._scheduler.get_jobs()]  # type: ignore

    @property
    def running(self) -> bool:
        """Whether the scheduler is running."""
        return self._scheduler.running  # type: ignore

    def shutdown(self, wait: bool = True) -> None:
        """Shut the scheduler down.

        Args:
            wait: Whether to wait for running jobs to complete.
        """
        self._scheduler.shutdown(wait=wait)  # type: ignore
