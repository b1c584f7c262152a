"""Per-user sync scheduling.

This module provides the UserScheduler, which runs two cron jobs: a frequent
tick that starts a sync for every user whose check interval has elapsed, and
a daily statistics snapshot. Each user's sync runs as its own asyncio task and
a user is never processed twice at the same time.

The set of users being processed lives in this process only; running several
scheduler processes against one database would need a shared lease.
"""

import asyncio
from dataclasses import dataclass, field
from datetime import UTC, datetime
import logging
import time

from ..config.types import CronExpression
from ..db import PodcastDatabase, UserDatabase
from ..db.types import UserSettings
from ..exceptions import (
    DatabaseOperationError,
    SyncAlreadyRunningError,
    SyncConflictError,
    UserAlreadyProcessingError,
)
from ..logging_config import set_context_id
from ..sync_engine import StatsAggregator, UserSyncCoordinator
from ..sync_engine.types import SyncResults
from ..sync_status import SyncStatusTracker
from .apscheduler_core import APSchedulerCore

logger = logging.getLogger(__name__)

CHECK_JOB_ID = "user_check"
STATS_JOB_ID = "daily_stats"


@dataclass(frozen=True)
class TickResult:
    """What one scheduler tick did.

    Attributes:
        enabled_users: Users with auto-check enabled.
        started_user_ids: Users whose sync was started.
    """

    enabled_users: int = 0
    started_user_ids: list[str] = field(default_factory=list[str])


class UserScheduler:
    """Start per-user syncs when they are due.

    Attributes:
        _scheduler: APSchedulerCore instance.
        _coordinator: Runs one user's sync.
        _stats: Stores daily statistics.
        _user_db: Users and their settings.
        _podcast_db: Last-checked times.
        _tracker: Global single-flight guard for syncs.
        _processing: Users whose sync is in progress.
        _tasks: Running per-user sync tasks.
    """

    def __init__(
        self,
        coordinator: UserSyncCoordinator,
        stats: StatsAggregator,
        user_db: UserDatabase,
        podcast_db: PodcastDatabase,
        tracker: SyncStatusTracker,
        check_schedule: CronExpression,
        stats_schedule: CronExpression,
    ):
        self._coordinator = coordinator
        self._stats = stats
        self._user_db = user_db
        self._podcast_db = podcast_db
        self._tracker = tracker
        self._processing: set[str] = set()
        self._tasks: set[asyncio.Task[SyncResults]] = set()

        self._scheduler = APSchedulerCore()
        self._scheduler.schedule_job(
            job_id=CHECK_JOB_ID,
            cron_expression=check_schedule,
            jitter=0,
            callback=self.tick,
        )
        self._scheduler.schedule_job(
            job_id=STATS_JOB_ID,
            cron_expression=stats_schedule,
            jitter=0,
            callback=self._stats.update_all_users_stats,
        )

        self._scheduler.add_job_completed_listener(
            TickResult, self._tick_completed_callback
        )
        self._scheduler.add_job_completed_listener(int, self._stats_completed_callback)
        self._scheduler.add_job_failed_listener(self._job_failed_callback)
        self._scheduler.add_job_missed_listener(self._job_missed_callback)

        logger.debug(
            "UserScheduler initialized.",
            extra={
                "check_schedule": str(check_schedule),
                "stats_schedule": str(stats_schedule),
            },
        )

    async def start(self) -> None:
        """Start the scheduler."""
        self._scheduler.start()
        logger.info("User scheduler started successfully.")

    async def stop(self, wait_for_jobs: bool = True) -> None:
        """Stop the scheduler gracefully.

        Args:
            wait_for_jobs: Whether to wait for running user syncs to finish.
        """
        if not self._scheduler.running:
            logger.debug("Scheduler is not running, nothing to stop.")
            return

        logger.info(
            "Stopping user scheduler.",
            extra={"wait_for_jobs": wait_for_jobs, "running_syncs": len(self._tasks)},
        )
        self._scheduler.shutdown(wait=False)
        if wait_for_jobs and self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        logger.info("User scheduler stopped successfully.")

    @property
    def running(self) -> bool:
        """Whether the scheduler is running."""
        return self._scheduler.running

    def is_user_processing(self, user_id: str) -> bool:
        """Whether a sync for the user is in progress."""
        return user_id in self._processing

    # --- Tick ---

    async def _is_due(self, user_id: str, interval_hours: int, now: datetime) -> bool:
        """Whether the user's most recent check is at least ``interval_hours`` old."""
        try:
            last_checked = await self._podcast_db.get_last_checked(user_id)
        except DatabaseOperationError as e:
            logger.error(
                "Failed to read last check time for user.",
                extra={"user_id": user_id},
                exc_info=e,
            )
            return False
        if last_checked is None:
            return True
        hours_since = (now - last_checked).total_seconds() / 3600
        return hours_since >= interval_hours

    async def _run_user(self, user_id: str) -> SyncResults:
        try:
            set_context_id(f"{user_id}-{int(time.time())}")
            results = await self._coordinator.process_user(user_id)
            if results.overall_success:
                logger.info(
                    "User sync completed successfully.", extra=results.summary_dict()
                )
            else:
                logger.warning(
                    "User sync completed with errors.", extra=results.summary_dict()
                )
            return results
        finally:
            self._processing.discard(user_id)

    def _launch(self, user_id: str) -> None:
        self._processing.add(user_id)
        task = asyncio.create_task(self._run_user(user_id), name=f"sync-{user_id}")
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def tick(self) -> TickResult:
        """Start a sync for every user that is due and not already processing.

        Users with auto-check disabled are skipped. A user is due when their
        most recently checked podcast was checked at least their
        ``check_interval_hours`` ago, or never. Each sync runs as its own task;
        the tick does not wait for them.

        Returns:
            How many users are enabled and which syncs were started.
        """
        logger.info("Scheduler tick, checking which users are due.")
        try:
            users = await self._user_db.get_users()
            stored_settings = await self._user_db.get_all_settings()
        except DatabaseOperationError as e:
            logger.error("Failed to load users for scheduler tick.", exc_info=e)
            return TickResult()

        now = datetime.now(UTC)
        enabled = 0
        started: list[str] = []
        for user in users:
            if user.id in self._processing:
                logger.debug(
                    "User is already being processed, skipping.",
                    extra={"user_id": user.id},
                )
                continue
            settings = stored_settings.get(user.id) or UserSettings(user_id=user.id)
            if not settings.auto_check_enabled:
                continue
            enabled += 1
            if not await self._is_due(user.id, settings.check_interval_hours, now):
                continue
            # Re-checked after the await above; no await between check and add.
            if user.id in self._processing:
                continue
            logger.info(
                "Starting sync for due user.",
                extra={
                    "user_id": user.id,
                    "check_interval_hours": settings.check_interval_hours,
                },
            )
            self._launch(user.id)
            started.append(user.id)

        return TickResult(enabled_users=enabled, started_user_ids=started)

    async def trigger_manual_check(self, user_id: str) -> SyncResults:
        """Run a user's sync now and wait for it.

        Raises:
            UserAlreadyProcessingError: If the user's sync is already running.
            SyncAlreadyRunningError: If any sync is running, including one that
                claimed the tracker after this check was accepted.
        """
        if user_id in self._processing:
            raise UserAlreadyProcessingError(
                "A check is already in progress for this user", user_id=user_id
            )
        if not self._tracker.can_start_sync():
            raise SyncAlreadyRunningError("Sync is already running")

        logger.info("Manual check triggered for user.", extra={"user_id": user_id})
        self._processing.add(user_id)
        results = await self._run_user(user_id)
        if isinstance(results.fatal_error, SyncConflictError):
            raise results.fatal_error
        return results

    # --- Job listeners ---

    @staticmethod
    def _tick_completed_callback(
        job_id: str, scheduled_run_time: datetime, retval: TickResult
    ) -> None:
        log_params = {
            "job_id": job_id,
            "scheduled_run_time": scheduled_run_time.isoformat(),
            "enabled_users": retval.enabled_users,
            "started_count": len(retval.started_user_ids),
        }
        if retval.started_user_ids:
            logger.info("Scheduler tick started user syncs.", extra=log_params)
        else:
            logger.debug("Scheduler tick found no users due.", extra=log_params)

    @staticmethod
    def _stats_completed_callback(
        job_id: str, scheduled_run_time: datetime, retval: int
    ) -> None:
        logger.info(
            "Daily stats job completed.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
                "updated_count": retval,
            },
        )

    @staticmethod
    def _job_failed_callback(
        job_id: str, scheduled_run_time: datetime, exception: Exception
    ) -> None:
        logger.error(
            "Scheduled job failed with error.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
                "exception_type": type(exception).__name__,
            },
            exc_info=exception,
        )

    @staticmethod
    def _job_missed_callback(job_id: str, scheduled_run_time: datetime) -> None:
        logger.warning(
            "Scheduled job missed execution window.",
            extra={
                "job_id": job_id,
                "scheduled_run_time": scheduled_run_time.isoformat(),
            },
        )
