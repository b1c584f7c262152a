# pyright: reportPrivateUsage=false

"""Tests for the UserScheduler class.

Covers the due-user logic of the scheduler tick, per-user single-flight
processing, manual checks, and job registration.
"""

import asyncio
from datetime import UTC, datetime, timedelta
import time
from unittest.mock import MagicMock, patch

import pytest

from podsync.config.types import CronExpression
from podsync.db import PodcastDatabase, UserDatabase
from podsync.db.types import User, UserSettings
from podsync.exceptions import (
    DatabaseOperationError,
    SyncAlreadyRunningError,
    UserAlreadyProcessingError,
)
from podsync.schedule import scheduler
from podsync.schedule.scheduler import CHECK_JOB_ID, STATS_JOB_ID, TickResult, UserScheduler
from podsync.sync_engine import StatsAggregator, UserSyncCoordinator
from podsync.sync_engine.types import PhaseResult, SyncResults
from podsync.sync_status import SyncStatusTracker

# --- Fixtures ---


def _results(user_id: str) -> SyncResults:
    return SyncResults(
        user_id=user_id,
        start_time=datetime(2024, 1, 1, 12, 0, 0, tzinfo=UTC),
        discovery_result=PhaseResult(success=True, count=0),
    )


@pytest.fixture
def mock_coordinator() -> MagicMock:
    """Provides a MagicMock UserSyncCoordinator returning clean results."""
    mock = MagicMock(spec=UserSyncCoordinator)
    mock.process_user.side_effect = _results
    return mock


@pytest.fixture
def mock_user_db() -> MagicMock:
    """Provides a MagicMock UserDatabase with three users."""
    mock = MagicMock(spec=UserDatabase)
    mock.get_users.return_value = [User(id="alice"), User(id="bob"), User(id="carol")]
    mock.get_all_settings.return_value = {
        "alice": UserSettings(user_id="alice", check_interval_hours=6),
        "bob": UserSettings(user_id="bob", check_interval_hours=6),
        "carol": UserSettings(user_id="carol", auto_check_enabled=False),
    }
    return mock


@pytest.fixture
def mock_podcast_db() -> MagicMock:
    """Provides a MagicMock PodcastDatabase where nobody was checked yet."""
    mock = MagicMock(spec=PodcastDatabase)
    mock.get_last_checked.return_value = None
    return mock


@pytest.fixture
def tracker() -> SyncStatusTracker:
    """Provides a real SyncStatusTracker."""
    return SyncStatusTracker()


@pytest.fixture
def user_scheduler(
    mock_coordinator: MagicMock,
    mock_user_db: MagicMock,
    mock_podcast_db: MagicMock,
    tracker: SyncStatusTracker,
) -> UserScheduler:
    """Provides a UserScheduler with mocked collaborators."""
    return UserScheduler(
        coordinator=mock_coordinator,
        stats=MagicMock(spec=StatsAggregator),
        user_db=mock_user_db,
        podcast_db=mock_podcast_db,
        tracker=tracker,
        check_schedule=CronExpression("*/15 * * * *"),
        stats_schedule=CronExpression("0 0 * * *"),
    )


async def _drain(user_scheduler: UserScheduler) -> None:
    await asyncio.gather(*list(user_scheduler._tasks))


# --- Tests for __init__ ---


@pytest.mark.unit
def test_init_schedules_check_and_stats_jobs(user_scheduler: UserScheduler):
    """Both periodic jobs are registered and nothing runs yet."""
    assert set(user_scheduler._scheduler.get_job_ids()) == {CHECK_JOB_ID, STATS_JOB_ID}
    assert user_scheduler.running is False


# --- Tests for tick ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_starts_never_checked_users(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """Enabled users that were never checked are started; disabled ones are not."""
    result = await user_scheduler.tick()
    await _drain(user_scheduler)

    assert result == TickResult(enabled_users=2, started_user_ids=["alice", "bob"])
    awaited = {call.args[0] for call in mock_coordinator.process_user.await_args_list}
    assert awaited == {"alice", "bob"}
    assert not user_scheduler.is_user_processing("alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_respects_check_interval(
    user_scheduler: UserScheduler, mock_podcast_db: MagicMock
):
    """Users are only due once their interval has elapsed."""
    now = datetime.now(UTC)
    last_checked = {
        "alice": now - timedelta(hours=7),
        "bob": now - timedelta(hours=1),
    }
    mock_podcast_db.get_last_checked.side_effect = lambda user_id: last_checked[user_id]

    result = await user_scheduler.tick()
    await _drain(user_scheduler)

    assert result.started_user_ids == ["alice"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_skips_users_already_processing(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """A user whose sync is still running is not started again."""
    release = asyncio.Event()

    async def slow_process(user_id: str) -> SyncResults:
        await release.wait()
        return _results(user_id)

    mock_coordinator.process_user.side_effect = slow_process

    first = await user_scheduler.tick()
    second = await user_scheduler.tick()
    release.set()
    await _drain(user_scheduler)

    assert first.started_user_ids == ["alice", "bob"]
    assert second.started_user_ids == []
    assert mock_coordinator.process_user.await_count == 2


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_uses_defaults_for_users_without_settings(
    user_scheduler: UserScheduler, mock_user_db: MagicMock
):
    """Users without stored settings are auto-checked with defaults."""
    mock_user_db.get_users.return_value = [User(id="dave")]
    mock_user_db.get_all_settings.return_value = {}

    result = await user_scheduler.tick()
    await _drain(user_scheduler)

    assert result.started_user_ids == ["dave"]


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_db_failure_starts_nothing(
    user_scheduler: UserScheduler, mock_user_db: MagicMock
):
    """A failed user lookup yields an empty tick."""
    mock_user_db.get_users.side_effect = DatabaseOperationError("db down")

    assert await user_scheduler.tick() == TickResult()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_tick_skips_user_whose_last_check_cannot_be_read(
    user_scheduler: UserScheduler, mock_podcast_db: MagicMock
):
    """A user whose check time fails to load is skipped this tick."""

    async def last_checked(user_id: str) -> datetime | None:
        if user_id == "alice":
            raise DatabaseOperationError("db down", user_id=user_id)
        return None

    mock_podcast_db.get_last_checked.side_effect = last_checked

    result = await user_scheduler.tick()
    await _drain(user_scheduler)

    assert result.started_user_ids == ["bob"]


# --- Tests for _run_user ---


@pytest.mark.unit
@pytest.mark.asyncio
@patch.object(scheduler, "set_context_id")
@patch.object(time, "time", return_value=1234567890)
async def test_run_user_sets_context_and_clears_processing(
    _mock_time: MagicMock,
    mock_set_context_id: MagicMock,
    user_scheduler: UserScheduler,
    mock_coordinator: MagicMock,
):
    """Each sync is tagged with a context id and releases its user when done."""
    user_scheduler._processing.add("alice")

    results = await user_scheduler._run_user("alice")

    mock_set_context_id.assert_called_once_with("alice-1234567890")
    mock_coordinator.process_user.assert_awaited_once_with("alice")
    assert results.user_id == "alice"
    assert not user_scheduler.is_user_processing("alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_run_user_clears_processing_on_error(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """The user is released even when the coordinator raises."""
    mock_coordinator.process_user.side_effect = RuntimeError("bug")
    user_scheduler._processing.add("alice")

    with pytest.raises(RuntimeError):
        await user_scheduler._run_user("alice")

    assert not user_scheduler.is_user_processing("alice")


# --- Tests for trigger_manual_check ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_manual_check_runs_and_waits(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """A manual check returns the sync results."""
    results = await user_scheduler.trigger_manual_check("alice")

    assert results.user_id == "alice"
    mock_coordinator.process_user.assert_awaited_once_with("alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_manual_check_rejected_for_processing_user(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """A user already being processed cannot be checked manually."""
    user_scheduler._processing.add("alice")

    with pytest.raises(UserAlreadyProcessingError):
        await user_scheduler.trigger_manual_check("alice")

    mock_coordinator.process_user.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_manual_check_rejected_while_sync_running(
    user_scheduler: UserScheduler,
    tracker: SyncStatusTracker,
    mock_coordinator: MagicMock,
):
    """No manual check starts while any sync is running."""
    tracker.start_sync(1)

    with pytest.raises(SyncAlreadyRunningError):
        await user_scheduler.trigger_manual_check("alice")

    assert not user_scheduler.is_user_processing("alice")
    mock_coordinator.process_user.assert_not_awaited()


@pytest.mark.unit
@pytest.mark.asyncio
async def test_manual_check_raises_conflict_lost_inside_sync(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """A sync that loses the tracker race surfaces as a conflict, not results."""
    conflict = SyncAlreadyRunningError("Sync is already running")

    def lost_race(user_id: str) -> SyncResults:
        results = _results(user_id)
        results.fatal_error = conflict
        return results

    mock_coordinator.process_user.side_effect = lost_race

    with pytest.raises(SyncAlreadyRunningError) as exc_info:
        await user_scheduler.trigger_manual_check("alice")

    assert exc_info.value is conflict
    assert not user_scheduler.is_user_processing("alice")


@pytest.mark.unit
@pytest.mark.asyncio
async def test_manual_check_returns_results_with_other_fatal_errors(
    user_scheduler: UserScheduler, mock_coordinator: MagicMock
):
    """Fatal errors that are not conflicts are reported in the results."""

    def failed(user_id: str) -> SyncResults:
        results = _results(user_id)
        results.fatal_error = DatabaseOperationError("db down", user_id=user_id)
        return results

    mock_coordinator.process_user.side_effect = failed

    results = await user_scheduler.trigger_manual_check("alice")

    assert isinstance(results.fatal_error, DatabaseOperationError)
    assert not user_scheduler.is_user_processing("alice")


# --- Tests for lifecycle ---


@pytest.mark.unit
@pytest.mark.asyncio
async def test_start_and_stop(user_scheduler: UserScheduler):
    """The scheduler can be started and stopped on the running loop."""
    await user_scheduler.start()
    assert user_scheduler.running is True

    await user_scheduler.stop()
    assert user_scheduler.running is False


@pytest.mark.unit
@pytest.mark.asyncio
async def test_stop_when_not_running_is_noop(user_scheduler: UserScheduler):
    """Stopping an idle scheduler does nothing."""
    await user_scheduler.stop()

    assert user_scheduler.running is False
