"""Results of processing one user."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from .phase_result import PhaseResult


@dataclass
class SyncResults:
    """Results from ``UserSyncCoordinator.process_user()``.

    Attributes:
        user_id: The user that was processed.
        start_time: When processing began.
        total_duration_seconds: Total time for all phases.
        podcast_count: Enabled podcasts considered.
        discovery_result: Results from reconciling feeds.
        download_result: Results from downloading new episodes.
        cleanup_result: Results from retention cleanup.
        fatal_error: Error that stopped processing entirely.
    """

    user_id: str
    start_time: datetime
    total_duration_seconds: float = 0.0
    podcast_count: int = 0

    discovery_result: PhaseResult = field(
        default_factory=lambda: PhaseResult(success=False, count=0)
    )
    download_result: PhaseResult = field(
        default_factory=lambda: PhaseResult(success=False, count=0)
    )
    cleanup_result: PhaseResult = field(
        default_factory=lambda: PhaseResult(success=False, count=0)
    )

    fatal_error: Exception | None = None

    @property
    def new_episodes(self) -> int:
        """Episodes created by discovery."""
        return self.discovery_result.count

    @property
    def downloaded(self) -> int:
        """Episodes downloaded successfully."""
        return self.download_result.count

    @property
    def files_deleted(self) -> int:
        """Remote files removed by retention cleanup."""
        return self.cleanup_result.count

    @property
    def all_errors(self) -> list[Exception]:
        """All errors from all phases."""
        errors: list[Exception] = []
        if self.fatal_error:
            errors.append(self.fatal_error)
        errors.extend(self.discovery_result.errors)
        errors.extend(self.download_result.errors)
        errors.extend(self.cleanup_result.errors)
        return errors

    @property
    def overall_success(self) -> bool:
        """True when no phase recorded an error."""
        return not self.all_errors

    def summary_dict(self) -> dict[str, Any]:
        """Return a dictionary summary suitable for logging."""
        return {
            "user_id": self.user_id,
            "overall_success": self.overall_success,
            "total_duration_seconds": self.total_duration_seconds,
            "podcast_count": self.podcast_count,
            "new_episodes": self.new_episodes,
            "downloaded": self.downloaded,
            "files_deleted": self.files_deleted,
            "error_count": len(self.all_errors),
            "fatal_error": str(self.fatal_error) if self.fatal_error else None,
        }
