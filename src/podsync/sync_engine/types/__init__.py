from .outcomes import (
    DiscoveredEpisode,
    DiscoveryResult,
    DownloadOutcome,
    PodcastVerification,
    ResyncResult,
    VerificationReport,
)
from .phase_result import PhaseResult
from .sync_results import SyncResults

__all__ = [
    "DiscoveredEpisode",
    "DiscoveryResult",
    "DownloadOutcome",
    "PhaseResult",
    "PodcastVerification",
    "ResyncResult",
    "SyncResults",
    "VerificationReport",
]
