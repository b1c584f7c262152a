"""Per-user sync engine: discovery, downloads, retention and verification."""

from .coordinator import StartOverResult, UserSyncCoordinator
from .downloader import DownloadPipeline
from .pruner import Pruner
from .reconciler import FeedReconciler
from .sequence import SequenceAllocator
from .stats import StatsAggregator
from .verifier import ConsistencyVerifier

__all__ = [
    "ConsistencyVerifier",
    "DownloadPipeline",
    "FeedReconciler",
    "Pruner",
    "SequenceAllocator",
    "StartOverResult",
    "StatsAggregator",
    "UserSyncCoordinator",
]
