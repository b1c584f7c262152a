"""Outcome of one phase of a user's sync.

Phases are discovery (reconciling feeds), download (running the pipeline for
new episodes), and cleanup (retention). Each result carries a success flag,
an item count, timing, and the errors collected along the way.
"""

from dataclasses import dataclass, field


@dataclass(frozen=True)
class PhaseResult:
    """Results from a single processing phase.

    Attributes:
        success: Whether the phase ran to completion.
        count: Number of items the phase produced or processed successfully.
        errors: Errors collected during the phase.
        duration_seconds: Time taken by the phase.
    """

    success: bool
    count: int
    errors: list[Exception] = field(default_factory=list[Exception])
    duration_seconds: float = 0.0
