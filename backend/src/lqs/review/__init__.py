"""Human review of sales that could not be auto-matched."""

from .queue import (
    CreateNew,
    ItemStatus,
    Navigate,
    QueueStatus,
    ReviewQueue,
    ReviewState,
    SelectCandidate,
    Skip,
    apply,
)

__all__ = [
    "CreateNew",
    "ItemStatus",
    "Navigate",
    "QueueStatus",
    "ReviewQueue",
    "ReviewState",
    "SelectCandidate",
    "Skip",
    "apply",
]
