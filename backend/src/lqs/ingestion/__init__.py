"""Reconciliation of normalized report rows into LQS records.

## Key Classes

- `ReconciliationPipeline`: Runs a reconciliation and the review second pass
- `ReconcileConfig`: Tuning for a run (batch size, thresholds, concurrency)
- `ReconciliationContext`: Agency, report type and team directory of a run
- `ReconciliationResult`: Counters, row errors and pending reviews of a run

## Usage

    storage = SqlRepository()
    pipeline = ReconciliationPipeline(storage)
    context = await build_context(storage, agency_id, "quotes")
    result = await pipeline.reconcile(rows, context)
"""

from .base import (
    ReconcileConfig,
    ReconciliationContext,
    ReconciliationResult,
    ReviewApplyResult,
    RowError,
    RowOutcome,
)
from .pipeline import ReconciliationPipeline, build_context

__all__ = [
    "ReconcileConfig",
    "ReconciliationContext",
    "ReconciliationPipeline",
    "ReconciliationResult",
    "ReviewApplyResult",
    "RowError",
    "RowOutcome",
    "build_context",
]
