"""Configuration, context and result models for reconciliation runs.

A run is described by a ``ReconcileConfig`` (tuning) and a
``ReconciliationContext`` (who and what is being reconciled). Each row
produces a ``RowOutcome`` event; ``ReconciliationResult.apply_outcome``
is the only place counters are mutated, so sequential and concurrent
runs aggregate identically.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr

from ..config import Settings, get_settings
from ..models import PendingSaleReview
from ..resolution.producer import TeamDirectory


class ReconcileConfig(BaseModel):
    """Tuning for a reconciliation run."""

    batch_size: int = Field(default=50, ge=1)
    concurrency: int = Field(default=1, ge=1)
    candidate_recency_days: int = Field(default=90, ge=1)
    auto_match_threshold: int = Field(default=75, ge=0)
    ambiguity_margin: int = Field(default=10, ge=0)
    premium_tolerance: float = Field(default=0.10, ge=0.0, le=1.0)
    producer_min_score: float = Field(default=0.5, ge=0.0, le=1.0)
    producer_min_tokens: int = Field(default=2, ge=1)

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "ReconcileConfig":
        """Build a config from application settings."""
        settings = settings or get_settings()
        return cls(
            batch_size=settings.reconcile_batch_size,
            concurrency=settings.reconcile_concurrency,
            candidate_recency_days=settings.candidate_recency_days,
            auto_match_threshold=settings.auto_match_threshold,
            ambiguity_margin=settings.ambiguity_margin,
            premium_tolerance=settings.premium_tolerance,
            producer_min_score=settings.producer_min_score,
            producer_min_tokens=settings.producer_min_tokens,
        )


class ReconciliationContext(BaseModel):
    """Explicit inputs of a run: agency, report type and directory snapshot."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    agency_id: str
    report_type: str
    team_directory: TeamDirectory
    lead_source_id: str | None = None


class RowError(BaseModel):
    """A row that failed and was skipped."""

    row_number: int
    identifier: str
    reason: str
    error_type: str = "Exception"

    def __str__(self) -> str:
        return f"Row {self.row_number} ({self.identifier}): {self.reason}"


@dataclass
class RowOutcome:
    """Everything one row did, reported back to the reducer."""

    row_number: int
    identifier: str
    row_type: str = "unknown"
    error: RowError | None = None
    producer_matched: bool = False
    unmatched_producer: str | None = None
    household_created: bool = False
    household_updated: bool = False
    attention_household_id: str | None = None
    lead_source_conflict: bool = False
    quote_created: bool = False
    quote_updated: bool = False
    sale_created: bool = False
    sale_updated: bool = False
    sale_auto_matched: bool = False
    pending_review: PendingSaleReview | None = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class ReconciliationResult(BaseModel):
    """Result of a reconciliation run."""

    run_id: UUID
    agency_id: str
    report_type: str
    status: str  # "running", "completed", "partial", "failed", "cancelled"
    started_at: datetime
    completed_at: datetime | None = None
    success: bool = True
    rows_total: int = 0
    records_processed: int = 0
    records_failed: int = 0
    records_deactivated: int = 0
    households_created: int = 0
    households_updated: int = 0
    households_needing_attention: int = 0
    lead_source_conflicts: int = 0
    quotes_created: int = 0
    quotes_updated: int = 0
    sales_created: int = 0
    sales_updated: int = 0
    sales_auto_matched: int = 0
    sales_pending_review: int = 0
    team_members_matched: int = 0
    unmatched_producers: list[str] = []
    errors: list[str] = []
    row_errors: list[RowError] = []
    pending_reviews: list[PendingSaleReview] = []
    log_output: str = ""

    _attention_ids: set[str] = PrivateAttr(default_factory=set)

    @property
    def duration_seconds(self) -> float | None:
        """Calculate run duration in seconds."""
        if self.completed_at and self.started_at:
            return (self.completed_at - self.started_at).total_seconds()
        return None

    def apply_outcome(self, outcome: RowOutcome) -> None:
        """Fold one row outcome into the run counters."""
        if outcome.error is not None:
            self.records_failed += 1
            self.row_errors.append(outcome.error)
            self.errors.append(str(outcome.error))
            return

        self.records_processed += 1
        if outcome.producer_matched:
            self.team_members_matched += 1
        if (
            outcome.unmatched_producer
            and outcome.unmatched_producer not in self.unmatched_producers
        ):
            self.unmatched_producers.append(outcome.unmatched_producer)

        self.households_created += outcome.household_created
        self.households_updated += outcome.household_updated
        self.lead_source_conflicts += outcome.lead_source_conflict
        if outcome.attention_household_id:
            self._attention_ids.add(outcome.attention_household_id)
            self.households_needing_attention = len(self._attention_ids)
        self.quotes_created += outcome.quote_created
        self.quotes_updated += outcome.quote_updated
        self.sales_created += outcome.sale_created
        self.sales_updated += outcome.sale_updated
        self.sales_auto_matched += outcome.sale_auto_matched

        if outcome.pending_review is not None:
            self.sales_pending_review += 1
            self.pending_reviews.append(outcome.pending_review)

    def finalize(self, cancelled: bool = False) -> None:
        """Set completion time, status and success flag."""
        self.completed_at = datetime.utcnow()
        self.success = not (self.rows_total > 0 and self.records_processed == 0)
        if cancelled:
            self.status = "cancelled"
        elif not self.success:
            self.status = "failed"
        elif self.row_errors:
            self.status = "partial"
        else:
            self.status = "completed"


class ReviewApplyResult(BaseModel):
    """Result of applying review decisions in the second pass."""

    decisions_applied: int = 0
    sales_matched: int = 0
    sales_created_new: int = 0
    sales_skipped: int = 0
    households_created: int = 0
    errors: list[str] = []

    @property
    def success(self) -> bool:
        return not self.errors
