"""Reconciliation pipeline.

Turns a batch of normalized lead, quote and sale rows into household,
quote and sale records for one agency:

1. Supersession: deactivate every active record of the report type
2. Per row: resolve producer, resolve household, upsert the record
3. Leads: attribute the household to its lead source
4. Sales: link by exact household key, else score candidates and
   auto-link or queue for human review

Failures are isolated per row. Rows may run concurrently inside a
batch. Every household write happens under that household key's lock;
a sale linked to a household under another key holds both locks,
acquired in sorted order.
"""

import asyncio
import logging
from contextlib import AsyncExitStack, asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, AsyncIterator, Iterable
from uuid import UUID, uuid4

from pydantic import ValidationError

from ..exceptions import (
    DuplicateKeyError,
    LqsError,
    NotFoundError,
    ReconciliationContextError,
    RowDataError,
)
from ..logging import (
    get_context_logger,
    log_match_decision,
    log_reconcile_batch,
    log_reconcile_complete,
    log_reconcile_start,
    log_review_decision,
    log_row_error,
)
from ..models import (
    ROW_ADAPTER,
    AttentionReason,
    AuditEntry,
    CandidateHousehold,
    Household,
    HouseholdStatus,
    LeadRow,
    MatchClassification,
    PendingSaleReview,
    Quote,
    QuoteRow,
    ReviewAction,
    ReviewDecision,
    Sale,
    SaleMatchStatus,
    SaleRow,
)
from ..resolution.keys import normalize_zip
from ..resolution.producer import ProducerMatch, TeamDirectory
from ..resolution.scorer import CandidateScorer
from ..storage.base import LqsRepository
from .base import (
    ReconcileConfig,
    ReconciliationContext,
    ReconciliationResult,
    ReviewApplyResult,
    RowError,
    RowOutcome,
)
from .run_log import RunLogHandler, finish_capture, start_capture

__all__ = [
    "ReconcileConfig",
    "ReconciliationContext",
    "ReconciliationPipeline",
    "build_context",
]

# Sales that a re-run must leave alone
_SETTLED_SALE_STATES = (
    SaleMatchStatus.AUTO_MATCHED,
    SaleMatchStatus.MATCHED,
    SaleMatchStatus.CREATED_NEW,
    SaleMatchStatus.SKIPPED,
)

# Sales a review decision may act on
_REVIEWABLE_SALE_STATES = (
    SaleMatchStatus.PENDING_REVIEW,
    SaleMatchStatus.UNMATCHED,
)

AnyRow = LeadRow | QuoteRow | SaleRow


async def build_context(
    storage: LqsRepository,
    agency_id: str,
    report_type: str,
    config: ReconcileConfig | None = None,
    lead_source_id: str | None = None,
) -> ReconciliationContext:
    """Fetch the team directory and build the context of a run.

    Args:
        storage: Repository to read the team directory from
        agency_id: Agency whose records are reconciled
        report_type: Report type the rows were uploaded as
        config: Run tuning; defaults to application settings
        lead_source_id: Lead source of a lead list upload, used by lead
            rows that carry none of their own

    Raises:
        ReconciliationContextError: If the agency is missing or its
            directory cannot be read
    """
    if not agency_id:
        raise ReconciliationContextError("agency_id is required")
    if not report_type:
        raise ReconciliationContextError("report_type is required")

    config = config or ReconcileConfig.from_settings()
    try:
        members = await storage.fetch_team_directory(agency_id)
    except Exception as e:
        raise ReconciliationContextError(
            f"Failed to load team directory for agency {agency_id}: {e}"
        ) from e

    return ReconciliationContext(
        agency_id=agency_id,
        report_type=report_type,
        team_directory=TeamDirectory(
            members,
            min_score=config.producer_min_score,
            min_tokens=config.producer_min_tokens,
        ),
        lead_source_id=lead_source_id,
    )


@dataclass
class _RunState:
    """State owned by a single reconcile call."""

    run_id: str
    cancelled: bool = False
    key_locks: dict[tuple[str, str], asyncio.Lock] = field(default_factory=dict)

    def lock_for(self, agency_id: str, household_key: str) -> asyncio.Lock:
        key = (agency_id, household_key)
        lock = self.key_locks.get(key)
        if lock is None:
            lock = self.key_locks[key] = asyncio.Lock()
        return lock

    @asynccontextmanager
    async def locked(self, agency_id: str, *household_keys: str) -> AsyncIterator[None]:
        """Hold the locks of the given household keys.

        Locks are taken in sorted key order; callers never nest two
        ``locked`` blocks.
        """
        async with AsyncExitStack() as stack:
            for key in sorted(set(household_keys)):
                await stack.enter_async_context(self.lock_for(agency_id, key))
            yield


def _new_household(
    agency_id: str,
    household_key: str,
    *,
    first_name: str,
    last_name: str,
    zip_code: str | None,
    lead_received_date: date | None,
    team_member_id: str | None,
    lead_source_id: str | None = None,
) -> Household:
    """A household to create; without a lead source it needs attention."""
    return Household(
        agency_id=agency_id,
        household_key=household_key,
        first_name=first_name.strip(),
        last_name=last_name.strip(),
        zip_code=normalize_zip(zip_code) or None,
        lead_received_date=lead_received_date,
        status=HouseholdStatus.LEAD,
        team_member_id=team_member_id,
        lead_source_id=lead_source_id,
        needs_attention=lead_source_id is None,
        attention_reason=None if lead_source_id else AttentionReason.NO_LEAD_SOURCE,
    )


def _flag_attention(outcome: RowOutcome, household: Household) -> None:
    if household.needs_attention:
        outcome.attention_household_id = household.id


class ReconciliationPipeline:
    """Reconciles normalized report rows into persistent records."""

    def __init__(
        self,
        storage: LqsRepository,
        config: ReconcileConfig | None = None,
        scorer: CandidateScorer | None = None,
    ):
        """Initialize the pipeline.

        Args:
            storage: Repository every read and write goes through
            config: Run tuning; defaults to application settings
            scorer: Candidate scorer; defaults to one built from config
        """
        self.storage = storage
        self.config = config or ReconcileConfig.from_settings()
        self.scorer = scorer or CandidateScorer(
            auto_match_threshold=self.config.auto_match_threshold,
            ambiguity_margin=self.config.ambiguity_margin,
            premium_tolerance=self.config.premium_tolerance,
        )
        self._runs: dict[str, _RunState] = {}
        self._logger = get_context_logger("lqs.ingestion.pipeline")

    @property
    def active_runs(self) -> list[str]:
        """IDs of the runs currently in progress."""
        return list(self._runs)

    def cancel(self, run_id: UUID | str | None = None) -> bool:
        """Stop a run before its next batch.

        Args:
            run_id: Run to cancel; every active run when omitted

        Returns:
            True if at least one active run was cancelled
        """
        if run_id is None:
            targets = list(self._runs.values())
        else:
            run = self._runs.get(str(run_id))
            targets = [run] if run is not None else []
        for run in targets:
            run.cancelled = True
        return bool(targets)

    # =========================
    # First pass
    # =========================

    async def run(
        self,
        rows: Iterable[AnyRow | dict[str, Any]],
        agency_id: str,
        report_type: str,
        run_id: UUID | None = None,
        lead_source_id: str | None = None,
    ) -> ReconciliationResult:
        """Build the context for an agency and reconcile rows against it."""
        context = await build_context(
            self.storage, agency_id, report_type, self.config, lead_source_id=lead_source_id
        )
        return await self.reconcile(rows, context, run_id=run_id)

    async def reconcile(
        self,
        rows: Iterable[AnyRow | dict[str, Any]],
        context: ReconciliationContext,
        run_id: UUID | None = None,
    ) -> ReconciliationResult:
        """Reconcile a batch of rows for one agency and report type.

        Args:
            rows: Normalized rows, or dicts validated row by row
            context: Agency, report type and team directory snapshot
            run_id: Optional run ID; a new UUID is generated otherwise

        Returns:
            Run result; row failures are recorded, never raised
        """
        rows = list(rows)

        run_id = run_id or uuid4()
        run_id_str = str(run_id)
        run = _RunState(run_id=run_id_str)
        self._runs[run_id_str] = run
        logger = get_context_logger(
            "lqs.ingestion.pipeline",
            run_id=run_id_str,
            agency_id=context.agency_id,
        )

        # Set up per-run log capture
        start_capture(run_id_str)
        handler = RunLogHandler(run_id_str)
        handler.setFormatter(logging.Formatter("%(message)s"))
        ingestion_logger = logging.getLogger("lqs.ingestion")
        ingestion_logger.addHandler(handler)

        result = ReconciliationResult(
            run_id=run_id,
            agency_id=context.agency_id,
            report_type=context.report_type,
            status="running",
            started_at=datetime.utcnow(),
            rows_total=len(rows),
        )

        try:
            log_reconcile_start(
                context.agency_id, context.report_type, run_id_str, len(rows)
            )

            try:
                result.records_deactivated = await self.storage.deactivate_report_type(
                    context.agency_id, context.report_type
                )
                logger.info(
                    f"Deactivated {result.records_deactivated} prior "
                    f"{context.report_type} records"
                )
            except Exception as e:
                result.completed_at = datetime.utcnow()
                result.status = "failed"
                result.success = False
                result.errors.append(f"Supersession failed: {e}")
                logger.exception("Supersession failed; no rows were processed")
                return result

            batch_size = self.config.batch_size
            cancelled = False
            for batch_number, start in enumerate(range(0, len(rows), batch_size), start=1):
                if run.cancelled:
                    cancelled = True
                    logger.warning(
                        f"Run cancelled after {result.records_processed + result.records_failed} rows"
                    )
                    break

                batch = rows[start:start + batch_size]
                outcomes = await self._process_batch(batch, start, context, run)
                for outcome in outcomes:
                    result.apply_outcome(outcome)

                log_reconcile_batch(
                    run_id_str,
                    batch_number,
                    len(batch),
                    result.records_processed + result.records_failed,
                    len(rows),
                )

            result.finalize(cancelled=cancelled)

            logger.info(
                f"Reconciliation complete: {result.records_processed} processed, "
                f"{result.households_created} households created, "
                f"{result.sales_auto_matched} sales auto-matched, "
                f"{result.sales_pending_review} pending review, "
                f"{len(result.row_errors)} errors"
            )
            log_reconcile_complete(
                context.agency_id,
                run_id_str,
                result.records_processed,
                len(result.row_errors),
                result.duration_seconds or 0,
            )

        finally:
            # Detach handler and flush captured logs
            ingestion_logger.removeHandler(handler)
            result.log_output = finish_capture(run_id_str)
            self._runs.pop(run_id_str, None)

        return result

    async def _process_batch(
        self,
        batch: list[AnyRow | dict[str, Any]],
        offset: int,
        context: ReconciliationContext,
        run: _RunState,
    ) -> list[RowOutcome]:
        numbered = [(offset + i + 1, row) for i, row in enumerate(batch)]

        if self.config.concurrency <= 1:
            return [
                await self._process_row(row, position, context, run)
                for position, row in numbered
            ]

        semaphore = asyncio.Semaphore(self.config.concurrency)

        async def bounded(position: int, row: Any) -> RowOutcome:
            async with semaphore:
                return await self._process_row(row, position, context, run)

        # gather keeps input order, so outcomes fold in row order
        return list(
            await asyncio.gather(*(bounded(position, row) for position, row in numbered))
        )

    async def _process_row(
        self,
        raw: AnyRow | dict[str, Any],
        position: int,
        context: ReconciliationContext,
        run: _RunState,
    ) -> RowOutcome:
        outcome = RowOutcome(row_number=position, identifier=f"row {position}")
        try:
            row = self._validate_row(raw, position)
            outcome.row_number = row.row_number
            outcome.identifier = row.natural_id
            outcome.row_type = row.row_type

            if isinstance(row, LeadRow):
                await self._process_lead_row(row, context, run, outcome)
            elif isinstance(row, QuoteRow):
                await self._process_quote_row(row, context, run, outcome)
            else:
                await self._process_sale_row(row, context, run, outcome)

        except Exception as e:
            reason = e.message if isinstance(e, LqsError) else str(e)
            outcome.error = RowError(
                row_number=outcome.row_number,
                identifier=outcome.identifier,
                reason=reason,
                error_type=type(e).__name__,
            )
            log_row_error(run.run_id, outcome.row_number, outcome.identifier, reason)

        return outcome

    def _validate_row(self, raw: AnyRow | dict[str, Any], position: int) -> AnyRow:
        if isinstance(raw, (LeadRow, QuoteRow, SaleRow)):
            row = raw if raw.row_number else raw.model_copy(update={"row_number": position})
        else:
            try:
                row = ROW_ADAPTER.validate_python({"row_number": position, **raw})
            except ValidationError as e:
                first = e.errors()[0]
                field_name = ".".join(str(part) for part in first["loc"]) or "row"
                raise RowDataError(field_name, first["msg"]) from e

        if not row.first_name.strip() and not row.last_name.strip():
            raise RowDataError("name", "first and last name are both empty")
        return row

    def _resolve_producer(
        self,
        row: AnyRow,
        context: ReconciliationContext,
        outcome: RowOutcome,
    ) -> ProducerMatch:
        producer = context.team_directory.match(row.sub_producer_code, row.sub_producer_name)
        outcome.producer_matched = producer.matched
        if not producer.matched and row.producer_label:
            outcome.unmatched_producer = row.producer_label
        return producer

    async def _process_lead_row(
        self,
        row: LeadRow,
        context: ReconciliationContext,
        run: _RunState,
        outcome: RowOutcome,
    ) -> None:
        lead_source_id = row.lead_source_id or context.lead_source_id
        if not lead_source_id:
            raise RowDataError("lead_source_id", "lead rows need a lead source")

        producer = self._resolve_producer(row, context, outcome)
        key = row.household_key

        new = _new_household(
            context.agency_id,
            key,
            first_name=row.first_name,
            last_name=row.last_name,
            zip_code=row.zip_code,
            lead_received_date=row.lead_date or date.today(),
            team_member_id=producer.team_member_id,
            lead_source_id=lead_source_id,
        )
        new.merge_contact(row.phones, row.email, row.products_interested)

        async with run.locked(context.agency_id, key):
            household, created = await self._find_or_create_household(new)
            outcome.household_created = created
            outcome.household_updated = not created

            changed = False
            if not created:
                changed = household.merge_contact(
                    row.phones, row.email, row.products_interested
                )
                changed |= household.claim_lead_source(lead_source_id)
                outcome.lead_source_conflict = household.lead_source_id != lead_source_id
                if producer.team_member_id and household.team_member_id is None:
                    household.team_member_id = producer.team_member_id
                    changed = True
            if changed:
                household = await self.storage.update_household(household)

            if outcome.lead_source_conflict:
                self._logger.warning(
                    f"Household {key} already belongs to lead source "
                    f"{household.lead_source_id}; {lead_source_id} flagged as conflict",
                    extra={"household_id": household.id, "run_id": run.run_id},
                )
            _flag_attention(outcome, household)

    async def _process_quote_row(
        self,
        row: QuoteRow,
        context: ReconciliationContext,
        run: _RunState,
        outcome: RowOutcome,
    ) -> None:
        producer = self._resolve_producer(row, context, outcome)
        key = row.household_key

        async with run.locked(context.agency_id, key):
            household, created = await self._find_or_create_household(
                _new_household(
                    context.agency_id,
                    key,
                    first_name=row.first_name,
                    last_name=row.last_name,
                    zip_code=row.zip_code,
                    lead_received_date=row.quote_date,
                    team_member_id=producer.team_member_id,
                )
            )
            outcome.household_created = created
            outcome.household_updated = not created

            quote, quote_created = await self.storage.upsert_quote(
                Quote(
                    agency_id=context.agency_id,
                    household_id=household.id,
                    team_member_id=producer.team_member_id,
                    quote_date=row.quote_date,
                    product_type=row.product_type,
                    items_quoted=row.items_quoted,
                    premium_cents=row.premium_cents,
                    issued_policy_number=row.issued_policy_number,
                    report_type=context.report_type,
                )
            )
            outcome.quote_created = quote_created
            outcome.quote_updated = not quote_created

            changed = False
            if not created and producer.team_member_id and household.team_member_id is None:
                household.team_member_id = producer.team_member_id
                changed = True
            status = household.status.advance(HouseholdStatus.QUOTED)
            if status != household.status:
                household.status = status
                changed = True
            if changed:
                await self.storage.update_household(household)
            _flag_attention(outcome, household)

    async def _process_sale_row(
        self,
        row: SaleRow,
        context: ReconciliationContext,
        run: _RunState,
        outcome: RowOutcome,
    ) -> None:
        producer = self._resolve_producer(row, context, outcome)
        producer_id = producer.team_member_id
        agency_id = context.agency_id
        key = row.household_key
        incoming = Sale(
            agency_id=agency_id,
            first_name=row.first_name,
            last_name=row.last_name,
            zip_code=row.zip_code,
            product_type=row.product_type,
            premium_cents=row.premium_cents,
            sale_date=row.sale_date,
            items_sold=row.items_sold,
            policy_number=row.policy_number,
            sub_producer_raw=row.sub_producer_raw,
            sub_producer_code=row.sub_producer_code,
            sub_producer_name=row.sub_producer_name,
            team_member_id=producer_id,
            report_type=context.report_type,
        )

        async with run.locked(agency_id, key):
            sale, created = await self._upsert_sale(incoming)
            outcome.sale_created = created
            outcome.sale_updated = not created

            if sale.match_status in _SETTLED_SALE_STATES:
                return
            if await self._link_exact(sale, producer_id, outcome):
                return

        # Candidate scoring reads only; the link below re-checks under lock
        zip_code = normalize_zip(sale.zip_code)
        quoted_since = None
        if not zip_code:
            quoted_since = sale.sale_date - timedelta(days=self.config.candidate_recency_days)
        candidates = await self.storage.find_candidate_households(
            agency_id, zip_code=zip_code or None, quoted_since=quoted_since
        )
        match = self.scorer.evaluate(sale, candidates, producer_id)
        best = match.best
        auto = match.classification == MatchClassification.AUTO_MATCH

        log_match_decision(
            sale.natural_key,
            match.classification.value,
            best.household_id if auto else None,
            best.score if best else 0,
            len(match.candidates),
        )

        lock_keys = [key]
        if auto:
            target = await self.storage.get_household(best.household_id)
            if target is None:
                raise NotFoundError("Household", best.household_id)
            lock_keys.append(target.household_key)

        async with run.locked(agency_id, *lock_keys):
            sale = await self.storage.get_sale(sale.id)
            if sale is None:
                raise NotFoundError("Sale", incoming.natural_key)
            if sale.match_status in _SETTLED_SALE_STATES:
                return
            if await self._link_exact(sale, producer_id, outcome):
                return

            if auto:
                household = await self.storage.get_household(best.household_id)
                if household is None:
                    raise NotFoundError("Household", best.household_id)
                await self._link_sale(
                    sale, household, SaleMatchStatus.AUTO_MATCHED, best.score, producer_id
                )
                outcome.sale_auto_matched = True
                outcome.household_updated = True
                _flag_attention(outcome, household)
                return

            sale.match_status = SaleMatchStatus.PENDING_REVIEW
            sale.match_score = best.score if best else 0
            sale = await self.storage.update_sale(sale)
            outcome.pending_review = PendingSaleReview(
                sale=sale,
                classification=match.classification,
                candidates=match.candidates,
            )

    async def _link_exact(
        self, sale: Sale, producer_id: str | None, outcome: RowOutcome
    ) -> bool:
        """Link a sale to the household sharing its key, if there is one.

        The caller holds the lock of the sale's household key.
        """
        household = await self.storage.find_household_by_key(sale.agency_id, sale.household_key)
        if household is None:
            return False

        quotes = await self.storage.find_quotes(sale.agency_id, household.id)
        scored = self.scorer.score(
            sale, CandidateHousehold(household=household, quotes=quotes), producer_id
        )
        await self._link_sale(
            sale, household, SaleMatchStatus.AUTO_MATCHED, scored.score, producer_id
        )
        outcome.sale_auto_matched = True
        outcome.household_updated = True
        _flag_attention(outcome, household)
        log_match_decision(
            sale.natural_key,
            MatchClassification.AUTO_MATCH.value,
            household.id,
            scored.score,
            1,
        )
        return True

    async def _upsert_sale(self, incoming: Sale) -> tuple[Sale, bool]:
        existing = await self.storage.find_sale_by_natural_key(
            incoming.agency_id, incoming.natural_key
        )
        if existing is None:
            try:
                return await self.storage.create_sale(incoming), True
            except DuplicateKeyError:
                existing = await self.storage.find_sale_by_natural_key(
                    incoming.agency_id, incoming.natural_key
                )
                if existing is None:
                    raise

        merged = existing.model_copy(
            update={
                "first_name": incoming.first_name,
                "last_name": incoming.last_name,
                "zip_code": incoming.zip_code,
                "product_type": incoming.product_type,
                "premium_cents": incoming.premium_cents,
                "sale_date": incoming.sale_date,
                "items_sold": incoming.items_sold,
                "sub_producer_raw": incoming.sub_producer_raw,
                "sub_producer_code": incoming.sub_producer_code,
                "sub_producer_name": incoming.sub_producer_name,
                "team_member_id": existing.team_member_id or incoming.team_member_id,
                "report_type": incoming.report_type,
                "is_active": True,
            }
        )
        return await self.storage.update_sale(merged), False

    async def _link_sale(
        self,
        sale: Sale,
        household: Household,
        status: SaleMatchStatus,
        score: int | None,
        producer_id: str | None,
    ) -> Sale:
        """Link a sale to a household and advance the household to sold.

        Reads the household's quotes itself, so the caller only has to
        hold the household's key lock.
        """
        quotes = await self.storage.find_quotes(
            sale.agency_id, household.id, product_type=sale.product_type
        )
        linkable = [q for q in quotes if q.linked_sale_id in (None, sale.id)]
        if linkable:
            quote = max(linkable, key=lambda q: (q.quote_date, q.created_at))
            quote.linked_sale_id = sale.id
            if quote.team_member_id is None and producer_id:
                quote.team_member_id = producer_id
            await self.storage.update_quote(quote)
            sale.linked_quote_id = quote.id

        sale.household_id = household.id
        sale.match_status = status
        sale.match_score = score
        sale = await self.storage.update_sale(sale)

        household.status = household.status.advance(HouseholdStatus.SOLD)
        if household.sold_date is None:
            household.sold_date = sale.sale_date
        if household.team_member_id is None and producer_id:
            household.team_member_id = producer_id
        await self.storage.update_household(household)
        return sale

    async def _find_or_create_household(self, household: Household) -> tuple[Household, bool]:
        """Return the household stored under the new household's key, or create it."""
        agency_id, household_key = household.agency_id, household.household_key
        existing = await self.storage.find_household_by_key(agency_id, household_key)
        if existing is not None:
            return existing, False

        try:
            return await self.storage.create_household(household), True
        except DuplicateKeyError:
            # Created by another writer since the lookup
            existing = await self.storage.find_household_by_key(agency_id, household_key)
            if existing is None:
                raise
            self._logger.info(f"Household {household_key} created concurrently; updating")
            return existing, False

    # =========================
    # Second pass
    # =========================

    async def apply_review_decisions(
        self,
        decisions: Iterable[ReviewDecision],
        context: ReconciliationContext,
        decided_by: str = "review",
    ) -> ReviewApplyResult:
        """Apply finalized review decisions.

        Each decision is applied and audited independently; a failing
        decision is recorded and the rest still run.
        """
        result = ReviewApplyResult()
        for decision in decisions:
            try:
                await self._apply_decision(decision, context, decided_by, result)
                result.decisions_applied += 1
            except Exception as e:
                reason = e.message if isinstance(e, LqsError) else str(e)
                result.errors.append(
                    f"Item {decision.item_index} (sale {decision.sale_id}): {reason}"
                )
                self._logger.warning(
                    f"Review decision for sale {decision.sale_id} failed: {reason}",
                    extra={"sale_id": decision.sale_id, "action": decision.action.value},
                )
        return result

    async def _apply_decision(
        self,
        decision: ReviewDecision,
        context: ReconciliationContext,
        decided_by: str,
        result: ReviewApplyResult,
    ) -> None:
        sale = await self.storage.get_sale(decision.sale_id)
        if sale is None or sale.agency_id != context.agency_id:
            raise NotFoundError("Sale", decision.sale_id)
        if sale.match_status not in _REVIEWABLE_SALE_STATES:
            raise LqsError(
                f"Sale {sale.id} is {sale.match_status.value}, not awaiting review"
            )

        household_id = None
        if decision.action == ReviewAction.MATCH:
            household = await self.storage.get_household(decision.household_id)
            if household is None or household.agency_id != context.agency_id:
                raise NotFoundError("Household", decision.household_id)
            # The reviewer may pick any candidate; record that candidate's score
            quotes = await self.storage.find_quotes(context.agency_id, household.id)
            chosen = self.scorer.score(
                sale, CandidateHousehold(household=household, quotes=quotes), sale.team_member_id
            )
            sale = await self._link_sale(
                sale, household, SaleMatchStatus.MATCHED, chosen.score, sale.team_member_id
            )
            household_id = household.id
            result.sales_matched += 1

        elif decision.action == ReviewAction.CREATE_NEW:
            household, created = await self._find_or_create_household(
                _new_household(
                    context.agency_id,
                    sale.household_key,
                    first_name=sale.first_name,
                    last_name=sale.last_name,
                    zip_code=sale.zip_code,
                    lead_received_date=sale.sale_date,
                    team_member_id=sale.team_member_id,
                )
            )
            sale = await self._link_sale(
                sale, household, SaleMatchStatus.CREATED_NEW, None, sale.team_member_id
            )
            household_id = household.id
            result.households_created += created
            result.sales_created_new += 1

        else:
            sale.match_status = SaleMatchStatus.SKIPPED
            sale = await self.storage.update_sale(sale)
            result.sales_skipped += 1

        await self.storage.record_audit(
            AuditEntry(
                agency_id=context.agency_id,
                sale_id=sale.id,
                action=decision.action,
                household_id=household_id,
                score=sale.match_score,
                decided_by=decided_by,
                details={"item_index": decision.item_index},
            )
        )
        log_review_decision(context.agency_id, sale.id, decision.action.value, household_id)

    async def reset_skipped_sale(self, agency_id: str, sale_id: str) -> Sale:
        """Return a skipped sale to ``unmatched`` so later runs re-score it.

        Raises:
            NotFoundError: If the sale does not exist in the agency
            LqsError: If the sale is not skipped
        """
        sale = await self.storage.get_sale(sale_id)
        if sale is None or sale.agency_id != agency_id:
            raise NotFoundError("Sale", sale_id)
        if sale.match_status != SaleMatchStatus.SKIPPED:
            raise LqsError(f"Sale {sale_id} is {sale.match_status.value}, not skipped")

        sale.match_status = SaleMatchStatus.UNMATCHED
        sale.match_score = None
        return await self.storage.update_sale(sale)
