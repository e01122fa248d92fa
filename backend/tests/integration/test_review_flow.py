"""Integration tests for the review second pass.

Tests the complete flow:
1. A sales upload leaves sales pending review
2. The pending items are decided through a ReviewQueue
3. The finalized decisions are applied and audited

Run with: pytest tests/integration/test_review_flow.py -v
"""

from datetime import date

import pytest
import pytest_asyncio

from fixtures.rows import AGENCY_ID, make_quote_row, make_sale_row
from lqs.exceptions import LqsError, NotFoundError
from lqs.models import HouseholdStatus, ReviewAction, ReviewDecision, SaleMatchStatus
from lqs.review import QueueStatus, ReviewQueue

SALE_ROWS = [
    # Jane and John Doe both score 110: ambiguous
    make_sale_row(first_name="J", policy_number="POL-1"),
    # Nobody quoted in 99999: no match
    make_sale_row(first_name="Zed", last_name="Zulu", zip_code="99999", policy_number="POL-2"),
]


def _household_by_name(repository, first_name):
    return next(
        h for h in repository.households(AGENCY_ID) if h.first_name == first_name
    )


def _sale(repository, policy_number):
    return next(s for s in repository.sales(AGENCY_ID) if s.policy_number == policy_number)


@pytest_asyncio.fixture
async def first_pass(pipeline, quotes_context, sales_context):
    """Quotes for Jane and John Doe, then the sales upload."""
    await pipeline.reconcile(
        [make_quote_row(), make_quote_row(first_name="John")], quotes_context
    )
    return await pipeline.reconcile(SALE_ROWS, sales_context)


@pytest.mark.integration
class TestReviewFlow:
    """Tests for deciding and applying pending reviews."""

    @pytest.mark.asyncio
    async def test_first_pass_queues_both_sales(self, first_pass):
        """Test that unlinkable sales come back as review items in row order."""
        assert first_pass.sales_pending_review == 2
        assert [r.sale.policy_number for r in first_pass.pending_reviews] == ["POL-1", "POL-2"]

    @pytest.mark.asyncio
    async def test_match_and_create_new(self, pipeline, repository, sales_context, first_pass):
        """Test that decisions link sales and create households."""
        jane = _household_by_name(repository, "Jane")
        queue = ReviewQueue(first_pass.pending_reviews)

        queue.select_candidate(0, jane.id)
        queue.create_new(1)
        assert queue.status == QueueStatus.COMPLETE

        result = await pipeline.apply_review_decisions(queue.complete(), sales_context)

        assert result.success is True
        assert result.decisions_applied == 2
        assert result.sales_matched == 1
        assert result.sales_created_new == 1
        assert result.households_created == 1

        matched = _sale(repository, "POL-1")
        assert matched.match_status == SaleMatchStatus.MATCHED
        assert matched.household_id == jane.id
        assert matched.match_score == 110

        jane = _household_by_name(repository, "Jane")
        assert jane.status == HouseholdStatus.SOLD
        [jane_quote] = [q for q in repository.quotes(AGENCY_ID) if q.household_id == jane.id]
        assert jane_quote.linked_sale_id == matched.id
        assert matched.linked_quote_id == jane_quote.id

        john = _household_by_name(repository, "John")
        assert john.status == HouseholdStatus.QUOTED

        created = _sale(repository, "POL-2")
        zed = _household_by_name(repository, "Zed")
        assert created.match_status == SaleMatchStatus.CREATED_NEW
        assert created.household_id == zed.id
        assert zed.household_key == "ZULU|ZED|99999"
        assert zed.status == HouseholdStatus.SOLD
        assert zed.needs_attention is True
        assert created.linked_quote_id is None

    @pytest.mark.asyncio
    async def test_decisions_are_audited(self, pipeline, repository, sales_context, first_pass):
        """Test that every applied decision leaves an audit entry."""
        jane = _household_by_name(repository, "Jane")
        queue = ReviewQueue(first_pass.pending_reviews)
        queue.select_candidate(0, jane.id)
        queue.skip(1)

        await pipeline.apply_review_decisions(
            queue.complete(), sales_context, decided_by="reviewer@agency"
        )

        entries = repository.audit_log
        assert [e.action for e in entries] == [ReviewAction.MATCH, ReviewAction.SKIP]
        assert entries[0].household_id == jane.id
        assert entries[1].household_id is None
        assert {e.decided_by for e in entries} == {"reviewer@agency"}
        assert [e.details["item_index"] for e in entries] == [0, 1]

    @pytest.mark.asyncio
    async def test_matched_sale_is_not_rescored(
        self, pipeline, repository, sales_context, first_pass
    ):
        """Test that a reviewed sale keeps its link on the next upload."""
        john = _household_by_name(repository, "John")
        queue = ReviewQueue(first_pass.pending_reviews)
        queue.select_candidate(0, john.id)
        queue.skip(1)
        await pipeline.apply_review_decisions(queue.complete(), sales_context)

        rerun = await pipeline.reconcile(SALE_ROWS, sales_context)

        assert rerun.pending_reviews == []
        assert rerun.sales_created == 0
        assert _sale(repository, "POL-1").household_id == john.id


@pytest.mark.integration
class TestSkippedSales:
    """Tests for skipping and resetting sales."""

    @pytest.mark.asyncio
    async def test_skipped_sale_stays_skipped(
        self, pipeline, repository, sales_context, first_pass
    ):
        queue = ReviewQueue(first_pass.pending_reviews)
        queue.skip(0)
        queue.skip(1)
        result = await pipeline.apply_review_decisions(queue.complete(), sales_context)

        assert result.sales_skipped == 2
        rerun = await pipeline.reconcile(SALE_ROWS, sales_context)

        assert rerun.sales_pending_review == 0
        assert all(
            s.match_status == SaleMatchStatus.SKIPPED for s in repository.sales(AGENCY_ID)
        )

    @pytest.mark.asyncio
    async def test_reset_returns_sale_to_matching(
        self, pipeline, repository, sales_context, first_pass
    ):
        queue = ReviewQueue(first_pass.pending_reviews)
        queue.skip(0)
        queue.skip(1)
        await pipeline.apply_review_decisions(queue.complete(), sales_context)

        sale = _sale(repository, "POL-2")
        reset = await pipeline.reset_skipped_sale(AGENCY_ID, sale.id)

        assert reset.match_status == SaleMatchStatus.UNMATCHED
        assert reset.match_score is None

        rerun = await pipeline.reconcile(SALE_ROWS, sales_context)
        assert [r.sale.policy_number for r in rerun.pending_reviews] == ["POL-2"]

    @pytest.mark.asyncio
    async def test_reset_rejects_unskipped_sale(self, pipeline, repository, first_pass):
        sale = _sale(repository, "POL-1")

        with pytest.raises(LqsError):
            await pipeline.reset_skipped_sale(AGENCY_ID, sale.id)

    @pytest.mark.asyncio
    async def test_reset_unknown_sale(self, pipeline):
        with pytest.raises(NotFoundError):
            await pipeline.reset_skipped_sale(AGENCY_ID, "missing")


@pytest.mark.integration
class TestDecisionFailures:
    """Tests that one failing decision does not block the others."""

    @pytest.mark.asyncio
    async def test_unknown_household_is_isolated(
        self, pipeline, repository, sales_context, first_pass
    ):
        first, second = first_pass.pending_reviews
        decisions = [
            ReviewDecision(
                item_index=0,
                sale_id=first.sale.id,
                action=ReviewAction.MATCH,
                household_id="no-such-household",
            ),
            ReviewDecision(item_index=1, sale_id=second.sale.id, action=ReviewAction.SKIP),
        ]

        result = await pipeline.apply_review_decisions(decisions, sales_context)

        assert result.success is False
        assert result.decisions_applied == 1
        assert result.sales_skipped == 1
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Item 0")
        assert _sale(repository, "POL-1").match_status == SaleMatchStatus.PENDING_REVIEW
        assert len(repository.audit_log) == 1

    @pytest.mark.asyncio
    async def test_already_decided_sale_is_rejected(
        self, pipeline, repository, sales_context, first_pass
    ):
        item = first_pass.pending_reviews[1]
        decision = ReviewDecision(
            item_index=1, sale_id=item.sale.id, action=ReviewAction.CREATE_NEW
        )

        await pipeline.apply_review_decisions([decision], sales_context)
        again = await pipeline.apply_review_decisions([decision], sales_context)

        assert again.decisions_applied == 0
        assert "created_new" in again.errors[0]
        assert len(repository.households(AGENCY_ID)) == 3


@pytest.mark.integration
class TestChosenCandidateScore:
    """The recorded score belongs to the household the reviewer picked."""

    @pytest.mark.asyncio
    async def test_runner_up_choice_records_its_own_score(
        self, pipeline, repository, quotes_context, sales_context
    ):
        await pipeline.reconcile(
            [
                # Product and date: 50
                make_quote_row(sub_producer_code=None, premium_cents=200000),
                # Product only, quoted after the sale: 40
                make_quote_row(
                    first_name="John",
                    sub_producer_code=None,
                    premium_cents=300000,
                    quote_date=date(2024, 3, 1),
                ),
            ],
            quotes_context,
        )
        first = await pipeline.reconcile([make_sale_row(first_name="J")], sales_context)

        [review] = first.pending_reviews
        assert [c.score for c in review.candidates] == [50, 40]
        assert review.sale.match_score == 50

        john = _household_by_name(repository, "John")
        queue = ReviewQueue(first.pending_reviews)
        queue.select_candidate(0, john.id)
        await pipeline.apply_review_decisions(queue.complete(), sales_context)

        sale = _sale(repository, "POL-1")
        assert sale.household_id == john.id
        assert sale.match_score == 40
        assert [e.score for e in repository.audit_log] == [40]
