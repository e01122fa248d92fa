"""Integration tests for lead list uploads.

Tests the lead source rules:
1. A lead creates a household attributed to its source
2. A lead claims a household that quotes or sales created without a source
3. A second source claiming a household is flagged as a conflict

Run with: pytest tests/integration/test_lead_ingestion.py -v
"""

from datetime import date

import pytest

from fixtures.rows import AGENCY_ID, make_lead_row, make_quote_row, make_sale_row
from lqs.models import AttentionReason, HouseholdStatus


def _household(repository):
    [household] = repository.households(AGENCY_ID)
    return household


@pytest.mark.integration
class TestNewLeads:
    """Leads for households the agency has never seen."""

    @pytest.mark.asyncio
    async def test_lead_creates_attributed_household(self, pipeline, repository, leads_context):
        result = await pipeline.reconcile([make_lead_row()], leads_context)

        assert result.success is True
        assert result.households_created == 1
        assert result.households_needing_attention == 0

        household = _household(repository)
        assert household.household_key == "DOE|JANE|10001"
        assert household.status == HouseholdStatus.LEAD
        assert household.lead_source_id == "ls-web"
        assert household.needs_attention is False
        assert household.attention_reason is None
        assert household.lead_received_date == date(2024, 1, 2)
        assert household.phones == ["(212) 555-0100"]
        assert household.email == "jane@example.com"
        assert household.products_interested == "Auto, Home"

    @pytest.mark.asyncio
    async def test_lead_date_defaults_to_today(self, pipeline, repository, leads_context):
        await pipeline.reconcile([make_lead_row(lead_date=None)], leads_context)

        assert _household(repository).lead_received_date == date.today()

    @pytest.mark.asyncio
    async def test_row_source_overrides_upload_source(self, pipeline, repository, leads_context):
        await pipeline.reconcile([make_lead_row(lead_source_id="ls-referral")], leads_context)

        assert _household(repository).lead_source_id == "ls-referral"

    @pytest.mark.asyncio
    async def test_dict_lead_row(self, pipeline, repository, leads_context):
        rows = [
            {
                "row_type": "lead",
                "first_name": "Bob",
                "last_name": "Smith",
                "zip_code": "10002",
                "phones": "212-555-0111",
            }
        ]
        result = await pipeline.reconcile(rows, leads_context)

        assert result.records_processed == 1
        assert _household(repository).phones == ["212-555-0111"]

    @pytest.mark.asyncio
    async def test_lead_without_source_fails(self, pipeline, repository, quotes_context):
        result = await pipeline.reconcile([make_lead_row()], quotes_context)

        assert result.records_failed == 1
        [error] = result.row_errors
        assert error.error_type == "RowDataError"
        assert error.reason.startswith("lead_source_id")
        assert repository.households(AGENCY_ID) == []

    @pytest.mark.asyncio
    async def test_lead_households_are_not_sale_candidates(
        self, pipeline, repository, leads_context, sales_context
    ):
        await pipeline.reconcile([make_lead_row()], leads_context)
        result = await pipeline.reconcile([make_sale_row(first_name="Janet")], sales_context)

        [review] = result.pending_reviews
        assert review.candidates == []


@pytest.mark.integration
class TestExistingHouseholds:
    """Leads for households created by earlier uploads."""

    @pytest.mark.asyncio
    async def test_quote_household_needs_attention_until_claimed(
        self, pipeline, repository, quotes_context, leads_context
    ):
        quoted = await pipeline.reconcile([make_quote_row()], quotes_context)

        assert quoted.households_needing_attention == 1
        household = _household(repository)
        assert household.needs_attention is True
        assert household.attention_reason == AttentionReason.NO_LEAD_SOURCE

        result = await pipeline.reconcile([make_lead_row()], leads_context)

        assert result.households_created == 0
        assert result.households_updated == 1
        assert result.households_needing_attention == 0
        household = _household(repository)
        assert household.lead_source_id == "ls-web"
        assert household.needs_attention is False
        assert household.attention_reason is None
        assert household.status == HouseholdStatus.QUOTED
        assert household.lead_received_date == date(2024, 1, 10)

    @pytest.mark.asyncio
    async def test_other_source_is_a_conflict(self, pipeline, repository, leads_context):
        await pipeline.reconcile([make_lead_row()], leads_context)
        result = await pipeline.reconcile(
            [make_lead_row(lead_source_id="ls-referral")], leads_context
        )

        assert result.lead_source_conflicts == 1
        assert result.households_needing_attention == 1
        household = _household(repository)
        assert household.lead_source_id == "ls-web"
        assert household.conflicting_lead_source_id == "ls-referral"
        assert household.needs_attention is True
        assert household.attention_reason == AttentionReason.SOURCE_CONFLICT

    @pytest.mark.asyncio
    async def test_same_source_is_a_no_op(self, pipeline, repository, leads_context):
        await pipeline.reconcile([make_lead_row()], leads_context)
        before = _household(repository)

        result = await pipeline.reconcile([make_lead_row()], leads_context)

        assert result.lead_source_conflicts == 0
        assert result.households_updated == 1
        assert _household(repository) == before

    @pytest.mark.asyncio
    async def test_contact_details_merge(self, pipeline, repository, leads_context):
        await pipeline.reconcile([make_lead_row()], leads_context)
        await pipeline.reconcile(
            [
                make_lead_row(
                    phones=["212.555.0100", "212-555-0199"],
                    email="other@example.com",
                    products_interested="Umbrella",
                )
            ],
            leads_context,
        )

        household = _household(repository)
        assert household.phones == ["(212) 555-0100", "212-555-0199"]
        assert household.email == "jane@example.com"
        assert household.products_interested == "Auto, Home"

    @pytest.mark.asyncio
    async def test_conflicting_lead_still_fills_gaps(
        self, pipeline, repository, quotes_context, leads_context
    ):
        await pipeline.reconcile([make_quote_row()], quotes_context)
        await pipeline.reconcile([make_lead_row(email=None)], leads_context)
        await pipeline.reconcile(
            [make_lead_row(lead_source_id="ls-referral", email="jane@referral.com")],
            leads_context,
        )

        household = _household(repository)
        assert household.email == "jane@referral.com"
        assert household.attention_reason == AttentionReason.SOURCE_CONFLICT
