"""Unit tests for LQS domain models.

Run with: pytest tests/unit/test_models.py -v
"""

from datetime import date

import pytest
from pydantic import ValidationError

from lqs.models import (
    AttentionReason,
    Household,
    HouseholdStatus,
    LeadRow,
    QuoteRow,
    ReviewAction,
    ReviewDecision,
    Sale,
    SaleMatchStatus,
    SaleRow,
    parse_rows,
)


class TestHouseholdStatus:
    """Tests for the forward-only funnel status."""

    def test_advances_forward(self):
        assert HouseholdStatus.LEAD.advance(HouseholdStatus.QUOTED) == HouseholdStatus.QUOTED
        assert HouseholdStatus.QUOTED.advance(HouseholdStatus.SOLD) == HouseholdStatus.SOLD

    def test_never_moves_backward(self):
        assert HouseholdStatus.SOLD.advance(HouseholdStatus.QUOTED) == HouseholdStatus.SOLD
        assert HouseholdStatus.QUOTED.advance(HouseholdStatus.LEAD) == HouseholdStatus.QUOTED

    def test_accepts_string_target(self):
        assert HouseholdStatus.LEAD.advance("sold") == HouseholdStatus.SOLD


class TestSaleMatchStatus:
    def test_linked_states(self):
        linked = {s for s in SaleMatchStatus if s.is_linked}
        assert linked == {
            SaleMatchStatus.AUTO_MATCHED,
            SaleMatchStatus.MATCHED,
            SaleMatchStatus.CREATED_NEW,
        }


class TestSaleNaturalKey:
    """Tests for the sale uniqueness key."""

    def test_policy_number_is_the_key(self):
        sale = Sale(
            agency_id="a",
            product_type="Standard Auto",
            sale_date=date(2024, 2, 1),
            policy_number="POL-1",
        )
        assert sale.natural_key == "POL-1"

    def test_composite_key_without_policy_number(self):
        sale = Sale(
            agency_id="a",
            first_name="Jane",
            last_name="Doe",
            zip_code="10001-4321",
            product_type="Standard Auto",
            sale_date=date(2024, 2, 1),
        )
        assert sale.natural_key == "DOE|JANE|10001|2024-02-01|Standard Auto"


class TestNormalizedRows:
    """Tests for row validation and normalization."""

    def test_product_is_canonical(self):
        row = QuoteRow(product_type="HO", quote_date=date(2024, 1, 1))
        assert row.product_type == "Homeowners"

    def test_sub_producer_raw_is_split(self):
        row = SaleRow(
            product_type="auto",
            sale_date=date(2024, 1, 1),
            sub_producer_raw="723-ANTHONY MCDERMOTT",
        )
        assert row.sub_producer_code == "723"
        assert row.sub_producer_name == "ANTHONY MCDERMOTT"
        assert row.producer_label == "723-ANTHONY MCDERMOTT"

    def test_producer_label_from_parts(self):
        row = QuoteRow(
            product_type="auto",
            quote_date=date(2024, 1, 1),
            sub_producer_code="ZZ9",
            sub_producer_name="Nobody",
        )
        assert row.producer_label == "ZZ9-Nobody"

    def test_none_names_become_empty(self):
        row = QuoteRow(first_name=None, last_name=None, product_type="auto", quote_date=date(2024, 1, 1))
        assert row.first_name == ""
        assert row.household_key == "||"

    def test_negative_premium_rejected(self):
        with pytest.raises(ValidationError):
            QuoteRow(product_type="auto", quote_date=date(2024, 1, 1), premium_cents=-5)

    def test_natural_id_falls_back_to_row_number(self):
        row = QuoteRow(row_number=7, product_type="auto", quote_date=date(2024, 1, 1))
        assert row.natural_id == "row 7"

    def test_parse_rows_discriminates_and_numbers(self):
        rows = parse_rows(
            [
                {"row_type": "quote", "product_type": "auto", "quote_date": "2024-01-10"},
                {
                    "row_type": "sale",
                    "product_type": "auto",
                    "sale_date": "2024-02-01",
                    "policy_number": "POL-9",
                },
            ]
        )

        assert isinstance(rows[0], QuoteRow)
        assert isinstance(rows[1], SaleRow)
        assert [r.row_number for r in rows] == [1, 2]
        assert rows[1].natural_id == "POL-9"

    def test_parse_rows_rejects_unknown_row_type(self):
        with pytest.raises(ValidationError):
            parse_rows([{"row_type": "renewal", "product_type": "auto"}])


class TestLeadRow:
    def test_phone_string_becomes_list(self):
        row = LeadRow(first_name="Jane", phones="212-555-0100")
        assert row.phones == ["212-555-0100"]

    def test_no_product_needed(self):
        [row] = parse_rows([{"row_type": "lead", "first_name": "Jane", "zip_code": "10001"}])
        assert isinstance(row, LeadRow)
        assert row.household_key == "|JANE|10001"
        assert row.lead_source_id is None
        assert row.natural_id == "row 1"


class TestHouseholdLeadSource:
    """Tests for lead source attribution and contact merging."""

    @pytest.fixture
    def household(self):
        return Household(
            agency_id="agency-1",
            household_key="DOE|JANE|10001",
            needs_attention=True,
            attention_reason=AttentionReason.NO_LEAD_SOURCE,
        )

    def test_first_source_claims_and_clears_flag(self, household):
        assert household.claim_lead_source("ls-web") is True
        assert household.lead_source_id == "ls-web"
        assert household.needs_attention is False
        assert household.attention_reason is None

    def test_same_source_is_unchanged(self, household):
        household.claim_lead_source("ls-web")
        assert household.claim_lead_source("ls-web") is False

    def test_other_source_is_conflict(self, household):
        household.claim_lead_source("ls-web")

        assert household.claim_lead_source("ls-referral") is True
        assert household.lead_source_id == "ls-web"
        assert household.conflicting_lead_source_id == "ls-referral"
        assert household.needs_attention is True
        assert household.attention_reason == AttentionReason.SOURCE_CONFLICT

    def test_merge_contact_fills_gaps_only(self, household):
        household.email = "jane@example.com"

        changed = household.merge_contact(
            phones=["212-555-0100"], email="other@example.com", products_interested="Auto"
        )

        assert changed is True
        assert household.phones == ["212-555-0100"]
        assert household.email == "jane@example.com"
        assert household.products_interested == "Auto"

    def test_merge_contact_without_news(self, household):
        household.phones = ["(212) 555-0100"]
        assert household.merge_contact(phones=["2125550100"]) is False


class TestReviewDecision:
    """Tests for the decision payload invariants."""

    def test_match_requires_household(self):
        with pytest.raises(ValidationError):
            ReviewDecision(item_index=0, sale_id="s-1", action=ReviewAction.MATCH)

    def test_skip_rejects_household(self):
        with pytest.raises(ValidationError):
            ReviewDecision(
                item_index=0, sale_id="s-1", action=ReviewAction.SKIP, household_id="h-1"
            )

    def test_valid_create_new(self):
        decision = ReviewDecision(item_index=2, sale_id="s-1", action="create_new")
        assert decision.action == ReviewAction.CREATE_NEW
        assert decision.household_id is None
