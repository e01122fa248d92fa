"""Unit tests for SqlRepository.

Tests SQL generation and row mapping with a mocked async session; no
database connection is made.

Run with: pytest tests/unit/test_sql_repository.py -v
"""

from contextlib import asynccontextmanager
from datetime import date, datetime
from unittest.mock import AsyncMock, MagicMock
from uuid import uuid4

import pytest
from sqlalchemy.exc import OperationalError

from lqs.exceptions import DuplicateKeyError, NotFoundError, StorageError
from lqs.models import AttentionReason, Household, HouseholdStatus, Quote, Sale, SaleMatchStatus
from lqs.storage.sql import SqlRepository

AGENCY = "agency-1"
NOW = datetime(2024, 1, 10, 12, 0)


def _row(**values):
    row = MagicMock()
    row._mapping = values
    return row


def _result(rows=None, rowcount=0):
    rows = rows or []
    result = MagicMock()
    result.fetchone.return_value = rows[0] if rows else None
    result.fetchall.return_value = rows
    result.rowcount = rowcount
    return result


def _household_row(**overrides):
    values = {
        "id": uuid4(),
        "agency_id": AGENCY,
        "household_key": "DOE|JANE|10001",
        "first_name": "Jane",
        "last_name": "Doe",
        "zip_code": "10001",
        "lead_received_date": date(2024, 1, 10),
        "sold_date": None,
        "status": "quoted",
        "team_member_id": "tm-ab",
        "lead_source_id": None,
        "conflicting_lead_source_id": None,
        "needs_attention": True,
        "attention_reason": "no_lead_source",
        "phones": [],
        "email": None,
        "products_interested": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return _row(**values)


def _quote_row(household_id, **overrides):
    values = {
        "id": uuid4(),
        "agency_id": AGENCY,
        "household_id": household_id,
        "team_member_id": None,
        "quote_date": date(2024, 1, 10),
        "product_type": "Standard Auto",
        "items_quoted": 1,
        "premium_cents": 120000,
        "issued_policy_number": None,
        "report_type": "quotes",
        "is_active": True,
        "linked_sale_id": None,
        "created_at": NOW,
        "updated_at": NOW,
    }
    values.update(overrides)
    return _row(**values)


@pytest.fixture
def session():
    session = MagicMock()
    session.execute = AsyncMock()
    return session


@pytest.fixture
def repo(session) -> SqlRepository:
    @asynccontextmanager
    async def provider():
        yield session

    return SqlRepository(session_provider=provider)


def _sql(session, call: int = -1) -> str:
    return str(session.execute.call_args_list[call].args[0])


def _params(session, call: int = -1) -> dict:
    return session.execute.call_args_list[call].args[1]


class TestHouseholdQueries:
    @pytest.mark.asyncio
    async def test_find_by_key_maps_uuid_to_str(self, repo, session):
        household_id = uuid4()
        session.execute.return_value = _result([_household_row(id=household_id)])

        household = await repo.find_household_by_key(AGENCY, "DOE|JANE|10001")

        assert household.id == str(household_id)
        assert household.status == HouseholdStatus.QUOTED
        assert _params(session) == {"agency_id": AGENCY, "household_key": "DOE|JANE|10001"}

    @pytest.mark.asyncio
    async def test_find_by_key_missing(self, repo, session):
        session.execute.return_value = _result([])
        assert await repo.find_household_by_key(AGENCY, "X||") is None

    @pytest.mark.asyncio
    async def test_create_conflict_raises_duplicate(self, repo, session):
        session.execute.return_value = _result([])
        household = Household(agency_id=AGENCY, household_key="DOE|JANE|10001")

        with pytest.raises(DuplicateKeyError):
            await repo.create_household(household)

        assert "ON CONFLICT (agency_id, household_key) DO NOTHING" in _sql(session)
        assert _params(session)["status"] == "lead"

    @pytest.mark.asyncio
    async def test_update_writes_lead_source_columns(self, repo, session):
        session.execute.return_value = _result(
            [_household_row(lead_source_id="ls-web", phones=["212-555-0100"])]
        )
        household = Household(
            agency_id=AGENCY,
            household_key="DOE|JANE|10001",
            lead_source_id="ls-web",
            conflicting_lead_source_id="ls-referral",
            needs_attention=True,
            attention_reason=AttentionReason.SOURCE_CONFLICT,
            phones=["212-555-0100"],
        )

        stored = await repo.update_household(household)

        params = _params(session)
        assert params["attention_reason"] == "source_conflict"
        assert params["conflicting_lead_source_id"] == "ls-referral"
        assert params["phones"] == ["212-555-0100"]
        assert "phones = :phones" in _sql(session)
        assert stored.lead_source_id == "ls-web"
        assert stored.attention_reason == AttentionReason.NO_LEAD_SOURCE

    @pytest.mark.asyncio
    async def test_update_missing_raises_not_found(self, repo, session):
        session.execute.return_value = _result([])
        with pytest.raises(NotFoundError):
            await repo.update_household(Household(agency_id=AGENCY, household_key="K"))


class TestQuoteQueries:
    @pytest.mark.asyncio
    async def test_upsert_reports_insert(self, repo, session):
        household_id = str(uuid4())
        row = _quote_row(household_id, inserted=True)
        session.execute.return_value = _result([row])

        quote, created = await repo.upsert_quote(
            Quote(
                agency_id=AGENCY,
                household_id=household_id,
                quote_date=date(2024, 1, 10),
                product_type="Standard Auto",
            )
        )

        assert created is True
        assert quote.household_id == household_id
        sql = _sql(session)
        assert "ON CONFLICT (agency_id, household_id, quote_date, product_type)" in sql
        assert "quotes.linked_sale_id IS NULL" in sql
        assert "is_active = TRUE" in sql

    @pytest.mark.asyncio
    async def test_find_quotes_filters(self, repo, session):
        session.execute.return_value = _result([])

        await repo.find_quotes(AGENCY, "h-1", product_type="Homeowners")

        assert "product_type = :product_type" in _sql(session)
        assert "is_active" in _sql(session)
        assert _params(session)["product_type"] == "Homeowners"


class TestCandidateQuery:
    @pytest.mark.asyncio
    async def test_groups_quotes_by_household(self, repo, session):
        first, second = uuid4(), uuid4()
        session.execute.side_effect = [
            _result([_household_row(id=first), _household_row(id=second, household_key="DOE|JOHN|10001")]),
            _result([
                _quote_row(first),
                _quote_row(first, product_type="Homeowners"),
                _quote_row(second),
            ]),
        ]

        candidates = await repo.find_candidate_households(AGENCY, zip_code="10001")

        assert [len(c.quotes) for c in candidates] == [2, 1]
        assert "h.zip_code = :zip_code" in _sql(session, 0)
        assert "quoted_since" not in _params(session, 0)

    @pytest.mark.asyncio
    async def test_recency_filter_without_zip(self, repo, session):
        session.execute.return_value = _result([])

        candidates = await repo.find_candidate_households(
            AGENCY, quoted_since=date(2024, 1, 1)
        )

        assert candidates == []
        assert "q.quote_date >= :quoted_since" in _sql(session)
        assert "zip_code" not in _params(session)
        assert session.execute.await_count == 1


class TestSaleQueries:
    @pytest.mark.asyncio
    async def test_update_sale_writes_natural_key(self, repo, session):
        sale = Sale(
            agency_id=AGENCY,
            product_type="Standard Auto",
            sale_date=date(2024, 2, 1),
            policy_number="POL-1",
            match_status=SaleMatchStatus.PENDING_REVIEW,
        )
        row_values = {**sale.model_dump(), "natural_key": "POL-1", "id": uuid4()}
        row_values["match_status"] = "pending_review"
        session.execute.return_value = _result([_row(**row_values)])

        updated = await repo.update_sale(sale)

        params = _params(session)
        assert params["natural_key"] == "POL-1"
        assert params["match_status"] == "pending_review"
        assert updated.match_status == SaleMatchStatus.PENDING_REVIEW

    @pytest.mark.asyncio
    async def test_create_sale_conflict(self, repo, session):
        session.execute.return_value = _result([])
        sale = Sale(agency_id=AGENCY, product_type="Standard Auto", sale_date=date(2024, 2, 1))

        with pytest.raises(DuplicateKeyError):
            await repo.create_sale(sale)


class TestSupersessionAndErrors:
    @pytest.mark.asyncio
    async def test_deactivate_sums_both_tables(self, repo, session):
        session.execute.side_effect = [_result(rowcount=2), _result(rowcount=3)]

        count = await repo.deactivate_report_type(AGENCY, "quotes")

        assert count == 5
        assert "UPDATE quotes" in _sql(session, 0)
        assert "UPDATE sales" in _sql(session, 1)

    @pytest.mark.asyncio
    async def test_unknown_agency(self, repo, session):
        session.execute.return_value = _result([])
        with pytest.raises(NotFoundError):
            await repo.fetch_team_directory("missing")

    @pytest.mark.asyncio
    async def test_team_directory(self, repo, session):
        session.execute.side_effect = [
            _result([_row(id=AGENCY)]),
            _result([_row(id="tm-ab", name="Alice Baker", sub_producer_code="AB1")]),
        ]

        members = await repo.fetch_team_directory(AGENCY)
        assert [m.sub_producer_code for m in members] == ["AB1"]

    @pytest.mark.asyncio
    async def test_database_errors_become_storage_errors(self, repo, session):
        session.execute.side_effect = OperationalError("SELECT 1", {}, Exception("down"))

        with pytest.raises(StorageError):
            await repo.get_sale("s-1")
