"""PostgreSQL repository for LQS records.

Uses raw SQL through SQLAlchemy async sessions. Natural keys are
enforced by unique constraints (see migration 001_lqs_tables); creates
use ``ON CONFLICT DO NOTHING`` and report a collision as
``DuplicateKeyError``, quote upserts use ``ON CONFLICT DO UPDATE``.
"""

import json
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import date, datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from ..db import get_db_session
from ..exceptions import DuplicateKeyError, NotFoundError, StorageError
from ..logging import get_context_logger
from ..models import (
    AuditEntry,
    CandidateHousehold,
    Household,
    HouseholdStatus,
    Quote,
    Sale,
    TeamMember,
)
from ..resolution.keys import normalize_zip
from .base import LqsRepository

logger = get_context_logger(__name__)

_HOUSEHOLD_COLUMNS = (
    "id", "agency_id", "household_key", "first_name", "last_name", "zip_code",
    "lead_received_date", "sold_date", "status", "team_member_id",
    "lead_source_id", "conflicting_lead_source_id", "needs_attention",
    "attention_reason", "phones", "email", "products_interested",
    "created_at", "updated_at",
)

_QUOTE_COLUMNS = (
    "id", "agency_id", "household_id", "team_member_id", "quote_date",
    "product_type", "items_quoted", "premium_cents", "issued_policy_number",
    "report_type", "is_active", "linked_sale_id", "created_at", "updated_at",
)

_SALE_COLUMNS = (
    "id", "agency_id", "natural_key", "first_name", "last_name", "zip_code",
    "product_type", "premium_cents", "sale_date", "items_sold", "policy_number",
    "sub_producer_raw", "sub_producer_code", "sub_producer_name",
    "team_member_id", "household_id", "linked_quote_id", "match_status",
    "match_score", "report_type", "is_active", "created_at", "updated_at",
)


def _insert_sql(table: str, columns: tuple[str, ...]) -> str:
    names = ", ".join(columns)
    values = ", ".join(f":{c}" for c in columns)
    return f"INSERT INTO {table} ({names}) VALUES ({values})"


def _update_sql(table: str, columns: tuple[str, ...]) -> str:
    assignments = ", ".join(
        f"{c} = :{c}" for c in columns if c not in ("id", "agency_id", "created_at")
    )
    return f"UPDATE {table} SET {assignments} WHERE id = :id RETURNING *"


def _row_dict(row) -> dict[str, Any]:
    """Row mapping with UUID columns turned into strings."""
    return {
        key: str(value) if isinstance(value, UUID) else value
        for key, value in row._mapping.items()
    }


def _params(model, columns: tuple[str, ...]) -> dict[str, Any]:
    data = model.model_dump(include=set(columns))
    return {
        column: data[column].value if isinstance(data[column], Enum) else data[column]
        for column in columns
        if column in data
    }


class SqlRepository(LqsRepository):
    """``LqsRepository`` backed by PostgreSQL.

    Every method runs in its own session, committed when it returns,
    so supersession is durable before the first upsert of a run.
    """

    def __init__(self, session_provider: Callable | None = None):
        """Initialize the repository.

        Args:
            session_provider: Async context manager factory yielding a
                session; defaults to ``lqs.db.get_db_session``
        """
        self._session_provider = session_provider or get_db_session

    @asynccontextmanager
    async def _session(self):
        try:
            async with self._session_provider() as db:
                yield db
        except SQLAlchemyError as e:
            raise StorageError(f"Database error: {e}") from e

    # =========================
    # Directory
    # =========================

    async def fetch_team_directory(self, agency_id: str) -> list[TeamMember]:
        async with self._session() as db:
            agency = await db.execute(
                text("SELECT id FROM agencies WHERE id = :agency_id"),
                {"agency_id": agency_id},
            )
            if agency.fetchone() is None:
                raise NotFoundError("Agency", agency_id)

            result = await db.execute(
                text("""
                    SELECT id, name, sub_producer_code
                    FROM team_members
                    WHERE agency_id = :agency_id
                    ORDER BY name
                """),
                {"agency_id": agency_id},
            )
            return [TeamMember(**_row_dict(row)) for row in result.fetchall()]

    # =========================
    # Households
    # =========================

    async def find_household_by_key(
        self, agency_id: str, household_key: str
    ) -> Household | None:
        async with self._session() as db:
            result = await db.execute(
                text("""
                    SELECT * FROM households
                    WHERE agency_id = :agency_id AND household_key = :household_key
                """),
                {"agency_id": agency_id, "household_key": household_key},
            )
            row = result.fetchone()
            return Household(**_row_dict(row)) if row else None

    async def get_household(self, household_id: str) -> Household | None:
        async with self._session() as db:
            result = await db.execute(
                text("SELECT * FROM households WHERE id = :id"),
                {"id": household_id},
            )
            row = result.fetchone()
            return Household(**_row_dict(row)) if row else None

    async def create_household(self, household: Household) -> Household:
        async with self._session() as db:
            result = await db.execute(
                text(
                    _insert_sql("households", _HOUSEHOLD_COLUMNS)
                    + " ON CONFLICT (agency_id, household_key) DO NOTHING RETURNING *"
                ),
                _params(household, _HOUSEHOLD_COLUMNS),
            )
            row = result.fetchone()
            if row is None:
                raise DuplicateKeyError("Household", household.household_key)
            return Household(**_row_dict(row))

    async def update_household(self, household: Household) -> Household:
        params = _params(household, _HOUSEHOLD_COLUMNS)
        params["updated_at"] = datetime.utcnow()
        async with self._session() as db:
            result = await db.execute(
                text(_update_sql("households", _HOUSEHOLD_COLUMNS)), params
            )
            row = result.fetchone()
            if row is None:
                raise NotFoundError("Household", household.id)
            return Household(**_row_dict(row))

    async def find_candidate_households(
        self,
        agency_id: str,
        zip_code: str | None = None,
        quoted_since: date | None = None,
    ) -> list[CandidateHousehold]:
        filters = ["h.agency_id = :agency_id", "h.status <> :lead"]
        quote_filters = ["q.household_id = h.id", "q.is_active"]
        params: dict[str, Any] = {
            "agency_id": agency_id,
            "lead": HouseholdStatus.LEAD.value,
        }

        zip_code = normalize_zip(zip_code)
        if zip_code:
            filters.append("h.zip_code = :zip_code")
            params["zip_code"] = zip_code
        if quoted_since:
            quote_filters.append("q.quote_date >= :quoted_since")
            params["quoted_since"] = quoted_since

        filters.append(f"EXISTS (SELECT 1 FROM quotes q WHERE {' AND '.join(quote_filters)})")
        where_clause = " AND ".join(filters)

        async with self._session() as db:
            result = await db.execute(
                text(f"SELECT h.* FROM households h WHERE {where_clause} ORDER BY h.id"),
                params,
            )
            households = [Household(**_row_dict(row)) for row in result.fetchall()]
            if not households:
                return []

            quote_result = await db.execute(
                text("""
                    SELECT * FROM quotes
                    WHERE household_id = ANY(:household_ids) AND is_active
                """),
                {"household_ids": [h.id for h in households]},
            )
            quotes_by_household: dict[str, list[Quote]] = defaultdict(list)
            for row in quote_result.fetchall():
                quote = Quote(**_row_dict(row))
                quotes_by_household[quote.household_id].append(quote)

        return [
            CandidateHousehold(household=h, quotes=quotes_by_household[h.id])
            for h in households
        ]

    # =========================
    # Quotes
    # =========================

    async def upsert_quote(self, quote: Quote) -> tuple[Quote, bool]:
        # A quote linked to a sale only accepts a missing producer
        query = text(
            _insert_sql("quotes", _QUOTE_COLUMNS)
            + """
            ON CONFLICT (agency_id, household_id, quote_date, product_type) DO UPDATE SET
                items_quoted = CASE WHEN quotes.linked_sale_id IS NULL
                    THEN EXCLUDED.items_quoted ELSE quotes.items_quoted END,
                premium_cents = CASE WHEN quotes.linked_sale_id IS NULL
                    THEN EXCLUDED.premium_cents ELSE quotes.premium_cents END,
                issued_policy_number = CASE WHEN quotes.linked_sale_id IS NULL
                    THEN EXCLUDED.issued_policy_number ELSE quotes.issued_policy_number END,
                team_member_id = CASE WHEN quotes.linked_sale_id IS NULL
                    THEN EXCLUDED.team_member_id
                    ELSE COALESCE(quotes.team_member_id, EXCLUDED.team_member_id) END,
                report_type = EXCLUDED.report_type,
                is_active = TRUE,
                updated_at = EXCLUDED.updated_at
            RETURNING *, (xmax = 0) AS inserted
            """
        )
        params = _params(quote, _QUOTE_COLUMNS)
        params["updated_at"] = datetime.utcnow()
        async with self._session() as db:
            result = await db.execute(query, params)
            data = _row_dict(result.fetchone())
            inserted = bool(data.pop("inserted"))
            return Quote(**data), inserted

    async def update_quote(self, quote: Quote) -> Quote:
        params = _params(quote, _QUOTE_COLUMNS)
        params["updated_at"] = datetime.utcnow()
        async with self._session() as db:
            result = await db.execute(text(_update_sql("quotes", _QUOTE_COLUMNS)), params)
            row = result.fetchone()
            if row is None:
                raise NotFoundError("Quote", quote.id)
            return Quote(**_row_dict(row))

    async def find_quotes(
        self,
        agency_id: str,
        household_id: str,
        product_type: str | None = None,
        active_only: bool = True,
    ) -> list[Quote]:
        filters = ["agency_id = :agency_id", "household_id = :household_id"]
        params: dict[str, Any] = {"agency_id": agency_id, "household_id": household_id}
        if product_type is not None:
            filters.append("product_type = :product_type")
            params["product_type"] = product_type
        if active_only:
            filters.append("is_active")

        async with self._session() as db:
            result = await db.execute(
                text(f"""
                    SELECT * FROM quotes
                    WHERE {' AND '.join(filters)}
                    ORDER BY quote_date DESC, created_at DESC
                """),
                params,
            )
            return [Quote(**_row_dict(row)) for row in result.fetchall()]

    # =========================
    # Sales
    # =========================

    def _sale_params(self, sale: Sale) -> dict[str, Any]:
        params = _params(sale, _SALE_COLUMNS)
        params["natural_key"] = sale.natural_key
        return params

    def _row_to_sale(self, row) -> Sale:
        data = _row_dict(row)
        data.pop("natural_key", None)
        return Sale(**data)

    async def find_sale_by_natural_key(
        self, agency_id: str, natural_key: str
    ) -> Sale | None:
        async with self._session() as db:
            result = await db.execute(
                text("""
                    SELECT * FROM sales
                    WHERE agency_id = :agency_id AND natural_key = :natural_key
                """),
                {"agency_id": agency_id, "natural_key": natural_key},
            )
            row = result.fetchone()
            return self._row_to_sale(row) if row else None

    async def get_sale(self, sale_id: str) -> Sale | None:
        async with self._session() as db:
            result = await db.execute(
                text("SELECT * FROM sales WHERE id = :id"), {"id": sale_id}
            )
            row = result.fetchone()
            return self._row_to_sale(row) if row else None

    async def create_sale(self, sale: Sale) -> Sale:
        async with self._session() as db:
            result = await db.execute(
                text(
                    _insert_sql("sales", _SALE_COLUMNS)
                    + " ON CONFLICT (agency_id, natural_key) DO NOTHING RETURNING *"
                ),
                self._sale_params(sale),
            )
            row = result.fetchone()
            if row is None:
                raise DuplicateKeyError("Sale", sale.natural_key)
            return self._row_to_sale(row)

    async def update_sale(self, sale: Sale) -> Sale:
        params = self._sale_params(sale)
        params["updated_at"] = datetime.utcnow()
        async with self._session() as db:
            result = await db.execute(text(_update_sql("sales", _SALE_COLUMNS)), params)
            row = result.fetchone()
            if row is None:
                raise NotFoundError("Sale", sale.id)
            return self._row_to_sale(row)

    # =========================
    # Supersession and audit
    # =========================

    async def deactivate_report_type(self, agency_id: str, report_type: str) -> int:
        params = {
            "agency_id": agency_id,
            "report_type": report_type,
            "updated_at": datetime.utcnow(),
        }
        count = 0
        async with self._session() as db:
            for table in ("quotes", "sales"):
                result = await db.execute(
                    text(f"""
                        UPDATE {table}
                        SET is_active = FALSE, updated_at = :updated_at
                        WHERE agency_id = :agency_id
                          AND report_type = :report_type
                          AND is_active
                    """),
                    params,
                )
                count += result.rowcount

        if count > 0:
            logger.info(f"Deactivated {count} {report_type} records for agency {agency_id}")
        return count

    async def record_audit(self, entry: AuditEntry) -> None:
        async with self._session() as db:
            await db.execute(
                text("""
                    INSERT INTO sale_match_audit (
                        id, agency_id, sale_id, action, household_id, score,
                        decided_by, details, created_at
                    )
                    VALUES (
                        :id, :agency_id, :sale_id, :action, :household_id, :score,
                        :decided_by, CAST(:details AS JSONB), :created_at
                    )
                """),
                {
                    "id": entry.id,
                    "agency_id": entry.agency_id,
                    "sale_id": entry.sale_id,
                    "action": entry.action.value,
                    "household_id": entry.household_id,
                    "score": entry.score,
                    "decided_by": entry.decided_by,
                    "details": json.dumps(entry.details),
                    "created_at": entry.created_at,
                },
            )
