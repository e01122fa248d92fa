"""In-memory repository.

Holds households, quotes and sales in dicts while enforcing the same
natural keys as the PostgreSQL schema. Stored objects are copied on the
way in and out so callers never alias repository state.
"""

from datetime import date, datetime

from ..exceptions import DuplicateKeyError, NotFoundError
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


class InMemoryRepository(LqsRepository):
    """Dict-backed implementation of ``LqsRepository``."""

    def __init__(self, team_members: dict[str, list[TeamMember]] | None = None):
        """Initialize the repository.

        Args:
            team_members: Team directory per agency id; agencies not
                listed here are unknown
        """
        self._team_members: dict[str, list[TeamMember]] = {
            agency_id: list(members) for agency_id, members in (team_members or {}).items()
        }
        self._households: dict[str, Household] = {}
        self._household_keys: dict[tuple[str, str], str] = {}
        self._quotes: dict[str, Quote] = {}
        self._quote_keys: dict[tuple[str, str, str, str], str] = {}
        self._sales: dict[str, Sale] = {}
        self._sale_keys: dict[tuple[str, str], str] = {}
        self.audit_log: list[AuditEntry] = []

    # =========================
    # Inspection helpers
    # =========================

    def add_agency(self, agency_id: str, members: list[TeamMember] | None = None) -> None:
        self._team_members[agency_id] = list(members or [])

    def households(self, agency_id: str) -> list[Household]:
        return [
            h.model_copy(deep=True)
            for h in self._households.values()
            if h.agency_id == agency_id
        ]

    def quotes(self, agency_id: str, active_only: bool = False) -> list[Quote]:
        return [
            q.model_copy(deep=True)
            for q in self._quotes.values()
            if q.agency_id == agency_id and (q.is_active or not active_only)
        ]

    def sales(self, agency_id: str, active_only: bool = False) -> list[Sale]:
        return [
            s.model_copy(deep=True)
            for s in self._sales.values()
            if s.agency_id == agency_id and (s.is_active or not active_only)
        ]

    # =========================
    # Directory
    # =========================

    async def fetch_team_directory(self, agency_id: str) -> list[TeamMember]:
        if agency_id not in self._team_members:
            raise NotFoundError("Agency", agency_id)
        return [m.model_copy() for m in self._team_members[agency_id]]

    # =========================
    # Households
    # =========================

    async def find_household_by_key(
        self, agency_id: str, household_key: str
    ) -> Household | None:
        household_id = self._household_keys.get((agency_id, household_key))
        if household_id is None:
            return None
        return self._households[household_id].model_copy(deep=True)

    async def get_household(self, household_id: str) -> Household | None:
        household = self._households.get(household_id)
        return household.model_copy(deep=True) if household else None

    async def create_household(self, household: Household) -> Household:
        key = (household.agency_id, household.household_key)
        if key in self._household_keys:
            raise DuplicateKeyError("Household", household.household_key)
        stored = household.model_copy(deep=True)
        self._households[stored.id] = stored
        self._household_keys[key] = stored.id
        return stored.model_copy(deep=True)

    async def update_household(self, household: Household) -> Household:
        if household.id not in self._households:
            raise NotFoundError("Household", household.id)
        stored = household.model_copy(deep=True, update={"updated_at": datetime.utcnow()})
        self._households[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_candidate_households(
        self,
        agency_id: str,
        zip_code: str | None = None,
        quoted_since: date | None = None,
    ) -> list[CandidateHousehold]:
        zip_code = normalize_zip(zip_code) or None
        candidates = []
        for household in self._households.values():
            if household.agency_id != agency_id:
                continue
            if household.status == HouseholdStatus.LEAD:
                continue
            if zip_code and normalize_zip(household.zip_code) != zip_code:
                continue

            quotes = [
                q.model_copy(deep=True)
                for q in self._quotes.values()
                if q.household_id == household.id and q.is_active
            ]
            if not quotes:
                continue
            if quoted_since and not any(q.quote_date >= quoted_since for q in quotes):
                continue

            candidates.append(
                CandidateHousehold(household=household.model_copy(deep=True), quotes=quotes)
            )
        return candidates

    # =========================
    # Quotes
    # =========================

    async def upsert_quote(self, quote: Quote) -> tuple[Quote, bool]:
        quote_id = self._quote_keys.get(quote.natural_key)
        if quote_id is None:
            stored = quote.model_copy(deep=True)
            self._quotes[stored.id] = stored
            self._quote_keys[stored.natural_key] = stored.id
            return stored.model_copy(deep=True), True

        existing = self._quotes[quote_id]
        if existing.linked_sale_id:
            update = {
                "team_member_id": existing.team_member_id or quote.team_member_id,
            }
        else:
            update = {
                "items_quoted": quote.items_quoted,
                "premium_cents": quote.premium_cents,
                "issued_policy_number": quote.issued_policy_number,
                "team_member_id": quote.team_member_id,
            }
        update.update(
            report_type=quote.report_type,
            is_active=True,
            updated_at=datetime.utcnow(),
        )
        stored = existing.model_copy(deep=True, update=update)
        self._quotes[stored.id] = stored
        return stored.model_copy(deep=True), False

    async def update_quote(self, quote: Quote) -> Quote:
        if quote.id not in self._quotes:
            raise NotFoundError("Quote", quote.id)
        stored = quote.model_copy(deep=True, update={"updated_at": datetime.utcnow()})
        self._quotes[stored.id] = stored
        return stored.model_copy(deep=True)

    async def find_quotes(
        self,
        agency_id: str,
        household_id: str,
        product_type: str | None = None,
        active_only: bool = True,
    ) -> list[Quote]:
        return [
            q.model_copy(deep=True)
            for q in self._quotes.values()
            if q.agency_id == agency_id
            and q.household_id == household_id
            and (product_type is None or q.product_type == product_type)
            and (q.is_active or not active_only)
        ]

    # =========================
    # Sales
    # =========================

    async def find_sale_by_natural_key(
        self, agency_id: str, natural_key: str
    ) -> Sale | None:
        sale_id = self._sale_keys.get((agency_id, natural_key))
        if sale_id is None:
            return None
        return self._sales[sale_id].model_copy(deep=True)

    async def get_sale(self, sale_id: str) -> Sale | None:
        sale = self._sales.get(sale_id)
        return sale.model_copy(deep=True) if sale else None

    async def create_sale(self, sale: Sale) -> Sale:
        key = (sale.agency_id, sale.natural_key)
        if key in self._sale_keys:
            raise DuplicateKeyError("Sale", sale.natural_key)
        stored = sale.model_copy(deep=True)
        self._sales[stored.id] = stored
        self._sale_keys[key] = stored.id
        return stored.model_copy(deep=True)

    async def update_sale(self, sale: Sale) -> Sale:
        if sale.id not in self._sales:
            raise NotFoundError("Sale", sale.id)
        stored = sale.model_copy(deep=True, update={"updated_at": datetime.utcnow()})
        self._sales[stored.id] = stored
        return stored.model_copy(deep=True)

    # =========================
    # Supersession and audit
    # =========================

    async def deactivate_report_type(self, agency_id: str, report_type: str) -> int:
        now = datetime.utcnow()
        count = 0
        for store in (self._quotes, self._sales):
            for record_id, record in store.items():
                if (
                    record.agency_id == agency_id
                    and record.report_type == report_type
                    and record.is_active
                ):
                    store[record_id] = record.model_copy(
                        update={"is_active": False, "updated_at": now}
                    )
                    count += 1
        return count

    async def record_audit(self, entry: AuditEntry) -> None:
        self.audit_log.append(entry.model_copy(deep=True))
