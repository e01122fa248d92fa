"""Abstract repository for LQS persistence.

All storage implementations must implement this interface so the
reconciliation pipeline never depends on a particular backend.
Every read and write is async; they are the only suspension points
of a reconciliation run.
"""

from abc import ABC, abstractmethod
from datetime import date

from ..models import (
    AuditEntry,
    CandidateHousehold,
    Household,
    Quote,
    Sale,
    TeamMember,
)


class LqsRepository(ABC):
    """Storage interface consumed by the reconciliation pipeline."""

    # =========================
    # Directory
    # =========================

    @abstractmethod
    async def fetch_team_directory(self, agency_id: str) -> list[TeamMember]:
        """Fetch the agency's team members.

        Raises:
            NotFoundError: If the agency does not exist
            StorageError: If the directory cannot be read
        """
        ...

    # =========================
    # Households
    # =========================

    @abstractmethod
    async def find_household_by_key(
        self, agency_id: str, household_key: str
    ) -> Household | None:
        """Look up a household by its normalized key."""
        ...

    @abstractmethod
    async def get_household(self, household_id: str) -> Household | None:
        """Get a household by id."""
        ...

    @abstractmethod
    async def create_household(self, household: Household) -> Household:
        """Insert a new household.

        Raises:
            DuplicateKeyError: If (agency, household_key) already exists
        """
        ...

    @abstractmethod
    async def update_household(self, household: Household) -> Household:
        """Persist changes to an existing household."""
        ...

    @abstractmethod
    async def find_candidate_households(
        self,
        agency_id: str,
        zip_code: str | None = None,
        quoted_since: date | None = None,
    ) -> list[CandidateHousehold]:
        """Households with at least one active quote, with those quotes.

        Args:
            agency_id: Agency to search
            zip_code: Restrict to households in this 5-digit ZIP
            quoted_since: Restrict to households quoted on or after this date
        """
        ...

    # =========================
    # Quotes
    # =========================

    @abstractmethod
    async def upsert_quote(self, quote: Quote) -> tuple[Quote, bool]:
        """Insert or update a quote by (agency, household, quote_date, product_type).

        An existing quote is re-activated and takes the incoming report
        type. Its items, premium, policy number and producer are replaced,
        unless a sale is linked to it: then only a missing producer is
        filled in.

        Returns:
            The stored quote and True if it was created
        """
        ...

    @abstractmethod
    async def update_quote(self, quote: Quote) -> Quote:
        """Persist changes to an existing quote."""
        ...

    @abstractmethod
    async def find_quotes(
        self,
        agency_id: str,
        household_id: str,
        product_type: str | None = None,
        active_only: bool = True,
    ) -> list[Quote]:
        """Quotes of a household, optionally filtered by product."""
        ...

    # =========================
    # Sales
    # =========================

    @abstractmethod
    async def find_sale_by_natural_key(
        self, agency_id: str, natural_key: str
    ) -> Sale | None:
        """Look up a sale by policy number or composite key."""
        ...

    @abstractmethod
    async def get_sale(self, sale_id: str) -> Sale | None:
        """Get a sale by id."""
        ...

    @abstractmethod
    async def create_sale(self, sale: Sale) -> Sale:
        """Insert a new sale.

        Raises:
            DuplicateKeyError: If (agency, natural_key) already exists
        """
        ...

    @abstractmethod
    async def update_sale(self, sale: Sale) -> Sale:
        """Persist changes to an existing sale."""
        ...

    # =========================
    # Supersession and audit
    # =========================

    @abstractmethod
    async def deactivate_report_type(self, agency_id: str, report_type: str) -> int:
        """Soft-deactivate every active quote and sale of a report type.

        Returns:
            Number of records deactivated
        """
        ...

    @abstractmethod
    async def record_audit(self, entry: AuditEntry) -> None:
        """Append a finalized review decision to the audit log."""
        ...
