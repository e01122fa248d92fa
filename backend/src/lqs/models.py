"""Pydantic models for the LQS reconciliation engine.

Defines the persistent entities (households, quotes, sales), the
normalized upload rows that feed the pipeline, and the request-scoped
match and review structures.
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Literal
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

from .resolution.keys import (
    merge_phones,
    normalize_household_key,
    normalize_product_type,
    parse_sub_producer,
)


def _new_id() -> str:
    return str(uuid4())


# =============================================================================
# Enumerations
# =============================================================================


class HouseholdStatus(str, Enum):
    """Funnel stage of a household. Only ever advances."""

    LEAD = "lead"
    QUOTED = "quoted"
    SOLD = "sold"

    @property
    def rank(self) -> int:
        return _STATUS_RANK[self]

    def advance(self, target: "HouseholdStatus") -> "HouseholdStatus":
        """Return the later of the current status and ``target``."""
        target = HouseholdStatus(target)
        return target if target.rank > self.rank else self


_STATUS_RANK = {
    HouseholdStatus.LEAD: 0,
    HouseholdStatus.QUOTED: 1,
    HouseholdStatus.SOLD: 2,
}


class SaleMatchStatus(str, Enum):
    """Matching state of a sale."""

    UNMATCHED = "unmatched"
    AUTO_MATCHED = "auto_matched"
    PENDING_REVIEW = "pending_review"
    MATCHED = "matched"
    SKIPPED = "skipped"
    CREATED_NEW = "created_new"

    @property
    def is_linked(self) -> bool:
        """True once the sale points at a household."""
        return self in (
            SaleMatchStatus.AUTO_MATCHED,
            SaleMatchStatus.MATCHED,
            SaleMatchStatus.CREATED_NEW,
        )


class AttentionReason(str, Enum):
    """Why a household is flagged for follow-up."""

    NO_LEAD_SOURCE = "no_lead_source"
    SOURCE_CONFLICT = "source_conflict"


class MatchClassification(str, Enum):
    """Outcome of scoring a sale against its candidates."""

    AUTO_MATCH = "auto_match"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


class ReviewAction(str, Enum):
    """Human decision for an ambiguous sale."""

    MATCH = "match"
    SKIP = "skip"
    CREATE_NEW = "create_new"


# =============================================================================
# Directory
# =============================================================================


class TeamMember(BaseModel):
    """An agency team member that quotes and sales can be attributed to."""

    id: str
    name: str
    sub_producer_code: str | None = None


# =============================================================================
# Persistent entities
# =============================================================================


class Household(BaseModel):
    """One prospect/customer within an agency, keyed by name and ZIP."""

    id: str = Field(default_factory=_new_id)
    agency_id: str
    household_key: str
    first_name: str = ""
    last_name: str = ""
    zip_code: str | None = None
    lead_received_date: date | None = None
    sold_date: date | None = None
    status: HouseholdStatus = HouseholdStatus.LEAD
    team_member_id: str | None = None
    lead_source_id: str | None = None
    conflicting_lead_source_id: str | None = None
    needs_attention: bool = False
    attention_reason: AttentionReason | None = None
    phones: list[str] = Field(default_factory=list)
    email: str | None = None
    products_interested: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def claim_lead_source(self, lead_source_id: str) -> bool:
        """Attribute the household to a lead source.

        The first source to claim a household keeps it and clears the
        attention flag. A different source claiming it later is recorded
        as a conflict and flags the household. Returns True on change.
        """
        before = (
            self.lead_source_id,
            self.conflicting_lead_source_id,
            self.needs_attention,
            self.attention_reason,
        )
        if self.lead_source_id is None:
            self.lead_source_id = lead_source_id
            self.conflicting_lead_source_id = None
            self.needs_attention = False
            self.attention_reason = None
        elif self.lead_source_id != lead_source_id:
            self.conflicting_lead_source_id = lead_source_id
            self.needs_attention = True
            self.attention_reason = AttentionReason.SOURCE_CONFLICT
        after = (
            self.lead_source_id,
            self.conflicting_lead_source_id,
            self.needs_attention,
            self.attention_reason,
        )
        return before != after

    def merge_contact(
        self,
        phones: list[str] | None = None,
        email: str | None = None,
        products_interested: str | None = None,
    ) -> bool:
        """Fill contact details without overwriting existing values."""
        changed = False
        merged = merge_phones(self.phones, phones)
        if len(merged) > len(self.phones):
            self.phones = merged
            changed = True
        if email and not self.email:
            self.email = email
            changed = True
        if products_interested and not self.products_interested:
            self.products_interested = products_interested
            changed = True
        return changed


class Quote(BaseModel):
    """A quoted product for a household on a given date.

    Unique per (agency, household, quote date, product type).
    """

    id: str = Field(default_factory=_new_id)
    agency_id: str
    household_id: str
    team_member_id: str | None = None
    quote_date: date
    product_type: str
    items_quoted: int = 1
    premium_cents: int = 0
    issued_policy_number: str | None = None
    report_type: str = "quotes"
    is_active: bool = True
    linked_sale_id: str | None = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def natural_key(self) -> tuple[str, str, str, str]:
        return (
            self.agency_id,
            self.household_id,
            self.quote_date.isoformat(),
            self.product_type,
        )


class Sale(BaseModel):
    """A sold policy event, unlinked until matched to a household."""

    id: str = Field(default_factory=_new_id)
    agency_id: str
    first_name: str = ""
    last_name: str = ""
    zip_code: str | None = None
    product_type: str
    premium_cents: int = 0
    sale_date: date
    items_sold: int = 1
    policy_number: str | None = None
    sub_producer_raw: str | None = None
    sub_producer_code: str | None = None
    sub_producer_name: str | None = None
    team_member_id: str | None = None
    household_id: str | None = None
    linked_quote_id: str | None = None
    match_status: SaleMatchStatus = SaleMatchStatus.UNMATCHED
    match_score: int | None = None
    report_type: str = "sales"
    is_active: bool = True
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @property
    def household_key(self) -> str:
        return normalize_household_key(self.first_name, self.last_name, self.zip_code)

    @property
    def natural_key(self) -> str:
        """Policy number when known, else key + date + product."""
        if self.policy_number:
            return self.policy_number
        return f"{self.household_key}|{self.sale_date.isoformat()}|{self.product_type}"


class AuditEntry(BaseModel):
    """Audit record written when a review decision is finalized."""

    id: str = Field(default_factory=_new_id)
    agency_id: str
    sale_id: str
    action: ReviewAction
    household_id: str | None = None
    score: int | None = None
    decided_by: str = "review"
    details: dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=datetime.utcnow)


# =============================================================================
# Normalized upload rows
# =============================================================================


class _RowBase(BaseModel):
    """Fields shared by every parsed upload row."""

    row_number: int = 0
    first_name: str = ""
    last_name: str = ""
    zip_code: str | None = None
    sub_producer_raw: str | None = None
    sub_producer_code: str | None = None
    sub_producer_name: str | None = None

    @field_validator("first_name", "last_name", mode="before")
    @classmethod
    def _blank_names(cls, value: Any) -> Any:
        return "" if value is None else value

    @model_validator(mode="after")
    def _split_sub_producer(self):
        if self.sub_producer_raw and not (self.sub_producer_code or self.sub_producer_name):
            self.sub_producer_code, self.sub_producer_name = parse_sub_producer(
                self.sub_producer_raw
            )
        return self

    @property
    def household_key(self) -> str:
        return normalize_household_key(self.first_name, self.last_name, self.zip_code)

    @property
    def producer_label(self) -> str | None:
        """The raw producer text reported back when it cannot be matched."""
        if self.sub_producer_raw:
            return self.sub_producer_raw
        parts = [p for p in (self.sub_producer_code, self.sub_producer_name) if p]
        return "-".join(parts) if parts else None


class _PolicyRowBase(_RowBase):
    """Rows that carry a product and a premium."""

    product_type: str
    premium_cents: int = Field(default=0, ge=0)

    @field_validator("product_type", mode="before")
    @classmethod
    def _canonical_product(cls, value: Any) -> str:
        return normalize_product_type(value)


class LeadRow(_RowBase):
    """A prospect line from a lead vendor list.

    ``lead_source_id`` falls back to the upload's lead source when unset.
    """

    row_type: Literal["lead"] = "lead"
    lead_date: date | None = None
    lead_source_id: str | None = None
    phones: list[str] = Field(default_factory=list)
    email: str | None = None
    products_interested: str | None = None

    @field_validator("phones", mode="before")
    @classmethod
    def _phone_list(cls, value: Any) -> Any:
        if value is None:
            return []
        if isinstance(value, str):
            return [value]
        return value

    @property
    def natural_id(self) -> str:
        return f"row {self.row_number}"


class QuoteRow(_PolicyRowBase):
    """A quote line from a carrier quote report."""

    row_type: Literal["quote"] = "quote"
    quote_date: date
    items_quoted: int = Field(default=1, ge=0)
    issued_policy_number: str | None = None

    @property
    def natural_id(self) -> str:
        return self.issued_policy_number or f"row {self.row_number}"


class SaleRow(_PolicyRowBase):
    """A sold policy line from a carrier sales report."""

    row_type: Literal["sale"] = "sale"
    sale_date: date
    items_sold: int = Field(default=1, ge=0)
    policy_number: str | None = None

    @property
    def natural_id(self) -> str:
        return self.policy_number or f"row {self.row_number}"


NormalizedRow = Annotated[LeadRow | QuoteRow | SaleRow, Field(discriminator="row_type")]

ROW_ADAPTER: TypeAdapter = TypeAdapter(NormalizedRow)


def parse_rows(raw_rows: list[dict[str, Any]]) -> list[LeadRow | QuoteRow | SaleRow]:
    """Validate a list of row dicts, numbering them when they carry no row number."""
    rows = []
    for index, raw in enumerate(raw_rows, start=1):
        data = {"row_number": index, **raw}
        rows.append(ROW_ADAPTER.validate_python(data))
    return rows


# =============================================================================
# Matching (request-scoped, never persisted)
# =============================================================================


class QuoteSummary(BaseModel):
    """The quote a candidate was scored on."""

    quote_id: str
    product_type: str
    premium_cents: int
    quote_date: date
    team_member_id: str | None = None

    @classmethod
    def from_quote(cls, quote: Quote) -> "QuoteSummary":
        return cls(
            quote_id=quote.id,
            product_type=quote.product_type,
            premium_cents=quote.premium_cents,
            quote_date=quote.quote_date,
            team_member_id=quote.team_member_id,
        )


class MatchFactors(BaseModel):
    """Which scoring factors fired for a candidate."""

    product_match: bool = False
    sub_producer_match: bool = False
    premium_within_10_percent: bool = False
    quote_date_before_sale: bool = False


class MatchCandidate(BaseModel):
    """A household proposed for a sale, with its score breakdown."""

    household_id: str
    household_name: str
    zip_code: str | None = None
    score: int = 0
    factors: MatchFactors = Field(default_factory=MatchFactors)
    quote: QuoteSummary | None = None


class CandidateHousehold(BaseModel):
    """A quoted household together with its quotes, as read from storage."""

    household: Household
    quotes: list[Quote] = Field(default_factory=list)

    @property
    def latest_quote(self) -> Quote | None:
        active = [q for q in self.quotes if q.is_active]
        if not active:
            return None
        return max(active, key=lambda q: (q.quote_date, q.created_at))


class MatchOutcome(BaseModel):
    """Classification of a sale against all of its candidates."""

    classification: MatchClassification
    candidates: list[MatchCandidate] = Field(default_factory=list)

    @property
    def best(self) -> MatchCandidate | None:
        return self.candidates[0] if self.candidates else None


# =============================================================================
# Review
# =============================================================================


class PendingSaleReview(BaseModel):
    """A sale awaiting a human decision, with ranked candidates."""

    sale: Sale
    classification: MatchClassification
    candidates: list[MatchCandidate] = Field(default_factory=list)


class ReviewDecision(BaseModel):
    """One human decision for one review item."""

    item_index: int = Field(ge=0)
    sale_id: str
    action: ReviewAction
    household_id: str | None = None

    @model_validator(mode="after")
    def _household_only_for_match(self):
        if self.action == ReviewAction.MATCH and not self.household_id:
            raise ValueError("a match decision requires household_id")
        if self.action != ReviewAction.MATCH and self.household_id:
            raise ValueError(f"{self.action.value} decisions do not take a household_id")
        return self
