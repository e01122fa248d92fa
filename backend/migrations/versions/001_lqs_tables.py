"""LQS reconciliation schema

Revision ID: 001_lqs_tables
Revises:
Create Date: 2026-10-19

Creates the reconciliation tables:
- agencies / team_members: Agency directory read at the start of a run
- households: One prospect per (agency, household_key), attributed to a lead source
- quotes: Unique per (agency, household, quote_date, product_type)
- sales: Unique per (agency, natural_key)
- sale_match_audit: Finalized review decisions
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers
revision: str = "001_lqs_tables"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    ]


def upgrade() -> None:
    op.execute('CREATE EXTENSION IF NOT EXISTS "uuid-ossp"')

    # =========================
    # Agency directory
    # =========================
    op.create_table(
        "agencies",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column("name", sa.Text, nullable=False),
        *_timestamps(),
    )

    op.create_table(
        "team_members",
        sa.Column("id", sa.String(64), primary_key=True),
        sa.Column(
            "agency_id",
            sa.String(64),
            sa.ForeignKey("agencies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("name", sa.Text, nullable=False),
        sa.Column("sub_producer_code", sa.String(50), nullable=True),
        *_timestamps(),
    )
    op.create_index("idx_team_members_agency", "team_members", ["agency_id"])

    # =========================
    # Households
    # =========================
    op.create_table(
        "households",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("uuid_generate_v4()"),
        ),
        sa.Column(
            "agency_id",
            sa.String(64),
            sa.ForeignKey("agencies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("household_key", sa.Text, nullable=False),
        sa.Column("first_name", sa.Text, nullable=False, server_default=""),
        sa.Column("last_name", sa.Text, nullable=False, server_default=""),
        sa.Column("zip_code", sa.String(5), nullable=True),
        sa.Column("lead_received_date", sa.Date, nullable=True),
        sa.Column("sold_date", sa.Date, nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="lead"),
        sa.Column(
            "team_member_id",
            sa.String(64),
            sa.ForeignKey("team_members.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("lead_source_id", sa.String(64), nullable=True),
        sa.Column("conflicting_lead_source_id", sa.String(64), nullable=True),
        sa.Column("needs_attention", sa.Boolean, nullable=False, server_default="false"),
        sa.Column("attention_reason", sa.String(32), nullable=True),
        sa.Column(
            "phones",
            postgresql.ARRAY(sa.Text),
            nullable=False,
            server_default=sa.text("'{}'"),
        ),
        sa.Column("email", sa.Text, nullable=True),
        sa.Column("products_interested", sa.Text, nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "household_key", name="uq_households_agency_key"),
        sa.CheckConstraint(
            "status IN ('lead', 'quoted', 'sold')", name="ck_households_status"
        ),
        sa.CheckConstraint(
            "attention_reason IN ('no_lead_source', 'source_conflict')",
            name="ck_households_attention_reason",
        ),
    )
    op.create_index("idx_households_agency_zip", "households", ["agency_id", "zip_code"])
    op.create_index("idx_households_agency_status", "households", ["agency_id", "status"])
    op.create_index(
        "idx_households_needs_attention",
        "households",
        ["agency_id"],
        postgresql_where=sa.text("needs_attention"),
    )

    # =========================
    # Quotes
    # =========================
    op.create_table(
        "quotes",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("uuid_generate_v4()"),
        ),
        sa.Column(
            "agency_id",
            sa.String(64),
            sa.ForeignKey("agencies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "household_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("households.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column(
            "team_member_id",
            sa.String(64),
            sa.ForeignKey("team_members.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("quote_date", sa.Date, nullable=False),
        sa.Column("product_type", sa.String(100), nullable=False),
        sa.Column("items_quoted", sa.Integer, nullable=False, server_default="1"),
        sa.Column("premium_cents", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("issued_policy_number", sa.String(100), nullable=True),
        sa.Column("report_type", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        sa.Column("linked_sale_id", postgresql.UUID(as_uuid=True), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint(
            "agency_id",
            "household_id",
            "quote_date",
            "product_type",
            name="uq_quotes_natural_key",
        ),
    )
    op.create_index("idx_quotes_household", "quotes", ["household_id"])
    op.create_index(
        "idx_quotes_agency_report_active", "quotes", ["agency_id", "report_type", "is_active"]
    )

    # =========================
    # Sales
    # =========================
    op.create_table(
        "sales",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("uuid_generate_v4()"),
        ),
        sa.Column(
            "agency_id",
            sa.String(64),
            sa.ForeignKey("agencies.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("natural_key", sa.Text, nullable=False),
        sa.Column("first_name", sa.Text, nullable=False, server_default=""),
        sa.Column("last_name", sa.Text, nullable=False, server_default=""),
        sa.Column("zip_code", sa.String(20), nullable=True),
        sa.Column("product_type", sa.String(100), nullable=False),
        sa.Column("premium_cents", sa.BigInteger, nullable=False, server_default="0"),
        sa.Column("sale_date", sa.Date, nullable=False),
        sa.Column("items_sold", sa.Integer, nullable=False, server_default="1"),
        sa.Column("policy_number", sa.String(100), nullable=True),
        sa.Column("sub_producer_raw", sa.Text, nullable=True),
        sa.Column("sub_producer_code", sa.String(50), nullable=True),
        sa.Column("sub_producer_name", sa.Text, nullable=True),
        sa.Column(
            "team_member_id",
            sa.String(64),
            sa.ForeignKey("team_members.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "household_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("households.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column(
            "linked_quote_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("quotes.id", ondelete="SET NULL"),
            nullable=True,
        ),
        sa.Column("match_status", sa.String(20), nullable=False, server_default="unmatched"),
        sa.Column("match_score", sa.Integer, nullable=True),
        sa.Column("report_type", sa.String(50), nullable=False),
        sa.Column("is_active", sa.Boolean, nullable=False, server_default="true"),
        *_timestamps(),
        sa.UniqueConstraint("agency_id", "natural_key", name="uq_sales_natural_key"),
        sa.CheckConstraint(
            "match_status IN ('unmatched', 'auto_matched', 'pending_review', "
            "'matched', 'skipped', 'created_new')",
            name="ck_sales_match_status",
        ),
    )
    op.create_index("idx_sales_household", "sales", ["household_id"])
    op.create_index("idx_sales_agency_status", "sales", ["agency_id", "match_status"])
    op.create_index(
        "idx_sales_agency_report_active", "sales", ["agency_id", "report_type", "is_active"]
    )

    op.create_foreign_key(
        "fk_quotes_linked_sale",
        "quotes",
        "sales",
        ["linked_sale_id"],
        ["id"],
        ondelete="SET NULL",
    )

    # =========================
    # Review audit
    # =========================
    op.create_table(
        "sale_match_audit",
        sa.Column(
            "id",
            postgresql.UUID(as_uuid=True),
            primary_key=True,
            server_default=sa.text("uuid_generate_v4()"),
        ),
        sa.Column("agency_id", sa.String(64), nullable=False),
        sa.Column(
            "sale_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("sales.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("action", sa.String(20), nullable=False),
        sa.Column("household_id", postgresql.UUID(as_uuid=True), nullable=True),
        sa.Column("score", sa.Integer, nullable=True),
        sa.Column("decided_by", sa.String(100), nullable=False),
        sa.Column("details", postgresql.JSONB, nullable=False, server_default="{}"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("NOW()"),
        ),
    )
    op.create_index("idx_sale_match_audit_sale", "sale_match_audit", ["sale_id"])


def downgrade() -> None:
    op.drop_table("sale_match_audit")
    op.drop_constraint("fk_quotes_linked_sale", "quotes", type_="foreignkey")
    op.drop_table("sales")
    op.drop_table("quotes")
    op.drop_table("households")
    op.drop_table("team_members")
    op.drop_table("agencies")
