"""create campaign and escrow ledger tables

Revision ID: 0001_ledger_tables
Revises:
Create Date: 2026-09-14
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "0001_ledger_tables"
down_revision = None
branch_labels = None
depends_on = None


def _timestamp(name: str, nullable: bool = False) -> sa.Column:
    return sa.Column(
        name,
        sa.DateTime(timezone=True),
        server_default=sa.text("now()"),
        nullable=nullable,
    )


def upgrade() -> None:
    op.create_table(
        "brand_profiles",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("brand_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("company_name", sa.Text(), nullable=True),
        sa.Column("website_url", sa.Text(), nullable=True),
        _timestamp("created_at"),
    )

    op.create_table(
        "campaigns",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("brand_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("title", sa.Text(), nullable=False),
        sa.Column("objective", sa.Text(), nullable=False, server_default="conversions"),
        sa.Column("payment_model", sa.Text(), nullable=False, server_default="cpa"),
        sa.Column("target_budget", sa.Numeric(14, 2), nullable=False),
        sa.Column("target_roas", sa.Numeric(10, 2), nullable=True),
        sa.Column("escrow_percentage", sa.Numeric(5, 2), nullable=False, server_default="0"),
        sa.Column("risk_score", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.Text(), nullable=False, server_default="Active"),
        sa.Column("escrow_status", sa.Text(), nullable=False, server_default="Unfunded"),
        sa.Column("escrow_balance", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_funded", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("total_released", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("escrow_funded_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_date", sa.Date(), nullable=True),
        sa.Column("end_date", sa.Date(), nullable=True),
        sa.Column("base_tracking_url", sa.Text(), nullable=True),
        sa.Column("attribution_window", sa.Integer(), nullable=False, server_default="14"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.CheckConstraint("escrow_balance >= 0", name="ck_campaigns_escrow_balance_nonneg"),
    )
    op.create_index("ix_campaigns_brand_status", "campaigns", ["brand_id", "status"])

    op.create_table(
        "campaign_escrows",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("locked_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("released_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("remaining_amount", sa.Numeric(14, 2), nullable=False, server_default="0"),
        _timestamp("created_at"),
        _timestamp("updated_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )

    op.create_table(
        "transactions",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("user_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=True),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("platform_fee", sa.Numeric(14, 2), nullable=True),
        sa.Column("processing_fee", sa.Numeric(14, 2), nullable=True),
        sa.Column("net_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("gateway_reference_id", sa.Text(), nullable=True, unique=True),
        sa.Column("checkout_url", sa.Text(), nullable=True),
        sa.Column("gateway_status", sa.Text(), nullable=True),
        sa.Column("received_amount", sa.Numeric(14, 2), nullable=True),
        sa.Column("received_currency", sa.Text(), nullable=True),
        sa.Column("metadata_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        _timestamp("transaction_date"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )
    op.create_index(
        "ix_transactions_user_type_status", "transactions", ["user_id", "type", "status"]
    )
    op.create_index("ix_transactions_campaign", "transactions", ["campaign_id"])

    op.create_table(
        "escrow_ledger",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("brand_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("milestone_id", sa.Text(), nullable=True),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("amount", sa.Numeric(14, 2), nullable=False),
        sa.Column("status", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )
    op.create_index("ix_escrow_ledger_brand_created", "escrow_ledger", ["brand_id", "created_at"])
    # at most one completed release per milestone
    op.create_index(
        "uq_escrow_ledger_completed_release",
        "escrow_ledger",
        ["campaign_id", "milestone_id"],
        unique=True,
        postgresql_where=sa.text("type = 'Release' AND status = 'Completed'"),
    )

    op.create_table(
        "campaign_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("type", sa.Text(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("created_by", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column(
            "metadata_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        _timestamp("created_at"),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )


def downgrade() -> None:
    op.drop_table("campaign_events")
    op.drop_index("uq_escrow_ledger_completed_release", table_name="escrow_ledger")
    op.drop_index("ix_escrow_ledger_brand_created", table_name="escrow_ledger")
    op.drop_table("escrow_ledger")
    op.drop_index("ix_transactions_campaign", table_name="transactions")
    op.drop_index("ix_transactions_user_type_status", table_name="transactions")
    op.drop_table("transactions")
    op.drop_table("campaign_escrows")
    op.drop_index("ix_campaigns_brand_status", table_name="campaigns")
    op.drop_table("campaigns")
    op.drop_table("brand_profiles")
