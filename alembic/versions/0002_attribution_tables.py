"""create collaboration and attribution tables

Revision ID: 0002_attribution_tables
Revises: 0001_ledger_tables
Create Date: 2026-09-16
"""

import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

from alembic import op

revision = "0002_attribution_tables"
down_revision = "0001_ledger_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "campaign_collaborations",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("creator_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("creator_handle", sa.Text(), nullable=True),
        sa.Column("agreed_price", sa.Numeric(14, 2), nullable=True),
        sa.Column("milestones_json", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="Active"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )

    op.create_table(
        "tracking_bundles",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("collaboration_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("creator_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("utm_source", sa.Text(), nullable=False),
        sa.Column("utm_medium", sa.Text(), nullable=False),
        sa.Column("utm_campaign", sa.Text(), nullable=False),
        sa.Column("utm_content", sa.Text(), nullable=False),
        sa.Column("affiliate_code", sa.Text(), nullable=False, unique=True),
        sa.Column("short_link_code", sa.Text(), nullable=False, unique=True),
        sa.Column("coupon_code", sa.Text(), nullable=True, unique=True),
        sa.Column("server_token", sa.Text(), nullable=False),
        sa.Column("tracking_url", sa.Text(), nullable=False),
        sa.Column("short_link_url", sa.Text(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["collaboration_id"], ["campaign_collaborations.id"]),
    )

    op.create_table(
        "attribution_events",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("tracking_bundle_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("event_type", sa.Text(), nullable=False),
        sa.Column("event_source", sa.Text(), nullable=False),
        sa.Column(
            "event_timestamp",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("order_value", sa.Numeric(14, 2), nullable=True),
        sa.Column("order_id", sa.Text(), nullable=True, unique=True),
        sa.Column("user_hash", sa.Text(), nullable=True),
        sa.Column("session_id", sa.Text(), nullable=True),
        sa.Column("ip_country", sa.Text(), nullable=True),
        sa.Column("device_type", sa.Text(), nullable=True),
        sa.Column("referrer_url", sa.Text(), nullable=True),
        sa.Column("raw_payload", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.ForeignKeyConstraint(["tracking_bundle_id"], ["tracking_bundles.id"]),
    )
    op.create_index(
        "ix_attribution_events_bundle_type_ts",
        "attribution_events",
        ["tracking_bundle_id", "event_type", "event_timestamp"],
    )

    op.create_table(
        "attribution_results",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("collaboration_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("creator_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("total_clicks", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_conversions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("total_revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("creator_cost", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("conversion_rate", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("roas", sa.Numeric(10, 2), nullable=False, server_default="0"),
        sa.Column("cost_per_conversion", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("average_order_value", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("attribution_window", sa.Integer(), nullable=False, server_default="14"),
        sa.Column("last_calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
        sa.ForeignKeyConstraint(["collaboration_id"], ["campaign_collaborations.id"]),
    )


def downgrade() -> None:
    op.drop_table("attribution_results")
    op.drop_index("ix_attribution_events_bundle_type_ts", table_name="attribution_events")
    op.drop_table("attribution_events")
    op.drop_table("tracking_bundles")
    op.drop_table("campaign_collaborations")
