"""create lift test tables

Revision ID: 0003_lift_test_tables
Revises: 0002_attribution_tables
Create Date: 2026-09-21
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = "0003_lift_test_tables"
down_revision = "0002_attribution_tables"
branch_labels = None
depends_on = None


def upgrade() -> None:
    # ---- lift_tests ----
    op.create_table(
        "lift_tests",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("campaign_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("name", sa.Text(), nullable=False),
        sa.Column("hypothesis", sa.Text(), nullable=True),
        sa.Column("test_type", sa.Text(), nullable=False),
        sa.Column("status", sa.Text(), nullable=False, server_default="Draft"),
        sa.Column("split_method", sa.Text(), nullable=False, server_default="region"),
        sa.Column("target_lift_pct", sa.Numeric(6, 2), nullable=True),
        sa.Column("baseline_start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("baseline_end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("start_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("end_date", sa.DateTime(timezone=True), nullable=True),
        sa.Column("is_significant", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("confidence_level", sa.Integer(), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.ForeignKeyConstraint(["campaign_id"], ["campaigns.id"]),
    )
    op.create_index("ix_lift_tests_campaign_status", "lift_tests", ["campaign_id", "status"])

    # ---- lift_test_groups ----
    op.create_table(
        "lift_test_groups",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lift_test_id", sa.Uuid(as_uuid=True), nullable=False),
        sa.Column("group_type", sa.Text(), nullable=False),
        sa.Column("regions", postgresql.JSONB(astext_type=sa.Text()), nullable=True),
        sa.Column("percentage", sa.Numeric(5, 2), nullable=True),
        sa.Column("impressions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("unique_users", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("conversions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.ForeignKeyConstraint(["lift_test_id"], ["lift_tests.id"], ondelete="CASCADE"),
        sa.UniqueConstraint("lift_test_id", "group_type", name="uq_lift_test_groups_test_type"),
    )

    # ---- lift_test_results ----
    op.create_table(
        "lift_test_results",
        sa.Column("id", sa.Uuid(as_uuid=True), primary_key=True, nullable=False),
        sa.Column("lift_test_id", sa.Uuid(as_uuid=True), nullable=False, unique=True),
        sa.Column("test_conversions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("control_conversions", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("test_revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("control_revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("lift_percentage", sa.Float(), nullable=False, server_default="0"),
        sa.Column("absolute_lift", sa.Float(), nullable=False, server_default="0"),
        sa.Column("incremental_revenue", sa.Numeric(14, 2), nullable=False, server_default="0"),
        sa.Column("p_value", sa.Float(), nullable=False, server_default="1"),
        sa.Column(
            "confidence_interval",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("sample_size_test", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column("sample_size_control", sa.BigInteger(), nullable=False, server_default="0"),
        sa.Column(
            "details_json",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
        sa.Column("calculated_at", sa.DateTime(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(["lift_test_id"], ["lift_tests.id"], ondelete="CASCADE"),
    )


def downgrade() -> None:
    op.drop_table("lift_test_results")
    op.drop_table("lift_test_groups")
    op.drop_index("ix_lift_tests_campaign_status", table_name="lift_tests")
    op.drop_table("lift_tests")
