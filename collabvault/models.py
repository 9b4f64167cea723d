import enum
import uuid
from datetime import date, datetime, timezone
from decimal import Decimal

from sqlalchemy import (
    JSON,
    BigInteger,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    Text,
    UniqueConstraint,
    Uuid,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship
from sqlalchemy.sql import func

from collabvault.db import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Status vocabularies (stored as Text)
# ---------------------------------------------------------------------------


class CampaignStatus(str, enum.Enum):
    DRAFT = "Draft"
    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"


class EscrowStatus(str, enum.Enum):
    UNFUNDED = "Unfunded"
    LOCKED = "Locked"


class TransactionType(str, enum.Enum):
    DEPOSIT = "Deposit"
    PAYMENT = "Payment"
    WITHDRAWAL = "Withdrawal"


class TransactionStatus(str, enum.Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class LedgerEntryType(str, enum.Enum):
    FUNDING = "Funding"
    RELEASE = "Release"
    ADJUSTMENT = "Adjustment"


class AttributionEventType(str, enum.Enum):
    CLICK = "Click"
    PAGE_VIEW = "PageView"
    PURCHASE = "Purchase"


class LiftTestType(str, enum.Enum):
    GEOGRAPHIC = "Geographic"
    RANDOM_SPLIT = "RandomSplit"
    TIME_BASED = "TimeBased"


class LiftTestStatus(str, enum.Enum):
    DRAFT = "Draft"
    RUNNING = "Running"
    PAUSED = "Paused"
    COMPLETED = "Completed"


class GroupType(str, enum.Enum):
    TEST = "Test"
    CONTROL = "Control"


class IntegrationType(str, enum.Enum):
    GA4 = "GA4"
    META_CAPI = "MetaCAPI"


class IntegrationStatus(str, enum.Enum):
    CONNECTED = "Connected"
    DISCONNECTED = "Disconnected"


# ---------------------------------------------------------------------------
# Ledger store
# ---------------------------------------------------------------------------


class BrandProfile(Base):
    __tablename__ = "brand_profiles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False, unique=True)
    company_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    website_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Campaign(Base):
    __tablename__ = "campaigns"
    __table_args__ = (
        Index("ix_campaigns_brand_status", "brand_id", "status"),
        CheckConstraint("escrow_balance >= 0", name="ck_campaigns_escrow_balance_nonneg"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    title: Mapped[str] = mapped_column(Text, nullable=False)
    objective: Mapped[str] = mapped_column(Text, nullable=False, default="conversions")
    payment_model: Mapped[str] = mapped_column(Text, nullable=False, default="cpa")
    target_budget: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    target_roas: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    escrow_percentage: Mapped[Decimal] = mapped_column(Numeric(5, 2), nullable=False, default=0)
    risk_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=CampaignStatus.ACTIVE.value)
    escrow_status: Mapped[str] = mapped_column(
        Text, nullable=False, default=EscrowStatus.UNFUNDED.value
    )
    escrow_balance: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_funded: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    total_released: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    escrow_funded_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    base_tracking_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    attribution_window: Mapped[int] = mapped_column(Integer, nullable=False, default=14)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    escrow: Mapped["CampaignEscrow | None"] = relationship(back_populates="campaign")
    collaborations: Mapped[list["CampaignCollaboration"]] = relationship(
        back_populates="campaign", order_by="CampaignCollaboration.created_at"
    )
    events: Mapped[list["CampaignEvent"]] = relationship(back_populates="campaign")
    lift_tests: Mapped[list["LiftTest"]] = relationship(back_populates="campaign")


class CampaignEscrow(Base):
    __tablename__ = "campaign_escrows"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False, unique=True
    )
    locked_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    released_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    remaining_amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    campaign: Mapped[Campaign] = relationship(back_populates="escrow")


class Transaction(Base):
    __tablename__ = "transactions"
    __table_args__ = (
        Index("ix_transactions_user_type_status", "user_id", "type", "status"),
        Index("ix_transactions_campaign", "campaign_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID | None] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=True
    )
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    platform_fee: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    processing_fee: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    net_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    gateway_reference_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    checkout_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    gateway_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    received_amount: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    received_currency: Mapped[str | None] = mapped_column(Text, nullable=True)
    metadata_json: Mapped[dict | None] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=True
    )
    processed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    transaction_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign | None] = relationship()


class EscrowLedger(Base):
    __tablename__ = "escrow_ledger"
    __table_args__ = (
        Index("ix_escrow_ledger_brand_created", "brand_id", "created_at"),
        Index(
            "uq_escrow_ledger_completed_release",
            "campaign_id",
            "milestone_id",
            unique=True,
            postgresql_where=text("type = 'Release' AND status = 'Completed'"),
            sqlite_where=text("type = 'Release' AND status = 'Completed'"),
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    milestone_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign] = relationship()


class CampaignEvent(Base):
    __tablename__ = "campaign_events"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    type: Mapped[str] = mapped_column(Text, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_by: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    metadata_json: Mapped[dict] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=False, default=dict
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="events")


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------


class CampaignCollaboration(Base):
    __tablename__ = "campaign_collaborations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    creator_handle: Mapped[str | None] = mapped_column(Text, nullable=True)
    agreed_price: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    milestones_json: Mapped[dict | list | None] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=True
    )
    status: Mapped[str] = mapped_column(Text, nullable=False, default="Active")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="collaborations")
    tracking_bundle: Mapped["TrackingBundle | None"] = relationship(back_populates="collaboration")


class TrackingBundle(Base):
    __tablename__ = "tracking_bundles"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    collaboration_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaign_collaborations.id"), nullable=False, unique=True
    )
    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    utm_source: Mapped[str] = mapped_column(Text, nullable=False)
    utm_medium: Mapped[str] = mapped_column(Text, nullable=False)
    utm_campaign: Mapped[str] = mapped_column(Text, nullable=False)
    utm_content: Mapped[str] = mapped_column(Text, nullable=False)
    affiliate_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    short_link_code: Mapped[str] = mapped_column(Text, nullable=False, unique=True)
    coupon_code: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    server_token: Mapped[str] = mapped_column(Text, nullable=False)
    tracking_url: Mapped[str] = mapped_column(Text, nullable=False)
    short_link_url: Mapped[str] = mapped_column(Text, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign] = relationship()
    collaboration: Mapped[CampaignCollaboration] = relationship(back_populates="tracking_bundle")


class AttributionEvent(Base):
    __tablename__ = "attribution_events"
    __table_args__ = (
        Index(
            "ix_attribution_events_bundle_type_ts",
            "tracking_bundle_id",
            "event_type",
            "event_timestamp",
        ),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    tracking_bundle_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("tracking_bundles.id"), nullable=False
    )
    event_type: Mapped[str] = mapped_column(Text, nullable=False)
    event_source: Mapped[str] = mapped_column(Text, nullable=False)
    event_timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    order_value: Mapped[Decimal | None] = mapped_column(Numeric(14, 2), nullable=True)
    order_id: Mapped[str | None] = mapped_column(Text, nullable=True, unique=True)
    user_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    session_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    ip_country: Mapped[str | None] = mapped_column(Text, nullable=True)
    device_type: Mapped[str | None] = mapped_column(Text, nullable=True)
    referrer_url: Mapped[str | None] = mapped_column(Text, nullable=True)
    raw_payload: Mapped[dict | None] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=True
    )

    tracking_bundle: Mapped[TrackingBundle] = relationship()


class AttributionResult(Base):
    __tablename__ = "attribution_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    collaboration_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaign_collaborations.id"), nullable=False, unique=True
    )
    creator_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    total_clicks: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_conversions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    total_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    creator_cost: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    conversion_rate: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    roas: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=0)
    cost_per_conversion: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    average_order_value: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    attribution_window: Mapped[int] = mapped_column(Integer, nullable=False, default=14)
    last_calculated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    collaboration: Mapped[CampaignCollaboration] = relationship()


# ---------------------------------------------------------------------------
# Lift tests
# ---------------------------------------------------------------------------


class LiftTest(Base):
    __tablename__ = "lift_tests"
    __table_args__ = (Index("ix_lift_tests_campaign_status", "campaign_id", "status"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    campaign_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("campaigns.id"), nullable=False
    )
    name: Mapped[str] = mapped_column(Text, nullable=False)
    hypothesis: Mapped[str | None] = mapped_column(Text, nullable=True)
    test_type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(Text, nullable=False, default=LiftTestStatus.DRAFT.value)
    split_method: Mapped[str] = mapped_column(Text, nullable=False, default="region")
    target_lift_pct: Mapped[Decimal | None] = mapped_column(Numeric(6, 2), nullable=True)
    baseline_start_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    baseline_end_date: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    start_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    end_date: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_significant: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    confidence_level: Mapped[int | None] = mapped_column(Integer, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    campaign: Mapped[Campaign] = relationship(back_populates="lift_tests")
    groups: Mapped[list["LiftTestGroup"]] = relationship(
        back_populates="lift_test", cascade="all, delete-orphan", order_by="LiftTestGroup.group_type"
    )
    result: Mapped["LiftTestResult | None"] = relationship(
        back_populates="lift_test", cascade="all, delete-orphan"
    )


class LiftTestGroup(Base):
    __tablename__ = "lift_test_groups"
    __table_args__ = (
        UniqueConstraint("lift_test_id", "group_type", name="uq_lift_test_groups_test_type"),
    )

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lift_test_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True), ForeignKey("lift_tests.id", ondelete="CASCADE"), nullable=False
    )
    group_type: Mapped[str] = mapped_column(Text, nullable=False)
    regions: Mapped[list | None] = mapped_column(JSONB().with_variant(JSON, "sqlite"), nullable=True)
    percentage: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    impressions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    unique_users: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    conversions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)

    lift_test: Mapped[LiftTest] = relationship(back_populates="groups")


class LiftTestResult(Base):
    __tablename__ = "lift_test_results"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    lift_test_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("lift_tests.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    test_conversions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    control_conversions: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    test_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    control_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    lift_percentage: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    absolute_lift: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    incremental_revenue: Mapped[Decimal] = mapped_column(Numeric(14, 2), nullable=False, default=0)
    p_value: Mapped[float] = mapped_column(Float, nullable=False, default=1.0)
    confidence_interval: Mapped[dict] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=False, default=dict
    )
    sample_size_test: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    sample_size_control: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    details_json: Mapped[dict] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=False, default=dict
    )
    calculated_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    lift_test: Mapped[LiftTest] = relationship(back_populates="result")


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class Integration(Base):
    __tablename__ = "integrations"
    __table_args__ = (UniqueConstraint("brand_id", "type", name="uq_integrations_brand_type"),)

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)
    brand_id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), nullable=False)
    type: Mapped[str] = mapped_column(Text, nullable=False)
    status: Mapped[str] = mapped_column(
        Text, nullable=False, default=IntegrationStatus.CONNECTED.value
    )
    config: Mapped[dict] = mapped_column(
        JSONB().with_variant(JSON, "sqlite"), nullable=False, default=dict
    )
    access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )
