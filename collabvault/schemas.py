import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any

from pydantic import BaseModel, Field, PlainSerializer

# Money always leaves the API as a two-decimal string.
Money = Annotated[
    Decimal,
    PlainSerializer(lambda v: f"{Decimal(v):.2f}", return_type=str, when_used="json"),
]


# ---------------------------------------------------------------------------
# Campaigns
# ---------------------------------------------------------------------------


class CampaignCreate(BaseModel):
    title: str
    target_budget: Decimal
    escrow_percentage: Decimal = Decimal("0")
    payment_model: str = "cpa"
    objective: str = "conversions"
    target_roas: Decimal | None = None
    start_date: date | None = None
    end_date: date | None = None
    base_tracking_url: str | None = None
    attribution_window: int | None = Field(default=None, ge=1)


class CampaignOut(BaseModel):
    id: uuid.UUID
    brand_id: uuid.UUID
    title: str
    objective: str
    payment_model: str
    target_budget: Money
    target_roas: Money | None = None
    escrow_percentage: Decimal
    risk_score: int
    status: str
    escrow_status: str
    escrow_balance: Money
    total_funded: Money
    total_released: Money
    start_date: date | None = None
    end_date: date | None = None
    base_tracking_url: str | None = None
    attribution_window: int
    created_at: datetime

    class Config:
        from_attributes = True


class CampaignCreateResponse(BaseModel):
    campaign: CampaignOut
    escrow_locked: bool
    initial_lock: Money
    risk_score: int
    risk_level: str


class CampaignStatusUpdate(BaseModel):
    status: str


class CollaborationCreate(BaseModel):
    creator_id: uuid.UUID
    creator_handle: str | None = None
    agreed_price: Decimal | None = None
    milestones: Any = None
    status: str = "Approved"


class CollaborationOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    creator_id: uuid.UUID
    creator_handle: str | None = None
    agreed_price: Money | None = None
    milestones_json: Any = None
    status: str
    created_at: datetime

    class Config:
        from_attributes = True


class BrandProfileIn(BaseModel):
    company_name: str | None = None
    website_url: str | None = None


class BrandProfileOut(BaseModel):
    brand_id: uuid.UUID
    company_name: str | None = None
    website_url: str | None = None

    class Config:
        from_attributes = True


# ---------------------------------------------------------------------------
# Escrow and vault
# ---------------------------------------------------------------------------


class HistoryTrend(BaseModel):
    total_balance: list[Money]
    allocated: list[Money]
    released: list[Money]
    pending: list[Money]
    unallocated: list[Money]


class EscrowOverview(BaseModel):
    total_balance: Money
    allocated_funds: Money
    released_funds: Money
    pending_releases: Money
    available_balance: Money
    coverage_ratio: float
    liquidity_state: str
    liquidity_explanation: str
    history: HistoryTrend


class VaultSummary(BaseModel):
    total_balance: Money
    available: Money
    locked: Money
    pending: Money
    trend_percent: float
    last_updated: datetime
    coverage_ratio: float
    liquidity_state: str


class MilestoneOut(BaseModel):
    name: str
    status: str
    amount: Money
    date: str | None = None


class AllocationOut(BaseModel):
    target_budget: Money
    platform_fee_percent: float
    processing_fee_percent: float
    platform_fee: Money
    processing_fee: Money
    total_required: Money


class EscrowCampaign(BaseModel):
    id: uuid.UUID
    name: str
    status: str
    target_budget: Money
    funded_amount: Money
    released_amount: Money
    escrow_balance: Money
    remaining: Money
    upcoming_release_amount: Money
    escrow_status: str
    milestones: list[MilestoneOut]
    start_date: date | None = None
    required_allocation: Money
    allocation: AllocationOut


class FundRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class FundResponse(BaseModel):
    ledger_entry_id: uuid.UUID
    new_balance: Money
    new_total_funded: Money


class ReleaseRequest(BaseModel):
    milestone_id: str = Field(min_length=1)
    amount: Decimal = Field(gt=0)


class ReleaseResponse(BaseModel):
    ledger_entry_id: uuid.UUID
    new_balance: Money
    new_total_released: Money


class DepositRequest(BaseModel):
    amount: Decimal = Field(gt=0)
    method: str = "Wire"


class DepositResponse(BaseModel):
    transaction_id: uuid.UUID
    amount: Money
    method: str


class WithdrawRequest(BaseModel):
    amount: Decimal = Field(gt=0)


class WithdrawResponse(BaseModel):
    transaction_id: uuid.UUID
    amount: Money


class LedgerEntryOut(BaseModel):
    id: uuid.UUID
    date: datetime
    campaign_id: uuid.UUID
    campaign_name: str
    type: str
    amount: Money
    status: str
    description: str | None = None
    milestone_id: str | None = None
    running_balance: Money


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int


class LedgerPage(BaseModel):
    transactions: list[LedgerEntryOut]
    pagination: Pagination


class SystemStatus(BaseModel):
    pending: int
    completed: int
    failed: int
    dead_lettered: int


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class FeeQuote(BaseModel):
    amount: Money
    platform_fee: Money
    processing_fee: Money
    total: Money
    platform_fee_percent: float
    processing_fee_percent: float


class PaymentInitiate(BaseModel):
    campaign_id: uuid.UUID
    amount: Decimal = Field(gt=0)
    customer_name: str | None = None
    customer_email: str | None = None
    customer_country: str = "US"


class PaymentInitiateResponse(BaseModel):
    transaction_id: uuid.UUID
    url: str
    amount: Money
    total_charge: Money
    platform_fee: Money
    processing_fee: Money


class PaymentVerifyResponse(BaseModel):
    status: str
    message: str


class TransactionOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID | None = None
    amount: Money
    type: str
    status: str
    description: str | None = None
    platform_fee: Money | None = None
    processing_fee: Money | None = None
    net_amount: Money | None = None
    gateway_reference_id: str | None = None
    gateway_status: str | None = None
    received_amount: Money | None = None
    received_currency: str | None = None
    transaction_date: datetime
    processed_at: datetime | None = None

    class Config:
        from_attributes = True


class EscrowDetails(BaseModel):
    campaign_id: uuid.UUID
    title: str
    target_budget: Money
    escrow_balance: Money
    total_funded: Money
    total_released: Money
    escrow_status: str
    locked_amount: Money
    remaining_amount: Money
    funding_progress: int
    allocation: AllocationOut


# ---------------------------------------------------------------------------
# Attribution
# ---------------------------------------------------------------------------


class TrackingBundleOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    collaboration_id: uuid.UUID
    creator_id: uuid.UUID
    utm_source: str
    utm_medium: str
    utm_campaign: str
    utm_content: str
    affiliate_code: str
    short_link_code: str
    coupon_code: str | None = None
    tracking_url: str
    short_link_url: str
    is_active: bool
    created_at: datetime

    class Config:
        from_attributes = True


class BundleGenerationResponse(BaseModel):
    created: int
    existing: int
    bundles: list[TrackingBundleOut]


class AttributionEventOut(BaseModel):
    id: uuid.UUID
    tracking_bundle_id: uuid.UUID
    event_type: str
    event_source: str
    event_timestamp: datetime
    order_value: Money | None = None
    order_id: str | None = None
    user_hash: str | None = None
    session_id: str | None = None
    ip_country: str | None = None
    device_type: str | None = None
    referrer_url: str | None = None

    class Config:
        from_attributes = True


class AttributionResultOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    collaboration_id: uuid.UUID
    creator_id: uuid.UUID
    total_clicks: int
    total_conversions: int
    total_revenue: Money
    creator_cost: Money
    conversion_rate: Decimal
    roas: Decimal
    cost_per_conversion: Money
    average_order_value: Money
    attribution_window: int
    last_calculated_at: datetime | None = None

    class Config:
        from_attributes = True


class CampaignTotals(BaseModel):
    clicks: int
    conversions: int
    revenue: Money
    cost: Money
    roas: Decimal
    conversion_rate: Decimal


class CampaignResults(BaseModel):
    results: list[AttributionResultOut]
    totals: CampaignTotals


class TimelinePoint(BaseModel):
    date: date
    conversions: int
    revenue: Money


# ---------------------------------------------------------------------------
# Event ingestion
# ---------------------------------------------------------------------------


class TrackEventRequest(BaseModel):
    event_type: str | None = None
    affiliate_code: str | None = None
    short_code: str | None = None
    coupon_code: str | None = None
    session_id: str | None = None
    page_url: str | None = None


class TrackEventResponse(BaseModel):
    success: bool = True
    event_id: uuid.UUID


class ConversionRequest(BaseModel):
    affiliate_code: str | None = None
    coupon_code: str | None = None
    order_value: Decimal | None = Field(default=None, ge=0)
    order_id: str | None = None
    currency: str | None = None
    customer_email: str | None = None
    customer_phone: str | None = None


class ConversionResponse(BaseModel):
    success: bool = True
    duplicate: bool
    event_id: uuid.UUID
    attribution: dict[str, Any] | None = None


class BundleEventsPage(BaseModel):
    events: list[AttributionEventOut]
    limit: int
    offset: int


# ---------------------------------------------------------------------------
# Lift tests
# ---------------------------------------------------------------------------


class LiftTestCreate(BaseModel):
    campaign_id: uuid.UUID
    name: str
    hypothesis: str | None = None
    test_type: str
    split_method: str | None = None
    target_lift_pct: Decimal | None = None
    test_regions: list[str] = Field(default_factory=list)
    control_regions: list[str] = Field(default_factory=list)
    test_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    control_percentage: Decimal | None = Field(default=None, ge=0, le=100)
    baseline_start_date: datetime | None = None
    baseline_end_date: datetime | None = None


class LiftTestUpdate(BaseModel):
    name: str | None = None
    hypothesis: str | None = None
    target_lift_pct: Decimal | None = None


class LiftTestGroupOut(BaseModel):
    id: uuid.UUID
    group_type: str
    regions: list[str] | None = None
    percentage: Decimal | None = None
    impressions: int
    unique_users: int
    conversions: int
    revenue: Money

    class Config:
        from_attributes = True


class LiftTestResultOut(BaseModel):
    test_conversions: int
    control_conversions: int
    test_revenue: Money
    control_revenue: Money
    lift_percentage: float
    absolute_lift: float
    incremental_revenue: Money
    p_value: float
    confidence_interval: dict[str, Any]
    sample_size_test: int
    sample_size_control: int
    details_json: dict[str, Any]
    calculated_at: datetime | None = None

    class Config:
        from_attributes = True


class LiftTestOut(BaseModel):
    id: uuid.UUID
    campaign_id: uuid.UUID
    name: str
    hypothesis: str | None = None
    test_type: str
    status: str
    split_method: str
    target_lift_pct: Decimal | None = None
    baseline_start_date: datetime | None = None
    baseline_end_date: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_significant: bool
    confidence_level: int | None = None
    created_at: datetime
    groups: list[LiftTestGroupOut] = Field(default_factory=list)
    result: LiftTestResultOut | None = None

    class Config:
        from_attributes = True


class LiftCalculation(BaseModel):
    result: LiftTestResultOut
    interpretation: dict[str, str]


class GroupMetrics(BaseModel):
    conversions: int
    revenue: Money
    sample_size: int


class LiftMetrics(BaseModel):
    percentage: float
    absolute: float
    incremental_revenue: Money


class LiftStatistics(BaseModel):
    p_value: float
    confidence_interval: dict[str, Any]
    confidence_level: int


class FormattedLiftResults(BaseModel):
    test_id: uuid.UUID
    test_name: str
    test_type: str
    status: str
    is_significant: bool
    test_group: GroupMetrics
    control_group: GroupMetrics
    lift: LiftMetrics
    statistics: LiftStatistics
    interpretation: dict[str, str]
    details: dict[str, Any]
    calculated_at: datetime | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None


class GroupEventRequest(BaseModel):
    group_id: uuid.UUID
    event_type: str
    value: Decimal = Decimal("1")


class AssignRequest(BaseModel):
    region: str | None = None
    user_id: str | None = None
    session_id: str | None = None


class AssignResponse(BaseModel):
    group_id: uuid.UUID | None = None
    group_type: str | None = None


class SampleSizeRequest(BaseModel):
    baseline_rate: float = Field(gt=0, lt=1)
    minimum_detectable_effect: float = Field(gt=0)
    power: float = 0.8
    sample_size: int | None = Field(default=None, ge=1)


class SampleSizeResponse(BaseModel):
    sample_size_per_group: int
    total_sample_size: int
    power_at_sample_size: float | None = None


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


class IntegrationIn(BaseModel):
    config: dict[str, Any] = Field(default_factory=dict)
    access_token: str | None = None


class IntegrationOut(BaseModel):
    id: uuid.UUID
    type: str
    status: str
    config: dict[str, Any]
    has_access_token: bool = False
    created_at: datetime
    updated_at: datetime

    class Config:
        from_attributes = True


class IntegrationTestResponse(BaseModel):
    success: bool
    status_code: int | None = None
    error: str | None = None
