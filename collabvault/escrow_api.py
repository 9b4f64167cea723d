import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from collabvault.db import get_db
from collabvault.deps import get_brand_id, get_queue
from collabvault.schemas import (
    DepositRequest,
    DepositResponse,
    EscrowCampaign,
    EscrowOverview,
    FundRequest,
    FundResponse,
    LedgerPage,
    ReleaseRequest,
    ReleaseResponse,
    SystemStatus,
    VaultSummary,
    WithdrawRequest,
    WithdrawResponse,
)
from collabvault.services import escrow
from collabvault.tasks import OutboundTaskQueue

escrow_router = APIRouter(prefix="/escrow", tags=["escrow"])


@escrow_router.get("/overview", response_model=EscrowOverview)
def get_overview(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Vault balance, allocations, liquidity and the 7-day history."""
    return escrow.get_overview(db, brand_id)


@escrow_router.get("/vault", response_model=VaultSummary)
def get_vault_summary(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.get_vault_summary(db, brand_id)


@escrow_router.get("/campaigns", response_model=list[EscrowCampaign])
def get_escrow_campaigns(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.get_escrow_campaigns(db, brand_id)


@escrow_router.post("/campaigns/{campaign_id}/fund", response_model=FundResponse)
def fund_campaign(
    campaign_id: uuid.UUID,
    payload: FundRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.fund_campaign(db, brand_id, campaign_id, payload.amount)


@escrow_router.post("/campaigns/{campaign_id}/release", response_model=ReleaseResponse)
def release_milestone(
    campaign_id: uuid.UUID,
    payload: ReleaseRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.release_milestone(
        db, brand_id, campaign_id, payload.milestone_id, payload.amount
    )


@escrow_router.post("/vault/deposit", response_model=DepositResponse, status_code=201)
def deposit_funds(
    payload: DepositRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.deposit_funds(db, brand_id, payload.amount, payload.method)


@escrow_router.post("/vault/withdraw", response_model=WithdrawResponse, status_code=201)
def withdraw_funds(
    payload: WithdrawRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return escrow.withdraw_funds(db, brand_id, payload.amount)


@escrow_router.get("/transactions", response_model=LedgerPage)
def get_transactions(
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    sort_by: str = "date",
    sort_order: str = "desc",
    search: str = "",
    type: str = "",
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Paginated ledger with running balances."""
    return escrow.get_transactions(
        db,
        brand_id,
        page,
        limit,
        sort_by=sort_by,
        sort_order=sort_order,
        search=search,
        type=type,
    )


@escrow_router.get("/system-status", response_model=SystemStatus)
def system_status(queue: OutboundTaskQueue = Depends(get_queue)):
    return queue.stats()
