"""Brand-level escrow accounting.

Vault cash is derived from Transaction rows, locked funds from campaign
escrow balances, and the per-entry running balance from the EscrowLedger.
Writes go through ``collabvault.services.capital`` inside ``atomic`` so
ownership and balance checks happen in the same transaction as the writes.
"""

from __future__ import annotations

import logging
import math
import uuid
from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session, selectinload

from collabvault.db import atomic
from collabvault.errors import AlreadyReleased, InsufficientEscrow, InsufficientFunds, InvalidAmount, NotFound
from collabvault.models import (
    Campaign,
    CampaignStatus,
    EscrowLedger,
    LedgerEntryType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from collabvault.services import capital, milestones
from collabvault.services.fees import compute_allocation_total, quantize_money
from collabvault.settings import settings

logger = logging.getLogger(__name__)

HISTORY_DAYS = 7
HEALTHY_SENTINEL_RATIO = 99.0

LIQUIDITY_HEALTHY = "healthy"
LIQUIDITY_WATCH = "watch"
LIQUIDITY_RISK = "risk"

ZERO = Decimal("0.00")


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _ledger_delta(entry_type: str, amount: Decimal) -> Decimal:
    if entry_type in (LedgerEntryType.FUNDING.value, LedgerEntryType.ADJUSTMENT.value):
        return amount
    if entry_type == LedgerEntryType.RELEASE.value:
        return -amount
    return ZERO


def owned_campaign(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID, *, for_update: bool = False
) -> Campaign:
    """Return the campaign if ``brand_id`` owns it; any mismatch reads as not found."""
    if for_update:
        campaign = capital.lock_campaign(db, campaign_id)
    else:
        campaign = db.get(Campaign, campaign_id)
    if campaign is None or campaign.brand_id != brand_id:
        raise NotFound("Campaign not found", {"campaign_id": str(campaign_id)})
    return campaign


# ---------------------------------------------------------------------------
# Liquidity
# ---------------------------------------------------------------------------


def assess_liquidity(
    vault_balance: Decimal, allocated_funds: Decimal, pending_releases: Decimal
) -> dict[str, Any]:
    available = max(ZERO, quantize_money(vault_balance - allocated_funds - pending_releases))

    if pending_releases > 0:
        coverage_ratio = round(float(available / pending_releases), 2)
    elif available > 0:
        coverage_ratio = HEALTHY_SENTINEL_RATIO
    else:
        coverage_ratio = 0.0

    state = LIQUIDITY_HEALTHY
    if pending_releases > 0 and coverage_ratio < 1:
        state = LIQUIDITY_RISK
    elif pending_releases > 0 and coverage_ratio < 2:
        state = LIQUIDITY_WATCH

    return {
        "available_balance": available,
        "coverage_ratio": coverage_ratio,
        "liquidity_state": state,
        "liquidity_explanation": liquidity_explanation(state, coverage_ratio, pending_releases),
    }


def liquidity_explanation(state: str, ratio: float, pending: Decimal) -> str:
    if pending == 0:
        return "No upcoming releases scheduled."
    if state == LIQUIDITY_HEALTHY:
        return f"Available funds cover upcoming releases with a {ratio:g}x coverage buffer."
    if state == LIQUIDITY_WATCH:
        return f"Coverage ratio is {ratio:g}x. Consider adding funds to maintain healthy reserves."
    return f"Coverage ratio is {ratio:g}x. Immediate funding recommended to cover pending releases."


def compute_vault_balance(db: Session, brand_id: uuid.UUID, *, until: datetime | None = None) -> Decimal:
    """Vault-level deposits plus withdrawals (stored negative); campaign deposits excluded."""
    deposits = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
        Transaction.user_id == brand_id,
        Transaction.type == TransactionType.DEPOSIT.value,
        Transaction.status == TransactionStatus.COMPLETED.value,
        Transaction.campaign_id.is_(None),
    )
    withdrawals = select(func.coalesce(func.sum(Transaction.amount), 0)).where(
        Transaction.user_id == brand_id,
        Transaction.type == TransactionType.WITHDRAWAL.value,
        Transaction.status == TransactionStatus.COMPLETED.value,
    )
    if until is not None:
        deposits = deposits.where(Transaction.transaction_date <= until)
        withdrawals = withdrawals.where(Transaction.transaction_date <= until)

    return quantize_money(db.execute(deposits).scalar_one()) + quantize_money(
        db.execute(withdrawals).scalar_one()
    )


def compute_pending_releases(campaigns: list[Campaign]) -> Decimal:
    pending = ZERO
    for campaign in campaigns:
        if campaign.status != CampaignStatus.ACTIVE.value:
            continue
        outstanding = quantize_money(campaign.total_funded) - quantize_money(campaign.total_released)
        pending += max(ZERO, outstanding)
    return pending


def _brand_campaigns(db: Session, brand_id: uuid.UUID) -> list[Campaign]:
    return list(
        db.execute(
            select(Campaign)
            .where(Campaign.brand_id == brand_id)
            .order_by(Campaign.created_at.desc())
        )
        .scalars()
        .all()
    )


def get_overview(db: Session, brand_id: uuid.UUID) -> dict[str, Any]:
    vault_balance = compute_vault_balance(db, brand_id)
    campaigns = _brand_campaigns(db, brand_id)

    allocated = sum((quantize_money(c.escrow_balance) for c in campaigns), ZERO)
    released = sum((quantize_money(c.total_released) for c in campaigns), ZERO)
    pending = compute_pending_releases(campaigns)

    overview = {
        "total_balance": vault_balance,
        "allocated_funds": allocated,
        "released_funds": released,
        "pending_releases": pending,
    }
    overview.update(assess_liquidity(vault_balance, allocated, pending))
    overview["history"] = get_history_trend(db, brand_id, campaigns)
    return overview


def get_history_trend(
    db: Session, brand_id: uuid.UUID, campaigns: list[Campaign] | None = None
) -> dict[str, list[Decimal]]:
    """Daily snapshots for the last seven days, oldest first."""
    if campaigns is None:
        campaigns = _brand_campaigns(db, brand_id)
    active_ids = {c.id for c in campaigns if c.status == CampaignStatus.ACTIVE.value}

    entries = (
        db.execute(
            select(EscrowLedger)
            .where(
                EscrowLedger.brand_id == brand_id,
                EscrowLedger.status == TransactionStatus.COMPLETED.value,
            )
            .order_by(EscrowLedger.created_at.asc(), EscrowLedger.id.asc())
        )
        .scalars()
        .all()
    )

    history: dict[str, list[Decimal]] = {
        "total_balance": [],
        "allocated": [],
        "released": [],
        "pending": [],
        "unallocated": [],
    }
    today = datetime.now(timezone.utc).date()
    for offset in range(HISTORY_DAYS - 1, -1, -1):
        day_end = datetime.combine(today - timedelta(days=offset), time.max, tzinfo=timezone.utc)
        allocated = ZERO
        released = ZERO
        pending = ZERO
        for entry in entries:
            if _as_utc(entry.created_at) > day_end:
                break
            amount = quantize_money(entry.amount)
            delta = _ledger_delta(entry.type, amount)
            allocated += delta
            if entry.type == LedgerEntryType.RELEASE.value:
                released += amount
            if entry.campaign_id in active_ids:
                pending += delta

        vault = compute_vault_balance(db, brand_id, until=day_end)
        history["total_balance"].append(vault)
        history["allocated"].append(allocated)
        history["released"].append(released)
        history["pending"].append(max(ZERO, pending))
        history["unallocated"].append(max(ZERO, vault - allocated - max(ZERO, pending)))
    return history


def get_vault_summary(db: Session, brand_id: uuid.UUID) -> dict[str, Any]:
    overview = get_overview(db, brand_id)

    trend_percent = 0.0
    balances = overview["history"]["total_balance"]
    if len(balances) >= 2 and balances[-2] > 0:
        trend_percent = round(float((balances[-1] - balances[-2]) / balances[-2] * 100), 1)

    return {
        "total_balance": overview["total_balance"],
        "available": overview["available_balance"],
        "locked": overview["allocated_funds"],
        "pending": overview["pending_releases"],
        "trend_percent": trend_percent,
        "last_updated": datetime.now(timezone.utc),
        "coverage_ratio": overview["coverage_ratio"],
        "liquidity_state": overview["liquidity_state"],
    }


def get_escrow_campaigns(db: Session, brand_id: uuid.UUID) -> list[dict[str, Any]]:
    campaigns = (
        db.execute(
            select(Campaign)
            .where(Campaign.brand_id == brand_id)
            .options(selectinload(Campaign.collaborations))
            .order_by(Campaign.created_at.desc())
        )
        .scalars()
        .all()
    )

    rows = []
    for campaign in campaigns:
        target = quantize_money(campaign.target_budget)
        funded = quantize_money(campaign.total_funded)
        campaign_milestones = []
        for collaboration in campaign.collaborations:
            campaign_milestones.extend(
                milestones.load(collaboration.milestones_json, collaboration.agreed_price)
            )
        upcoming = sum(
            (m.amount for m in campaign_milestones if m.status == milestones.PENDING), ZERO
        )
        allocation = compute_allocation_total(target)
        rows.append(
            {
                "id": campaign.id,
                "name": campaign.title,
                "status": campaign.status,
                "target_budget": target,
                "funded_amount": funded,
                "released_amount": quantize_money(campaign.total_released),
                "escrow_balance": quantize_money(campaign.escrow_balance),
                "remaining": max(ZERO, target - funded),
                "upcoming_release_amount": quantize_money(upcoming),
                "escrow_status": campaign.escrow_status,
                "milestones": [m.to_dict() for m in campaign_milestones],
                "start_date": campaign.start_date,
                "required_allocation": allocation.total_required,
                "allocation": allocation.to_dict(),
            }
        )
    return rows


# ---------------------------------------------------------------------------
# Writes
# ---------------------------------------------------------------------------


def fund_campaign(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID, amount: Any
) -> dict[str, Any]:
    if quantize_money(amount) <= 0:
        raise InvalidAmount("Funding amount must be a positive number.")

    with atomic(db):
        owned_campaign(db, brand_id, campaign_id, for_update=True)
        entry = capital.fund_escrow(db, campaign_id, amount, brand_id)
        campaign = db.get(Campaign, campaign_id)
        result = {
            "ledger_entry_id": entry.id,
            "new_balance": quantize_money(campaign.escrow_balance),
            "new_total_funded": quantize_money(campaign.total_funded),
        }
    return result


def release_milestone(
    db: Session,
    brand_id: uuid.UUID,
    campaign_id: uuid.UUID,
    milestone_id: str | None,
    amount: Any,
) -> dict[str, Any]:
    """Release escrow for one milestone.

    The duplicate-release and balance checks run under the campaign row
    lock; the partial unique index on completed releases backs them up.
    """
    value = quantize_money(amount)
    if value <= 0:
        raise InvalidAmount("Release amount must be a positive number.")

    with atomic(db):
        campaign = owned_campaign(db, brand_id, campaign_id, for_update=True)

        if milestone_id:
            existing = db.execute(
                select(EscrowLedger.id).where(
                    EscrowLedger.campaign_id == campaign_id,
                    EscrowLedger.milestone_id == milestone_id,
                    EscrowLedger.type == LedgerEntryType.RELEASE.value,
                    EscrowLedger.status == TransactionStatus.COMPLETED.value,
                )
            ).first()
            if existing is not None:
                raise AlreadyReleased(
                    "This milestone has already been released.", {"milestone_id": milestone_id}
                )

        balance = quantize_money(campaign.escrow_balance)
        if value > balance:
            raise InsufficientEscrow(
                f"Insufficient escrow balance. Available: ${balance}, Requested: ${value}",
                {"available": str(balance), "requested": str(value)},
            )

        entry = capital.release_escrow(
            db,
            campaign_id,
            value,
            brand_id,
            milestone_id=milestone_id,
            description=f'Milestone release: ${value} from "{campaign.title}"',
        )
        result = {
            "ledger_entry_id": entry.id,
            "new_balance": quantize_money(campaign.escrow_balance),
            "new_total_released": quantize_money(campaign.total_released),
        }
    return result


def deposit_funds(
    db: Session, brand_id: uuid.UUID, amount: Any, method: str = "Wire"
) -> dict[str, Any]:
    value = quantize_money(amount)
    if value <= 0:
        raise InvalidAmount("Deposit amount must be a positive number.")
    if value > settings.MAX_VAULT_DEPOSIT:
        raise InvalidAmount(
            f"Amount exceeds maximum allowed (${settings.MAX_VAULT_DEPOSIT:,}).",
            {"max": settings.MAX_VAULT_DEPOSIT},
        )

    with atomic(db):
        transaction = Transaction(
            user_id=brand_id,
            amount=value,
            type=TransactionType.DEPOSIT.value,
            status=TransactionStatus.COMPLETED.value,
            description=f"Vault deposit: ${value} via {method}",
        )
        db.add(transaction)
        db.flush()
        transaction_id = transaction.id

    logger.info("Vault deposit: %s (brand %s, method %s)", value, brand_id, method)
    return {"transaction_id": transaction_id, "amount": value, "method": method}


def withdraw_funds(db: Session, brand_id: uuid.UUID, amount: Any) -> dict[str, Any]:
    value = quantize_money(amount)
    if value <= 0:
        raise InvalidAmount("Withdrawal amount must be a positive number.")

    with atomic(db):
        campaigns = _brand_campaigns(db, brand_id)
        liquidity = assess_liquidity(
            compute_vault_balance(db, brand_id),
            sum((quantize_money(c.escrow_balance) for c in campaigns), ZERO),
            compute_pending_releases(campaigns),
        )
        available = liquidity["available_balance"]
        if value > available:
            raise InsufficientFunds(
                f"Insufficient available balance. Available: ${available}, Requested: ${value}",
                {"available": str(available), "requested": str(value)},
            )
        transaction = Transaction(
            user_id=brand_id,
            amount=-value,
            type=TransactionType.WITHDRAWAL.value,
            status=TransactionStatus.COMPLETED.value,
            description=f"Vault withdrawal: ${value}",
        )
        db.add(transaction)
        db.flush()
        transaction_id = transaction.id

    logger.info("Vault withdrawal: %s (brand %s)", value, brand_id)
    return {"transaction_id": transaction_id, "amount": value}


# ---------------------------------------------------------------------------
# Ledger reads
# ---------------------------------------------------------------------------


def compute_running_balances(db: Session, brand_id: uuid.UUID) -> dict[uuid.UUID, Decimal]:
    """Balance after each ledger entry, replaying Completed entries oldest first."""
    entries = db.execute(
        select(EscrowLedger.id, EscrowLedger.type, EscrowLedger.amount, EscrowLedger.status)
        .where(EscrowLedger.brand_id == brand_id)
        .order_by(EscrowLedger.created_at.asc(), EscrowLedger.id.asc())
    ).all()

    balances: dict[uuid.UUID, Decimal] = {}
    running = ZERO
    for entry_id, entry_type, amount, status in entries:
        if status == TransactionStatus.COMPLETED.value:
            running += _ledger_delta(entry_type, quantize_money(amount))
        balances[entry_id] = running
    return balances


def get_transactions(
    db: Session,
    brand_id: uuid.UUID,
    page: int = 1,
    limit: int = 20,
    *,
    sort_by: str = "date",
    sort_order: str = "desc",
    search: str = "",
    type: str = "",
) -> dict[str, Any]:
    page = max(1, page)
    limit = max(1, limit)

    query = (
        select(EscrowLedger, Campaign.title)
        .join(Campaign, Campaign.id == EscrowLedger.campaign_id)
        .where(EscrowLedger.brand_id == brand_id)
    )
    if type and type != "all":
        query = query.where(EscrowLedger.type == type)
    if search and search.strip():
        pattern = f"%{search.strip()}%"
        query = query.where(
            or_(EscrowLedger.description.ilike(pattern), Campaign.title.ilike(pattern))
        )

    total = db.execute(select(func.count()).select_from(query.subquery())).scalar_one()

    sort_column = EscrowLedger.amount if sort_by == "amount" else EscrowLedger.created_at
    if sort_order == "asc":
        query = query.order_by(sort_column.asc(), EscrowLedger.id.asc())
    else:
        query = query.order_by(sort_column.desc(), EscrowLedger.id.desc())

    rows = db.execute(query.offset((page - 1) * limit).limit(limit)).all()
    balances = compute_running_balances(db, brand_id)

    return {
        "transactions": [
            {
                "id": entry.id,
                "date": entry.created_at,
                "campaign_id": entry.campaign_id,
                "campaign_name": title or "Unknown",
                "type": entry.type,
                "amount": quantize_money(entry.amount),
                "status": entry.status,
                "description": entry.description,
                "milestone_id": entry.milestone_id,
                "running_balance": balances.get(entry.id, ZERO),
            }
            for entry, title in rows
        ],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": math.ceil(total / limit) if total else 0,
        },
    }
