"""Escrow lock/fund/release primitives.

Every function here runs inside the caller's transaction: it flushes but
never commits or rolls back. Wrap calls in ``collabvault.db.atomic`` so the
campaign row, the escrow row, the ledger entry and the transaction record
land together or not at all.
"""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from collabvault.errors import (
    AlreadyReleased,
    DuplicateEscrow,
    InsufficientEscrow,
    InvalidAmount,
    NotFound,
)
from collabvault.models import (
    Campaign,
    CampaignEscrow,
    EscrowLedger,
    EscrowStatus,
    LedgerEntryType,
    Transaction,
    TransactionStatus,
    TransactionType,
)
from collabvault.services.fees import quantize_money

logger = logging.getLogger(__name__)


def _positive_amount(amount: Any, label: str) -> Decimal:
    value = quantize_money(amount)
    if value <= 0:
        raise InvalidAmount(f"{label} amount must be a positive number", {"amount": str(amount)})
    return value


def lock_campaign(db: Session, campaign_id: uuid.UUID) -> Campaign:
    # pending writes must reach the row before it is re-read under lock
    db.flush()
    campaign = db.execute(
        select(Campaign)
        .where(Campaign.id == campaign_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()
    if campaign is None:
        raise NotFound("Campaign not found")
    return campaign


def _lock_escrow_row(db: Session, campaign_id: uuid.UUID) -> CampaignEscrow | None:
    return db.execute(
        select(CampaignEscrow)
        .where(CampaignEscrow.campaign_id == campaign_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def _flush(db: Session, on_conflict: Exception) -> None:
    try:
        db.flush()
    except IntegrityError as exc:
        raise on_conflict from exc


def lock_escrow(
    db: Session, campaign_id: uuid.UUID, amount: Any, user_id: uuid.UUID
) -> CampaignEscrow:
    """Create the campaign's escrow account with ``amount`` locked.

    A campaign has at most one escrow account; a second lock raises
    ``DuplicateEscrow`` instead of adding to the first.
    """
    value = _positive_amount(amount, "Escrow lock")
    campaign = lock_campaign(db, campaign_id)
    if _lock_escrow_row(db, campaign_id) is not None:
        raise DuplicateEscrow("Escrow already locked for this campaign", {"campaign_id": str(campaign_id)})

    now = datetime.now(timezone.utc)
    escrow = CampaignEscrow(
        campaign_id=campaign_id,
        locked_amount=value,
        released_amount=Decimal("0"),
        remaining_amount=value,
    )
    db.add(escrow)

    campaign.escrow_balance = value
    campaign.total_funded = value
    campaign.escrow_status = EscrowStatus.LOCKED.value
    campaign.escrow_funded_at = now

    db.add(
        EscrowLedger(
            brand_id=campaign.brand_id,
            campaign_id=campaign_id,
            type=LedgerEntryType.FUNDING.value,
            amount=value,
            status=TransactionStatus.COMPLETED.value,
            description=f'Escrow locked: ${value} for "{campaign.title}"',
        )
    )
    db.add(
        Transaction(
            user_id=user_id,
            campaign_id=campaign_id,
            amount=value,
            type=TransactionType.DEPOSIT.value,
            status=TransactionStatus.COMPLETED.value,
            description=f'Escrow locked: ${value} for "{campaign.title}"',
            transaction_date=now,
        )
    )
    _flush(db, DuplicateEscrow("Escrow already locked for this campaign"))

    logger.info("Escrow locked: %s for campaign %s", value, campaign_id)
    return escrow


def fund_escrow(
    db: Session,
    campaign_id: uuid.UUID,
    amount: Any,
    user_id: uuid.UUID,
    *,
    record_transaction: bool = True,
    description: str | None = None,
) -> EscrowLedger:
    """Add ``amount`` to the campaign's escrow, creating the account on first funding.

    ``record_transaction=False`` is for callers that already own the
    transaction row for this money (gateway checkouts).
    """
    value = _positive_amount(amount, "Funding")
    campaign = lock_campaign(db, campaign_id)
    now = datetime.now(timezone.utc)
    description = description or f'Escrow funding: ${value} for "{campaign.title}"'

    entry = EscrowLedger(
        brand_id=campaign.brand_id,
        campaign_id=campaign_id,
        type=LedgerEntryType.FUNDING.value,
        amount=value,
        status=TransactionStatus.COMPLETED.value,
        description=description,
    )
    db.add(entry)

    campaign.total_funded = quantize_money(campaign.total_funded) + value
    campaign.escrow_balance = quantize_money(campaign.escrow_balance) + value
    campaign.escrow_funded_at = now
    campaign.escrow_status = EscrowStatus.LOCKED.value

    escrow = _lock_escrow_row(db, campaign_id)
    if escrow is None:
        db.add(
            CampaignEscrow(
                campaign_id=campaign_id,
                locked_amount=value,
                released_amount=Decimal("0"),
                remaining_amount=value,
            )
        )
    else:
        escrow.locked_amount = quantize_money(escrow.locked_amount) + value
        escrow.remaining_amount = quantize_money(escrow.remaining_amount) + value

    if record_transaction:
        db.add(
            Transaction(
                user_id=user_id,
                campaign_id=campaign_id,
                amount=value,
                type=TransactionType.DEPOSIT.value,
                status=TransactionStatus.COMPLETED.value,
                description=description,
                transaction_date=now,
            )
        )
    _flush(db, DuplicateEscrow("Concurrent escrow creation for this campaign"))

    logger.info("Escrow funded: %s for campaign %s (brand %s)", value, campaign_id, campaign.brand_id)
    return entry


def release_escrow(
    db: Session,
    campaign_id: uuid.UUID,
    amount: Any,
    user_id: uuid.UUID,
    *,
    milestone_id: str | None = None,
    description: str | None = None,
) -> EscrowLedger:
    """Move ``amount`` out of the campaign's escrow.

    Raises ``InsufficientEscrow`` when the escrow account is missing or
    holds less than ``amount``.
    """
    value = _positive_amount(amount, "Release")
    campaign = lock_campaign(db, campaign_id)
    escrow = _lock_escrow_row(db, campaign_id)
    if escrow is None:
        raise InsufficientEscrow("No escrow found for this campaign", {"campaign_id": str(campaign_id)})

    remaining = quantize_money(escrow.remaining_amount)
    if value > remaining:
        raise InsufficientEscrow(
            f"Insufficient escrow balance. Available: ${remaining}, Requested: ${value}",
            {"available": str(remaining), "requested": str(value)},
        )

    now = datetime.now(timezone.utc)
    description = description or f'Escrow released: ${value} from "{campaign.title}"'

    escrow.released_amount = quantize_money(escrow.released_amount) + value
    escrow.remaining_amount = remaining - value
    campaign.escrow_balance = quantize_money(campaign.escrow_balance) - value
    campaign.total_released = quantize_money(campaign.total_released) + value

    entry = EscrowLedger(
        brand_id=campaign.brand_id,
        campaign_id=campaign_id,
        milestone_id=milestone_id,
        type=LedgerEntryType.RELEASE.value,
        amount=value,
        status=TransactionStatus.COMPLETED.value,
        description=description,
    )
    db.add(entry)
    db.add(
        Transaction(
            user_id=user_id,
            campaign_id=campaign_id,
            amount=value,
            type=TransactionType.PAYMENT.value,
            status=TransactionStatus.COMPLETED.value,
            description=description,
            transaction_date=now,
        )
    )
    _flush(db, AlreadyReleased("This milestone has already been released", {"milestone_id": milestone_id}))

    logger.info(
        "Escrow released: %s from campaign %s (milestone: %s)",
        value,
        campaign_id,
        milestone_id or "N/A",
    )
    return entry
