from __future__ import annotations

import logging
import uuid
from datetime import date
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from collabvault.db import atomic
from collabvault.errors import InvalidRequest, NotFound
from collabvault.models import (
    BrandProfile,
    Campaign,
    CampaignCollaboration,
    CampaignEvent,
    CampaignStatus,
)
from collabvault.services import capital, milestones, risk
from collabvault.services.escrow import owned_campaign
from collabvault.services.fees import quantize_money, to_decimal
from collabvault.settings import settings

logger = logging.getLogger(__name__)

PAYMENT_MODELS = ("cpa", "cpc", "cpm", "flat_rate", "hybrid")
OBJECTIVES = (
    "conversions",
    "brand awareness",
    "awareness",
    "traffic",
    "ugc creation",
    "growth",
    "roas",
)
COLLABORATION_STATUSES = ("Pending", "Approved", "Active", "Completed", "Cancelled")

EVENT_CREATED = "CREATED"
EVENT_STATUS_CHANGED = "STATUS_CHANGED"


def _validate_campaign(
    *,
    title: str,
    target_budget: Decimal,
    escrow_percentage: Decimal,
    payment_model: str,
    objective: str,
    start_date: date | None,
    end_date: date | None,
) -> None:
    if not title or len(title.strip()) < 3:
        raise InvalidRequest("Campaign title must be at least 3 characters")
    if target_budget <= 0:
        raise InvalidRequest("Target budget must be greater than 0", {"field": "target_budget"})
    if escrow_percentage < 0 or escrow_percentage > 100:
        raise InvalidRequest(
            "Escrow percentage must be between 0 and 100", {"field": "escrow_percentage"}
        )
    if payment_model not in PAYMENT_MODELS:
        raise InvalidRequest(
            f"Payment model must be one of: {', '.join(PAYMENT_MODELS)}",
            {"field": "payment_model"},
        )
    if objective not in OBJECTIVES:
        raise InvalidRequest(
            f"Objective must be one of: {', '.join(OBJECTIVES)}", {"field": "objective"}
        )
    if start_date and end_date and start_date >= end_date:
        raise InvalidRequest("Start date must be before end date")


def create_campaign(
    db: Session,
    brand_id: uuid.UUID,
    *,
    title: str,
    target_budget: Any,
    escrow_percentage: Any = 0,
    payment_model: str = "cpa",
    objective: str = "conversions",
    target_roas: Any = None,
    start_date: date | None = None,
    end_date: date | None = None,
    base_tracking_url: str | None = None,
    attribution_window: int | None = None,
) -> dict[str, Any]:
    """Create a campaign, lock its initial escrow and write the audit event.

    All three writes share one transaction; a failed escrow lock leaves no
    campaign behind.
    """
    budget = quantize_money(target_budget)
    escrow_pct = to_decimal(escrow_percentage)
    payment_model = (payment_model or "cpa").lower()
    objective = (objective or "conversions").strip().lower()
    _validate_campaign(
        title=title,
        target_budget=budget,
        escrow_percentage=escrow_pct,
        payment_model=payment_model,
        objective=objective,
        start_date=start_date,
        end_date=end_date,
    )

    score = risk.compute_risk(
        target_budget=budget,
        escrow_percentage=escrow_pct,
        start_date=start_date,
        end_date=end_date,
    )
    initial_lock = quantize_money(budget * escrow_pct / 100)

    with atomic(db):
        campaign = Campaign(
            brand_id=brand_id,
            title=title.strip(),
            objective=objective,
            payment_model=payment_model,
            target_budget=budget,
            target_roas=quantize_money(target_roas) if target_roas is not None else None,
            escrow_percentage=escrow_pct,
            risk_score=score,
            status=CampaignStatus.ACTIVE.value,
            start_date=start_date,
            end_date=end_date,
            base_tracking_url=base_tracking_url,
            attribution_window=attribution_window or settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS,
        )
        db.add(campaign)
        db.flush()

        escrow_locked = False
        if initial_lock > 0:
            capital.lock_escrow(db, campaign.id, initial_lock, brand_id)
            escrow_locked = True

        db.add(
            CampaignEvent(
                campaign_id=campaign.id,
                type=EVENT_CREATED,
                description=f'Campaign "{campaign.title}" created',
                created_by=brand_id,
                metadata_json={
                    "riskScore": score,
                    "initialLock": str(initial_lock),
                    "objective": objective,
                    "budget": str(budget),
                },
            )
        )
        db.flush()
        campaign_id = campaign.id

    logger.info(
        "Campaign created: %s (brand %s, risk %s, locked %s)",
        campaign_id,
        brand_id,
        score,
        initial_lock,
    )
    return {
        "campaign": db.get(Campaign, campaign_id),
        "escrow_locked": escrow_locked,
        "initial_lock": initial_lock,
        "risk_score": score,
        "risk_level": risk.risk_level(score),
    }


def list_campaigns(db: Session, brand_id: uuid.UUID, status: str | None = None) -> list[Campaign]:
    query = select(Campaign).where(Campaign.brand_id == brand_id)
    if status:
        query = query.where(Campaign.status == status)
    return list(db.execute(query.order_by(Campaign.created_at.desc())).scalars().all())


def get_campaign(db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID) -> Campaign:
    return owned_campaign(db, brand_id, campaign_id)


def update_status(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID, status: str
) -> Campaign:
    valid = [s.value for s in CampaignStatus]
    if status not in valid:
        raise InvalidRequest(f"Status must be one of: {', '.join(valid)}", {"field": "status"})

    with atomic(db):
        campaign = owned_campaign(db, brand_id, campaign_id, for_update=True)
        previous = campaign.status
        campaign.status = status
        db.add(
            CampaignEvent(
                campaign_id=campaign.id,
                type=EVENT_STATUS_CHANGED,
                description=f"Status changed from {previous} to {status}",
                created_by=brand_id,
                metadata_json={"from": previous, "to": status},
            )
        )
    db.refresh(campaign)
    return campaign


# ---------------------------------------------------------------------------
# Collaborations
# ---------------------------------------------------------------------------


def add_collaboration(
    db: Session,
    brand_id: uuid.UUID,
    campaign_id: uuid.UUID,
    *,
    creator_id: uuid.UUID,
    creator_handle: str | None = None,
    agreed_price: Any = None,
    milestones_payload: Any = None,
    status: str = "Approved",
) -> CampaignCollaboration:
    if status not in COLLABORATION_STATUSES:
        raise InvalidRequest(
            f"Collaboration status must be one of: {', '.join(COLLABORATION_STATUSES)}"
        )
    price = quantize_money(agreed_price) if agreed_price is not None else None
    if price is not None and price < 0:
        raise InvalidRequest("Agreed price cannot be negative", {"field": "agreed_price"})
    # rejects malformed payloads and amounts before anything is written
    milestones.load(milestones_payload, price)

    with atomic(db):
        owned_campaign(db, brand_id, campaign_id)
        collaboration = CampaignCollaboration(
            campaign_id=campaign_id,
            creator_id=creator_id,
            creator_handle=creator_handle,
            agreed_price=price,
            milestones_json=milestones_payload,
            status=status,
        )
        db.add(collaboration)
    db.refresh(collaboration)
    return collaboration


def list_collaborations(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID
) -> list[CampaignCollaboration]:
    campaign = owned_campaign(db, brand_id, campaign_id)
    return list(campaign.collaborations)


def get_owned_collaboration(
    db: Session, brand_id: uuid.UUID, collaboration_id: uuid.UUID
) -> CampaignCollaboration:
    collaboration = db.get(CampaignCollaboration, collaboration_id)
    if collaboration is None or collaboration.campaign.brand_id != brand_id:
        raise NotFound("Collaboration not found", {"collaboration_id": str(collaboration_id)})
    return collaboration


# ---------------------------------------------------------------------------
# Brand profile
# ---------------------------------------------------------------------------


def get_brand_profile(db: Session, brand_id: uuid.UUID) -> BrandProfile | None:
    return db.execute(
        select(BrandProfile).where(BrandProfile.brand_id == brand_id)
    ).scalar_one_or_none()


def upsert_brand_profile(
    db: Session,
    brand_id: uuid.UUID,
    *,
    company_name: str | None = None,
    website_url: str | None = None,
) -> BrandProfile:
    with atomic(db):
        profile = get_brand_profile(db, brand_id)
        if profile is None:
            profile = BrandProfile(brand_id=brand_id)
            db.add(profile)
        if company_name is not None:
            profile.company_name = company_name
        if website_url is not None:
            profile.website_url = website_url
    db.refresh(profile)
    return profile
