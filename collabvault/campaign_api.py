import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from collabvault.db import get_db
from collabvault.deps import get_brand_id
from collabvault.errors import NotFound
from collabvault.schemas import (
    BrandProfileIn,
    BrandProfileOut,
    CampaignCreate,
    CampaignCreateResponse,
    CampaignOut,
    CampaignStatusUpdate,
    CollaborationCreate,
    CollaborationOut,
)
from collabvault.services import campaigns

campaign_router = APIRouter(tags=["campaigns"])


@campaign_router.post("/campaigns", response_model=CampaignCreateResponse, status_code=201)
def create_campaign(
    payload: CampaignCreate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Create a campaign and lock its initial escrow share."""
    return campaigns.create_campaign(
        db,
        brand_id,
        title=payload.title,
        target_budget=payload.target_budget,
        escrow_percentage=payload.escrow_percentage,
        payment_model=payload.payment_model,
        objective=payload.objective,
        target_roas=payload.target_roas,
        start_date=payload.start_date,
        end_date=payload.end_date,
        base_tracking_url=payload.base_tracking_url,
        attribution_window=payload.attribution_window,
    )


@campaign_router.get("/campaigns", response_model=list[CampaignOut])
def list_campaigns(
    status: str | None = None,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return campaigns.list_campaigns(db, brand_id, status)


@campaign_router.get("/campaigns/{campaign_id}", response_model=CampaignOut)
def get_campaign(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return campaigns.get_campaign(db, brand_id, campaign_id)


@campaign_router.patch("/campaigns/{campaign_id}/status", response_model=CampaignOut)
def update_campaign_status(
    campaign_id: uuid.UUID,
    payload: CampaignStatusUpdate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return campaigns.update_status(db, brand_id, campaign_id, payload.status)


@campaign_router.post(
    "/campaigns/{campaign_id}/collaborations",
    response_model=CollaborationOut,
    status_code=201,
)
def add_collaboration(
    campaign_id: uuid.UUID,
    payload: CollaborationCreate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Attach a creator to the campaign."""
    return campaigns.add_collaboration(
        db,
        brand_id,
        campaign_id,
        creator_id=payload.creator_id,
        creator_handle=payload.creator_handle,
        agreed_price=payload.agreed_price,
        milestones_payload=payload.milestones,
        status=payload.status,
    )


@campaign_router.get(
    "/campaigns/{campaign_id}/collaborations", response_model=list[CollaborationOut]
)
def list_collaborations(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return campaigns.list_collaborations(db, brand_id, campaign_id)


@campaign_router.get("/brand-profile", response_model=BrandProfileOut)
def get_brand_profile(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    profile = campaigns.get_brand_profile(db, brand_id)
    if profile is None:
        raise NotFound("Brand profile not found")
    return profile


@campaign_router.put("/brand-profile", response_model=BrandProfileOut)
def upsert_brand_profile(
    payload: BrandProfileIn,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return campaigns.upsert_brand_profile(
        db, brand_id, company_name=payload.company_name, website_url=payload.website_url
    )
