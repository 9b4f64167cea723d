import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from collabvault.db import get_db
from collabvault.deps import get_brand_id
from collabvault.schemas import (
    AttributionResultOut,
    BundleGenerationResponse,
    CampaignResults,
    TimelinePoint,
    TrackingBundleOut,
)
from collabvault.services import attribution
from collabvault.services.campaigns import get_owned_collaboration

attribution_router = APIRouter(tags=["attribution"])


@attribution_router.post(
    "/campaigns/{campaign_id}/bundles", response_model=BundleGenerationResponse
)
def generate_campaign_bundles(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Create tracking bundles for every approved or active collaboration."""
    return attribution.generate_all_bundles(db, brand_id, campaign_id)


@attribution_router.get(
    "/campaigns/{campaign_id}/bundles", response_model=list[TrackingBundleOut]
)
def list_campaign_bundles(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return attribution.get_campaign_bundles(db, brand_id, campaign_id)


@attribution_router.post(
    "/collaborations/{collaboration_id}/bundle", response_model=TrackingBundleOut
)
def generate_bundle(
    collaboration_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    get_owned_collaboration(db, brand_id, collaboration_id)
    return attribution.generate_tracking_bundle(db, collaboration_id)


@attribution_router.get(
    "/collaborations/{collaboration_id}/bundle", response_model=TrackingBundleOut
)
def get_bundle(
    collaboration_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return attribution.get_bundle(db, brand_id, collaboration_id)


@attribution_router.post(
    "/collaborations/{collaboration_id}/attribution/rebuild",
    response_model=AttributionResultOut,
)
def rebuild_attribution(
    collaboration_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Recompute a collaboration's counters from its full event history."""
    get_owned_collaboration(db, brand_id, collaboration_id)
    return attribution.rebuild_attribution_result(db, collaboration_id)


@attribution_router.post(
    "/collaborations/{collaboration_id}/attribution/recalculate",
    response_model=AttributionResultOut,
)
def recalculate_attribution(
    collaboration_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    get_owned_collaboration(db, brand_id, collaboration_id)
    return attribution.recalculate_metrics(db, collaboration_id)


@attribution_router.get(
    "/campaigns/{campaign_id}/attribution", response_model=CampaignResults
)
def get_campaign_results(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return attribution.get_campaign_results(db, brand_id, campaign_id)


@attribution_router.get(
    "/campaigns/{campaign_id}/attribution/timeline", response_model=list[TimelinePoint]
)
def get_revenue_timeline(
    campaign_id: uuid.UUID,
    days: int = Query(default=30, ge=1, le=365),
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return attribution.get_revenue_timeline(db, brand_id, campaign_id, days)
