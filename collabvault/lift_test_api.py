import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.orm import Session

from collabvault.db import get_db
from collabvault.deps import get_brand_id
from collabvault.errors import NotFound
from collabvault.models import LiftTestGroup
from collabvault.schemas import (
    AssignRequest,
    AssignResponse,
    FormattedLiftResults,
    GroupEventRequest,
    LiftCalculation,
    LiftTestCreate,
    LiftTestGroupOut,
    LiftTestOut,
    LiftTestUpdate,
    SampleSizeRequest,
    SampleSizeResponse,
)
from collabvault.services import lift_tests, statistics

lift_test_router = APIRouter(tags=["lift-tests"])


@lift_test_router.post("/lift-tests/sample-size", response_model=SampleSizeResponse)
def sample_size(payload: SampleSizeRequest):
    """Per-group sample size needed to detect the given relative effect."""
    per_group = statistics.calculate_min_sample_size(
        payload.baseline_rate, payload.minimum_detectable_effect, payload.power
    )
    power = None
    if payload.sample_size is not None:
        power = round(
            statistics.calculate_power(
                payload.sample_size, payload.baseline_rate, payload.minimum_detectable_effect
            ),
            4,
        )
    return {
        "sample_size_per_group": per_group,
        "total_sample_size": per_group * 2,
        "power_at_sample_size": power,
    }


@lift_test_router.post("/lift-tests", response_model=LiftTestOut, status_code=201)
def create_lift_test(
    payload: LiftTestCreate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.create_lift_test(db, brand_id, **payload.model_dump())


@lift_test_router.get("/lift-tests", response_model=list[LiftTestOut])
def list_lift_tests(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.list_brand_lift_tests(db, brand_id)


@lift_test_router.get("/campaigns/{campaign_id}/lift-tests", response_model=list[LiftTestOut])
def list_campaign_lift_tests(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.list_campaign_lift_tests(db, brand_id, campaign_id)


@lift_test_router.get("/lift-tests/{lift_test_id}", response_model=LiftTestOut)
def get_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.owned_lift_test(db, brand_id, lift_test_id)


@lift_test_router.patch("/lift-tests/{lift_test_id}", response_model=LiftTestOut)
def update_lift_test(
    lift_test_id: uuid.UUID,
    payload: LiftTestUpdate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.update_lift_test(
        db,
        brand_id,
        lift_test_id,
        name=payload.name,
        hypothesis=payload.hypothesis,
        target_lift_pct=payload.target_lift_pct,
    )


@lift_test_router.delete("/lift-tests/{lift_test_id}", status_code=204)
def delete_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    lift_tests.delete_lift_test(db, brand_id, lift_test_id)
    return Response(status_code=204)


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@lift_test_router.post("/lift-tests/{lift_test_id}/start", response_model=LiftTestOut)
def start_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.start_test(db, brand_id, lift_test_id)


@lift_test_router.post("/lift-tests/{lift_test_id}/pause", response_model=LiftTestOut)
def pause_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.pause_test(db, brand_id, lift_test_id)


@lift_test_router.post("/lift-tests/{lift_test_id}/resume", response_model=LiftTestOut)
def resume_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.resume_test(db, brand_id, lift_test_id)


@lift_test_router.post("/lift-tests/{lift_test_id}/complete", response_model=LiftTestOut)
def complete_lift_test(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Compute final results and close the test."""
    return lift_tests.complete_test(db, brand_id, lift_test_id)


# ---------------------------------------------------------------------------
# Groups and results
# ---------------------------------------------------------------------------


@lift_test_router.post("/lift-tests/{lift_test_id}/assign", response_model=AssignResponse)
def assign_user(
    lift_test_id: uuid.UUID,
    payload: AssignRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    lift_tests.owned_lift_test(db, brand_id, lift_test_id)
    group = lift_tests.assign_user_to_group(
        db,
        lift_test_id,
        region=payload.region,
        user_id=payload.user_id,
        session_id=payload.session_id,
    )
    if group is None:
        return {"group_id": None, "group_type": None}
    return {"group_id": group.id, "group_type": group.group_type}


@lift_test_router.post("/lift-tests/{lift_test_id}/events", response_model=LiftTestGroupOut)
def record_group_event(
    lift_test_id: uuid.UUID,
    payload: GroupEventRequest,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    lift_tests.owned_lift_test(db, brand_id, lift_test_id)
    group = db.get(LiftTestGroup, payload.group_id)
    if group is None or group.lift_test_id != lift_test_id:
        raise NotFound("Lift test group not found", {"group_id": str(payload.group_id)})
    return lift_tests.record_group_event(db, payload.group_id, payload.event_type, payload.value)


@lift_test_router.post("/lift-tests/{lift_test_id}/calculate", response_model=LiftCalculation)
def calculate_results(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.calculate_for_brand(db, brand_id, lift_test_id)


@lift_test_router.get("/lift-tests/{lift_test_id}/results", response_model=FormattedLiftResults)
def get_results(
    lift_test_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return lift_tests.get_formatted_results(db, brand_id, lift_test_id)
