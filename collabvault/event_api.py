import uuid

from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request, Response
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from collabvault.db import get_db
from collabvault.deps import get_brand_id, get_client_context, get_queue
from collabvault.schemas import (
    BundleEventsPage,
    ConversionRequest,
    ConversionResponse,
    TrackEventRequest,
    TrackEventResponse,
)
from collabvault.services import attribution, ingestion
from collabvault.services.ingestion import ClientContext
from collabvault.tasks import OutboundTaskQueue

event_router = APIRouter(tags=["events"])


def _redirect(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    context: ClientContext,
    queue: OutboundTaskQueue,
    db: Session,
) -> RedirectResponse:
    target = ingestion.track_click(
        db,
        queue,
        short_code,
        context,
        session_id=request.query_params.get("sid"),
        query=dict(request.query_params),
    )
    background_tasks.add_task(queue.drain)
    return RedirectResponse(target, status_code=307)


@event_router.get("/r/{short_code}")
def short_link_redirect(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    context: ClientContext = Depends(get_client_context),
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    return _redirect(short_code, request, background_tasks, context, queue, db)


@event_router.get("/events/track/{short_code}")
def track_click(
    short_code: str,
    request: Request,
    background_tasks: BackgroundTasks,
    context: ClientContext = Depends(get_client_context),
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    """Record a click and redirect to the creator's tracking URL."""
    return _redirect(short_code, request, background_tasks, context, queue, db)


@event_router.get("/events/pixel.gif")
def tracking_pixel(
    background_tasks: BackgroundTasks,
    ref: str | None = None,
    e: str | None = None,
    sid: str | None = None,
    context: ClientContext = Depends(get_client_context),
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    if ingestion.track_pixel(db, queue, context, ref=ref, event_type=e, session_id=sid):
        background_tasks.add_task(queue.drain)
    return Response(
        content=ingestion.PIXEL_GIF, media_type="image/gif", headers=ingestion.PIXEL_HEADERS
    )


@event_router.post("/events/track", response_model=TrackEventResponse, status_code=201)
def track_event(
    payload: TrackEventRequest,
    background_tasks: BackgroundTasks,
    context: ClientContext = Depends(get_client_context),
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    event_id = ingestion.track_event(
        db,
        queue,
        context,
        event_type=payload.event_type,
        affiliate_code=payload.affiliate_code,
        short_code=payload.short_code,
        coupon_code=payload.coupon_code,
        session_id=payload.session_id,
        page_url=payload.page_url,
        payload=payload.model_dump(mode="json"),
    )
    background_tasks.add_task(queue.drain)
    return {"event_id": event_id}


@event_router.post("/events/conversion", response_model=ConversionResponse, status_code=201)
def record_conversion(
    payload: ConversionRequest,
    response: Response,
    background_tasks: BackgroundTasks,
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    """Record a purchase reported by the brand's store; repeats of an order id are no-ops."""
    outcome = ingestion.record_conversion(
        db,
        queue,
        order_value=payload.order_value,
        affiliate_code=payload.affiliate_code,
        coupon_code=payload.coupon_code,
        order_id=payload.order_id,
        currency=payload.currency,
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        payload=payload.model_dump(mode="json"),
    )
    if outcome["duplicate"]:
        response.status_code = 200
    else:
        background_tasks.add_task(queue.drain)
    return outcome


@event_router.post("/events/webhook/shopify")
async def shopify_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_shopify_hmac_sha256: str | None = Header(default=None),
    queue: OutboundTaskQueue = Depends(get_queue),
    db: Session = Depends(get_db),
):
    raw_body = await request.body()
    await run_in_threadpool(ingestion.verify_shopify_signature, raw_body, x_shopify_hmac_sha256)
    outcome = await run_in_threadpool(ingestion.process_shopify_order, db, queue, raw_body)
    if outcome.get("attributed"):
        background_tasks.add_task(queue.drain)
    return outcome


@event_router.get("/events/bundle/{bundle_id}", response_model=BundleEventsPage)
def get_bundle_events(
    bundle_id: uuid.UUID,
    limit: int = Query(default=50, ge=1, le=500),
    offset: int = Query(default=0, ge=0),
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    events = attribution.get_bundle_events(db, brand_id, bundle_id, limit, offset)
    return {"events": events, "limit": limit, "offset": offset}
