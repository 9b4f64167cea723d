"""Code-based attribution of external events to creators.

One tracking bundle per collaboration carries the affiliate code, short
link code and UTM-tagged URL. Events recorded against a bundle update the
collaboration's AttributionResult counters, from which the derived metrics
are recomputed.
"""

from __future__ import annotations

import logging
import re
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from collabvault.db import atomic
from collabvault.errors import InvalidRequest, NotFound
from collabvault.models import (
    AttributionEvent,
    AttributionEventType,
    AttributionResult,
    CampaignCollaboration,
    TrackingBundle,
)
from collabvault.services import forwarding, lift_tests
from collabvault.services.campaigns import get_brand_profile, get_owned_collaboration
from collabvault.services.escrow import owned_campaign
from collabvault.services.fees import quantize_money
from collabvault.settings import settings
from collabvault.tasks import OutboundTaskQueue

logger = logging.getLogger(__name__)

CODE_TYPES = ("affiliate", "coupon", "shortlink")
BUNDLE_ELIGIBLE_STATUSES = ("Approved", "Active")
MAX_CODE_ATTEMPTS = 5
ZERO = Decimal("0.00")


# ---------------------------------------------------------------------------
# Code generation
# ---------------------------------------------------------------------------


def generate_affiliate_code(handle: str) -> str:
    prefix = re.sub(r"[^A-Z0-9]", "", handle[:4].upper())
    return f"{prefix}{secrets.token_hex(2).upper()}"[:8]


def generate_short_code() -> str:
    return secrets.token_urlsafe(6)[:7]


def generate_server_token() -> str:
    return secrets.token_hex(32)


def campaign_slug(title: str) -> str:
    return re.sub(r"[^a-z0-9]+", "-", title.lower())[:50]


def build_tracking_url(base_url: str, params: dict[str, str]) -> str:
    try:
        parts = urlsplit(base_url)
    except ValueError:
        parts = None
    if parts is None or not parts.scheme or not parts.netloc:
        return f"{base_url}?{urlencode(params)}"

    query = dict(parse_qsl(parts.query, keep_blank_values=True))
    query.update(params)
    return urlunsplit((parts.scheme, parts.netloc, parts.path or "/", urlencode(query), parts.fragment))


def _creator_handle(collaboration: CampaignCollaboration) -> str:
    return collaboration.creator_handle or f"creator{str(collaboration.creator_id)[:8]}"


def _base_url(db: Session, collaboration: CampaignCollaboration) -> str:
    campaign = collaboration.campaign
    if campaign.base_tracking_url:
        return campaign.base_tracking_url
    profile = get_brand_profile(db, campaign.brand_id)
    if profile is not None and profile.website_url:
        return profile.website_url
    return settings.DEFAULT_TRACKING_URL


def _bundle_for(db: Session, collaboration_id: uuid.UUID) -> TrackingBundle | None:
    return db.execute(
        select(TrackingBundle).where(TrackingBundle.collaboration_id == collaboration_id)
    ).scalar_one_or_none()


def generate_tracking_bundle(db: Session, collaboration_id: uuid.UUID) -> TrackingBundle:
    """Return the collaboration's bundle, creating it on first request.

    Existing codes are never regenerated. A code collision retries with
    fresh codes; losing a race to a concurrent generator returns the
    winner's bundle.
    """
    collaboration = db.get(CampaignCollaboration, collaboration_id)
    if collaboration is None:
        raise NotFound("Collaboration not found", {"collaboration_id": str(collaboration_id)})

    existing = _bundle_for(db, collaboration_id)
    if existing is not None:
        return existing

    campaign = collaboration.campaign
    handle = _creator_handle(collaboration)
    base_url = _base_url(db, collaboration)

    for attempt in range(1, MAX_CODE_ATTEMPTS + 1):
        affiliate_code = generate_affiliate_code(handle)
        short_code = generate_short_code()
        utm = {
            "utm_source": settings.UTM_SOURCE,
            "utm_medium": settings.UTM_MEDIUM,
            "utm_campaign": campaign_slug(campaign.title),
            "utm_content": handle,
        }
        try:
            with atomic(db):
                bundle = TrackingBundle(
                    campaign_id=campaign.id,
                    collaboration_id=collaboration_id,
                    creator_id=collaboration.creator_id,
                    affiliate_code=affiliate_code,
                    short_link_code=short_code,
                    server_token=generate_server_token(),
                    tracking_url=build_tracking_url(base_url, {**utm, "ref": affiliate_code}),
                    short_link_url=f"{settings.SHORT_LINK_BASE_URL.rstrip('/')}/r/{short_code}",
                    **utm,
                )
                db.add(bundle)
                if _result_for(db, collaboration_id) is None:
                    db.add(
                        AttributionResult(
                            campaign_id=campaign.id,
                            collaboration_id=collaboration_id,
                            creator_id=collaboration.creator_id,
                            creator_cost=quantize_money(collaboration.agreed_price),
                            attribution_window=campaign.attribution_window
                            or settings.DEFAULT_ATTRIBUTION_WINDOW_DAYS,
                        )
                    )
                db.flush()
        except IntegrityError:
            existing = _bundle_for(db, collaboration_id)
            if existing is not None:
                return existing
            logger.warning(
                "Tracking code collision for collaboration %s (attempt %s)", collaboration_id, attempt
            )
            continue

        logger.info(
            "Tracking bundle created: %s for collaboration %s (code %s)",
            bundle.id,
            collaboration_id,
            affiliate_code,
        )
        return bundle

    raise InvalidRequest("Could not allocate unique tracking codes, try again")


def generate_all_bundles(db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID) -> dict[str, Any]:
    campaign = owned_campaign(db, brand_id, campaign_id)
    created = 0
    existing = 0
    bundles = []
    for collaboration in list(campaign.collaborations):
        if collaboration.status not in BUNDLE_ELIGIBLE_STATUSES:
            continue
        if _bundle_for(db, collaboration.id) is not None:
            existing += 1
        else:
            created += 1
        bundles.append(generate_tracking_bundle(db, collaboration.id))
    return {"created": created, "existing": existing, "bundles": bundles}


# ---------------------------------------------------------------------------
# Lookup
# ---------------------------------------------------------------------------


def find_bundle_by_code(db: Session, code: str | None, code_type: str) -> TrackingBundle | None:
    if not code:
        return None
    column = {
        "affiliate": TrackingBundle.affiliate_code,
        "coupon": TrackingBundle.coupon_code,
        "shortlink": TrackingBundle.short_link_code,
    }.get(code_type)
    if column is None:
        return None
    return db.execute(
        select(TrackingBundle).where(column == code, TrackingBundle.is_active.is_(True))
    ).scalar_one_or_none()


def resolve_bundle(
    db: Session,
    *,
    affiliate_code: str | None = None,
    short_code: str | None = None,
    coupon_code: str | None = None,
) -> TrackingBundle | None:
    """Resolve an inbound request: affiliate code first, then short code, then coupon."""
    for code, code_type in (
        (affiliate_code, "affiliate"),
        (short_code, "shortlink"),
        (coupon_code, "coupon"),
    ):
        bundle = find_bundle_by_code(db, code, code_type)
        if bundle is not None:
            return bundle
    return None


def owned_bundle(db: Session, brand_id: uuid.UUID, bundle_id: uuid.UUID) -> TrackingBundle:
    bundle = db.get(TrackingBundle, bundle_id)
    if bundle is None or bundle.campaign.brand_id != brand_id:
        raise NotFound("Tracking bundle not found", {"bundle_id": str(bundle_id)})
    return bundle


def get_campaign_bundles(db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID) -> list[TrackingBundle]:
    owned_campaign(db, brand_id, campaign_id)
    return list(
        db.execute(
            select(TrackingBundle)
            .where(TrackingBundle.campaign_id == campaign_id)
            .order_by(TrackingBundle.created_at.asc())
        )
        .scalars()
        .all()
    )


def get_bundle(db: Session, brand_id: uuid.UUID, collaboration_id: uuid.UUID) -> TrackingBundle:
    get_owned_collaboration(db, brand_id, collaboration_id)
    bundle = _bundle_for(db, collaboration_id)
    if bundle is None:
        raise NotFound("Tracking bundle not found", {"collaboration_id": str(collaboration_id)})
    return bundle


def get_bundle_events(
    db: Session, brand_id: uuid.UUID, bundle_id: uuid.UUID, limit: int = 50, offset: int = 0
) -> list[AttributionEvent]:
    owned_bundle(db, brand_id, bundle_id)
    return list(
        db.execute(
            select(AttributionEvent)
            .where(AttributionEvent.tracking_bundle_id == bundle_id)
            .order_by(AttributionEvent.event_timestamp.desc())
            .offset(offset)
            .limit(limit)
        )
        .scalars()
        .all()
    )


# ---------------------------------------------------------------------------
# Events and metrics
# ---------------------------------------------------------------------------


def _result_for(db: Session, collaboration_id: uuid.UUID) -> AttributionResult | None:
    return db.execute(
        select(AttributionResult).where(AttributionResult.collaboration_id == collaboration_id)
    ).scalar_one_or_none()


def _ensure_result(db: Session, bundle: TrackingBundle) -> AttributionResult:
    result = db.execute(
        select(AttributionResult)
        .where(AttributionResult.collaboration_id == bundle.collaboration_id)
        .with_for_update()
    ).scalar_one_or_none()
    if result is None:
        collaboration = bundle.collaboration
        result = AttributionResult(
            campaign_id=bundle.campaign_id,
            collaboration_id=bundle.collaboration_id,
            creator_id=bundle.creator_id,
            creator_cost=quantize_money(collaboration.agreed_price),
            total_clicks=0,
            total_conversions=0,
            total_revenue=ZERO,
        )
        db.add(result)
    return result


def _find_by_order_id(db: Session, order_id: str) -> AttributionEvent | None:
    return db.execute(
        select(AttributionEvent).where(AttributionEvent.order_id == order_id)
    ).scalar_one_or_none()


def record_event(
    db: Session,
    *,
    tracking_bundle_id: uuid.UUID,
    event_type: str,
    event_source: str,
    order_value: Any = None,
    order_id: str | None = None,
    user_hash: str | None = None,
    session_id: str | None = None,
    ip_country: str | None = None,
    device_type: str | None = None,
    referrer_url: str | None = None,
    metadata: dict[str, Any] | None = None,
    queue: OutboundTaskQueue | None = None,
) -> tuple[AttributionEvent, bool]:
    """Append an event and fold it into the collaboration's counters.

    Returns ``(event, duplicate)``. A purchase whose ``order_id`` was
    already recorded returns the original event with ``duplicate=True``
    and changes nothing. Purchase side effects are queued on ``queue``
    after commit.
    """
    valid_types = [t.value for t in AttributionEventType]
    if event_type not in valid_types:
        raise InvalidRequest(f"Event type must be one of: {', '.join(valid_types)}")
    value = quantize_money(order_value) if order_value not in (None, "") else None
    if value is not None and value < 0:
        raise InvalidRequest("Order value cannot be negative", {"field": "order_value"})

    if order_id:
        existing = _find_by_order_id(db, order_id)
        if existing is not None:
            return existing, True

    try:
        with atomic(db):
            bundle = db.get(TrackingBundle, tracking_bundle_id)
            if bundle is None:
                raise NotFound("Tracking bundle not found", {"bundle_id": str(tracking_bundle_id)})

            event = AttributionEvent(
                tracking_bundle_id=tracking_bundle_id,
                event_type=event_type,
                event_source=event_source,
                event_timestamp=datetime.now(timezone.utc),
                order_value=value,
                order_id=order_id or None,
                user_hash=user_hash,
                session_id=session_id,
                ip_country=ip_country,
                device_type=device_type,
                referrer_url=referrer_url,
                raw_payload=metadata,
            )
            db.add(event)
            db.flush()

            result = _ensure_result(db, bundle)
            if event_type == AttributionEventType.CLICK.value:
                result.total_clicks = (result.total_clicks or 0) + 1
            elif event_type == AttributionEventType.PURCHASE.value:
                result.total_conversions = (result.total_conversions or 0) + 1
                result.total_revenue = quantize_money(result.total_revenue) + (value or ZERO)
            result.last_calculated_at = datetime.now(timezone.utc)
            _apply_metrics(result)
            db.flush()
    except IntegrityError:
        existing = _find_by_order_id(db, order_id) if order_id else None
        if existing is None:
            raise
        return existing, True

    if event_type == AttributionEventType.PURCHASE.value and queue is not None:
        queue.enqueue("forward_conversion", forwarding.forward_conversion_event, event_id=event.id)
        queue.enqueue("lift_test_purchase", lift_tests.record_purchase_event, event_id=event.id)

    return event, False


def _ratio(numerator: Decimal, denominator: Decimal, scale: int = 1) -> Decimal:
    if denominator == 0:
        return ZERO
    return quantize_money(numerator / denominator * scale)


def _apply_metrics(result: AttributionResult) -> None:
    clicks = Decimal(result.total_clicks or 0)
    conversions = Decimal(result.total_conversions or 0)
    revenue = quantize_money(result.total_revenue)
    cost = quantize_money(result.creator_cost)

    result.conversion_rate = _ratio(conversions, clicks, 100)
    result.roas = _ratio(revenue, cost)
    result.cost_per_conversion = _ratio(cost, conversions)
    result.average_order_value = _ratio(revenue, conversions)


def recalculate_metrics(db: Session, collaboration_id: uuid.UUID) -> AttributionResult:
    """Recompute derived metrics from the stored counters; a pure function of them."""
    with atomic(db):
        result = _result_for(db, collaboration_id)
        if result is None:
            raise NotFound("Attribution result not found", {"collaboration_id": str(collaboration_id)})
        _apply_metrics(result)
        result.last_calculated_at = datetime.now(timezone.utc)
    db.refresh(result)
    return result


def rebuild_attribution_result(db: Session, collaboration_id: uuid.UUID) -> AttributionResult:
    """Recount clicks, purchases and revenue from the full event history."""
    with atomic(db):
        bundle = _bundle_for(db, collaboration_id)
        if bundle is None:
            raise NotFound("Tracking bundle not found", {"collaboration_id": str(collaboration_id)})
        result = _ensure_result(db, bundle)

        counts = dict(
            db.execute(
                select(AttributionEvent.event_type, func.count())
                .where(AttributionEvent.tracking_bundle_id == bundle.id)
                .group_by(AttributionEvent.event_type)
            ).all()
        )
        revenue = db.execute(
            select(func.coalesce(func.sum(AttributionEvent.order_value), 0)).where(
                AttributionEvent.tracking_bundle_id == bundle.id,
                AttributionEvent.event_type == AttributionEventType.PURCHASE.value,
            )
        ).scalar_one()

        result.total_clicks = counts.get(AttributionEventType.CLICK.value, 0)
        result.total_conversions = counts.get(AttributionEventType.PURCHASE.value, 0)
        result.total_revenue = quantize_money(revenue)
    return recalculate_metrics(db, collaboration_id)


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


def get_campaign_results(db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID) -> dict[str, Any]:
    owned_campaign(db, brand_id, campaign_id)
    results = list(
        db.execute(
            select(AttributionResult)
            .where(AttributionResult.campaign_id == campaign_id)
            .order_by(AttributionResult.total_revenue.desc())
        )
        .scalars()
        .all()
    )

    clicks = sum(r.total_clicks or 0 for r in results)
    conversions = sum(r.total_conversions or 0 for r in results)
    revenue = sum((quantize_money(r.total_revenue) for r in results), ZERO)
    cost = sum((quantize_money(r.creator_cost) for r in results), ZERO)

    return {
        "results": results,
        "totals": {
            "clicks": clicks,
            "conversions": conversions,
            "revenue": revenue,
            "cost": cost,
            "roas": _ratio(revenue, cost),
            "conversion_rate": _ratio(Decimal(conversions), Decimal(clicks), 100),
        },
    }


def get_revenue_timeline(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID, days: int = 30
) -> list[dict[str, Any]]:
    owned_campaign(db, brand_id, campaign_id)
    today = datetime.now(timezone.utc).date()
    start_day = today - timedelta(days=days - 1)
    since = datetime.combine(start_day, datetime.min.time(), tzinfo=timezone.utc)

    events = db.execute(
        select(AttributionEvent.event_timestamp, AttributionEvent.order_value)
        .join(TrackingBundle, TrackingBundle.id == AttributionEvent.tracking_bundle_id)
        .where(
            TrackingBundle.campaign_id == campaign_id,
            AttributionEvent.event_type == AttributionEventType.PURCHASE.value,
            AttributionEvent.event_timestamp >= since,
        )
    ).all()

    series = {
        start_day + timedelta(days=offset): {"conversions": 0, "revenue": ZERO}
        for offset in range(days)
    }
    for timestamp, order_value in events:
        bucket = series.get(timestamp.date())
        if bucket is None:
            continue
        bucket["conversions"] += 1
        bucket["revenue"] += quantize_money(order_value)

    return [{"date": day, **totals} for day, totals in sorted(series.items())]
