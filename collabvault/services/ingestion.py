"""Inbound tracking traffic: redirects, pixels, API calls and order webhooks.

Everything here resolves a tracking code to a bundle and hands the event
to ``attribution.record_event``. Work that must not delay the response
(click and pixel recording) is queued on the outbound task queue.
"""

from __future__ import annotations

import base64
import hashlib
import json
import logging
import re
import uuid
from dataclasses import dataclass
from typing import Any

from sqlalchemy.orm import Session

from collabvault.errors import InvalidRequest, NotFound, Unauthenticated
from collabvault.integrations import shopify
from collabvault.models import AttributionEventType, TrackingBundle
from collabvault.services import attribution
from collabvault.settings import settings
from collabvault.tasks import OutboundTaskQueue

logger = logging.getLogger(__name__)

PIXEL_GIF = base64.b64decode("R0lGODlhAQABAIAAAAAAAP///yH5BAEAAAAALAAAAAABAAEAAAIBRAA7")
PIXEL_HEADERS = {"Cache-Control": "no-store, no-cache, must-revalidate, private"}

_MOBILE_RE = re.compile(r"mobile|android|iphone|ipad|ipod", re.IGNORECASE)
_TABLET_RE = re.compile(r"tablet", re.IGNORECASE)


def hash_user(identifier: str | None) -> str | None:
    if not identifier:
        return None
    return hashlib.sha256(identifier.encode("utf-8")).hexdigest()[:32]


def detect_device_type(user_agent: str | None) -> str:
    if not user_agent:
        return "unknown"
    if _MOBILE_RE.search(user_agent):
        return "mobile"
    if _TABLET_RE.search(user_agent):
        return "tablet"
    return "desktop"


@dataclass
class ClientContext:
    """Request facts captured before the response is sent."""

    ip: str | None = None
    user_agent: str | None = None
    country: str | None = None
    referer: str | None = None

    @property
    def user_hash(self) -> str | None:
        return hash_user((self.ip or "") + (self.user_agent or ""))

    @property
    def device_type(self) -> str:
        return detect_device_type(self.user_agent)


def record_client_event(
    db: Session,
    *,
    tracking_bundle_id: uuid.UUID,
    event_type: str,
    event_source: str,
    context: ClientContext,
    session_id: str | None = None,
    referrer_url: str | None = None,
    metadata: dict[str, Any] | None = None,
    queue: OutboundTaskQueue | None = None,
) -> uuid.UUID:
    """Queue-friendly wrapper: ``func(session, **kwargs)``."""
    event, _ = attribution.record_event(
        db,
        tracking_bundle_id=tracking_bundle_id,
        event_type=event_type,
        event_source=event_source,
        user_hash=context.user_hash,
        session_id=session_id,
        ip_country=context.country,
        device_type=context.device_type,
        referrer_url=referrer_url or context.referer,
        metadata=metadata,
        queue=queue,
    )
    return event.id


# ---------------------------------------------------------------------------
# Redirects and pixel
# ---------------------------------------------------------------------------


def track_click(
    db: Session,
    queue: OutboundTaskQueue,
    short_code: str,
    context: ClientContext,
    *,
    session_id: str | None = None,
    query: dict[str, Any] | None = None,
) -> str:
    """Return the redirect target and queue the Click for the bundle, if any."""
    bundle = attribution.find_bundle_by_code(db, short_code, "shortlink")
    if bundle is None:
        return settings.FALLBACK_REDIRECT_URL

    queue.enqueue(
        "record_click",
        record_client_event,
        tracking_bundle_id=bundle.id,
        event_type=AttributionEventType.CLICK.value,
        event_source="UTM",
        context=context,
        session_id=session_id,
        metadata={"user_agent": context.user_agent, "referer": context.referer, "query": query or {}},
    )
    return bundle.tracking_url


def track_pixel(
    db: Session,
    queue: OutboundTaskQueue,
    context: ClientContext,
    *,
    ref: str | None = None,
    event_type: str | None = None,
    session_id: str | None = None,
) -> bool:
    """Queue a pixel hit when ``ref`` is a known affiliate code."""
    bundle = attribution.find_bundle_by_code(db, ref, "affiliate")
    if bundle is None:
        return False

    event_type = event_type or AttributionEventType.PAGE_VIEW.value
    if event_type not in [t.value for t in AttributionEventType]:
        event_type = AttributionEventType.PAGE_VIEW.value
    queue.enqueue(
        "record_pixel",
        record_client_event,
        tracking_bundle_id=bundle.id,
        event_type=event_type,
        event_source="Pixel",
        context=context,
        session_id=session_id,
        metadata={"query": {"ref": ref, "e": event_type, "sid": session_id}},
        queue=queue,
    )
    return True


# ---------------------------------------------------------------------------
# API tracking calls
# ---------------------------------------------------------------------------


def track_event(
    db: Session,
    queue: OutboundTaskQueue,
    context: ClientContext,
    *,
    event_type: str | None = None,
    affiliate_code: str | None = None,
    short_code: str | None = None,
    coupon_code: str | None = None,
    session_id: str | None = None,
    page_url: str | None = None,
    payload: dict[str, Any] | None = None,
) -> uuid.UUID:
    bundle = attribution.resolve_bundle(
        db, affiliate_code=affiliate_code, short_code=short_code, coupon_code=coupon_code
    )
    if bundle is None:
        raise NotFound("Tracking code not found")
    return record_client_event(
        db,
        tracking_bundle_id=bundle.id,
        event_type=event_type or AttributionEventType.PAGE_VIEW.value,
        event_source="Pixel",
        context=context,
        session_id=session_id,
        referrer_url=page_url,
        metadata=payload,
        queue=queue,
    )


def _attribution_summary(bundle: TrackingBundle) -> dict[str, Any]:
    return {
        "campaign_id": str(bundle.campaign_id),
        "creator_id": str(bundle.creator_id),
        "creator_handle": bundle.collaboration.creator_handle,
    }


def record_conversion(
    db: Session,
    queue: OutboundTaskQueue,
    *,
    order_value: Any,
    affiliate_code: str | None = None,
    coupon_code: str | None = None,
    order_id: str | None = None,
    currency: str | None = None,
    customer_email: str | None = None,
    customer_phone: str | None = None,
    payload: dict[str, Any] | None = None,
) -> dict[str, Any]:
    if order_value in (None, "") or not (affiliate_code or coupon_code):
        raise InvalidRequest("order_value and either affiliate_code or coupon_code are required")

    event_source = "Affiliate"
    bundle = attribution.find_bundle_by_code(db, affiliate_code, "affiliate")
    if bundle is None and coupon_code:
        bundle = attribution.find_bundle_by_code(db, coupon_code, "coupon")
        event_source = "Coupon"
    if bundle is None:
        raise NotFound(
            "Tracking code not found",
            {"affiliate_code": affiliate_code, "coupon_code": coupon_code},
        )

    metadata = dict(payload or {})
    metadata.pop("customer_email", None)
    metadata.pop("customer_phone", None)
    if currency:
        metadata["currency"] = currency

    event, duplicate = attribution.record_event(
        db,
        tracking_bundle_id=bundle.id,
        event_type=AttributionEventType.PURCHASE.value,
        event_source=event_source,
        order_value=order_value,
        order_id=str(order_id) if order_id not in (None, "") else None,
        user_hash=hash_user(customer_email or customer_phone),
        metadata=metadata,
        queue=queue,
    )
    return {
        "event_id": event.id,
        "duplicate": duplicate,
        "attribution": _attribution_summary(bundle),
    }


# ---------------------------------------------------------------------------
# Shopify
# ---------------------------------------------------------------------------


def _match_shopify_order(db: Session, order: dict[str, Any]) -> tuple[TrackingBundle | None, str | None]:
    for code in shopify.discount_codes(order):
        for code_type in ("coupon", "affiliate"):
            bundle = attribution.find_bundle_by_code(db, code, code_type)
            if bundle is not None:
                return bundle, code
    ref = shopify.landing_site_ref(order)
    if ref:
        bundle = attribution.find_bundle_by_code(db, ref, "affiliate")
        if bundle is not None:
            return bundle, ref
    return None, None


def verify_shopify_signature(raw_body: bytes, signature: str | None) -> None:
    secret = settings.SHOPIFY_WEBHOOK_SECRET
    if not secret:
        return
    if not shopify.verify_webhook(raw_body, signature, secret):
        logger.warning("Shopify webhook rejected: invalid HMAC signature")
        raise Unauthenticated("Invalid signature")


def process_shopify_order(db: Session, queue: OutboundTaskQueue, raw_body: bytes) -> dict[str, Any]:
    """Attribute a Shopify order webhook.

    Signature checking is done by the caller. Every outcome here is a
    success-shaped body; processing errors are logged, never raised.
    """
    try:
        order = json.loads(raw_body or b"{}")
    except ValueError:
        return {"received": True, "error": "Invalid order data"}
    if not isinstance(order, dict) or not order.get("id"):
        return {"received": True, "error": "Invalid order data"}

    try:
        bundle, matched_code = _match_shopify_order(db, order)
        if bundle is None:
            logger.warning("Shopify order %s has no matching tracking code", order.get("order_number"))
            return {"received": True, "attributed": False}

        _, duplicate = attribution.record_event(
            db,
            tracking_bundle_id=bundle.id,
            event_type=AttributionEventType.PURCHASE.value,
            event_source="Webhook",
            order_value=order.get("total_price") or 0,
            order_id=str(order["id"]),
            user_hash=hash_user(order.get("email")),
            ip_country=shopify.shipping_country(order),
            referrer_url=order.get("landing_site"),
            metadata={
                "shopify_order_id": order["id"],
                "order_number": order.get("order_number"),
                "line_items": len(order.get("line_items") or []),
                "items": shopify.order_items(order),
                "currency": order.get("currency"),
                "matched_code": matched_code,
                "financial_status": order.get("financial_status"),
            },
            queue=queue,
        )
    except Exception as exc:
        logger.exception("Shopify webhook processing failed for order %s", order.get("id"))
        return {"received": True, "error": str(exc)}

    if duplicate:
        return {"received": True, "duplicate": True}
    logger.info("Shopify order %s attributed via code %s", order.get("order_number"), matched_code)
    return {"received": True, "attributed": True}
