"""Push recorded conversions to a brand's connected analytics integrations."""

from __future__ import annotations

import logging
import time
import uuid
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from collabvault.db import atomic
from collabvault.errors import IntegrationError, InvalidRequest, NotFound
from collabvault.integrations import ga4, meta_capi
from collabvault.integrations.base import OrderData, OrderItem, SendResult
from collabvault.models import AttributionEvent, Integration, IntegrationStatus, IntegrationType

logger = logging.getLogger(__name__)

REQUIRED_CONFIG = {
    IntegrationType.GA4.value: ("measurement_id", "api_secret"),
    IntegrationType.META_CAPI.value: ("pixel_id",),
}


def _parse_type(integration_type: str) -> str:
    valid = [t.value for t in IntegrationType]
    if integration_type not in valid:
        raise InvalidRequest(
            f"Integration type must be one of: {', '.join(valid)}", {"field": "type"}
        )
    return integration_type


def _find(db: Session, brand_id: uuid.UUID, integration_type: str) -> Integration | None:
    return db.execute(
        select(Integration).where(
            Integration.brand_id == brand_id, Integration.type == integration_type
        )
    ).scalar_one_or_none()


# ---------------------------------------------------------------------------
# Integration management
# ---------------------------------------------------------------------------


def upsert_integration(
    db: Session,
    brand_id: uuid.UUID,
    integration_type: str,
    *,
    config: dict[str, Any],
    access_token: str | None = None,
) -> Integration:
    integration_type = _parse_type(integration_type)
    missing = [key for key in REQUIRED_CONFIG[integration_type] if not config.get(key)]
    if missing:
        raise InvalidRequest(
            f"Missing integration config: {', '.join(missing)}", {"missing": missing}
        )
    with atomic(db):
        integration = _find(db, brand_id, integration_type)
        stored_token = integration.access_token if integration is not None else None
        if integration_type == IntegrationType.META_CAPI.value and not (access_token or stored_token):
            raise InvalidRequest("Meta CAPI requires an access token", {"field": "access_token"})
        if integration is None:
            integration = Integration(brand_id=brand_id, type=integration_type)
            db.add(integration)
        integration.config = dict(config)
        if access_token is not None:
            integration.access_token = access_token
        integration.status = IntegrationStatus.CONNECTED.value
    db.refresh(integration)
    logger.info("Integration %s connected for brand %s", integration_type, brand_id)
    return integration


def list_integrations(db: Session, brand_id: uuid.UUID) -> list[Integration]:
    return list(
        db.execute(
            select(Integration).where(Integration.brand_id == brand_id).order_by(Integration.type)
        )
        .scalars()
        .all()
    )


def get_integration(db: Session, brand_id: uuid.UUID, integration_type: str) -> Integration:
    integration = _find(db, brand_id, _parse_type(integration_type))
    if integration is None:
        raise NotFound("Integration not found", {"type": integration_type})
    return integration


def disconnect_integration(db: Session, brand_id: uuid.UUID, integration_type: str) -> Integration:
    with atomic(db):
        integration = get_integration(db, brand_id, integration_type)
        integration.status = IntegrationStatus.DISCONNECTED.value
        integration.access_token = None
    db.refresh(integration)
    logger.info("Integration %s disconnected for brand %s", integration_type, brand_id)
    return integration


def _send(integration: Integration, order: OrderData) -> SendResult:
    if integration.type == IntegrationType.GA4.value:
        return ga4.send_purchase_event(integration.config or {}, order)
    return meta_capi.send_purchase_event(integration.config or {}, integration.access_token, order)


def send_test_event(db: Session, brand_id: uuid.UUID, integration_type: str) -> SendResult:
    integration = get_integration(db, brand_id, integration_type)
    if integration.status != IntegrationStatus.CONNECTED.value:
        raise InvalidRequest("Integration is not connected", {"type": integration_type})

    order = OrderData(
        order_id=f"test_{uuid.uuid4().hex[:12]}",
        value=Decimal("0.01"),
        affiliate_code="TEST",
        event_time=int(time.time()),
    )
    result = _send(integration, order)
    if not result.success:
        raise IntegrationError(
            f"Test event failed: {result.error}",
            {"type": integration_type, "status_code": result.status_code},
        )
    return result


# ---------------------------------------------------------------------------
# Conversion forwarding
# ---------------------------------------------------------------------------


def _order_from_event(event: AttributionEvent) -> OrderData:
    bundle = event.tracking_bundle
    payload = event.raw_payload or {}
    items = [OrderItem.model_validate(item) for item in payload.get("items") or []]
    return OrderData(
        order_id=event.order_id or str(event.id),
        value=event.order_value or Decimal("0"),
        currency=payload.get("currency") or "USD",
        affiliate_code=bundle.affiliate_code,
        campaign_id=str(bundle.campaign_id),
        client_id=event.session_id,
        user_hash=event.user_hash,
        event_time=int(event.event_timestamp.timestamp()),
        event_source_url=event.referrer_url,
        items=items,
    )


def _outcome(attempted: bool, result: SendResult | None = None, error: str | None = None) -> dict[str, Any]:
    if result is not None:
        return {"attempted": attempted, "success": result.success, "error": result.error}
    return {"attempted": attempted, "success": False, "error": error}


def forward_conversion_event(db: Session, event_id: uuid.UUID) -> dict[str, dict[str, Any]]:
    """Send one purchase to each connected integration of the owning brand.

    Each sender runs on its own; a failure in one is reported in its entry
    and never stops the other.
    """
    report = {"ga4": _outcome(False), "meta": _outcome(False)}
    event = db.get(AttributionEvent, event_id)
    if event is None:
        logger.warning("Conversion %s not found for forwarding", event_id)
        return report

    brand_id = event.tracking_bundle.campaign.brand_id
    integrations = {
        integration.type: integration
        for integration in list_integrations(db, brand_id)
        if integration.status == IntegrationStatus.CONNECTED.value
    }
    order = _order_from_event(event)

    for key, integration_type in (
        ("ga4", IntegrationType.GA4.value),
        ("meta", IntegrationType.META_CAPI.value),
    ):
        integration = integrations.get(integration_type)
        if integration is None:
            continue
        try:
            result = _send(integration, order)
        except Exception as exc:
            logger.exception("Forwarding order %s to %s failed", order.order_id, integration_type)
            report[key] = _outcome(True, error=str(exc))
            continue
        if not result.success:
            logger.warning(
                "Forwarding order %s to %s rejected: %s", order.order_id, integration_type, result.error
            )
        report[key] = _outcome(True, result)

    return report
