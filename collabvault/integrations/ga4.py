"""Google Analytics 4 Measurement Protocol sender."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from collabvault.integrations.base import OrderData, SendResult
from collabvault.settings import settings

logger = logging.getLogger(__name__)

DEFAULT_ENGAGEMENT_TIME_MSEC = 100


def build_purchase_payload(order: OrderData) -> dict[str, Any]:
    client_id = order.client_id or order.user_hash or f"order_{order.order_id}"
    return {
        "client_id": client_id,
        "events": [
            {
                "name": "purchase",
                "params": {
                    "transaction_id": order.order_id,
                    "value": float(order.value),
                    "currency": order.currency,
                    "items": [
                        {
                            "item_id": item.item_id,
                            "item_name": item.item_name,
                            "quantity": item.quantity,
                            "price": float(item.price),
                        }
                        for item in order.items
                    ],
                    "creator_code": order.affiliate_code,
                    "campaign_id": order.campaign_id,
                    "source": settings.UTM_SOURCE,
                    "engagement_time_msec": DEFAULT_ENGAGEMENT_TIME_MSEC,
                },
            }
        ],
    }


def send_purchase_event(
    config: dict[str, Any],
    order: OrderData,
    *,
    debug: bool = False,
    client: httpx.Client | None = None,
) -> SendResult:
    measurement_id = config.get("measurement_id")
    api_secret = config.get("api_secret")
    if not measurement_id or not api_secret:
        return SendResult(success=False, error="GA4 measurement_id and api_secret are required")

    endpoint = settings.GA4_DEBUG_ENDPOINT if debug else settings.GA4_ENDPOINT
    params = {"measurement_id": measurement_id, "api_secret": api_secret}
    payload = build_purchase_payload(order)

    owns_client = client is None
    client = client or httpx.Client(timeout=10.0)
    try:
        response = client.post(endpoint, params=params, json=payload)
    except httpx.HTTPError as exc:
        logger.warning("GA4 send failed for order %s: %s", order.order_id, exc)
        return SendResult(success=False, error=str(exc))
    finally:
        if owns_client:
            client.close()

    raw: dict[str, Any] = {}
    if debug:
        try:
            raw = response.json()
        except ValueError:
            raw = {"body": response.text}
    if response.is_success and not raw.get("validationMessages"):
        return SendResult(success=True, status_code=response.status_code, raw_response=raw)
    return SendResult(
        success=False,
        status_code=response.status_code,
        error=f"GA4 responded with {response.status_code}",
        raw_response=raw,
    )
