"""Meta Conversions API sender built on the facebook-business SDK."""

from __future__ import annotations

import logging
import time
from typing import Any

from facebook_business.adobjects.serverside.action_source import ActionSource
from facebook_business.adobjects.serverside.custom_data import CustomData
from facebook_business.adobjects.serverside.event import Event
from facebook_business.adobjects.serverside.event_request import EventRequest
from facebook_business.adobjects.serverside.user_data import UserData
from facebook_business.api import FacebookAdsApi
from facebook_business.exceptions import FacebookRequestError

from collabvault.integrations.base import OrderData, SendResult
from collabvault.settings import settings

logger = logging.getLogger(__name__)


def build_purchase_event(order: OrderData) -> Event:
    user_data = UserData(external_id=order.user_hash) if order.user_hash else UserData()
    custom_data = CustomData(
        value=float(order.value),
        currency=order.currency.lower(),
        order_id=order.order_id,
        custom_properties={
            "creator_code": order.affiliate_code,
            "campaign_id": order.campaign_id,
        },
    )
    return Event(
        event_name="Purchase",
        event_time=order.event_time or int(time.time()),
        # matches the browser pixel event for deduplication
        event_id=f"purchase_{order.order_id}",
        event_source_url=order.event_source_url,
        user_data=user_data,
        custom_data=custom_data,
        action_source=ActionSource.WEBSITE,
    )


def send_purchase_event(config: dict[str, Any], access_token: str | None, order: OrderData) -> SendResult:
    pixel_id = config.get("pixel_id")
    if not pixel_id or not access_token:
        return SendResult(success=False, error="Meta pixel_id and access token are required")

    FacebookAdsApi.init(access_token=access_token, api_version=settings.META_GRAPH_API_VERSION)
    request = EventRequest(
        events=[build_purchase_event(order)],
        pixel_id=pixel_id,
        test_event_code=config.get("test_event_code"),
    )
    try:
        response = request.execute()
    except FacebookRequestError as exc:
        logger.warning("Meta CAPI send failed for order %s: %s", order.order_id, exc.api_error_message())
        return SendResult(
            success=False,
            status_code=exc.http_status(),
            error=exc.api_error_message() or str(exc),
            raw_response={"error_code": exc.api_error_code()},
        )

    return SendResult(
        success=True,
        raw_response={
            "events_received": response.events_received,
            "fbtrace_id": response.fbtrace_id,
        },
    )
