"""Tazapay checkout adapter.

Talks to the v3 REST API with httpx using HTTP Basic auth. Amounts are
sent in minor units; webhook bodies are signed with HMAC-SHA256 in the
``webhook-signature`` header.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from collabvault.gateways.base import (
    CheckoutRequest,
    CheckoutSession,
    CheckoutStatus,
    GatewayName,
    PaymentGateway,
)
from collabvault.gateways.exceptions import GatewayConfigurationError, GatewayRequestError
from collabvault.gateways.signing import verify_hex_signature

logger = logging.getLogger(__name__)


def _to_minor_units(amount) -> int:
    return int(round(float(amount) * 100))


class TazapayGateway(PaymentGateway):
    name = GatewayName.TAZAPAY

    def __init__(
        self,
        api_key: str,
        api_secret: str,
        *,
        base_url: str,
        webhook_secret: str = "",
        timeout: float = 15.0,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        if not api_key or not api_secret:
            raise GatewayConfigurationError("Missing Tazapay API key or secret")
        self.webhook_secret = webhook_secret
        self._client = httpx.Client(
            base_url=base_url,
            auth=(api_key, api_secret),
            timeout=timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        try:
            response = self._client.request(method, path, **kwargs)
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            body: Any
            try:
                body = exc.response.json()
            except ValueError:
                body = exc.response.text
            raise GatewayRequestError(
                f"Tazapay returned {exc.response.status_code}",
                {"status_code": exc.response.status_code, "body": body},
            ) from exc
        except httpx.HTTPError as exc:
            raise GatewayRequestError(f"Tazapay request failed: {exc}") from exc
        return response.json()

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        payload = {
            "invoice_currency": request.currency,
            "amount": _to_minor_units(request.amount),
            "reference_id": request.reference_id,
            "transaction_description": request.description,
            "customer_details": request.customer.model_dump(),
        }
        if request.success_url:
            payload["success_url"] = request.success_url
        if request.cancel_url:
            payload["cancel_url"] = request.cancel_url

        body = self._request("POST", "/v3/checkout", json=payload)
        data = body.get("data") or body
        checkout_id = data.get("id")
        if not checkout_id:
            raise GatewayRequestError("Tazapay response had no checkout id", {"body": body})
        logger.info("Tazapay checkout created: %s (ref %s)", checkout_id, request.reference_id)
        return CheckoutSession(id=checkout_id, url=data.get("url"), raw=body)

    def get_checkout_status(self, checkout_id: str) -> CheckoutStatus:
        body = self._request("GET", f"/v3/checkout/{checkout_id}")
        data = body.get("data") or body
        attempts = data.get("payment_attempts") or []
        attempt_status = attempts[0].get("status") if attempts and isinstance(attempts[0], dict) else None
        return CheckoutStatus(
            payment_status=data.get("payment_status") or data.get("status"),
            attempt_status=attempt_status,
            raw=body,
        )

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            logger.warning("Tazapay webhook secret not configured; accepting unsigned webhook")
            return True
        return verify_hex_signature(self.webhook_secret, raw_body, signature)

    def close(self) -> None:
        self._client.close()
