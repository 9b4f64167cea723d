from __future__ import annotations

import uuid
from typing import Any

from collabvault.gateways.base import (
    CheckoutRequest,
    CheckoutSession,
    CheckoutStatus,
    GatewayName,
    PaymentGateway,
)
from collabvault.gateways.exceptions import GatewayRequestError
from collabvault.gateways.signing import verify_hex_signature


class DryRunGateway(PaymentGateway):
    """In-memory checkout provider with deterministic, inspectable state.

    Used for development and tests. Checkouts start ``pending``;
    ``complete_checkout`` and ``fail_checkout`` simulate the payer.
    """

    name = GatewayName.DRY_RUN

    def __init__(self, webhook_secret: str = "", *, fail_next: bool = False) -> None:
        self.webhook_secret = webhook_secret
        self.fail_next = fail_next
        self._sessions: dict[str, dict[str, Any]] = {}
        self._by_reference: dict[str, str] = {}  # idempotency cache

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        if self.fail_next:
            self.fail_next = False
            raise GatewayRequestError("Dry-run gateway rejected the checkout", {"dry_run": True})

        existing = self._by_reference.get(request.reference_id)
        if existing is not None:
            return CheckoutSession(
                id=existing,
                url=self._sessions[existing]["url"],
                raw={"note": "idempotent_replay", "dry_run": True},
            )

        checkout_id = f"dry-run-chk-{uuid.uuid4().hex[:12]}"
        url = f"https://dry-run.example.com/checkout/{checkout_id}"
        self._sessions[checkout_id] = {
            "amount_minor": int(request.amount * 100),
            "currency": request.currency,
            "reference_id": request.reference_id,
            "payment_status": "pending",
            "url": url,
        }
        self._by_reference[request.reference_id] = checkout_id
        return CheckoutSession(id=checkout_id, url=url, raw={"dry_run": True, **self._sessions[checkout_id]})

    def get_checkout_status(self, checkout_id: str) -> CheckoutStatus:
        session = self._sessions.get(checkout_id)
        if session is None:
            raise GatewayRequestError("Unknown checkout", {"checkout_id": checkout_id})
        return CheckoutStatus(
            payment_status=session["payment_status"],
            raw={"dry_run": True, **session},
        )

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool:
        if not self.webhook_secret:
            return True
        return verify_hex_signature(self.webhook_secret, raw_body, signature)

    def complete_checkout(self, checkout_id: str) -> None:
        self._sessions[checkout_id]["payment_status"] = "paid"

    def fail_checkout(self, checkout_id: str) -> None:
        self._sessions[checkout_id]["payment_status"] = "expired"
