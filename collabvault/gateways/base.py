from __future__ import annotations

import enum
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class GatewayName(str, enum.Enum):
    DRY_RUN = "dry_run"
    TAZAPAY = "tazapay"


class PaymentOutcome(str, enum.Enum):
    PAID = "paid"
    FAILED = "failed"
    PENDING = "pending"


PAID_STATUSES = ("paid", "success", "completed", "payment_completed")
FAILED_STATUSES = ("failed", "expired", "cancelled", "canceled")


class Customer(BaseModel):
    name: str
    email: str
    country: str = "US"


class CheckoutRequest(BaseModel):
    """Gateway-neutral checkout payload; ``amount`` is in major units."""

    amount: Decimal
    currency: str = "USD"
    description: str
    customer: Customer
    reference_id: str
    success_url: str | None = None
    cancel_url: str | None = None


class CheckoutSession(BaseModel):
    id: str
    url: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)


class CheckoutStatus(BaseModel):
    payment_status: str | None = None
    attempt_status: str | None = None
    raw: dict[str, Any] = Field(default_factory=dict)

    @property
    def outcome(self) -> PaymentOutcome:
        status = (self.payment_status or "").lower()
        attempt = (self.attempt_status or "").lower()
        if status in PAID_STATUSES or attempt == "succeeded":
            return PaymentOutcome.PAID
        if status in FAILED_STATUSES or attempt == "failed":
            return PaymentOutcome.FAILED
        return PaymentOutcome.PENDING


class PaymentGateway:
    """Base class for checkout providers.

    The payments service talks to this interface only; it never sees the
    provider's wire format.
    """

    name: GatewayName

    def create_checkout_session(self, request: CheckoutRequest) -> CheckoutSession:
        raise NotImplementedError

    def get_checkout_status(self, checkout_id: str) -> CheckoutStatus:
        raise NotImplementedError

    def verify_webhook(self, raw_body: bytes, signature: str | None) -> bool:
        raise NotImplementedError

    def close(self) -> None:
        return None
