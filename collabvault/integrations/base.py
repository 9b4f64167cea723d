from __future__ import annotations

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field


class OrderItem(BaseModel):
    item_id: str | None = None
    item_name: str | None = None
    quantity: int = 1
    price: Decimal = Decimal("0")


class OrderData(BaseModel):
    """Purchase payload pushed to analytics integrations."""

    order_id: str
    value: Decimal
    currency: str = "USD"
    affiliate_code: str | None = None
    campaign_id: str | None = None
    client_id: str | None = None
    user_hash: str | None = None
    event_time: int | None = None
    event_source_url: str | None = None
    items: list[OrderItem] = Field(default_factory=list)


class SendResult(BaseModel):
    """Outcome of a single one-way push; never raised, always returned."""

    success: bool
    status_code: int | None = None
    error: str | None = None
    raw_response: dict[str, Any] = Field(default_factory=dict)
