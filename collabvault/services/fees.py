"""Fee schedule shared by escrow allocation, payment initiation and fee quotes."""

from __future__ import annotations

from dataclasses import asdict, dataclass
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

PLATFORM_FEE_PERCENT = Decimal("5")
PROCESSING_FEE_PERCENT = Decimal("2.9")

CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def quantize_money(value: Any) -> Decimal:
    return to_decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class AllocationBreakdown:
    target_budget: Decimal
    platform_fee_percent: Decimal
    processing_fee_percent: Decimal
    platform_fee: Decimal
    processing_fee: Decimal
    total_required: Decimal

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def compute_allocation_total(target_budget: Any) -> AllocationBreakdown:
    """Budget plus platform and processing fees, each applied to the budget alone."""
    budget = quantize_money(target_budget)
    platform_fee = quantize_money(budget * PLATFORM_FEE_PERCENT / 100)
    processing_fee = quantize_money(budget * PROCESSING_FEE_PERCENT / 100)
    return AllocationBreakdown(
        target_budget=budget,
        platform_fee_percent=PLATFORM_FEE_PERCENT,
        processing_fee_percent=PROCESSING_FEE_PERCENT,
        platform_fee=platform_fee,
        processing_fee=processing_fee,
        total_required=quantize_money(budget + platform_fee + processing_fee),
    )
