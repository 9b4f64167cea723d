"""Stateless campaign risk scoring.

Additive rule table over budget size, escrow coverage and campaign length.
Higher score means riskier; the result is clamped to 0..100.
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any

from collabvault.services.fees import to_decimal

# (exclusive lower bound, points); first match wins, last row is the default.
BUDGET_RULES: list[tuple[Decimal, int]] = [
    (Decimal("100000"), 25),
    (Decimal("50000"), 15),
    (Decimal("10000"), 8),
]
BUDGET_DEFAULT_POINTS = 3

# (exclusive upper bound in percent, points)
ESCROW_RULES: list[tuple[Decimal, int]] = [
    (Decimal("10"), 30),
    (Decimal("20"), 20),
    (Decimal("40"), 10),
]
ESCROW_DEFAULT_POINTS = 2

# (exclusive upper bound in days, points)
DURATION_RULES: list[tuple[int, int]] = [
    (7, 20),
    (14, 12),
    (30, 5),
]
DURATION_DEFAULT_POINTS = 0
MISSING_DATES_POINTS = 10

LOW_MAX = 30
MEDIUM_MAX = 60


def _budget_points(budget: Decimal) -> int:
    for threshold, points in BUDGET_RULES:
        if budget > threshold:
            return points
    return BUDGET_DEFAULT_POINTS


def _escrow_points(escrow_pct: Decimal) -> int:
    for bound, points in ESCROW_RULES:
        if escrow_pct < bound:
            return points
    return ESCROW_DEFAULT_POINTS


def _duration_points(start: date | None, end: date | None) -> int:
    if start is None or end is None:
        return MISSING_DATES_POINTS
    days = (end - start).days
    for bound, points in DURATION_RULES:
        if days < bound:
            return points
    return DURATION_DEFAULT_POINTS


def compute_risk(
    *,
    target_budget: Any,
    escrow_percentage: Any,
    start_date: date | None = None,
    end_date: date | None = None,
) -> int:
    score = (
        _budget_points(to_decimal(target_budget))
        + _escrow_points(to_decimal(escrow_percentage))
        + _duration_points(start_date, end_date)
    )
    return min(100, max(0, score))


def risk_level(score: int) -> str:
    if score <= LOW_MAX:
        return "Low"
    if score <= MEDIUM_MAX:
        return "Medium"
    return "High"
