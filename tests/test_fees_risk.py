from datetime import date
from decimal import Decimal

import pytest

from collabvault.errors import InvalidRequest
from collabvault.services import milestones, risk
from collabvault.services.fees import compute_allocation_total, quantize_money


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


def test_allocation_total_applies_fees_to_budget_only():
    breakdown = compute_allocation_total(Decimal("10000"))

    assert breakdown.platform_fee == Decimal("500.00")
    assert breakdown.processing_fee == Decimal("290.00")
    assert breakdown.total_required == Decimal("10790.00")


def test_allocation_total_rounds_half_up_to_cents():
    breakdown = compute_allocation_total("333.33")

    assert breakdown.platform_fee == Decimal("16.67")
    assert breakdown.processing_fee == Decimal("9.67")
    assert breakdown.total_required == Decimal("359.67")


def test_quantize_money_accepts_floats_and_strings():
    assert quantize_money(0.1 + 0.2) == Decimal("0.30")
    assert quantize_money("12.345") == Decimal("12.35")
    assert quantize_money(None) == Decimal("0.00")


# ---------------------------------------------------------------------------
# Risk
# ---------------------------------------------------------------------------


def test_small_well_covered_campaign_without_dates():
    score = risk.compute_risk(target_budget=10000, escrow_percentage=20)

    # budget not above 10k (3) + escrow 20..40 (10) + missing dates (10)
    assert score == 23
    assert risk.risk_level(score) == "Low"


def test_risk_inputs_accept_strings_and_none():
    from_strings = risk.compute_risk(target_budget="10000", escrow_percentage="20")
    from_none = risk.compute_risk(target_budget=None, escrow_percentage=None)

    assert from_strings == 23
    # budget 0 (3) + escrow 0 (30) + missing dates (10)
    assert from_none == 43


def test_large_short_uncovered_campaign_is_high_risk():
    score = risk.compute_risk(
        target_budget=150000,
        escrow_percentage=5,
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 4),
    )

    assert score == 75
    assert risk.risk_level(score) == "High"


def test_medium_band():
    score = risk.compute_risk(
        target_budget=60000,
        escrow_percentage=15,
        start_date=date(2024, 6, 1),
        end_date=date(2024, 6, 21),
    )

    assert score == 40
    assert risk.risk_level(score) == "Medium"


@pytest.mark.parametrize(
    "score, level",
    [(0, "Low"), (30, "Low"), (31, "Medium"), (60, "Medium"), (61, "High"), (100, "High")],
)
def test_risk_level_boundaries(score, level):
    assert risk.risk_level(score) == level


# ---------------------------------------------------------------------------
# Milestones
# ---------------------------------------------------------------------------


def test_object_form_splits_agreed_price_evenly():
    items = milestones.load({"Draft": "completed", "Publish": "pending", "Report": "pending"}, "1000")

    assert [m.name for m in items] == ["Draft", "Publish", "Report"]
    assert [m.status for m in items] == [milestones.RELEASED, milestones.PENDING, milestones.PENDING]
    assert all(m.amount == Decimal("333.33") for m in items)


def test_list_form_keeps_per_item_amounts():
    items = milestones.load(
        '[{"name": "Kickoff", "status": "released", "amount": "250", "date": "2024-06-01"},'
        ' {"name": "Final", "status": "pending", "amount": 750}]'
    )

    assert items[0].status == milestones.RELEASED
    assert items[0].amount == Decimal("250")
    assert items[0].date == "2024-06-01"
    assert items[1].status == milestones.PENDING
    assert items[1].amount == Decimal("750")


def test_missing_milestones_normalize_to_empty():
    assert milestones.load(None) == []


@pytest.mark.parametrize("raw", ["not json", 42])
def test_malformed_milestones_are_rejected(raw):
    with pytest.raises(InvalidRequest):
        milestones.parse(raw)
