"""Escrow ledger: locking, funding, milestone releases and vault liquidity."""

import uuid
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from collabvault.db import atomic
from collabvault.errors import (
    AlreadyReleased,
    DuplicateEscrow,
    InsufficientEscrow,
    InsufficientFunds,
    InvalidAmount,
    InvalidRequest,
    NotFound,
)
from collabvault.models import (
    Campaign,
    CampaignEscrow,
    EscrowLedger,
    LedgerEntryType,
    Transaction,
    TransactionType,
)
from collabvault.services import capital, escrow
from tests.conftest import BRAND_ID, OTHER_BRAND_ID, _make_campaign, _make_collaboration, setup_test_db


def _ledger_sum(db, campaign_id) -> Decimal:
    entries = db.execute(
        select(EscrowLedger).where(EscrowLedger.campaign_id == campaign_id)
    ).scalars()
    total = Decimal("0")
    for entry in entries:
        if entry.type == LedgerEntryType.RELEASE.value:
            total -= entry.amount
        else:
            total += entry.amount
    return total


def _assert_conserved(db, campaign_id):
    db.expire_all()
    campaign = db.get(Campaign, campaign_id)
    assert campaign.escrow_balance == campaign.total_funded - campaign.total_released
    assert campaign.escrow_balance >= 0
    assert _ledger_sum(db, campaign_id) == campaign.escrow_balance
    if campaign.escrow is not None:
        assert campaign.escrow.remaining_amount == campaign.escrow_balance


# ---------------------------------------------------------------------------
# Lock / fund / release
# ---------------------------------------------------------------------------


def test_campaign_creation_locks_initial_escrow():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        assert campaign.escrow_balance == Decimal("2000.00")
        assert campaign.total_funded == Decimal("2000.00")
        assert campaign.escrow_status == "Locked"
        assert campaign.escrow.locked_amount == Decimal("2000.00")
        _assert_conserved(db, campaign.id)


def test_zero_escrow_percentage_creates_no_escrow():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db, escrow_percentage=0)

        assert campaign.escrow is None
        assert campaign.escrow_balance == Decimal("0.00")
        assert db.execute(select(func.count()).select_from(EscrowLedger)).scalar_one() == 0


def test_second_lock_is_rejected():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        with pytest.raises(DuplicateEscrow):
            with atomic(db):
                capital.lock_escrow(db, campaign.id, 500, BRAND_ID)

        _assert_conserved(db, campaign.id)


def test_fund_then_release_keeps_balances_conserved():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        funded = escrow.fund_campaign(db, BRAND_ID, campaign.id, Decimal("3000"))
        assert funded["new_balance"] == Decimal("5000.00")
        assert funded["new_total_funded"] == Decimal("5000.00")

        released = escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", Decimal("1200"))
        assert released["new_balance"] == Decimal("3800.00")
        assert released["new_total_released"] == Decimal("1200.00")

        _assert_conserved(db, campaign.id)


def test_fund_creates_escrow_account_on_first_funding():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db, escrow_percentage=0)

        escrow.fund_campaign(db, BRAND_ID, campaign.id, 750)

        account = db.execute(
            select(CampaignEscrow).where(CampaignEscrow.campaign_id == campaign.id)
        ).scalar_one()
        assert account.locked_amount == Decimal("750.00")
        _assert_conserved(db, campaign.id)


def test_milestone_cannot_be_released_twice():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", 500)

        with pytest.raises(AlreadyReleased):
            escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", 500)

        completed = db.execute(
            select(func.count())
            .select_from(EscrowLedger)
            .where(EscrowLedger.milestone_id == "m1", EscrowLedger.type == "Release")
        ).scalar_one()
        assert completed == 1
        _assert_conserved(db, campaign.id)


def test_partial_index_backs_up_duplicate_release():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        with atomic(db):
            capital.release_escrow(db, campaign.id, 100, BRAND_ID, milestone_id="m1")

        with pytest.raises(AlreadyReleased):
            with atomic(db):
                capital.release_escrow(db, campaign.id, 100, BRAND_ID, milestone_id="m1")

        _assert_conserved(db, campaign.id)


def test_insufficient_release_writes_nothing():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        before_ledger = db.execute(select(func.count()).select_from(EscrowLedger)).scalar_one()
        before_tx = db.execute(select(func.count()).select_from(Transaction)).scalar_one()

        with pytest.raises(InsufficientEscrow):
            escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", Decimal("2000.01"))

        assert db.execute(select(func.count()).select_from(EscrowLedger)).scalar_one() == before_ledger
        assert db.execute(select(func.count()).select_from(Transaction)).scalar_one() == before_tx
        db.expire_all()
        assert db.get(Campaign, campaign.id).escrow_balance == Decimal("2000.00")


def test_release_without_escrow_account_is_insufficient():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db, escrow_percentage=0)

        with pytest.raises(InsufficientEscrow):
            with atomic(db):
                capital.release_escrow(db, campaign.id, 10, BRAND_ID)


@pytest.mark.parametrize("amount", [0, -5, "0.001"])
def test_non_positive_amounts_are_rejected(amount):
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        with pytest.raises(InvalidAmount):
            escrow.fund_campaign(db, BRAND_ID, campaign.id, amount)
        with pytest.raises(InvalidAmount):
            escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", amount)


def test_other_brand_sees_not_found():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        with pytest.raises(NotFound):
            escrow.fund_campaign(db, OTHER_BRAND_ID, campaign.id, 100)
        with pytest.raises(NotFound):
            escrow.release_milestone(db, OTHER_BRAND_ID, campaign.id, "m1", 100)
        _assert_conserved(db, campaign.id)


# ---------------------------------------------------------------------------
# Vault
# ---------------------------------------------------------------------------


def test_liquidity_risk_when_pending_exceeds_available():
    liquidity = escrow.assess_liquidity(Decimal("5000"), Decimal("3000"), Decimal("2500"))

    assert liquidity["available_balance"] == Decimal("0.00")
    assert liquidity["coverage_ratio"] == 0.0
    assert liquidity["liquidity_state"] == "risk"


def test_liquidity_states_follow_coverage_ratio():
    healthy = escrow.assess_liquidity(Decimal("10000"), Decimal("1000"), Decimal("1000"))
    watch = escrow.assess_liquidity(Decimal("3500"), Decimal("1000"), Decimal("1000"))
    idle = escrow.assess_liquidity(Decimal("100"), Decimal("0"), Decimal("0"))
    empty = escrow.assess_liquidity(Decimal("0"), Decimal("0"), Decimal("0"))

    assert healthy["liquidity_state"] == "healthy"
    assert healthy["coverage_ratio"] == 8.0
    assert watch["liquidity_state"] == "watch"
    assert watch["coverage_ratio"] == 1.5
    assert idle["coverage_ratio"] == 99.0
    assert idle["liquidity_explanation"] == "No upcoming releases scheduled."
    assert empty["coverage_ratio"] == 0.0
    assert empty["liquidity_state"] == "healthy"


def test_deposit_and_withdraw_move_vault_balance():
    database = setup_test_db()
    with database.session_scope() as db:
        escrow.deposit_funds(db, BRAND_ID, Decimal("8000"))
        withdrawal = escrow.withdraw_funds(db, BRAND_ID, Decimal("1500"))

        assert withdrawal["amount"] == Decimal("1500.00")
        assert escrow.compute_vault_balance(db, BRAND_ID) == Decimal("6500.00")
        stored = db.get(Transaction, withdrawal["transaction_id"])
        assert stored.type == TransactionType.WITHDRAWAL.value
        assert stored.amount == Decimal("-1500.00")


def test_withdraw_beyond_available_is_rejected():
    database = setup_test_db()
    with database.session_scope() as db:
        escrow.deposit_funds(db, BRAND_ID, Decimal("1000"))

        with pytest.raises(InsufficientFunds):
            escrow.withdraw_funds(db, BRAND_ID, Decimal("1000.01"))
        assert escrow.compute_vault_balance(db, BRAND_ID) == Decimal("1000.00")


def test_deposit_limit_enforced():
    database = setup_test_db()
    with database.session_scope() as db:
        with pytest.raises(InvalidAmount):
            escrow.deposit_funds(db, BRAND_ID, Decimal("10000000.01"))


def test_overview_reports_allocations_and_history():
    database = setup_test_db()
    with database.session_scope() as db:
        escrow.deposit_funds(db, BRAND_ID, Decimal("20000"))
        campaign = _make_campaign(db)
        escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", Decimal("500"))

        overview = escrow.get_overview(db, BRAND_ID)

        assert overview["total_balance"] == Decimal("20000.00")
        assert overview["allocated_funds"] == Decimal("1500.00")
        assert overview["released_funds"] == Decimal("500.00")
        assert overview["pending_releases"] == Decimal("1500.00")
        assert overview["available_balance"] == Decimal("17000.00")
        assert overview["liquidity_state"] == "healthy"
        assert len(overview["history"]["total_balance"]) == 7
        assert overview["history"]["allocated"][-1] == Decimal("1500.00")
        assert overview["history"]["released"][-1] == Decimal("500.00")


def test_escrow_campaigns_list_milestones_and_allocation():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        _make_collaboration(
            db,
            campaign,
            agreed_price=Decimal("900"),
            milestones_payload={"Draft": "completed", "Publish": "pending", "Report": "pending"},
        )

        rows = escrow.get_escrow_campaigns(db, BRAND_ID)

        assert len(rows) == 1
        row = rows[0]
        assert row["remaining"] == Decimal("8000.00")
        assert row["upcoming_release_amount"] == Decimal("600.00")
        assert [m["status"] for m in row["milestones"]] == ["Released", "Pending", "Pending"]
        assert row["required_allocation"] == Decimal("10790.00")


def test_collaboration_with_bad_milestone_amount_is_rejected():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        with pytest.raises(InvalidRequest):
            _make_collaboration(db, campaign, milestones_payload=[{"name": "Draft", "amount": "abc"}])

        assert campaign.collaborations == []
        rows = escrow.get_escrow_campaigns(db, BRAND_ID)
        assert rows[0]["milestones"] == []
        assert rows[0]["upcoming_release_amount"] == Decimal("0.00")


def test_transactions_page_carries_running_balance():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        escrow.fund_campaign(db, BRAND_ID, campaign.id, Decimal("3000"))
        escrow.release_milestone(db, BRAND_ID, campaign.id, "m1", Decimal("1200"))

        page = escrow.get_transactions(db, BRAND_ID, sort_order="asc")

        assert page["pagination"]["total"] == 3
        balances = [row["running_balance"] for row in page["transactions"]]
        assert balances == [Decimal("2000.00"), Decimal("5000.00"), Decimal("3800.00")]

        releases = escrow.get_transactions(db, BRAND_ID, type="Release")
        assert releases["pagination"]["total"] == 1
        assert releases["transactions"][0]["milestone_id"] == "m1"


def test_unknown_campaign_is_not_found():
    database = setup_test_db()
    with database.session_scope() as db:
        with pytest.raises(NotFound):
            escrow.fund_campaign(db, BRAND_ID, uuid.uuid4(), 100)
