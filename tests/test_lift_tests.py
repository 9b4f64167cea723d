"""Lift test lifecycle, group assignment and result calculation."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from collabvault.errors import InvalidRequest, InvalidState, NotFound
from collabvault.models import GroupType, LiftTest
from collabvault.services import attribution, lift_tests
from collabvault.tasks import OutboundTaskQueue
from tests.conftest import BRAND_ID, OTHER_BRAND_ID, _make_bundle, _make_campaign, setup_test_db


def _groups(lift_test):
    return {group.group_type: group for group in lift_test.groups}


def _geo_test(db, campaign, **overrides):
    kwargs = {
        "campaign_id": campaign.id,
        "name": "North America geo test",
        "test_type": "Geographic",
        "test_regions": ["us", " ca "],
        "control_regions": ["FR"],
    }
    kwargs.update(overrides)
    return lift_tests.create_lift_test(db, BRAND_ID, **kwargs)


def _split_test(db, campaign, **overrides):
    kwargs = {"campaign_id": campaign.id, "name": "Half split", "test_type": "RandomSplit"}
    kwargs.update(overrides)
    return lift_tests.create_lift_test(db, BRAND_ID, **kwargs)


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


def test_create_geographic_test_normalizes_regions():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        assert lift_test.status == "Draft"
        assert lift_test.split_method == "region"
        groups = _groups(lift_test)
        assert groups["Test"].regions == ["US", "CA"]
        assert groups["Control"].regions == ["FR"]
        assert lift_test.result is not None
        assert lift_test.result.calculated_at is None


def test_random_split_defaults_to_even_percentages():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _split_test(db, campaign)

        groups = _groups(lift_test)
        assert groups["Test"].percentage == Decimal("50")
        assert groups["Control"].percentage == Decimal("50")


@pytest.mark.parametrize(
    "overrides",
    [
        {"test_type": "Holdout"},
        {"name": "   "},
        {"test_regions": []},
        {"test_type": "RandomSplit", "test_percentage": 120},
        {"test_type": "TimeBased"},
    ],
)
def test_invalid_lift_test_definitions_are_rejected(overrides):
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)

        with pytest.raises(InvalidRequest):
            _geo_test(db, campaign, **overrides)


def test_time_based_baseline_must_precede_its_end():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        now = datetime.now(timezone.utc)

        with pytest.raises(InvalidRequest):
            lift_tests.create_lift_test(
                db,
                BRAND_ID,
                campaign_id=campaign.id,
                name="Before/after",
                test_type="TimeBased",
                baseline_start_date=now,
                baseline_end_date=now - timedelta(days=3),
            )


def test_other_brand_cannot_see_lift_test():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        with pytest.raises(NotFound):
            lift_tests.owned_lift_test(db, OTHER_BRAND_ID, lift_test.id)
        with pytest.raises(NotFound):
            _geo_test(db, campaign, campaign_id=_make_campaign(db, OTHER_BRAND_ID).id)
        assert lift_tests.list_brand_lift_tests(db, OTHER_BRAND_ID) == []


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


def test_lifecycle_transitions():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        with pytest.raises(InvalidState):
            lift_tests.pause_test(db, BRAND_ID, lift_test.id)

        started = lift_tests.start_test(db, BRAND_ID, lift_test.id)
        assert started.status == "Running"
        assert started.start_date is not None

        with pytest.raises(InvalidState):
            lift_tests.start_test(db, BRAND_ID, lift_test.id)

        assert lift_tests.pause_test(db, BRAND_ID, lift_test.id).status == "Paused"
        with pytest.raises(InvalidState):
            lift_tests.pause_test(db, BRAND_ID, lift_test.id)
        assert lift_tests.resume_test(db, BRAND_ID, lift_test.id).status == "Running"

        completed = lift_tests.complete_test(db, BRAND_ID, lift_test.id)
        assert completed.status == "Completed"
        assert completed.end_date is not None
        assert completed.result.calculated_at is not None

        with pytest.raises(InvalidState):
            lift_tests.complete_test(db, BRAND_ID, lift_test.id)
        with pytest.raises(InvalidState):
            lift_tests.resume_test(db, BRAND_ID, lift_test.id)


def test_draft_cannot_be_completed():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        with pytest.raises(InvalidState):
            lift_tests.complete_test(db, BRAND_ID, lift_test.id)


def test_only_draft_tests_can_be_deleted():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        draft = _geo_test(db, campaign)
        running = _geo_test(db, campaign, name="Running test")
        lift_tests.start_test(db, BRAND_ID, running.id)

        with pytest.raises(InvalidState):
            lift_tests.delete_lift_test(db, BRAND_ID, running.id)

        draft_id = draft.id
        lift_tests.delete_lift_test(db, BRAND_ID, draft_id)
        db.expire_all()
        assert db.get(LiftTest, draft_id) is None
        assert [t.name for t in lift_tests.list_campaign_lift_tests(db, BRAND_ID, campaign.id)] == [
            "Running test"
        ]


def test_update_changes_descriptive_fields():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        updated = lift_tests.update_lift_test(
            db, BRAND_ID, lift_test.id, name="Renamed", hypothesis="Creators drive sales", target_lift_pct=15
        )

        assert updated.name == "Renamed"
        assert updated.hypothesis == "Creators drive sales"
        assert updated.target_lift_pct == Decimal("15")


# ---------------------------------------------------------------------------
# Assignment
# ---------------------------------------------------------------------------


def test_geographic_assignment():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)

        assert lift_tests.assign_user_to_group(db, lift_test.id, region="US") is None

        lift_tests.start_test(db, BRAND_ID, lift_test.id)
        assert lift_tests.assign_user_to_group(db, lift_test.id, region="us").group_type == "Test"
        assert lift_tests.assign_user_to_group(db, lift_test.id, region="CA").group_type == "Test"
        assert lift_tests.assign_user_to_group(db, lift_test.id, region="FR").group_type == "Control"
        # regions outside both lists fall to Control
        assert lift_tests.assign_user_to_group(db, lift_test.id, region="DE").group_type == "Control"
        assert lift_tests.assign_user_to_group(db, lift_test.id).group_type == "Control"


def test_random_split_assignment_is_deterministic():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _split_test(db, campaign)
        lift_tests.start_test(db, BRAND_ID, lift_test.id)

        assigned = {}
        for n in range(200):
            user = f"user-{n}"
            first = lift_tests.assign_user_to_group(db, lift_test.id, user_id=user)
            second = lift_tests.assign_user_to_group(db, lift_test.id, user_id=user)
            assert first.id == second.id
            assigned[user] = first.group_type

        test_share = sum(1 for g in assigned.values() if g == "Test")
        assert 60 < test_share < 140
        assert lift_tests.assign_user_to_group(db, lift_test.id).group_type == "Control"


@pytest.mark.parametrize("percentage, expected", [(100, "Test"), (0, "Control")])
def test_random_split_extremes(percentage, expected):
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _split_test(db, campaign, test_percentage=percentage)
        lift_tests.start_test(db, BRAND_ID, lift_test.id)

        for n in range(25):
            group = lift_tests.assign_user_to_group(db, lift_test.id, session_id=f"s{n}")
            assert group.group_type == expected


# ---------------------------------------------------------------------------
# Recording and results
# ---------------------------------------------------------------------------


def test_group_events_require_running_test():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _geo_test(db, campaign)
        test_group = _groups(lift_test)["Test"]

        with pytest.raises(InvalidState):
            lift_tests.record_group_event(db, test_group.id, "impression")

        lift_tests.start_test(db, BRAND_ID, lift_test.id)
        lift_tests.record_group_event(db, test_group.id, "impression")
        lift_tests.record_group_event(db, test_group.id, "conversion")
        group = lift_tests.record_group_event(db, test_group.id, "revenue", "49.90")

        assert group.impressions == 1
        assert group.conversions == 1
        assert group.revenue == Decimal("49.90")

        with pytest.raises(InvalidRequest):
            lift_tests.record_group_event(db, test_group.id, "bounce")
        with pytest.raises(InvalidRequest):
            lift_tests.record_group_event(db, test_group.id, "revenue", -1)


def test_calculate_results_from_group_counters():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _split_test(db, campaign)
        lift_tests.start_test(db, BRAND_ID, lift_test.id)

        groups = _groups(lift_test)
        groups["Test"].unique_users = 1000
        groups["Test"].conversions = 120
        groups["Test"].revenue = Decimal("6000")
        groups["Control"].unique_users = 1000
        groups["Control"].conversions = 80
        groups["Control"].revenue = Decimal("4000")
        db.commit()

        outcome = lift_tests.calculate_results(db, lift_test.id)
        result = outcome["result"]

        assert result.lift_percentage == pytest.approx(50.0)
        assert result.absolute_lift == 40
        assert result.incremental_revenue == Decimal("2000.00")
        assert result.sample_size_test == 1000
        assert result.p_value < 0.01
        assert result.confidence_interval["lower"] > 0
        assert outcome["interpretation"]["status"] == "highly_significant"

        db.expire_all()
        stored = db.get(LiftTest, lift_test.id)
        assert stored.is_significant is True
        assert stored.confidence_level == 95
        assert stored.status == "Running"


def test_formatted_results_need_a_calculation():
    database = setup_test_db()
    with database.session_scope() as db:
        campaign = _make_campaign(db)
        lift_test = _split_test(db, campaign)

        with pytest.raises(NotFound):
            lift_tests.get_formatted_results(db, BRAND_ID, lift_test.id)

        lift_tests.start_test(db, BRAND_ID, lift_test.id)
        lift_tests.calculate_for_brand(db, BRAND_ID, lift_test.id)
        formatted = lift_tests.get_formatted_results(db, BRAND_ID, lift_test.id)

        assert formatted["test_group"]["conversions"] == 0
        assert formatted["lift"]["percentage"] == 0.0
        assert formatted["statistics"]["p_value"] == 1.0
        assert formatted["interpretation"]["status"] == "not_significant"


def test_purchases_feed_running_geographic_test():
    database = setup_test_db()
    queue = OutboundTaskQueue(database)
    with database.session_scope() as db:
        campaign, _, bundle = _make_bundle(db)
        lift_test = _geo_test(db, campaign)
        lift_tests.start_test(db, BRAND_ID, lift_test.id)

        for order_id, country, value in (("1001", "US", "80"), ("1002", "FR", "20"), ("1003", "US", "40")):
            attribution.record_event(
                db,
                tracking_bundle_id=bundle.id,
                event_type="Purchase",
                event_source="Webhook",
                order_value=value,
                order_id=order_id,
                ip_country=country,
                queue=queue,
            )

        assert queue.drain() == {"completed": 6, "dead_lettered": 0}

        db.expire_all()
        groups = _groups(db.get(LiftTest, lift_test.id))
        assert groups[GroupType.TEST.value].conversions == 2
        assert groups[GroupType.TEST.value].revenue == Decimal("120.00")
        assert groups[GroupType.CONTROL.value].conversions == 1
        assert groups[GroupType.CONTROL.value].revenue == Decimal("20.00")


def test_time_based_test_reads_event_history():
    database = setup_test_db()
    queue = OutboundTaskQueue(database)
    with database.session_scope() as db:
        campaign, _, bundle = _make_bundle(db)
        now = datetime.now(timezone.utc)
        lift_test = lift_tests.create_lift_test(
            db,
            BRAND_ID,
            campaign_id=campaign.id,
            name="Before/after launch",
            test_type="TimeBased",
            baseline_start_date=now - timedelta(days=30),
            baseline_end_date=now - timedelta(days=1),
        )
        lift_tests.start_test(db, BRAND_ID, lift_test.id)

        attribution.record_event(
            db,
            tracking_bundle_id=bundle.id,
            event_type="Purchase",
            event_source="Affiliate",
            order_value="99.00",
            order_id="T-1",
            queue=queue,
        )
        queue.drain()

        completed = lift_tests.complete_test(db, BRAND_ID, lift_test.id)
        result = completed.result

        assert result.test_conversions == 1
        assert result.control_conversions == 0
        assert result.lift_percentage == 100.0
        assert result.details_json["method"] == "time_based"
        # group counters are not touched by time-based tests
        assert all(group.conversions == 0 for group in completed.groups)
