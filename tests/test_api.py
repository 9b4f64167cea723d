"""End-to-end tests for the brand-facing REST API."""

import asyncio
import json
import uuid
from unittest.mock import patch

from collabvault.gateways import DryRunGateway
from collabvault.gateways.signing import hmac_sha256_hex
from collabvault.integrations.base import SendResult
from collabvault.services import payments
from tests.conftest import OTHER_BRAND_ID, brand_headers, make_client

HEADERS = brand_headers()


def _create_campaign(client, **overrides):
    payload = {"title": "Summer Launch", "target_budget": "10000", "escrow_percentage": "20"}
    payload.update(overrides)
    response = client.post("/campaigns", json=payload, headers=HEADERS)
    assert response.status_code == 201
    return response.json()


# ---------------------------------------------------------------------------
# Identity and campaigns
# ---------------------------------------------------------------------------


def test_brand_header_is_required():
    client, _, _ = make_client()

    missing = client.get("/campaigns")
    malformed = client.get("/campaigns", headers={"X-Brand-Id": "not-a-uuid"})

    assert missing.status_code == 401
    assert missing.json()["error"]["kind"] == "unauthenticated"
    assert malformed.status_code == 401


def test_create_campaign_locks_escrow():
    client, _, _ = make_client()

    body = _create_campaign(client)

    assert body["escrow_locked"] is True
    assert body["initial_lock"] == "2000.00"
    assert body["campaign"]["escrow_balance"] == "2000.00"
    assert body["campaign"]["escrow_status"] == "Locked"
    assert body["risk_level"] == "Low"


def test_campaign_of_other_brand_is_not_found():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    response = client.get(f"/campaigns/{campaign_id}", headers=brand_headers(OTHER_BRAND_ID))

    assert response.status_code == 404
    assert response.json()["error"]["kind"] == "not_found"
    assert client.get(f"/campaigns/{campaign_id}", headers=HEADERS).status_code == 200


def test_collaborations_and_bundles():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    created = client.post(
        f"/campaigns/{campaign_id}/collaborations",
        json={"creator_id": str(uuid.uuid4()), "creator_handle": "@glow.with.jess", "agreed_price": "500"},
        headers=HEADERS,
    )
    assert created.status_code == 201
    collaboration_id = created.json()["id"]

    generated = client.post(f"/campaigns/{campaign_id}/bundles", headers=HEADERS)
    assert generated.status_code == 200
    assert generated.json()["created"] == 1

    bundle = client.get(f"/collaborations/{collaboration_id}/bundle", headers=HEADERS).json()
    assert bundle["affiliate_code"].startswith("GLO")

    recalculated = client.post(
        f"/collaborations/{collaboration_id}/attribution/recalculate", headers=HEADERS
    )
    assert recalculated.status_code == 200
    assert recalculated.json()["creator_cost"] == "500.00"
    foreign = client.post(
        f"/collaborations/{collaboration_id}/attribution/recalculate",
        headers=brand_headers(OTHER_BRAND_ID),
    )
    assert foreign.status_code == 404

    results = client.get(f"/campaigns/{campaign_id}/attribution", headers=HEADERS).json()
    assert results["totals"]["clicks"] == 0
    assert results["totals"]["cost"] == "500.00"


# ---------------------------------------------------------------------------
# Escrow
# ---------------------------------------------------------------------------


def test_fund_and_release():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    funded = client.post(
        f"/escrow/campaigns/{campaign_id}/fund", json={"amount": "3000"}, headers=HEADERS
    )
    released = client.post(
        f"/escrow/campaigns/{campaign_id}/release",
        json={"milestone_id": "m1", "amount": "1200"},
        headers=HEADERS,
    )
    replay = client.post(
        f"/escrow/campaigns/{campaign_id}/release",
        json={"milestone_id": "m1", "amount": "1200"},
        headers=HEADERS,
    )
    too_much = client.post(
        f"/escrow/campaigns/{campaign_id}/release",
        json={"milestone_id": "m2", "amount": "99999"},
        headers=HEADERS,
    )

    assert funded.json()["new_balance"] == "5000.00"
    assert released.json()["new_balance"] == "3800.00"
    assert released.json()["new_total_released"] == "1200.00"
    assert replay.status_code == 409
    assert replay.json()["error"]["kind"] == "already_released"
    assert too_much.status_code == 409
    assert too_much.json()["error"]["kind"] == "insufficient_escrow"

    ledger = client.get("/escrow/transactions?sort_order=asc", headers=HEADERS).json()
    assert [entry["running_balance"] for entry in ledger["transactions"]] == [
        "2000.00",
        "5000.00",
        "3800.00",
    ]
    assert ledger["pagination"]["total"] == 3


def test_fund_rejects_non_positive_amount():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    response = client.post(
        f"/escrow/campaigns/{campaign_id}/fund", json={"amount": "0"}, headers=HEADERS
    )

    assert response.status_code == 422


def test_vault_deposit_withdraw_and_overview():
    client, _, _ = make_client()
    _create_campaign(client)

    deposit = client.post("/escrow/vault/deposit", json={"amount": "20000"}, headers=HEADERS)
    withdraw = client.post("/escrow/vault/withdraw", json={"amount": "500"}, headers=HEADERS)
    overdraw = client.post("/escrow/vault/withdraw", json={"amount": "50000"}, headers=HEADERS)

    assert deposit.status_code == 201
    assert deposit.json()["method"] == "Wire"
    assert withdraw.status_code == 201
    assert overdraw.status_code == 409
    assert overdraw.json()["error"]["kind"] == "insufficient_funds"

    overview = client.get("/escrow/overview", headers=HEADERS).json()
    assert overview["total_balance"] == "19500.00"
    assert overview["allocated_funds"] == "2000.00"
    assert overview["liquidity_state"] in {"healthy", "watch", "risk"}

    vault = client.get("/escrow/vault", headers=HEADERS).json()
    assert vault["total_balance"] == "19500.00"

    escrow_campaigns = client.get("/escrow/campaigns", headers=HEADERS).json()
    assert escrow_campaigns[0]["required_allocation"] == "10790.00"


def test_bad_milestone_amount_does_not_break_escrow_listing():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    rejected = client.post(
        f"/campaigns/{campaign_id}/collaborations",
        json={
            "creator_id": str(uuid.uuid4()),
            "agreed_price": "500",
            "milestones": [{"name": "Draft", "amount": "abc"}],
        },
        headers=HEADERS,
    )
    listing = client.get("/escrow/campaigns", headers=HEADERS)

    assert rejected.status_code == 400
    assert rejected.json()["error"]["kind"] == "validation"
    assert listing.status_code == 200
    assert listing.json()[0]["milestones"] == []


def test_system_status_reports_queue():
    client, _, _ = make_client()

    response = client.get("/escrow/system-status")

    assert response.json() == {"pending": 0, "completed": 0, "failed": 0, "dead_lettered": 0}


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


def test_payment_checkout_and_verify():
    client, _, gateway = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    fees = client.get("/payments/fees?amount=1000").json()
    assert fees["total"] == "1079.00"

    initiated = client.post(
        "/payments/initiate", json={"campaign_id": campaign_id, "amount": "1000"}, headers=HEADERS
    )
    assert initiated.status_code == 201
    transaction_id = initiated.json()["transaction_id"]

    transactions = client.get(
        f"/payments/transactions?campaign_id={campaign_id}", headers=HEADERS
    ).json()
    pending = next(t for t in transactions if t["id"] == transaction_id)
    assert pending["status"] == "Pending"

    gateway.complete_checkout(pending["gateway_reference_id"])
    verified = client.get(f"/payments/{transaction_id}/verify", headers=HEADERS)

    assert verified.json()["status"] == "Completed"
    details = client.get(f"/payments/escrow/{campaign_id}", headers=HEADERS).json()
    assert details["escrow_balance"] == "3000.00"
    assert details["funding_progress"] == 30


def test_payment_webhook_checks_signature():
    secret = "whsec_api"
    client, _, _ = make_client(gateway=DryRunGateway(webhook_secret=secret))
    campaign_id = _create_campaign(client)["campaign"]["id"]
    initiated = client.post(
        "/payments/initiate", json={"campaign_id": campaign_id, "amount": "1000"}, headers=HEADERS
    ).json()
    body = json.dumps(
        {
            "type": "checkout.paid",
            "data": {"reference_id": initiated["transaction_id"], "status": "paid", "amount_paid": 107900},
        }
    ).encode()

    rejected = client.post("/payments/webhook", content=body, headers={"webhook-signature": "bad"})
    accepted = client.post(
        "/payments/webhook",
        content=body,
        headers={"webhook-signature": hmac_sha256_hex(secret, body)},
    )

    assert rejected.status_code == 401
    assert accepted.json() == {"received": True, "processed": True}
    campaign = client.get(f"/campaigns/{campaign_id}", headers=HEADERS).json()
    assert campaign["escrow_balance"] == "3000.00"


def test_payment_webhook_runs_off_the_event_loop():
    secret = "whsec_api"
    client, _, _ = make_client(gateway=DryRunGateway(webhook_secret=secret))
    body = json.dumps({"type": "checkout.paid", "data": {"reference_id": str(uuid.uuid4())}}).encode()
    loop_running = []
    original = payments.handle_webhook

    def recording(*args, **kwargs):
        try:
            asyncio.get_running_loop()
            loop_running.append(True)
        except RuntimeError:
            loop_running.append(False)
        return original(*args, **kwargs)

    with patch("collabvault.services.payments.handle_webhook", side_effect=recording):
        response = client.post(
            "/payments/webhook",
            content=body,
            headers={"webhook-signature": hmac_sha256_hex(secret, body)},
        )

    assert response.status_code == 200
    assert loop_running == [False]


# ---------------------------------------------------------------------------
# Lift tests
# ---------------------------------------------------------------------------


def test_lift_test_lifecycle():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]

    created = client.post(
        "/lift-tests",
        json={
            "campaign_id": campaign_id,
            "name": "US vs rest",
            "test_type": "Geographic",
            "test_regions": ["us"],
        },
        headers=HEADERS,
    )
    assert created.status_code == 201
    lift_test = created.json()
    assert lift_test["status"] == "Draft"
    assert len(lift_test["groups"]) == 2
    test_id = lift_test["id"]

    idle = client.post(f"/lift-tests/{test_id}/assign", json={"region": "US"}, headers=HEADERS)
    assert idle.json() == {"group_id": None, "group_type": None}

    assert client.post(f"/lift-tests/{test_id}/start", headers=HEADERS).json()["status"] == "Running"
    assigned = client.post(f"/lift-tests/{test_id}/assign", json={"region": "US"}, headers=HEADERS).json()
    assert assigned["group_type"] == "Test"

    group = client.post(
        f"/lift-tests/{test_id}/events",
        json={"group_id": assigned["group_id"], "event_type": "impression"},
        headers=HEADERS,
    )
    assert group.json()["impressions"] == 1

    stray = client.post(
        f"/lift-tests/{test_id}/events",
        json={"group_id": str(uuid.uuid4()), "event_type": "impression"},
        headers=HEADERS,
    )
    assert stray.status_code == 404

    assert client.get(f"/lift-tests/{test_id}/results", headers=HEADERS).status_code == 404
    calculated = client.post(f"/lift-tests/{test_id}/calculate", headers=HEADERS).json()
    assert "status" in calculated["interpretation"]
    results = client.get(f"/lift-tests/{test_id}/results", headers=HEADERS).json()
    assert results["test_group"]["sample_size"] == 1

    assert client.delete(f"/lift-tests/{test_id}", headers=HEADERS).status_code == 409
    assert client.post(f"/lift-tests/{test_id}/complete", headers=HEADERS).json()["status"] == "Completed"
    listed = client.get(f"/campaigns/{campaign_id}/lift-tests", headers=HEADERS).json()
    assert [t["id"] for t in listed] == [test_id]


def test_draft_lift_test_can_be_deleted():
    client, _, _ = make_client()
    campaign_id = _create_campaign(client)["campaign"]["id"]
    test_id = client.post(
        "/lift-tests",
        json={"campaign_id": campaign_id, "name": "Split", "test_type": "RandomSplit"},
        headers=HEADERS,
    ).json()["id"]

    assert client.delete(f"/lift-tests/{test_id}", headers=HEADERS).status_code == 204
    assert client.get(f"/lift-tests/{test_id}", headers=HEADERS).status_code == 404


def test_sample_size_endpoint():
    client, _, _ = make_client()

    response = client.post(
        "/lift-tests/sample-size",
        json={"baseline_rate": 0.05, "minimum_detectable_effect": 0.2, "sample_size": 1000},
    )

    body = response.json()
    assert body["sample_size_per_group"] > 0
    assert body["total_sample_size"] == body["sample_size_per_group"] * 2
    assert 0 < body["power_at_sample_size"] < 1


# ---------------------------------------------------------------------------
# Integrations
# ---------------------------------------------------------------------------


def test_integration_config_masks_secret():
    client, _, _ = make_client()

    saved = client.put(
        "/integrations/GA4",
        json={"config": {"measurement_id": "G-1", "api_secret": "s3cret"}},
        headers=HEADERS,
    )

    assert saved.status_code == 200
    assert saved.json()["config"] == {"measurement_id": "G-1", "api_secret": "****"}
    assert saved.json()["status"] == "Connected"
    listed = client.get("/integrations", headers=HEADERS).json()
    assert [i["type"] for i in listed] == ["GA4"]


def test_integration_test_event():
    client, _, _ = make_client()
    client.put(
        "/integrations/GA4",
        json={"config": {"measurement_id": "G-1", "api_secret": "s3cret"}},
        headers=HEADERS,
    )

    with patch(
        "collabvault.integrations.ga4.send_purchase_event",
        return_value=SendResult(success=True, status_code=204),
    ):
        ok = client.post("/integrations/GA4/test", headers=HEADERS)
    with patch(
        "collabvault.integrations.ga4.send_purchase_event",
        return_value=SendResult(success=False, status_code=400, error="bad request"),
    ):
        failed = client.post("/integrations/GA4/test", headers=HEADERS)

    assert ok.json()["success"] is True
    assert failed.status_code == 502
    assert failed.json()["error"]["kind"] == "integration"
