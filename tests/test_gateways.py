import json
from decimal import Decimal

import httpx
import pytest

from collabvault.gateways import (
    CheckoutRequest,
    CheckoutStatus,
    Customer,
    DryRunGateway,
    GatewayRequestError,
    PaymentOutcome,
    get_payment_gateway,
)
from collabvault.gateways.exceptions import GatewayConfigurationError
from collabvault.gateways.signing import hmac_sha256_hex
from collabvault.gateways.tazapay import TazapayGateway


def _request(**overrides) -> CheckoutRequest:
    defaults = {
        "amount": Decimal("1079.00"),
        "description": "Escrow funding: Summer Launch",
        "customer": Customer(name="Glow Skin", email="billing@glowskin.example"),
        "reference_id": "txn-1",
    }
    defaults.update(overrides)
    return CheckoutRequest(**defaults)


def _tazapay(handler, **kwargs) -> TazapayGateway:
    return TazapayGateway(
        "key",
        "secret",
        base_url="https://service-sandbox.tazapay.com",
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


# ---------------------------------------------------------------------------
# Factory and status mapping
# ---------------------------------------------------------------------------


def test_factory_returns_dry_run_by_default():
    assert isinstance(get_payment_gateway(), DryRunGateway)


def test_tazapay_requires_credentials():
    with pytest.raises(GatewayConfigurationError):
        TazapayGateway("", "", base_url="https://service-sandbox.tazapay.com")


@pytest.mark.parametrize(
    "payment_status, attempt_status, expected",
    [
        ("paid", None, PaymentOutcome.PAID),
        ("requires_payment", "succeeded", PaymentOutcome.PAID),
        ("expired", None, PaymentOutcome.FAILED),
        ("requires_payment", "failed", PaymentOutcome.FAILED),
        ("requires_payment", None, PaymentOutcome.PENDING),
        (None, None, PaymentOutcome.PENDING),
    ],
)
def test_checkout_status_outcome(payment_status, attempt_status, expected):
    status = CheckoutStatus(payment_status=payment_status, attempt_status=attempt_status)

    assert status.outcome == expected


# ---------------------------------------------------------------------------
# Tazapay adapter
# ---------------------------------------------------------------------------


def test_tazapay_checkout_sends_minor_units():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(
            200, json={"data": {"id": "chk_123", "url": "https://checkout.tazapay.com/chk_123"}}
        )

    session = _tazapay(handler).create_checkout_session(_request())

    assert session.id == "chk_123"
    assert session.url == "https://checkout.tazapay.com/chk_123"
    assert seen["path"] == "/v3/checkout"
    assert seen["auth"].startswith("Basic ")
    assert seen["body"]["amount"] == 107900
    assert seen["body"]["reference_id"] == "txn-1"
    assert seen["body"]["customer_details"]["country"] == "US"


def test_tazapay_status_reads_first_attempt():
    def handler(request):
        return httpx.Response(
            200,
            json={
                "data": {
                    "payment_status": "requires_payment",
                    "payment_attempts": [{"status": "succeeded"}],
                }
            },
        )

    status = _tazapay(handler).get_checkout_status("chk_123")

    assert status.attempt_status == "succeeded"
    assert status.outcome == PaymentOutcome.PAID


def test_tazapay_http_errors_are_wrapped():
    def handler(request):
        return httpx.Response(422, json={"message": "invalid amount"})

    with pytest.raises(GatewayRequestError) as excinfo:
        _tazapay(handler).create_checkout_session(_request())

    assert excinfo.value.details["status_code"] == 422
    assert excinfo.value.details["body"] == {"message": "invalid amount"}


def test_tazapay_missing_checkout_id_is_an_error():
    with pytest.raises(GatewayRequestError):
        _tazapay(lambda request: httpx.Response(200, json={"data": {}})).create_checkout_session(
            _request()
        )


def test_tazapay_webhook_signature():
    gateway = _tazapay(lambda request: httpx.Response(200), webhook_secret="whsec")
    body = b'{"type": "checkout.paid"}'

    assert gateway.verify_webhook(body, hmac_sha256_hex("whsec", body)) is True
    assert gateway.verify_webhook(body, "deadbeef") is False
    assert gateway.verify_webhook(body, None) is False
