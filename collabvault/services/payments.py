"""Campaign funding through the external checkout provider.

A checkout writes a Pending Deposit transaction first; money only reaches
the campaign escrow when the provider reports the payment as paid, via
polling (``verify_payment``) or the webhook. Both paths check the stored
status before updating, so a payment is credited at most once.
"""

from __future__ import annotations

import json
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from collabvault.db import atomic
from collabvault.errors import GatewayError, InvalidAmount, NotFound, Unauthenticated
from collabvault.gateways import (
    CheckoutRequest,
    Customer,
    GatewayRequestError,
    PaymentGateway,
    PaymentOutcome,
)
from collabvault.models import Campaign, Transaction, TransactionStatus, TransactionType
from collabvault.services import capital
from collabvault.services.campaigns import get_brand_profile
from collabvault.services.escrow import owned_campaign
from collabvault.services.fees import compute_allocation_total, quantize_money
from collabvault.settings import settings

logger = logging.getLogger(__name__)

WEBHOOK_SUCCESS_TYPES = (
    "checkout.paid",
    "payment.succeeded",
    "payment_attempt.succeeded",
    "payin.success",
    "transaction.success",
)
WEBHOOK_FAILURE_TYPES = (
    "payment.failed",
    "payment_attempt.failed",
    "checkout.failed",
    "payin.failed",
)


def calculate_fees(amount: Any) -> dict[str, Any]:
    value = quantize_money(amount)
    if value <= 0:
        raise InvalidAmount("Valid amount is required")
    breakdown = compute_allocation_total(value)
    return {
        "amount": breakdown.target_budget,
        "platform_fee": breakdown.platform_fee,
        "processing_fee": breakdown.processing_fee,
        "total": breakdown.total_required,
        "platform_fee_percent": breakdown.platform_fee_percent,
        "processing_fee_percent": breakdown.processing_fee_percent,
    }


def _owned_transaction(db: Session, brand_id: uuid.UUID, transaction_id: uuid.UUID) -> Transaction:
    transaction = db.get(Transaction, transaction_id)
    if transaction is None or transaction.user_id != brand_id:
        raise NotFound("Transaction not found", {"transaction_id": str(transaction_id)})
    return transaction


def _lock_transaction(db: Session, transaction_id: uuid.UUID) -> Transaction | None:
    return db.execute(
        select(Transaction)
        .where(Transaction.id == transaction_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    ).scalar_one_or_none()


def initiate_payment(
    db: Session,
    gateway: PaymentGateway,
    brand_id: uuid.UUID,
    campaign_id: uuid.UUID,
    amount: Any,
    *,
    customer_name: str | None = None,
    customer_email: str | None = None,
    customer_country: str = "US",
) -> dict[str, Any]:
    fees = calculate_fees(amount)
    campaign = owned_campaign(db, brand_id, campaign_id)
    title = campaign.title

    with atomic(db):
        transaction = Transaction(
            user_id=brand_id,
            campaign_id=campaign_id,
            amount=fees["amount"],
            type=TransactionType.DEPOSIT.value,
            status=TransactionStatus.PENDING.value,
            description=f"Campaign Funding: {title}",
            platform_fee=fees["platform_fee"],
            processing_fee=fees["processing_fee"],
            net_amount=fees["amount"],
        )
        db.add(transaction)
        db.flush()
        transaction_id = transaction.id

    profile = get_brand_profile(db, brand_id)
    customer = Customer(
        name=customer_name or (profile.company_name if profile and profile.company_name else "Brand"),
        email=customer_email or f"billing+{brand_id}@collabvault.io",
        country=customer_country,
    )
    frontend = settings.FRONTEND_URL.rstrip("/")
    request = CheckoutRequest(
        amount=fees["total"],
        currency="USD",
        description=f"Funding Campaign: {title} (Ref: TXN-{transaction_id})",
        customer=customer,
        reference_id=str(transaction_id),
        success_url=f"{frontend}/brand/payment/{transaction_id}?status=success",
        cancel_url=f"{frontend}/brand/payment/{transaction_id}?status=cancelled",
    )

    try:
        session = gateway.create_checkout_session(request)
    except GatewayRequestError as exc:
        _mark_failed(db, transaction_id, gateway_status="checkout_error", metadata={"error": str(exc), **exc.details})
        raise GatewayError("Failed to initiate payment", {"transaction_id": str(transaction_id)}) from exc

    if not session.url:
        _mark_failed(db, transaction_id, gateway_status="missing_checkout_url", metadata=session.raw)
        raise GatewayError("Gateway returned no checkout URL", {"transaction_id": str(transaction_id)})

    with atomic(db):
        transaction = _lock_transaction(db, transaction_id)
        transaction.gateway_reference_id = session.id
        transaction.checkout_url = session.url

    logger.info(
        "Checkout initiated: transaction %s, campaign %s, total %s", transaction_id, campaign_id, fees["total"]
    )
    return {
        "transaction_id": transaction_id,
        "url": session.url,
        "amount": fees["amount"],
        "total_charge": fees["total"],
        "platform_fee": fees["platform_fee"],
        "processing_fee": fees["processing_fee"],
    }


def _mark_failed(
    db: Session, transaction_id: uuid.UUID, *, gateway_status: str, metadata: dict[str, Any] | None
) -> bool:
    with atomic(db):
        transaction = _lock_transaction(db, transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return False
        transaction.status = TransactionStatus.FAILED.value
        transaction.gateway_status = gateway_status
        transaction.metadata_json = metadata
    logger.info("Transaction %s failed (%s)", transaction_id, gateway_status)
    return True


def _mark_completed(
    db: Session,
    transaction_id: uuid.UUID,
    *,
    gateway_status: str,
    metadata: dict[str, Any] | None,
    received_amount: Decimal | None = None,
    received_currency: str | None = None,
) -> bool:
    """Complete a Pending transaction and credit its net amount to the campaign escrow.

    Returns False without writing when the transaction is no longer Pending.
    """
    with atomic(db):
        transaction = _lock_transaction(db, transaction_id)
        if transaction is None or transaction.status != TransactionStatus.PENDING.value:
            return False

        transaction.status = TransactionStatus.COMPLETED.value
        transaction.processed_at = datetime.now(timezone.utc)
        transaction.gateway_status = gateway_status
        transaction.metadata_json = metadata
        if received_amount is not None:
            transaction.received_amount = received_amount
        if received_currency:
            transaction.received_currency = received_currency

        credit = quantize_money(transaction.net_amount or transaction.amount)
        if transaction.campaign_id is not None and credit > 0:
            capital.fund_escrow(
                db,
                transaction.campaign_id,
                credit,
                transaction.user_id,
                record_transaction=False,
                description=f"Gateway funding: ${credit} (TXN-{transaction.id})",
            )
        campaign_id = transaction.campaign_id

    logger.info("Payment completed: transaction %s credited %s to campaign %s", transaction_id, credit, campaign_id)
    return True


def verify_payment(
    db: Session, gateway: PaymentGateway, brand_id: uuid.UUID, transaction_id: uuid.UUID
) -> dict[str, Any]:
    transaction = _owned_transaction(db, brand_id, transaction_id)
    if transaction.status in (TransactionStatus.COMPLETED.value, TransactionStatus.FAILED.value):
        return {
            "status": transaction.status,
            "message": f"Transaction already {transaction.status.lower()}",
        }
    if not transaction.gateway_reference_id:
        return {"status": TransactionStatus.PENDING.value, "message": "No gateway reference found yet"}

    try:
        status = gateway.get_checkout_status(transaction.gateway_reference_id)
    except GatewayRequestError:
        logger.exception("Checkout status lookup failed for transaction %s", transaction_id)
        return {
            "status": TransactionStatus.PENDING.value,
            "message": "Unable to verify with the payment gateway, still pending",
        }

    payment_status = status.payment_status or ""
    if status.outcome == PaymentOutcome.PAID:
        _mark_completed(db, transaction_id, gateway_status=payment_status, metadata=status.raw)
        return {"status": TransactionStatus.COMPLETED.value, "message": "Payment verified and confirmed"}
    if status.outcome == PaymentOutcome.FAILED:
        _mark_failed(db, transaction_id, gateway_status=payment_status, metadata=status.raw)
        return {"status": TransactionStatus.FAILED.value, "message": f"Payment {payment_status}"}
    return {
        "status": TransactionStatus.PENDING.value,
        "message": f"Gateway status: {payment_status or 'awaiting payment'}",
    }


# ---------------------------------------------------------------------------
# Webhook
# ---------------------------------------------------------------------------


def _first(*values: Any) -> Any:
    for value in values:
        if value not in (None, ""):
            return value
    return None


def _find_by_reference(db: Session, reference_id: str) -> Transaction | None:
    transaction = db.execute(
        select(Transaction).where(Transaction.gateway_reference_id == reference_id)
    ).scalar_one_or_none()
    if transaction is not None:
        return transaction
    # the checkout reference id is our own transaction id
    try:
        return db.get(Transaction, uuid.UUID(str(reference_id)))
    except ValueError:
        return None


def handle_webhook(
    db: Session, gateway: PaymentGateway, raw_body: bytes, signature: str | None
) -> dict[str, Any]:
    if not gateway.verify_webhook(raw_body, signature):
        logger.warning("Rejected payment webhook with invalid signature")
        raise Unauthenticated("Invalid signature")

    try:
        return _process_webhook(db, json.loads(raw_body or b"{}"))
    except Exception:
        db.rollback()
        logger.exception("Payment webhook processing failed")
        return {"received": True}


def _process_webhook(db: Session, event: dict[str, Any]) -> dict[str, Any]:
    event_type = event.get("type") or event.get("event_type") or ""
    data = event.get("data") if isinstance(event.get("data"), dict) else event

    reference_id = _first(
        data.get("reference_id"),
        data.get("txn_no"),
        event.get("reference_id"),
        event.get("txn_no"),
        data.get("checkout_id"),
        event.get("checkout_id"),
    )
    status = _first(data.get("status"), event.get("status")) or ""

    is_success = event_type in WEBHOOK_SUCCESS_TYPES or status in ("success", "paid")
    is_failure = event_type in WEBHOOK_FAILURE_TYPES or status == "failed"
    if not reference_id or not (is_success or is_failure):
        return {"received": True}

    transaction = _find_by_reference(db, str(reference_id))
    if transaction is None:
        logger.warning("Payment webhook for unknown reference %s ignored", reference_id)
        return {"received": True}

    if is_success:
        paid_minor = _first(
            data.get("amount_paid"),
            data.get("paid_amount"),
            data.get("amount"),
            event.get("amount_paid"),
            event.get("paid_amount"),
            event.get("amount"),
        )
        received = None
        if paid_minor is not None:
            try:
                received = quantize_money(Decimal(str(paid_minor)) / 100)
            except ArithmeticError:
                received = None
        currency = _first(data.get("currency"), event.get("currency"), data.get("invoice_currency")) or "USD"
        processed = _mark_completed(
            db,
            transaction.id,
            gateway_status=status or "success",
            metadata=event,
            received_amount=received,
            received_currency=currency,
        )
    else:
        processed = _mark_failed(db, transaction.id, gateway_status=status or "failed", metadata=event)

    return {"received": True, "processed": processed}


# ---------------------------------------------------------------------------
# Reads
# ---------------------------------------------------------------------------


def get_transaction_history(
    db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID | None = None
) -> list[Transaction]:
    query = select(Transaction).where(Transaction.user_id == brand_id)
    if campaign_id is not None:
        query = query.where(Transaction.campaign_id == campaign_id)
    return list(
        db.execute(query.order_by(Transaction.transaction_date.desc())).scalars().all()
    )


def get_escrow_details(db: Session, brand_id: uuid.UUID, campaign_id: uuid.UUID) -> dict[str, Any]:
    campaign: Campaign = owned_campaign(db, brand_id, campaign_id)
    target = quantize_money(campaign.target_budget)
    balance = quantize_money(campaign.escrow_balance)
    escrow = campaign.escrow
    return {
        "campaign_id": campaign.id,
        "title": campaign.title,
        "target_budget": target,
        "escrow_balance": balance,
        "total_funded": quantize_money(campaign.total_funded),
        "total_released": quantize_money(campaign.total_released),
        "escrow_status": campaign.escrow_status,
        "locked_amount": quantize_money(escrow.locked_amount) if escrow else Decimal("0.00"),
        "remaining_amount": quantize_money(escrow.remaining_amount) if escrow else Decimal("0.00"),
        "funding_progress": round(float(balance / target * 100)) if target > 0 else 0,
        "allocation": compute_allocation_total(target).to_dict(),
    }
