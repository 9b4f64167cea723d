import uuid
from decimal import Decimal

from fastapi import APIRouter, Depends, Header, Query, Request
from sqlalchemy.orm import Session
from starlette.concurrency import run_in_threadpool

from collabvault.db import get_db
from collabvault.deps import get_brand_id, get_gateway
from collabvault.gateways import PaymentGateway
from collabvault.schemas import (
    EscrowDetails,
    FeeQuote,
    PaymentInitiate,
    PaymentInitiateResponse,
    PaymentVerifyResponse,
    TransactionOut,
)
from collabvault.services import payments

payment_router = APIRouter(prefix="/payments", tags=["payments"])


@payment_router.get("/fees", response_model=FeeQuote)
def quote_fees(amount: Decimal = Query(gt=0)):
    return payments.calculate_fees(amount)


@payment_router.post("/initiate", response_model=PaymentInitiateResponse, status_code=201)
def initiate_payment(
    payload: PaymentInitiate,
    brand_id: uuid.UUID = Depends(get_brand_id),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Open a gateway checkout for funding a campaign's escrow."""
    return payments.initiate_payment(
        db,
        gateway,
        brand_id,
        payload.campaign_id,
        payload.amount,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        customer_country=payload.customer_country,
    )


@payment_router.get("/{transaction_id}/verify", response_model=PaymentVerifyResponse)
def verify_payment(
    transaction_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    return payments.verify_payment(db, gateway, brand_id, transaction_id)


@payment_router.post("/webhook")
async def payment_webhook(
    request: Request,
    webhook_signature: str | None = Header(default=None),
    gateway: PaymentGateway = Depends(get_gateway),
    db: Session = Depends(get_db),
):
    """Gateway callback; always acknowledged once the signature checks out."""
    raw_body = await request.body()
    return await run_in_threadpool(payments.handle_webhook, db, gateway, raw_body, webhook_signature)


@payment_router.get("/transactions", response_model=list[TransactionOut])
def get_transaction_history(
    campaign_id: uuid.UUID | None = None,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return payments.get_transaction_history(db, brand_id, campaign_id)


@payment_router.get("/escrow/{campaign_id}", response_model=EscrowDetails)
def get_escrow_details(
    campaign_id: uuid.UUID,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return payments.get_escrow_details(db, brand_id, campaign_id)
