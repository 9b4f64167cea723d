import uuid

from fastapi import Header, Request

from collabvault.errors import Unauthenticated
from collabvault.gateways import PaymentGateway
from collabvault.services.ingestion import ClientContext
from collabvault.tasks import OutboundTaskQueue


def get_brand_id(x_brand_id: str | None = Header(default=None)) -> uuid.UUID:
    if not x_brand_id:
        raise Unauthenticated("Missing X-Brand-Id header")
    try:
        return uuid.UUID(x_brand_id)
    except ValueError:
        raise Unauthenticated("Malformed X-Brand-Id header") from None


def get_gateway(request: Request) -> PaymentGateway:
    return request.app.state.gateway


def get_queue(request: Request) -> OutboundTaskQueue:
    return request.app.state.queue


def get_client_context(request: Request) -> ClientContext:
    return ClientContext(
        ip=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
        country=request.headers.get("cf-ipcountry"),
        referer=request.headers.get("referer"),
    )
