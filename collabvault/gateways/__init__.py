from collabvault.gateways.base import (
    CheckoutRequest,
    CheckoutSession,
    CheckoutStatus,
    Customer,
    PaymentGateway,
    PaymentOutcome,
)
from collabvault.gateways.dry_run import DryRunGateway
from collabvault.gateways.exceptions import GatewayRequestError
from collabvault.gateways.factory import get_payment_gateway

__all__ = [
    "CheckoutRequest",
    "CheckoutSession",
    "CheckoutStatus",
    "Customer",
    "DryRunGateway",
    "GatewayRequestError",
    "PaymentGateway",
    "PaymentOutcome",
    "get_payment_gateway",
]
