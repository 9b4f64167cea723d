from __future__ import annotations

from collabvault.gateways.base import PaymentGateway
from collabvault.gateways.dry_run import DryRunGateway
from collabvault.settings import settings


def get_payment_gateway(*, dry_run: bool = True) -> PaymentGateway:
    """Return the configured checkout provider.

    When dry_run=True the in-memory DryRunGateway is used; otherwise the
    Tazapay adapter is built from settings.
    """
    if dry_run:
        return DryRunGateway(webhook_secret=settings.TAZAPAY_WEBHOOK_SECRET)

    from collabvault.gateways.tazapay import TazapayGateway

    return TazapayGateway(
        settings.TAZAPAY_API_KEY,
        settings.TAZAPAY_API_SECRET,
        base_url=settings.TAZAPAY_API_BASE_URL,
        webhook_secret=settings.TAZAPAY_WEBHOOK_SECRET,
        timeout=settings.GATEWAY_TIMEOUT_SECONDS,
    )
