import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI

from collabvault.attribution_api import attribution_router
from collabvault.campaign_api import campaign_router
from collabvault.db import Database
from collabvault.errors import register_error_handlers
from collabvault.escrow_api import escrow_router
from collabvault.event_api import event_router
from collabvault.gateways import PaymentGateway, get_payment_gateway
from collabvault.integration_api import integration_router
from collabvault.lift_test_api import lift_test_router
from collabvault.payment_api import payment_router
from collabvault.settings import settings
from collabvault.tasks import OutboundTaskQueue

logger = logging.getLogger(__name__)


def create_app(
    database: Database | None = None,
    gateway: PaymentGateway | None = None,
) -> FastAPI:
    logging.basicConfig(level=settings.LOG_LEVEL)

    database = database or Database.from_url()
    gateway = gateway or get_payment_gateway(dry_run=settings.USE_DRY_RUN_GATEWAY)
    queue = OutboundTaskQueue(database)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("CollabVault starting (gateway=%s)", type(gateway).__name__)
        yield
        pending = queue.drain()
        logger.info("Drained outbound queue on shutdown: %s", pending)
        gateway.close()
        database.dispose()

    app = FastAPI(title="CollabVault", version="0.1.0", lifespan=lifespan)
    app.state.database = database
    app.state.gateway = gateway
    app.state.queue = queue

    register_error_handlers(app)
    app.include_router(campaign_router)
    app.include_router(escrow_router)
    app.include_router(payment_router)
    app.include_router(attribution_router)
    app.include_router(event_router)
    app.include_router(lift_test_router)
    app.include_router(integration_router)
    return app


app = create_app()
