from __future__ import annotations

import uuid
from decimal import Decimal
from typing import Any

from fastapi.testclient import TestClient
from sqlalchemy.pool import StaticPool

from collabvault import models  # noqa: F401  -- ensure all models are registered
from collabvault.db import Database
from collabvault.gateways import DryRunGateway
from collabvault.main import create_app
from collabvault.models import Campaign, CampaignCollaboration
from collabvault.services import attribution, campaigns

BRAND_ID = uuid.UUID("11111111-1111-4111-8111-111111111111")
OTHER_BRAND_ID = uuid.UUID("22222222-2222-4222-8222-222222222222")


# ---------------------------------------------------------------------------
# Test DB and client
# ---------------------------------------------------------------------------


def setup_test_db() -> Database:
    """Create an in-memory SQLite database shared by every session."""
    database = Database.from_url(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    database.create_all()
    return database


def make_client(
    database: Database | None = None, gateway: DryRunGateway | None = None
) -> tuple[TestClient, Database, DryRunGateway]:
    database = database or setup_test_db()
    gateway = gateway or DryRunGateway()
    app = create_app(database=database, gateway=gateway)
    return TestClient(app), database, gateway


def brand_headers(brand_id: uuid.UUID = BRAND_ID) -> dict[str, str]:
    return {"X-Brand-Id": str(brand_id)}


# ---------------------------------------------------------------------------
# Seed helpers
# ---------------------------------------------------------------------------


def _make_campaign(db, brand_id: uuid.UUID = BRAND_ID, **overrides: Any) -> Campaign:
    defaults: dict[str, Any] = {
        "title": "Summer Launch",
        "target_budget": Decimal("10000"),
        "escrow_percentage": Decimal("20"),
    }
    defaults.update(overrides)
    return campaigns.create_campaign(db, brand_id, **defaults)["campaign"]


def _make_collaboration(
    db,
    campaign: Campaign,
    brand_id: uuid.UUID = BRAND_ID,
    **overrides: Any,
) -> CampaignCollaboration:
    defaults: dict[str, Any] = {
        "creator_id": uuid.uuid4(),
        "creator_handle": "@glow.with.jess",
        "agreed_price": Decimal("500"),
        "status": "Approved",
    }
    defaults.update(overrides)
    return campaigns.add_collaboration(db, brand_id, campaign.id, **defaults)


def _make_bundle(db, brand_id: uuid.UUID = BRAND_ID, **campaign_overrides: Any):
    campaign = _make_campaign(db, brand_id, **campaign_overrides)
    collaboration = _make_collaboration(db, campaign, brand_id)
    bundle = attribution.generate_tracking_bundle(db, collaboration.id)
    return campaign, collaboration, bundle
