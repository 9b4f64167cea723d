import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from collabvault.db import get_db
from collabvault.deps import get_brand_id
from collabvault.models import Integration
from collabvault.schemas import IntegrationIn, IntegrationOut, IntegrationTestResponse
from collabvault.services import forwarding

integration_router = APIRouter(prefix="/integrations", tags=["integrations"])

SECRET_KEYS = ("api_secret",)


def _integration_out(integration: Integration) -> IntegrationOut:
    config = {
        key: ("****" if key in SECRET_KEYS and value else value)
        for key, value in (integration.config or {}).items()
    }
    return IntegrationOut(
        id=integration.id,
        type=integration.type,
        status=integration.status,
        config=config,
        has_access_token=bool(integration.access_token),
        created_at=integration.created_at,
        updated_at=integration.updated_at,
    )


@integration_router.get("", response_model=list[IntegrationOut])
def list_integrations(
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return [_integration_out(i) for i in forwarding.list_integrations(db, brand_id)]


@integration_router.get("/{integration_type}", response_model=IntegrationOut)
def get_integration(
    integration_type: str,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return _integration_out(forwarding.get_integration(db, brand_id, integration_type))


@integration_router.put("/{integration_type}", response_model=IntegrationOut)
def connect_integration(
    integration_type: str,
    payload: IntegrationIn,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Create or replace the brand's configuration for GA4 or Meta CAPI."""
    integration = forwarding.upsert_integration(
        db,
        brand_id,
        integration_type,
        config=payload.config,
        access_token=payload.access_token,
    )
    return _integration_out(integration)


@integration_router.delete("/{integration_type}", response_model=IntegrationOut)
def disconnect_integration(
    integration_type: str,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    return _integration_out(forwarding.disconnect_integration(db, brand_id, integration_type))


@integration_router.post("/{integration_type}/test", response_model=IntegrationTestResponse)
def test_integration(
    integration_type: str,
    brand_id: uuid.UUID = Depends(get_brand_id),
    db: Session = Depends(get_db),
):
    """Send a 0.01 test purchase through the configured integration."""
    result = forwarding.send_test_event(db, brand_id, integration_type)
    return {"success": result.success, "status_code": result.status_code, "error": result.error}
